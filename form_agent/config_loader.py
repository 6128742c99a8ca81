import copy
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger("config_loader")

CONFIG_ENV_VAR = "FORM_AGENT_CONFIG"
DEFAULT_CONFIG_PATH = "./config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    'target_url': 'https://calculator.aws/#/estimate',
    'paths': {
        'screenshots_dir': 'screenshots',
        'output_dir': 'output',
        'log_file': 'logs/form_agent.log',
        'corrections_file': 'output/selector_corrections.json',
    },
    'agent_settings': {
        'headless': False,
        'navigation_timeout': 40000,
        'action_timeout': 30000,
        'visibility_timeout': 2000,
        'delay_between_actions': 0.2,
    },
    'retry': {
        'max_retries': 2,
        'delay_ms': 1000,
        'fill_delay_ms': 1500,
    },
    'locator': {
        'band_px': 150,
    },
    'fuzzy_match_threshold': 85,
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_config_path(path: Optional[str] = None) -> str:
    """Explicit path > FORM_AGENT_CONFIG (env or .env) > ./config.yaml"""
    if path:
        return os.path.abspath(path)
    load_dotenv()
    return os.path.abspath(os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads the YAML configuration and fills in defaults for anything missing.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the file is not a YAML mapping.
    """
    config_path = resolve_config_path(path)
    if not os.path.exists(config_path):
        logger.error(f"Configuration file not found at {config_path}")
        raise FileNotFoundError(f"config.yaml not found at {config_path}")
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing config file {config_path}: {e}")
        raise ValueError(f"Invalid YAML in config file: {e}")

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(loaded).__name__}")

    logger.info(f"Configuration loaded from {config_path}")
    return _deep_merge(DEFAULT_CONFIG, loaded)
