import json
import logging
import os
from typing import Any, Dict, List

from .models import CatalogEntry, Profile

logger = logging.getLogger("loaders")


def _read_json(path: str, what: str) -> Any:
    abs_path = os.path.abspath(path)
    if not os.path.exists(abs_path):
        logger.error(f"{what} file not found: {abs_path}")
        raise FileNotFoundError(f"{what} file not found: {abs_path}")
    try:
        with open(abs_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in {what.lower()} file {abs_path}: {e}")
        raise ValueError(f"Invalid JSON in {what.lower()} file: {e}")


def load_profile(path: str) -> Profile:
    """
    Loads a profile JSON document into a Profile.

    Raises:
        FileNotFoundError: If the profile file does not exist.
        ValueError: If the file is not valid JSON or not an object.
    """
    data = _read_json(path, "Profile")
    if not isinstance(data, dict):
        raise ValueError(f"Profile {path} must be a JSON object, got {type(data).__name__}")
    profile = Profile.from_dict(data)
    dim_count = sum(1 for _ in profile.iter_dimensions())
    logger.info(f"Profile '{profile.project_name}' loaded from {path}: {len(profile.groups)} group(s), {dim_count} dimension(s)")
    return profile


def save_profile(profile: Profile, path: str) -> None:
    """Writes the profile back as UTF-8 JSON with 2-space indentation."""
    temp_path = path + ".tmp"
    with open(temp_path, 'w', encoding='utf-8') as f:
        json.dump(profile.to_dict(), f, indent=2, ensure_ascii=False)
    os.replace(temp_path, path)
    logger.info(f"Profile saved to {path}")


def load_catalog(path: str) -> CatalogEntry:
    data = _read_json(path, "Catalog")
    if not isinstance(data, dict) or "service_name" not in data:
        raise ValueError(f"Catalog {path} must be a JSON object with a 'service_name'")
    return CatalogEntry.from_dict(data)


def load_catalog_dir(directory: str) -> Dict[str, CatalogEntry]:
    """
    Loads every *.json catalog directly inside ``directory`` (subdirectories are ignored).

    Returns:
        Dict[str, CatalogEntry]: Entries keyed by service name.
    """
    if not os.path.isdir(directory):
        logger.error(f"Catalog directory not found: {directory}")
        raise FileNotFoundError(f"Catalog directory not found: {directory}")

    catalogs: Dict[str, CatalogEntry] = {}
    for filename in sorted(os.listdir(directory)):
        file_path = os.path.join(directory, filename)
        if not filename.endswith(".json") or not os.path.isfile(file_path):
            continue
        entry = load_catalog(file_path)
        catalogs[entry.service_name] = entry
    logger.info(f"Loaded {len(catalogs)} catalog(s) from {directory}")
    return catalogs


def find_catalog(catalogs: Dict[str, CatalogEntry], name: str):
    """Exact match first, then case-insensitive substring ('EC2' finds 'Amazon EC2')."""
    if name in catalogs:
        return catalogs[name]
    needle = name.lower()
    for service_name, entry in catalogs.items():
        if service_name.lower() == needle:
            return entry
    for service_name, entry in catalogs.items():
        if needle in service_name.lower():
            return entry
    return None


def catalog_names(catalogs: Dict[str, CatalogEntry]) -> List[str]:
    return sorted(catalogs)
