import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import traceback
from typing import Any, Dict, List, Optional

from . import field_strategies, interactor, locator, navigator
from .browser_session import BrowserSession
from .config_loader import load_config
from .errors import BrowserError, NavigationError, OverrideError, ResolutionError
from .event_log import setup_logging
from .healer import CatalogHealer
from .loaders import load_catalog, load_catalog_dir, load_profile, save_profile
from .models import Service
from .pipeline import dry_run, run_profile
from .resolver import parse_overrides, prepare_profile
from .retry_policy import CancellationToken
from .screenshots import RunContext, build_run_id

logger = logging.getLogger("form_agent_main")

EXIT_CODES = {"success": 0, "failed": 1, "partial_success": 2, "cancelled": 130}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="form-agent", description="Fill a web form from a declarative profile")
    parser.add_argument('--config', help='Path to config.yaml (default: $FORM_AGENT_CONFIG or ./config.yaml)')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='mode', required=True)

    run = sub.add_parser('run', help='Resolve the profile and fill the form in a browser')
    run.add_argument('--profile', required=True, help='Profile JSON file')
    run.add_argument('--catalog-dir', help='Directory of service catalog JSON files')
    run.add_argument('--set', action='append', default=[], metavar='G.S.D=VALUE', help='Override a dimension value')
    run.add_argument('--url', help='Target URL (default: target_url from config)')
    run.add_argument('--headless', action='store_true', help='Run the browser headless')

    dry = sub.add_parser('dry-run', help='Resolve the profile without opening a browser')
    dry.add_argument('--profile', required=True, help='Profile JSON file')
    dry.add_argument('--set', action='append', default=[], metavar='G.S.D=VALUE', help='Override a dimension value')
    dry.add_argument('--save-resolved', metavar='PATH', help='Write the resolved profile JSON to PATH')

    heal = sub.add_parser('heal', help='Repair stale catalog selectors against the live page')
    heal.add_argument('--catalog', required=True, help='Catalog JSON file for one service')
    heal.add_argument('--service', help='Service name (default: the catalog service_name)')
    heal.add_argument('--url', help='Target URL (default: target_url from config)')
    heal.add_argument('--no-navigate', action='store_true', help='Heal on the landing page without opening the service')
    heal.add_argument('--headless', action='store_true', help='Run the browser headless')
    return parser


def install_cancel_handler(token: CancellationToken) -> None:
    """SIGINT requests cancellation; the run stops at its next checkpoint."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel, "SIGINT")
    except (NotImplementedError, RuntimeError):
        signal.signal(signal.SIGINT, lambda *_: token.cancel("SIGINT"))


def write_report(config: Dict[str, Any], name: str, data: Dict[str, Any]) -> str:
    output_dir = config.get('paths', {}).get('output_dir', 'output')
    os.makedirs(output_dir, exist_ok=True)
    report_path = os.path.join(output_dir, f"{name}.json")
    with open(report_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, default=str)
    logger.info(f"Report written to {report_path}")
    return report_path


async def run_mode(args, config: Dict[str, Any]) -> int:
    profile = load_profile(args.profile)
    prepare_profile(profile, parse_overrides(args.set))
    catalogs = load_catalog_dir(args.catalog_dir) if args.catalog_dir else {}

    target_url = args.url or config.get('target_url')
    context = RunContext(
        run_id=build_run_id(),
        screenshots_dir=config.get('paths', {}).get('screenshots_dir', 'screenshots'),
    )
    token = CancellationToken()
    install_cancel_handler(token)

    async with BrowserSession.from_config(config, headless=True if args.headless else None) as session:
        await session.goto(target_url)
        result = await run_profile(
            session.page, profile, catalogs, context,
            open_service=navigator.open_service,
            close_service=navigator.save_service,
            cancel_token=token,
            target_url=target_url,
        )

    write_report(config, result.run_id, result.to_dict())
    logger.info(f"Run {result.run_id} finished with status: {result.status}")
    return EXIT_CODES.get(result.status, 1)


def dry_run_mode(args) -> int:
    profile = load_profile(args.profile)
    plan = dry_run(profile, parse_overrides(args.set))
    if args.save_resolved:
        save_profile(profile, args.save_resolved)
    print(json.dumps(plan, indent=2, default=str))
    return 0


async def heal_mode(args, config: Dict[str, Any]) -> int:
    entry = load_catalog(args.catalog)
    service_name = args.service or entry.service_name
    target_url = args.url or config.get('target_url')

    async with BrowserSession.from_config(config, headless=True if args.headless else None) as session:
        await session.goto(target_url)
        if not args.no_navigate:
            await navigator.open_service(session.page, Service(service_name=service_name), entry)
        healer = CatalogHealer(session.page, service_name)
        report = await healer.heal_entry(entry)

    corrections_file = config.get('paths', {}).get('corrections_file', os.path.join('output', 'selector_corrections.json'))
    if report.healed:
        healer.save_corrections(corrections_file)
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.ok else 1


def load_runtime_config(config_path: Optional[str]) -> Dict[str, Any]:
    config = load_config(config_path)
    locator.load_locator_config(config)
    field_strategies.load_strategy_config(config)
    interactor.load_interactor_config(config)
    return config


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_runtime_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"FATAL: Could not load config.yaml. Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, level=logging.DEBUG if args.verbose else logging.INFO)
    logger.info(f"form-agent starting in '{args.mode}' mode")

    try:
        if args.mode == 'dry-run':
            return dry_run_mode(args)
        if args.mode == 'run':
            return await run_mode(args, config)
        if args.mode == 'heal':
            return await heal_mode(args, config)
    except ResolutionError as e:
        logger.error(str(e))
        print(e.report(), file=sys.stderr)
        return 1
    except OverrideError as e:
        logger.error(f"FATAL: {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"FATAL: Profile or catalog error: {e}")
        return 1
    except (BrowserError, NavigationError) as e:
        logger.error(f"FATAL: {e}")
        return 1
    except Exception as e:
        logger.error(f"An unexpected error occurred in mode '{args.mode}': {e}")
        logger.error(traceback.format_exc())
        return 1
    return 1


def cli() -> None:
    exit_code = 1
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped by user.")
        exit_code = EXIT_CODES["cancelled"]
    finally:
        logger.info("form-agent shutting down.")
        logging.shutdown()
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
