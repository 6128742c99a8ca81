"""
Field Interactor: dispatches a located control to the fill strategy for its
field type, reads the value back, and retries the whole attempt through the
shared retry policy.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page

from . import field_strategies
from .errors import (
    AutomationError,
    BrowserError,
    BrowserTimeoutError,
    FieldInteractionError,
    FieldVerificationError,
    RunCancelledError,
    translate_playwright_error,
)
from .event_log import log_event
from .models import FIELD_TYPES, FillResult
from .retry_policy import MAX_RETRIES, CancellationToken, with_retry
from .screenshots import RunContext, capture_screenshot

logger = logging.getLogger("interactor")

FILL_DELAY_MS = 1500
FILL_MAX_RETRIES = MAX_RETRIES
READ_BACK_TYPES = ("NUMBER", "TEXT", "SELECT", "TOGGLE", "RADIO")


def load_interactor_config(config):
    global FILL_DELAY_MS, FILL_MAX_RETRIES
    FILL_DELAY_MS = config.get('retry', {}).get('fill_delay_ms', FILL_DELAY_MS)
    FILL_MAX_RETRIES = config.get('retry', {}).get('max_retries', FILL_MAX_RETRIES)


def normalize_field_type(field_type: Optional[str]) -> str:
    """
    Upper-cases the type. Unrecognised types keep their name: they are filled
    with the NUMBER/TEXT strategy and are not read back.
    """
    normalized = str(field_type or "TEXT").strip().upper()
    if normalized not in FIELD_TYPES:
        logger.debug(f"Unknown field type '{normalized}', using the text strategy")
    return normalized


@dataclass
class FillOptions:
    page: Page
    dimension_key: str = "unknown"
    required: bool = True
    max_retries: Optional[int] = None
    delay_ms: Optional[float] = None
    context: Optional[RunContext] = None
    cancel_token: Optional[CancellationToken] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


# --- Verification ---

async def read_back(control, field_type: str) -> Any:
    if field_type in ("TEXT", "NUMBER"):
        return await control.input_value()
    if field_type in ("TOGGLE", "RADIO"):
        return await field_strategies.read_toggle_state(control)
    if field_type == "SELECT":
        return await control.evaluate(
            """el => {
                if (el.tagName.toLowerCase() === 'select') {
                    const opt = el.options[el.selectedIndex];
                    return opt ? [opt.text, opt.value].join(' ') : '';
                }
                return el.getAttribute('data-value') || el.textContent || '';
            }"""
        )
    return None


async def verify_field_value(control, field_type: str, dimension_key: str, expected: Any) -> None:
    """
    Raises FieldVerificationError when the control does not hold ``expected``.
    COMBOBOX, INSTANCE_SEARCH and unrecognised types have no reliable read-back
    and always pass.
    """
    if field_type in ("COMBOBOX", "INSTANCE_SEARCH"):
        return

    actual = await read_back(control, field_type)
    if field_type in ("TEXT", "NUMBER"):
        ok = str(actual) == str(expected)
    elif field_type == "TOGGLE":
        # unreadable state counts as off
        ok = bool(actual) == field_strategies.wants_checked(expected)
    elif field_type == "RADIO":
        ok = actual is True
    elif field_type == "SELECT":
        ok = field_strategies.selection_matches(expected, actual)
    else:
        ok = True

    if not ok:
        raise FieldVerificationError(dimension_key, expected, actual)


# --- Fill ---

async def _attempt(element: ElementHandle, field_type: str, value: Any, opts: FillOptions) -> None:
    strategy = field_strategies.STRATEGIES.get(field_type, field_strategies.fill_number_text)
    try:
        target = await strategy(opts.page, element, opts.dimension_key, value)
        if field_type != "INSTANCE_SEARCH":
            await verify_field_value(target or element, field_type, opts.dimension_key, value)
    except AutomationError:
        raise
    except PlaywrightError as e:
        translated = translate_playwright_error(e, f"fill '{opts.dimension_key}'")
        if translated is not None:
            raise translated from e
        raise FieldInteractionError(opts.dimension_key, str(e)) from e


async def fill(element: ElementHandle, field_type: Optional[str], value: Any, opts: FillOptions) -> FillResult:
    """
    Writes ``value`` into ``element`` and verifies it, retrying failed attempts.

    Returns a FillResult in every dimension-local outcome. Session-level browser
    errors other than timeouts and cancellation are raised to the caller.
    """
    normalized = normalize_field_type(field_type)
    key = opts.dimension_key
    attempts = 0

    async def run_once() -> None:
        nonlocal attempts
        attempts += 1
        await _attempt(element, normalized, value, opts)

    try:
        await with_retry(
            run_once,
            step_name=f"fill-dimension-{key}",
            max_retries=FILL_MAX_RETRIES if opts.max_retries is None else opts.max_retries,
            delay_ms=FILL_DELAY_MS if opts.delay_ms is None else opts.delay_ms,
            cancel_token=opts.cancel_token,
            sleep=opts.sleep,
        )
    except RunCancelledError:
        raise
    except Exception as e:
        if isinstance(e, BrowserError) and not isinstance(e, BrowserTimeoutError):
            raise
        retries_used = max(0, attempts - 1)
        if not opts.required:
            log_event(logger, "WARN", "EVT-FIL-02", label=key, field_type=normalized, status="skipped", error=str(e))
            return FillResult(
                dimension_key=key,
                status="skipped",
                message=f"Skipped optional {key}: {e}",
                retries_used=retries_used,
                field_type=normalized,
            )
        screenshot = await capture_screenshot(opts.page, opts.context, f"fill_fail_{key}")
        log_event(logger, "ERROR", "EVT-FIL-02", label=key, field_type=normalized, status="failed",
                  retries=retries_used, error=str(e))
        return FillResult(
            dimension_key=key,
            status="failed",
            message=f"Failed to fill {key}: {e}",
            retries_used=retries_used,
            screenshot=screenshot,
            field_type=normalized,
        )

    retries_used = max(0, attempts - 1)
    log_event(logger, "INFO", "EVT-FIL-01", label=key, field_type=normalized, retries=retries_used)
    return FillResult(
        dimension_key=key,
        status="success",
        message=f"Filled {key} ({normalized})",
        retries_used=retries_used,
        verified=normalized in READ_BACK_TYPES,
        field_type=normalized,
    )
