"""
Tiered Locator Engine.

Turns a symbolic dimension key into a live control handle by trying, in order:
the catalog CSS hint, an aria-label substring match, label association, role +
accessible name, and finally native find-in-page plus a proximity-band query.
A tier is only tried when every earlier tier produced no visible candidate.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import (
    ElementHandle,
    Error as PlaywrightError,
    Locator,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from . import find_in_page
from .errors import (
    BrowserError,
    BrowserTimeoutError,
    LocatorAmbiguousError,
    LocatorError,
    RunCancelledError,
    translate_playwright_error,
)
from .event_log import log_event
from .models import LocatorHints, LocatorResult
from .retry_policy import MAX_RETRIES, RETRY_DELAY_MS, CancellationToken, with_retry
from .screenshots import RunContext, capture_screenshot

logger = logging.getLogger("locator")

ROLE_ORDER = ["checkbox", "switch", "radio", "spinbutton", "combobox", "textbox", "button"]

VISIBILITY_TIMEOUT = 2000
BAND_PX = find_in_page.DEFAULT_BAND_PX
LOCATE_MAX_RETRIES = MAX_RETRIES
LOCATE_DELAY_MS = RETRY_DELAY_MS


def load_locator_config(config: Dict[str, Any]) -> None:
    """Reads locator timings from the loaded configuration."""
    global VISIBILITY_TIMEOUT, BAND_PX, LOCATE_MAX_RETRIES, LOCATE_DELAY_MS
    VISIBILITY_TIMEOUT = config.get('agent_settings', {}).get('visibility_timeout', VISIBILITY_TIMEOUT)
    BAND_PX = config.get('locator', {}).get('band_px', BAND_PX)
    LOCATE_MAX_RETRIES = config.get('retry', {}).get('max_retries', LOCATE_MAX_RETRIES)
    LOCATE_DELAY_MS = config.get('retry', {}).get('delay_ms', LOCATE_DELAY_MS)
    logger.info(f"Locator config loaded: band={BAND_PX}px, visibility_timeout={VISIBILITY_TIMEOUT}ms")


# --- Field type inference ---

def detect_field_type(tag_name: str, input_type: Optional[str] = None, role: Optional[str] = None) -> str:
    tag = (tag_name or "").lower()
    input_type = input_type.lower() if input_type else None
    role = role.lower() if role else None

    if tag == "input":
        return {"number": "NUMBER", "text": "TEXT", "checkbox": "TOGGLE", "radio": "RADIO"}.get(input_type, "TEXT")
    if tag == "select":
        return "SELECT"
    if tag == "textarea":
        return "TEXT"

    return {
        "combobox": "COMBOBOX",
        "spinbutton": "NUMBER",
        "switch": "TOGGLE",
        "radio": "RADIO",
        "listbox": "SELECT",
    }.get(role, "TEXT")


async def get_field_type(element: ElementHandle) -> str:
    tag = await element.evaluate("el => el.tagName.toLowerCase()")
    input_type = await element.get_attribute("type")
    role = await element.get_attribute("role")
    return detect_field_type(tag, input_type, role)


def escape_css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def aria_label_selector(label: str) -> str:
    return f'[aria-label*="{escape_css_string(label)}" i]'


# --- Tier helpers ---

class _Search:
    """State of one locate attempt: which tiers ran and any out-of-range index."""

    def __init__(self, dimension_key: str, hints: LocatorHints):
        self.dimension_key = dimension_key
        self.hints = hints
        self.index = max(0, hints.disambiguation_index or 0)
        self.tried: List[str] = []
        self.ambiguous_count = 0

    @property
    def labels(self) -> List[str]:
        labels = [self.dimension_key]
        fallback = self.hints.fallback_label
        if fallback and fallback != self.dimension_key:
            labels.append(fallback)
        return labels

    async def _await_visible(self, element: Optional[ElementHandle]) -> Optional[ElementHandle]:
        if element is None:
            return None
        try:
            await element.wait_for_element_state("visible", timeout=VISIBILITY_TIMEOUT)
        except PlaywrightTimeoutError:
            logger.debug(f"Candidate for '{self.dimension_key}' never became visible")
            return None
        return element

    async def pick(self, candidates: Locator) -> Optional[ElementHandle]:
        """Selects the disambiguation index among the visible candidates."""
        count = await candidates.count()
        visible = []
        for i in range(count):
            candidate = candidates.nth(i)
            if await candidate.is_visible():
                visible.append(candidate)
        if not visible:
            return None
        if self.index >= len(visible):
            self.ambiguous_count = max(self.ambiguous_count, len(visible))
            logger.warning(
                f"⚠️ {len(visible)} visible match(es) for '{self.dimension_key}' "
                f"but disambiguation index is {self.index}; trying next tier."
            )
            return None
        return await self._await_visible(await visible[self.index].element_handle())

    async def pick_handle(self, controls: List[ElementHandle]) -> Optional[ElementHandle]:
        if not controls:
            return None
        if self.index >= len(controls):
            self.ambiguous_count = max(self.ambiguous_count, len(controls))
            return None
        return await self._await_visible(controls[self.index])


async def _try_css(page: Page, search: _Search) -> Optional[ElementHandle]:
    css = search.hints.css_selector
    if not css:
        return None
    search.tried.append("css")
    try:
        return await search.pick(page.locator(css))
    except PlaywrightTimeoutError:
        raise
    except PlaywrightError as e:
        if translate_playwright_error(e, "css lookup"):
            raise
        logger.warning(f"⚠️ CSS hint '{css}' for '{search.dimension_key}' is unusable: {e}")
        return None


async def _try_aria_label(page: Page, search: _Search) -> Optional[ElementHandle]:
    search.tried.append("aria-label")
    for label in search.labels:
        element = await search.pick(page.locator(aria_label_selector(label)))
        if element:
            return element
    return None


async def _try_label(page: Page, search: _Search) -> Optional[ElementHandle]:
    search.tried.append("label-for")
    for label in search.labels:
        element = await search.pick(page.get_by_label(label, exact=False))
        if element:
            return element
    return None


async def _try_role(page: Page, search: _Search) -> Optional[ElementHandle]:
    search.tried.append("role")
    for label in search.labels:
        for role in ROLE_ORDER:
            element = await search.pick(page.get_by_role(role, name=label, exact=False))
            if element:
                search.tried.append(f"role-{role}")
                return element
    return None


async def _try_find_in_page(page: Page, search: _Search) -> Optional[Dict[str, Any]]:
    search.tried.append("find-in-page")
    for label in search.labels:
        await find_in_page.scroll_to_position(page, 0)
        rect = await find_in_page.find_text_rect(page, label)
        if not rect:
            continue
        controls = await find_in_page.query_controls_in_band(page, rect["top"], BAND_PX)
        element = await search.pick_handle(controls)
        if element:
            return {"element": element, "match_top": rect["top"]}
    return None


async def _locate_once(page: Page, dimension_key: str, hints: LocatorHints) -> LocatorResult:
    search = _Search(dimension_key, hints)
    try:
        element = await _try_css(page, search)
        strategy = "css"
        if element is None:
            element, strategy = await _try_aria_label(page, search), "aria-label"
        if element is None:
            element, strategy = await _try_label(page, search), "label-for"
        if element is None:
            element = await _try_role(page, search)
            strategy = search.tried[-1]
        match_top = 0.0
        if element is None:
            found = await _try_find_in_page(page, search)
            strategy = "find-in-page"
            if found:
                element, match_top = found["element"], found["match_top"]
        if element is None:
            if search.ambiguous_count:
                raise LocatorAmbiguousError(dimension_key, search.ambiguous_count, search.index)
            raise LocatorError(dimension_key, "all-tiers")
        field_type = await get_field_type(element)
    except PlaywrightError as e:
        translated = translate_playwright_error(e, f"locate '{dimension_key}'")
        if translated:
            raise translated from e
        raise

    return LocatorResult(
        status="success",
        strategy=strategy,
        field_type=field_type,
        element=element,
        match_top=match_top,
    )


async def locate(
    page: Page,
    dimension_key: str,
    hints: Optional[LocatorHints] = None,
    required: bool = True,
    context: Optional[RunContext] = None,
    cancel_token: Optional[CancellationToken] = None,
    max_retries: Optional[int] = None,
    delay_ms: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> LocatorResult:
    """
    Finds the live control for ``dimension_key``.

    Locator failures never raise: they come back as a LocatorResult with status
    ``failed`` (required) or ``skipped`` (optional) and a best-effort screenshot.
    Session-level browser errors other than timeouts and cancellation propagate.
    """
    hints = hints or LocatorHints()
    log_event(logger, "INFO", "EVT-FND-01", label=dimension_key, step="locating")

    try:
        result = await with_retry(
            lambda: _locate_once(page, dimension_key, hints),
            step_name=f"locate-{dimension_key}",
            max_retries=LOCATE_MAX_RETRIES if max_retries is None else max_retries,
            delay_ms=LOCATE_DELAY_MS if delay_ms is None else delay_ms,
            cancel_token=cancel_token,
            sleep=sleep,
        )
    except RunCancelledError:
        raise
    except BrowserError as e:
        if not isinstance(e, BrowserTimeoutError):
            raise
        return await _failed_result(page, dimension_key, required, context, "timeout", e)
    except Exception as e:
        return await _failed_result(page, dimension_key, required, context, getattr(e, "strategy", "all-tiers"), e)

    log_event(logger, "INFO", "EVT-FND-01", label=dimension_key, strategy=result.strategy, field_type=result.field_type)
    return result


async def _failed_result(page: Page, dimension_key: str, required: bool, context: Optional[RunContext],
                         strategy: str, error: Exception) -> LocatorResult:
    status = "failed" if required else "skipped"
    screenshot_path = await capture_screenshot(page, context, f"locator_fail_{dimension_key}")
    level = "ERROR" if required else "WARN"
    log_event(logger, level, "EVT-FND-02", label=dimension_key, status=status, error=str(error))
    return LocatorResult(
        status=status,
        strategy=strategy,
        screenshot_path=screenshot_path,
        error=str(error),
    )
