import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from fuzzywuzzy import fuzz
from playwright.async_api import (
    ElementHandle,
    Error as PlaywrightError,
    Locator,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .errors import BrowserTimeoutError, FieldInteractionError, translate_playwright_error
from .find_in_page import shortcut

logger = logging.getLogger("field_strategies")

# --- Configuration Dependent Constants (Defaults if config fails) ---
FUZZY_MATCH_THRESHOLD = 85
DELAY_BETWEEN_ACTIONS = 0.2

TRUTHY_VALUES = {"true", "yes", "1", "on", "enabled"}
STATE_ON = {"true", "1", "on", "yes", "mixed"}
STATE_OFF = {"false", "0", "off", "no"}
STATE_ATTRIBUTES = ["aria-checked", "aria-pressed", "aria-expanded", "data-checked", "data-selected"]

TOGGLE_LIKE = (
    "input[type='checkbox'], input[type='radio'], [role='switch'], [role='checkbox'], "
    "button[aria-pressed], button[aria-expanded]"
)
TOGGLE_CHILD_SELECTORS = [
    "input[type='checkbox']",
    "input[type='radio']",
    "[role='switch']",
    "[role='checkbox']",
    "button[aria-pressed]",
    "button[aria-expanded]",
]
RADIO_MEMBERS = "input[type='radio'], [role='radio']"

Control = Union[ElementHandle, Locator]


def load_strategy_config(config: Dict[str, Any]):
    """Loads fuzzy-match and pacing settings from the main config."""
    global FUZZY_MATCH_THRESHOLD, DELAY_BETWEEN_ACTIONS
    FUZZY_MATCH_THRESHOLD = config.get('fuzzy_match_threshold', 85)
    DELAY_BETWEEN_ACTIONS = config.get('agent_settings', {}).get('delay_between_actions', 0.2)
    logger.info(f"Field strategy settings: Fuzzy Threshold={FUZZY_MATCH_THRESHOLD}, Action Delay={DELAY_BETWEEN_ACTIONS}")


def _raise_if_session_lost(error: PlaywrightError, action: str) -> None:
    lost = translate_playwright_error(error, action)
    if lost is not None and not isinstance(lost, BrowserTimeoutError):
        raise lost from error


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def wants_checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return _as_text(value).strip().lower() in TRUTHY_VALUES


def css_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


# --- NUMBER / TEXT ---

async def fill_number_text(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> ElementHandle:
    """Native fill first; falls back to select-all, delete and typing, then a direct value assignment."""
    text = _as_text(value)
    try:
        await element.fill(text)
        return element
    except PlaywrightError as e:
        _raise_if_session_lost(e, f"fill '{dimension_key}'")
        logger.debug(f"Native fill failed for '{dimension_key}', typing instead: {e}")

    await element.click()
    for key in (shortcut("select_all"), "Backspace"):
        try:
            await element.press(key)
        except PlaywrightError as e:
            _raise_if_session_lost(e, f"press {key}")
    try:
        await element.type(text, delay=10)
        return element
    except PlaywrightError as e:
        _raise_if_session_lost(e, f"type into '{dimension_key}'")
        logger.debug(f"Typing failed for '{dimension_key}', assigning value directly: {e}")

    await element.evaluate(
        """(el, next) => {
            if ('value' in el) {
                el.value = next;
                el.dispatchEvent(new Event('input', { bubbles: true }));
                el.dispatchEvent(new Event('change', { bubbles: true }));
            }
        }""",
        text,
    )
    return element


# --- SELECT / COMBOBOX ---

def best_option_match(desired: str, options: List[Dict[str, Any]], threshold: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """
    Picks the option that best matches ``desired``: exact text (100), exact value (95),
    otherwise the highest fuzzy token-set score at or above the threshold.
    """
    threshold = FUZZY_MATCH_THRESHOLD if threshold is None else threshold
    target = desired.strip().lower()
    best, best_score = None, -1
    for option in options:
        option_text = _as_text(option.get("text")).strip().lower()
        option_value = _as_text(option.get("value")).strip().lower()
        if option.get("disabled"):
            continue
        if target == option_text:
            score = 100
        elif target == option_value:
            score = 95
        elif option_text:
            score = fuzz.token_set_ratio(target, option_text)
            if score < threshold:
                continue
        else:
            continue
        if score > best_score:
            best, best_score = option, score
    return best


def selection_matches(expected: Any, selected: Any) -> bool:
    """True when the selected option text contains ``expected`` or fuzzy-matches it."""
    expected_text = _as_text(expected).strip().lower()
    selected_text = _as_text(selected).strip().lower()
    if not selected_text:
        return False
    if expected_text in selected_text:
        return True
    return fuzz.token_set_ratio(expected_text, selected_text) >= FUZZY_MATCH_THRESHOLD


async def fill_select(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> ElementHandle:
    text = _as_text(value)
    for how in ("label", "value"):
        try:
            selected = await element.select_option(**{how: text}, timeout=3000)
            if selected:
                logger.debug(f"Selected '{text}' by {how} for '{dimension_key}'")
                return element
        except PlaywrightError as e:
            _raise_if_session_lost(e, f"select '{dimension_key}'")

    options = await element.evaluate(
        """select => Array.from(select.options || []).map(option => ({
            value: option.value,
            text: (option.text || '').trim(),
            disabled: option.disabled
        }))"""
    )
    best = best_option_match(text, options or [])
    if best is not None:
        selected = await element.select_option(value=best["value"], timeout=3000)
        if selected:
            logger.info(f"✅ Selected fuzzy option '{best.get('text')}' for '{dimension_key}'")
            return element

    raise FieldInteractionError(dimension_key, f'option "{text}" not found')


async def fill_combobox(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> ElementHandle:
    text = _as_text(value)
    await element.click()
    try:
        await element.fill(text)
    except PlaywrightError as e:
        _raise_if_session_lost(e, f"fill combobox '{dimension_key}'")
        await element.type(text, delay=10)
    await asyncio.sleep(DELAY_BETWEEN_ACTIONS)

    options = page.locator("[role='option']")
    best_option: Optional[Locator] = None
    best_text, best_score = "", -1
    for k in range(min(await options.count(), 30)):
        item = options.nth(k)
        if not await item.is_visible():
            continue
        item_text = (await item.text_content() or "").strip()
        if not item_text:
            continue
        score = 100 if item_text.lower() == text.lower() else fuzz.token_set_ratio(text.lower(), item_text.lower())
        if score > best_score:
            best_option, best_text, best_score = item, item_text, score
        if score == 100:
            break

    if best_option is not None and best_score >= FUZZY_MATCH_THRESHOLD:
        await best_option.click()
        logger.info(f"✅ Picked combobox option '{best_text}' for '{dimension_key}' (Score: {best_score})")
    else:
        await element.press("Enter")
    return element


# --- TOGGLE / RADIO ---

async def read_toggle_state(control: Control) -> Optional[bool]:
    """Checked state from is_checked() or common state attributes; None when unknown."""
    try:
        return bool(await control.is_checked())
    except PlaywrightError as e:
        _raise_if_session_lost(e, "read toggle state")

    for attr in STATE_ATTRIBUTES:
        raw = await control.get_attribute(attr)
        if raw is None:
            continue
        normalized = raw.strip().lower()
        if normalized in STATE_ON:
            return True
        if normalized in STATE_OFF:
            return False
    return None


async def _is_toggle_like(control: ElementHandle) -> bool:
    try:
        return bool(await control.evaluate(f'(el) => el.matches("{TOGGLE_LIKE}")'))
    except PlaywrightError as e:
        _raise_if_session_lost(e, "inspect toggle")
        return False


async def resolve_toggle_target(page: Page, element: ElementHandle, dimension_key: str) -> ElementHandle:
    """The element itself if toggle-like, else a nested control, else a page-wide match on aria-label."""
    if await _is_toggle_like(element):
        return element

    for selector in TOGGLE_CHILD_SELECTORS:
        child = await element.query_selector(selector)
        if child is not None:
            return child

    key = css_escape(dimension_key)
    direct = await page.query_selector(", ".join(
        f'{selector}[aria-label*="{key}" i]'
        for selector in ("input[type='checkbox']", "[role='switch']", "[role='checkbox']",
                         "button[aria-pressed]", "button[aria-expanded]")
    ))
    return direct or element


async def fill_toggle(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> ElementHandle:
    want = wants_checked(value)
    target = await resolve_toggle_target(page, element, dimension_key)
    current = await read_toggle_state(target)

    if current is None:
        if want:
            await target.click()
        return target
    if current != want:
        await target.click()
    return target


def _radio_option_selectors(text: str) -> List[str]:
    escaped = css_escape(text)
    return [
        f"input[type='radio'][value='{text}']",
        f'[role="radio"][aria-label="{escaped}"]',
        f'[role="radio"]:has-text("{escaped}")',
        f'label:has-text("{escaped}")',
    ]


async def _click_radio_option(node: ElementHandle) -> ElementHandle:
    """Clicks the option; a clicked label hands back the radio it wraps, for read-back."""
    await node.click()
    inner = await node.query_selector("input[type='radio']")
    return inner or node


async def _radio_in_group(element: ElementHandle, dimension_key: str, text: str) -> Optional[ElementHandle]:
    """
    Picks the option inside the located group. Returns None when the located
    control holds no radios at all, so the caller can widen to the page.
    """
    if await element.query_selector(RADIO_MEMBERS) is None:
        return None
    for selector in _radio_option_selectors(text):
        node = await element.query_selector(selector)
        if node is not None:
            return await _click_radio_option(node)
    raise FieldInteractionError(dimension_key, f"RADIO option '{text}' not found in the located group")


async def fill_radio(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> Control:
    text = _as_text(value)
    scoped = await _radio_in_group(element, dimension_key, text)
    if scoped is not None:
        return scoped

    radio = page.locator(f"input[type='radio'][value='{text}']").first
    try:
        await radio.wait_for(state="visible", timeout=2000)
        await radio.click()
        return radio
    except PlaywrightError as e:
        _raise_if_session_lost(e, f"radio '{dimension_key}'")

    for selector in _radio_option_selectors(text)[1:] + [f'text="{css_escape(text)}"']:
        node = await page.query_selector(selector)
        if node is not None:
            return await _click_radio_option(node)

    raise FieldInteractionError(dimension_key, f"RADIO option '{text}' not found")


# --- INSTANCE_SEARCH ---

async def fill_instance_search(page: Page, element: ElementHandle, dimension_key: str, value: Any) -> Control:
    """Filters a results table and selects the radio in the row containing ``value``."""
    text = _as_text(value)
    await element.click()
    await element.fill(text)
    await page.wait_for_timeout(2000)

    row = page.locator(f"tr:has-text('{text}')").first
    radio = row.locator("input[type='radio']").first
    try:
        await radio.wait_for(state="visible", timeout=3000)
    except PlaywrightTimeoutError:
        raise FieldInteractionError(dimension_key, f"no result row for '{text}'")
    await radio.click()
    return radio


STRATEGIES = {
    "NUMBER": fill_number_text,
    "TEXT": fill_number_text,
    "SELECT": fill_select,
    "COMBOBOX": fill_combobox,
    "TOGGLE": fill_toggle,
    "RADIO": fill_radio,
    "INSTANCE_SEARCH": fill_instance_search,
}
