"""
Browser-native text search and the proximity-band control query used by the
last locator tier, plus the OS-aware keyboard shortcuts shared with the field
strategies.
"""

import logging
import sys
from typing import Dict, List, Optional

from playwright.async_api import ElementHandle, Page

logger = logging.getLogger("find_in_page")

DEFAULT_BAND_PX = 150
# Controls in the same row can start slightly above the label text.
ROW_SLACK_PX = 8

KEYBOARD_SHORTCUTS: Dict[str, Dict[str, str]] = {
    "find_in_page": {"darwin": "Meta+f", "default": "Control+f"},
    "select_all": {"darwin": "Meta+a", "default": "Control+a"},
    "copy": {"darwin": "Meta+c", "default": "Control+c"},
    "paste": {"darwin": "Meta+v", "default": "Control+v"},
}

BAND_SELECTORS: List[str] = [
    'input[type="number"]',
    'input[type="text"]',
    'select',
    '[role="combobox"]',
    '[role="spinbutton"]',
    '[role="switch"]',
    '[role="radio"]',
    '[role="listbox"]',
    'textarea',
    '[contenteditable="true"]',
    '[contenteditable]',
]

_FIND_TEXT_RECT_JS = """
(text) => {
    const selection = window.getSelection();
    if (selection) selection.removeAllRanges();
    const found = window.find(text, false, false, true, false, false, false);
    if (!found) return null;
    const current = window.getSelection();
    if (!current || current.rangeCount === 0) return null;
    const rect = current.getRangeAt(0).getBoundingClientRect();
    current.removeAllRanges();
    if (!rect || rect.width === 0 || rect.height === 0) return null;
    return {top: rect.top, bottom: rect.bottom, left: rect.left, right: rect.right,
            width: rect.width, height: rect.height};
}
"""

_CONTROLS_IN_BAND_JS = """
({minTop, maxTop, matchTop, selectors}) => {
    const seen = new Set();
    const ordered = [];
    for (const selector of selectors) {
        const matches = [];
        for (const el of document.querySelectorAll(selector)) {
            if (seen.has(el)) continue;
            const rect = el.getBoundingClientRect();
            if (rect.width <= 0 || rect.height <= 0) continue;
            if (rect.top < minTop || rect.top > maxTop) continue;
            matches.push({el, distance: Math.abs(rect.top - matchTop)});
        }
        matches.sort((a, b) => a.distance - b.distance);
        for (const m of matches) {
            seen.add(m.el);
            ordered.push(m.el);
        }
    }
    return ordered;
}
"""


def shortcut(action: str, platform: Optional[str] = None) -> str:
    """Meta+... on macOS, Control+... elsewhere."""
    definition = KEYBOARD_SHORTCUTS.get(action)
    if definition is None:
        raise KeyError(f"Unknown keyboard shortcut action: {action}")
    platform = platform or sys.platform
    return definition["darwin"] if platform == "darwin" else definition["default"]


async def scroll_to_position(page: Page, y: int = 0) -> None:
    await page.evaluate("(y) => window.scrollTo({top: y, behavior: 'instant'})", y)
    await page.wait_for_timeout(200)


async def find_text_rect(page: Page, text: str) -> Optional[Dict[str, float]]:
    """Bounding rect of the first native find-in-page match for ``text``, or None."""
    rect = await page.evaluate(_FIND_TEXT_RECT_JS, text)
    if rect:
        logger.debug(f"Text '{text}' found at top={rect.get('top')}")
    return rect


async def query_controls_in_band(page: Page, match_top: float, band_px: int = DEFAULT_BAND_PX) -> List[ElementHandle]:
    """
    Interactive controls whose top edge falls within ``band_px`` below ``match_top``.

    Results are grouped by BAND_SELECTORS priority and, inside each group,
    ordered by vertical distance from ``match_top``.
    """
    handle = await page.evaluate_handle(
        _CONTROLS_IN_BAND_JS,
        {
            "minTop": match_top - ROW_SLACK_PX,
            "maxTop": match_top + band_px,
            "matchTop": match_top,
            "selectors": BAND_SELECTORS,
        },
    )
    try:
        properties = await handle.get_properties()
        controls = []
        for _, prop in sorted(properties.items(), key=lambda item: int(item[0]) if item[0].isdigit() else 1 << 30):
            element = prop.as_element()
            if element is not None:
                controls.append(element)
        return controls
    finally:
        await handle.dispose()
