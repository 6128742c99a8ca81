"""
Selector Healer.

Repairs stale catalog CSS hints against a live page. Corrections are kept in
memory and can be exported or appended to a corrections file; the catalog file
itself is never written.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from filelock import FileLock, Timeout
from playwright.async_api import (
    ElementHandle,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .errors import CatalogHealError, StaleSelectorError, translate_playwright_error
from .event_log import log_event
from .locator import aria_label_selector
from .models import CatalogEntry, CorrectionRecord

logger = logging.getLogger("healer")

HEAL_ROLES = ["checkbox", "switch", "radio", "spinbutton", "combobox", "textbox"]
VISIBILITY_TIMEOUT = 2000
LOCK_TIMEOUT = 10

_GENERATE_SELECTOR_JS = """
(el) => {
    if (el.id) return '#' + CSS.escape(el.id);
    const testId = el.getAttribute('data-testid');
    if (testId) return '[data-testid="' + CSS.escape(testId) + '"]';
    let selector = el.tagName.toLowerCase();
    const className = (el.className || '').toString().trim();
    if (className) {
        for (const cls of className.split(/\\s+/).slice(0, 2).filter(Boolean)) {
            selector += '.' + CSS.escape(cls);
        }
    }
    const parent = el.parentElement;
    if (parent) {
        const siblings = Array.from(parent.children).filter(s => s.tagName === el.tagName);
        if (siblings.length > 1) {
            selector += ':nth-child(' + (Array.from(parent.children).indexOf(el) + 1) + ')';
        }
    }
    return selector;
}
"""

_NEAREST_CONTROL_JS = """
(el) => {
    const selectors = [
        'input:not([type="hidden"])', 'select', 'textarea', '[role="combobox"]',
        '[role="switch"]', '[role="checkbox"]', '[role="radio"]', '[role="spinbutton"]'
    ];
    const scopes = [el.parentElement, el.nextElementSibling].filter(Boolean);
    for (const scope of scopes) {
        for (const selector of selectors) {
            const control = scope.querySelector(selector);
            if (control) return control;
        }
    }
    return null;
}
"""


@dataclass
class HealReport:
    service_name: str
    checked: List[str] = field(default_factory=list)
    healed: List[CorrectionRecord] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "checked": list(self.checked),
            "healed": [c.to_dict() for c in self.healed],
            "failed": list(self.failed),
        }


async def generate_selector(element: ElementHandle) -> Optional[str]:
    """id, then data-testid, then tag + up to two classes + nth-child when same-tag siblings exist."""
    selector = await element.evaluate(_GENERATE_SELECTOR_JS)
    return selector or None


async def _nearest_control(text_element: ElementHandle) -> Optional[ElementHandle]:
    handle = await text_element.evaluate_handle(_NEAREST_CONTROL_JS)
    return handle.as_element()


async def discover_selector(page: Page, label: str) -> Optional[str]:
    """aria-label substring, then role + accessible name, then visible text and its nearest control."""
    aria = page.locator(aria_label_selector(label))
    if await aria.count() > 0:
        element = await aria.first.element_handle()
        if element is not None:
            return await generate_selector(element)

    for role in HEAL_ROLES:
        candidates = page.get_by_role(role, name=label, exact=False)
        if await candidates.count() > 0:
            element = await candidates.first.element_handle()
            if element is not None:
                return await generate_selector(element)

    text_candidates = page.get_by_text(label, exact=False)
    if await text_candidates.count() > 0:
        text_element = await text_candidates.first.element_handle()
        if text_element is not None:
            control = await _nearest_control(text_element)
            if control is not None:
                return await generate_selector(control)
    return None


class CatalogHealer:
    """Heals stale selectors for one service and collects the corrections."""

    def __init__(self, page: Page, service_name: str):
        self.page = page
        self.service_name = service_name
        self.corrections: Dict[str, str] = {}
        self.records: List[CorrectionRecord] = []
        self.healed_dimensions: List[str] = []

    async def _accepts(self, selector: str) -> bool:
        candidates = self.page.locator(selector)
        if await candidates.count() == 0:
            return False
        try:
            await candidates.first.wait_for(state="visible", timeout=VISIBILITY_TIMEOUT)
        except PlaywrightTimeoutError:
            return False
        return True

    async def check_selector(self, dimension_key: str, selector: str) -> None:
        """Raises StaleSelectorError when ``selector`` matches nothing on the page."""
        try:
            count = await self.page.locator(selector).count()
        except PlaywrightError as e:
            lost = translate_playwright_error(e, f"check selector for '{dimension_key}'")
            if lost is not None:
                raise lost from e
            count = 0
        if count == 0:
            raise StaleSelectorError(dimension_key, selector)

    async def heal(self, dimension_key: str, stale_selector: str, fallback_label: Optional[str] = None) -> Optional[str]:
        """
        Finds a replacement for ``stale_selector``.

        Returns:
            Optional[str]: The new selector once it matches a visible element, else None.
        """
        log_event(logger, "INFO", "EVT-HEL-01", dimension=dimension_key, old_selector=stale_selector, step="attempting_heal")

        labels = [dimension_key]
        if fallback_label and fallback_label != dimension_key:
            labels.append(fallback_label)

        for label in labels:
            try:
                new_selector = await discover_selector(self.page, label)
                if new_selector and await self._accepts(new_selector):
                    self.corrections[stale_selector] = new_selector
                    self.records.append(CorrectionRecord(dimension_key, stale_selector, new_selector))
                    self.healed_dimensions.append(dimension_key)
                    log_event(logger, "INFO", "EVT-HEL-02", dimension=dimension_key, new_selector=new_selector, status="healed")
                    return new_selector
            except PlaywrightError as e:
                lost = translate_playwright_error(e, f"heal '{dimension_key}'")
                if lost is not None:
                    raise lost from e
                logger.debug(f"Heal discovery for '{label}' failed: {e}")

        log_event(logger, "WARN", "EVT-HEL-03", dimension=dimension_key, status="heal_failed")
        return None

    async def heal_or_raise(self, dimension_key: str, stale_selector: str, fallback_label: Optional[str] = None) -> str:
        new_selector = await self.heal(dimension_key, stale_selector, fallback_label)
        if new_selector is None:
            raise CatalogHealError(dimension_key)
        return new_selector

    async def heal_entry(self, entry: CatalogEntry) -> HealReport:
        """Checks every hinted selector of ``entry`` and heals the stale ones."""
        report = HealReport(service_name=entry.service_name)
        for dimension in entry.dimensions:
            if not dimension.css_selector:
                continue
            report.checked.append(dimension.key)
            try:
                await self.check_selector(dimension.key, dimension.css_selector)
                continue
            except StaleSelectorError as e:
                logger.warning(f"⚠️ {e}")

            try:
                new_selector = await self.heal_or_raise(dimension.key, dimension.css_selector, dimension.fallback_label)
                report.healed.append(CorrectionRecord(dimension.key, dimension.css_selector, new_selector))
            except CatalogHealError as e:
                logger.error(f"❌ {e}")
                report.failed.append(dimension.key)

        logger.info(
            f"Heal finished for {entry.service_name}: checked={len(report.checked)}, "
            f"healed={len(report.healed)}, failed={len(report.failed)}"
        )
        return report

    def get_corrections(self) -> Dict[str, str]:
        return dict(self.corrections)

    def export_corrections(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "healed_at": datetime.now(timezone.utc).isoformat(),
            "corrections": [record.to_dict() for record in self.records],
            "healed_dimensions": list(self.healed_dimensions),
        }

    def save_corrections(self, path: str) -> Dict[str, Any]:
        """Appends this healer's export to the JSON list at ``path`` under a file lock."""
        export = self.export_corrections()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        lock = FileLock(path + ".lock", timeout=LOCK_TIMEOUT)
        try:
            with lock:
                existing = _read_corrections(path)
                existing.append(export)
                temp_path = path + ".tmp"
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(existing, f, indent=2)
                os.replace(temp_path, path)
        except Timeout:
            logger.error(f"Could not acquire lock on {path}.lock within {LOCK_TIMEOUT} seconds.")
            raise
        logger.info(f"✅ Saved {len(export['corrections'])} correction(s) for {self.service_name} to {path}")
        return export


def _read_corrections(path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        return []
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError:
            logger.error(f"JSON decode error in corrections file {path}. Starting a new list.")
            return []
    if not isinstance(data, list):
        logger.error(f"Invalid format in corrections file {path}. Expected list, got {type(data).__name__}.")
        return []
    return data
