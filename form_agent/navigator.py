"""
Opens a service's configuration form on the target calculator page and saves
it afterwards. Every failure here is service-fatal: it surfaces as a
NavigationError, ServiceNotFoundError or RegionSelectionError.
"""

import logging
import re
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError, Locator, Page, TimeoutError as PlaywrightTimeoutError

from .errors import (
    BrowserTimeoutError,
    NavigationError,
    RegionSelectionError,
    ServiceNotFoundError,
    translate_playwright_error,
)
from .event_log import log_event
from .models import CatalogEntry, Service
from .screenshots import RunContext, capture_screenshot

logger = logging.getLogger("navigator")

SEARCH_PLACEHOLDERS = ["Search for a service", "Search services", "Find resources", "Search"]
SEARCH_RESULT_SETTLE_MS = 900


def _raise_if_session_lost(error: PlaywrightError, action: str) -> None:
    lost = translate_playwright_error(error, action)
    if lost is not None and not isinstance(lost, BrowserTimeoutError):
        raise lost from error


async def _click_button(page: Page, name: str, timeout: int = 5000) -> None:
    button = page.get_by_role("button", name=re.compile(name, re.I)).first
    await button.wait_for(state="visible", timeout=timeout)
    await button.click()
    await page.wait_for_load_state("domcontentloaded", timeout=10000)


async def _find_search_input(page: Page) -> Optional[Locator]:
    for placeholder in SEARCH_PLACEHOLDERS:
        candidate = page.get_by_placeholder(placeholder).first
        try:
            await candidate.wait_for(state="visible", timeout=1000)
            return candidate
        except PlaywrightTimeoutError:
            continue
    return None


async def select_region(page: Page, region_code: Optional[str]) -> None:
    if not region_code or region_code.lower() == "global":
        log_event(logger, "INFO", "EVT-REG-01", region="global", status="skipping")
        return
    try:
        location_type = page.get_by_label(re.compile("Choose a location type", re.I)).first
        await location_type.wait_for(state="visible", timeout=8000)
        if "region" not in (await location_type.text_content() or "").lower():
            await location_type.click()
            await page.get_by_role("option", name=re.compile("Region", re.I)).first.click()

        picker = page.get_by_label(re.compile("Choose a Region", re.I)).first
        await picker.wait_for(state="visible", timeout=8000)
        await picker.click()
        option = page.get_by_role("option", name=re.compile(rf"\b{re.escape(region_code)}\b", re.I)).first
        await option.wait_for(state="visible", timeout=5000)
        await option.click()
    except PlaywrightError as e:
        _raise_if_session_lost(e, f"select region {region_code}")
        log_event(logger, "ERROR", "EVT-REG-02", region=region_code, error=str(e))
        raise RegionSelectionError(region_code) from e
    log_event(logger, "INFO", "EVT-REG-01", region=region_code, status="selected")


async def search_and_select_service(page: Page, service_name: str, search_terms: List[str]) -> None:
    search_input = await _find_search_input(page)
    if search_input is None:
        raise NavigationError("Service search input not found on Add service panel")

    cards = page.get_by_role("listitem").filter(has_text=re.compile("Configure", re.I))
    for term in search_terms:
        await search_input.fill(term)
        await page.wait_for_timeout(SEARCH_RESULT_SETTLE_MS)
        for text in (service_name, term):
            card = cards.filter(has_text=text).first
            try:
                await card.wait_for(state="visible", timeout=1500)
            except PlaywrightTimeoutError:
                continue
            await card.click()
            log_event(logger, "INFO", "EVT-SVC-03", service=service_name, term=term)
            return
    raise ServiceNotFoundError(service_name, search_terms)


async def open_service(page: Page, service: Service, catalog_entry: Optional[CatalogEntry],
                       context: Optional[RunContext] = None) -> None:
    """Add service → region → search → Configure."""
    terms = catalog_entry.search_terms() if catalog_entry else [service.service_name]
    log_event(logger, "INFO", "EVT-NAV-01", service=service.service_name, region=service.region or "global")
    step = "open-service-panel"
    try:
        await _click_button(page, "Add service")
        step = "region-selection"
        await select_region(page, service.region)
        step = "service-search"
        await search_and_select_service(page, service.service_name, terms)
        step = "configure-click"
        await _click_button(page, "Configure")
    except (NavigationError, ServiceNotFoundError, RegionSelectionError):
        await capture_screenshot(page, context, step)
        raise
    except PlaywrightError as e:
        _raise_if_session_lost(e, step)
        await capture_screenshot(page, context, step)
        raise NavigationError(f"Navigation step '{step}' failed for {service.service_name}: {e}") from e
    log_event(logger, "INFO", "EVT-NAV-02", service=service.service_name, status="complete")


async def save_service(page: Page, label: str = "Save and add service") -> None:
    try:
        await _click_button(page, label)
    except PlaywrightError as e:
        _raise_if_session_lost(e, "save service")
        raise NavigationError(f"Could not click '{label}' button: {e}") from e
    log_event(logger, "INFO", "EVT-SVC-04", step="save_clicked")
