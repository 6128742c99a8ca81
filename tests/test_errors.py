import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from form_agent.errors import (
    BrowserError,
    BrowserTimeoutError,
    CatalogHealError,
    ErrorKind,
    FieldInteractionError,
    FieldVerificationError,
    LocatorAmbiguousError,
    LocatorError,
    NavigationError,
    RegionSelectionError,
    ResolutionError,
    ServiceNotFoundError,
    StaleSelectorError,
    categorize_error,
    kind_of,
    translate_playwright_error,
)
from form_agent.models import UnresolvedDimension


@pytest.mark.parametrize("error, category, retriable, screenshot", [
    (LocatorError("k"), "locator", False, True),
    (LocatorAmbiguousError("k", 3, 5), "locator", False, True),
    (FieldInteractionError("k", "x"), "field_interaction", True, True),
    (FieldVerificationError("k", "1", "2"), "field_verification", True, True),
    (NavigationError("nav"), "navigation", False, True),
    (ServiceNotFoundError("EC2", ["EC2"]), "navigation", False, True),
    (RegionSelectionError("us-east-1"), "navigation", False, True),
    (BrowserError("gone"), "browser", False, False),
    (BrowserTimeoutError("click"), "browser", True, False),
    (StaleSelectorError("k", "#old"), "catalog", False, False),
    (CatalogHealError("k"), "catalog", False, False),
    (RuntimeError("???"), "unknown", True, True),
])
def test_error_policy_table(error, category, retriable, screenshot):
    result = categorize_error(error)
    assert (result.category, result.is_retriable, result.should_screenshot) == (category, retriable, screenshot)


def test_playwright_errors_map_onto_browser_kinds():
    assert kind_of(PlaywrightTimeoutError("Timeout 30000ms exceeded")) is ErrorKind.BROWSER_TIMEOUT
    assert kind_of(PlaywrightError("Target page, context or browser has been closed")) is ErrorKind.BROWSER
    assert kind_of(PlaywrightError("strict mode violation")) is ErrorKind.UNKNOWN


def test_translate_playwright_error():
    assert isinstance(translate_playwright_error(PlaywrightTimeoutError("t"), "click"), BrowserTimeoutError)
    lost = translate_playwright_error(PlaywrightError("Browser has been closed"), "fill")
    assert isinstance(lost, BrowserError) and not isinstance(lost, BrowserTimeoutError)
    assert translate_playwright_error(PlaywrightError("Element is not attached"), "fill") is None
    assert translate_playwright_error(ValueError("x"), "fill") is None


def test_automation_errors_carry_context():
    error = FieldVerificationError("Storage amount", "30", "3")
    assert error.dimension_key == "Storage amount"
    assert error.to_dict()["code"] == "E-FLD-002"
    assert 'expected "30", got "3"' in str(error)


def test_resolution_error_report_lists_every_entry():
    error = ResolutionError([
        UnresolvedDimension("G", "S", "a"),
        UnresolvedDimension("G", "S", "b"),
    ])
    report = error.report()
    assert "2 required dimension(s)" in str(error)
    assert "G.S.a" in report and "G.S.b" in report
