from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError


class ErrorKind(Enum):
    """Closed set of failure kinds the automation layer knows how to classify."""
    LOCATOR_NOT_FOUND = "locator_not_found"
    LOCATOR_AMBIGUOUS = "locator_ambiguous"
    FIELD_INTERACTION = "field_interaction"
    FIELD_VERIFICATION = "field_verification"
    NAVIGATION = "navigation"
    SERVICE_NOT_FOUND = "service_not_found"
    REGION_SELECTION = "region_selection"
    BROWSER = "browser"
    BROWSER_TIMEOUT = "browser_timeout"
    STALE_SELECTOR = "stale_selector"
    CATALOG_HEAL = "catalog_heal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorCategory:
    category: str
    is_retriable: bool
    should_screenshot: bool


ERROR_POLICY: Dict[ErrorKind, ErrorCategory] = {
    ErrorKind.LOCATOR_NOT_FOUND: ErrorCategory("locator", False, True),
    ErrorKind.LOCATOR_AMBIGUOUS: ErrorCategory("locator", False, True),
    ErrorKind.FIELD_INTERACTION: ErrorCategory("field_interaction", True, True),
    ErrorKind.FIELD_VERIFICATION: ErrorCategory("field_verification", True, True),
    ErrorKind.NAVIGATION: ErrorCategory("navigation", False, True),
    ErrorKind.SERVICE_NOT_FOUND: ErrorCategory("navigation", False, True),
    ErrorKind.REGION_SELECTION: ErrorCategory("navigation", False, True),
    ErrorKind.BROWSER: ErrorCategory("browser", False, False),
    ErrorKind.BROWSER_TIMEOUT: ErrorCategory("browser", True, False),
    ErrorKind.STALE_SELECTOR: ErrorCategory("catalog", False, False),
    ErrorKind.CATALOG_HEAL: ErrorCategory("catalog", False, False),
    ErrorKind.UNKNOWN: ErrorCategory("unknown", True, True),
}

# Fragments Playwright uses when the page/context/browser underneath is gone.
_CLOSED_TARGET_MARKERS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "target closed",
    "browser closed",
)


# --- Automation errors ---

class AutomationError(Exception):
    """Base class for every classified automation failure."""
    kind = ErrorKind.UNKNOWN
    code = "E-AUT-000"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": type(self).__name__, "code": self.code, "kind": self.kind.value, "message": str(self)}


class LocatorError(AutomationError):
    kind = ErrorKind.LOCATOR_NOT_FOUND
    code = "E-LOC-001"

    def __init__(self, dimension_key: str, strategy: str = "unknown"):
        super().__init__(f'Could not locate element for dimension: "{dimension_key}" (strategy: {strategy})')
        self.dimension_key = dimension_key
        self.strategy = strategy


class LocatorAmbiguousError(AutomationError):
    kind = ErrorKind.LOCATOR_AMBIGUOUS
    code = "E-LOC-002"

    def __init__(self, dimension_key: str, match_count: int, disambiguation_index: int = 0):
        super().__init__(
            f'Found {match_count} matches for dimension: "{dimension_key}" '
            f"but disambiguation index {disambiguation_index} is out of range"
        )
        self.dimension_key = dimension_key
        self.match_count = match_count
        self.disambiguation_index = disambiguation_index


class FieldInteractionError(AutomationError):
    kind = ErrorKind.FIELD_INTERACTION
    code = "E-FLD-001"

    def __init__(self, dimension_key: str, reason: str = "unknown"):
        super().__init__(f'Failed to interact with field "{dimension_key}": {reason}')
        self.dimension_key = dimension_key
        self.reason = reason


class FieldVerificationError(AutomationError):
    kind = ErrorKind.FIELD_VERIFICATION
    code = "E-FLD-002"

    def __init__(self, dimension_key: str, expected: Any, actual: Any):
        super().__init__(f'Value verification failed for "{dimension_key}": expected "{expected}", got "{actual}"')
        self.dimension_key = dimension_key
        self.expected = expected
        self.actual = actual


class NavigationError(AutomationError):
    kind = ErrorKind.NAVIGATION
    code = "E-NAV-001"

    def __init__(self, message: str, target_url: Optional[str] = None):
        super().__init__(message)
        self.target_url = target_url


class ServiceNotFoundError(AutomationError):
    kind = ErrorKind.SERVICE_NOT_FOUND
    code = "E-NAV-002"

    def __init__(self, service_name: str, search_terms: Optional[List[str]] = None):
        self.search_terms = list(search_terms or [])
        super().__init__(f'Service not found: "{service_name}" (searched: {", ".join(self.search_terms)})')
        self.service_name = service_name


class RegionSelectionError(AutomationError):
    kind = ErrorKind.REGION_SELECTION
    code = "E-NAV-003"

    def __init__(self, region_code: str):
        super().__init__(f'Could not select region: "{region_code}"')
        self.region_code = region_code


class BrowserError(AutomationError):
    kind = ErrorKind.BROWSER
    code = "E-BRW-001"


class BrowserTimeoutError(BrowserError):
    kind = ErrorKind.BROWSER_TIMEOUT
    code = "E-BRW-002"

    def __init__(self, action: str, timeout_ms: Optional[int] = None):
        detail = f"Timeout after {timeout_ms}ms" if timeout_ms is not None else "Timeout"
        super().__init__(f"{detail} while: {action}")
        self.action = action
        self.timeout_ms = timeout_ms


class StaleSelectorError(AutomationError):
    kind = ErrorKind.STALE_SELECTOR
    code = "E-CAT-001"

    def __init__(self, dimension_key: str, stale_selector: str):
        super().__init__(f'Stale selector for "{dimension_key}": {stale_selector}')
        self.dimension_key = dimension_key
        self.stale_selector = stale_selector


class CatalogHealError(AutomationError):
    kind = ErrorKind.CATALOG_HEAL
    code = "E-CAT-002"

    def __init__(self, dimension_key: str):
        super().__init__(f'Failed to heal catalog selector for "{dimension_key}"')
        self.dimension_key = dimension_key


# --- Pre-flight and control-flow errors (not retried, not classified) ---

class ResolutionError(Exception):
    """Raised by the gate when required dimensions are still unresolved."""

    def __init__(self, unresolved: list):
        self.unresolved = list(unresolved)
        super().__init__(
            f"Resolution failed: {len(self.unresolved)} required dimension(s) unresolved after priority chain"
        )

    def report(self) -> str:
        lines = [
            f"  - {u.group_name}.{u.service_name}.{u.dimension_key}: {u.reason}"
            for u in self.unresolved
        ]
        return "Unresolved dimensions:\n" + "\n".join(lines)


class OverrideError(Exception):
    """Base class for --set override failures."""


class OverrideSyntaxError(OverrideError):
    def __init__(self, raw_value: str):
        super().__init__(
            f'Invalid override syntax: "{raw_value}". Expected format: <group>.<service>.<dimension>=<value>'
        )
        self.raw_value = raw_value


class OverrideEmptySegmentError(OverrideError):
    SEGMENT_NAMES = ("group", "service", "dimension")

    def __init__(self, raw_value: str, segment_index: int):
        name = self.SEGMENT_NAMES[segment_index] if segment_index < len(self.SEGMENT_NAMES) else "segment"
        super().__init__(f'Empty {name} in override: "{raw_value}"')
        self.raw_value = raw_value
        self.segment_index = segment_index


class OverrideTargetError(OverrideError):
    """Raised once with every override target that does not exist in the profile."""

    def __init__(self, unmatched: List[str]):
        self.unmatched = list(unmatched)
        super().__init__(f"Override target(s) not found in profile: {', '.join(self.unmatched)}")


class RunCancelledError(Exception):
    """Raised when cancellation is observed at a checkpoint."""

    def __init__(self, step_name: str = "run"):
        super().__init__(f"Cancelled during: {step_name}")
        self.step_name = step_name


# --- Classification ---

def _is_closed_target(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CLOSED_TARGET_MARKERS)


def kind_of(exc: BaseException) -> ErrorKind:
    """Maps any exception onto the closed ErrorKind set."""
    if isinstance(exc, AutomationError):
        return exc.kind
    if isinstance(exc, PlaywrightTimeoutError):
        return ErrorKind.BROWSER_TIMEOUT
    if isinstance(exc, PlaywrightError) and _is_closed_target(exc):
        return ErrorKind.BROWSER
    return ErrorKind.UNKNOWN


def categorize_error(exc: BaseException) -> ErrorCategory:
    return ERROR_POLICY[kind_of(exc)]


def translate_playwright_error(exc: BaseException, action: str) -> Optional[BrowserError]:
    """
    Converts a raw Playwright exception into a session-level BrowserError when it
    describes the session itself (timeout or closed target). Returns None otherwise.
    """
    if isinstance(exc, PlaywrightTimeoutError):
        return BrowserTimeoutError(action)
    if isinstance(exc, PlaywrightError) and _is_closed_target(exc):
        return BrowserError(f"Browser session lost while: {action} ({exc})")
    return None
