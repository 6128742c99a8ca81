"""In-memory stand-ins for the parts of Playwright's Page / Locator / ElementHandle the agent uses."""

from typing import Any, Callable, Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from form_agent.screenshots import RunContext


class FakeHandle:
    def __init__(self, element):
        self._element = element

    def as_element(self):
        return self._element


class FakeElement:
    def __init__(self, tag: str = "input", attributes: Optional[Dict[str, str]] = None, value: str = "",
                 checked: Optional[bool] = None, visible: bool = True, options: Optional[List[Dict[str, Any]]] = None,
                 text: str = "", selector: Optional[str] = None, toggle_like: bool = False,
                 readback: Optional[str] = None, fill_error: Optional[Exception] = None,
                 becomes_visible: bool = True):
        self.tag = tag
        self.attributes = dict(attributes or {})
        self.value = value
        self.checked = checked
        self.visible = visible
        self.options = list(options or [])
        self.selected_index = -1
        self.text = text
        self.selector = selector
        self.toggle_like = toggle_like
        self.readback = readback
        self.fill_error = fill_error
        self.becomes_visible = becomes_visible
        self.children: Dict[str, "FakeElement"] = {}
        self.nearest: Optional["FakeElement"] = None
        self.calls: List[tuple] = []

    # --- actions ---

    async def fill(self, text: str, **kwargs):
        self.calls.append(("fill", text))
        if self.fill_error is not None:
            raise self.fill_error
        self.value = text

    async def click(self, **kwargs):
        self.calls.append(("click",))
        if self.checked is not None:
            is_radio = self.attributes.get("type") == "radio" or self.attributes.get("role") == "radio"
            self.checked = True if is_radio else not self.checked

    async def press(self, key: str, **kwargs):
        self.calls.append(("press", key))
        if key == "Backspace":
            self.value = ""

    async def type(self, text: str, delay: float = 0, **kwargs):
        self.calls.append(("type", text))
        self.value += text

    async def select_option(self, label=None, value=None, timeout=None, **kwargs):
        self.calls.append(("select_option", label, value))
        for index, option in enumerate(self.options):
            if (label is not None and option.get("text") == label) or (value is not None and option.get("value") == value):
                self.selected_index = index
                return [option.get("value")]
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for option")

    async def wait_for_element_state(self, state: str, timeout: Optional[float] = None):
        self.calls.append(("wait_for_element_state", state))
        if state == "visible" and not self.becomes_visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    # --- reads ---

    async def input_value(self, **kwargs) -> str:
        return self.readback if self.readback is not None else self.value

    async def is_checked(self, **kwargs) -> bool:
        if self.checked is None:
            raise PlaywrightError("Not a checkbox or radio button")
        return self.checked

    async def is_visible(self, **kwargs) -> bool:
        return self.visible

    async def get_attribute(self, name: str, **kwargs) -> Optional[str]:
        return self.attributes.get(name)

    async def text_content(self, **kwargs) -> str:
        return self.text

    async def query_selector(self, selector: str):
        return self.children.get(selector)

    async def evaluate_handle(self, script: str, arg: Any = None):
        return FakeHandle(self.nearest)

    async def evaluate(self, script: str, arg: Any = None):
        if "selectedIndex" in script:
            if 0 <= self.selected_index < len(self.options):
                option = self.options[self.selected_index]
                return f"{option.get('text')} {option.get('value')}"
            return ""
        if "select.options" in script:
            return [dict(o, disabled=o.get("disabled", False)) for o in self.options]
        if "el.matches" in script:
            return self.toggle_like
        if "CSS.escape" in script:
            return self.selector
        if "dispatchEvent" in script:
            self.value = arg
            return None
        if "tagName" in script:
            return self.tag
        return None


class FakeLocator:
    def __init__(self, elements: List[FakeElement], error: Optional[Exception] = None):
        self.elements = list(elements)
        self.error = error

    async def count(self) -> int:
        if self.error is not None:
            raise self.error
        return len(self.elements)

    def nth(self, index: int) -> "FakeLocator":
        if 0 <= index < len(self.elements):
            return FakeLocator([self.elements[index]])
        return FakeLocator([])

    @property
    def first(self) -> "FakeLocator":
        return self.nth(0)

    async def is_visible(self, **kwargs) -> bool:
        return bool(self.elements) and self.elements[0].visible

    async def element_handle(self, **kwargs):
        if not self.elements:
            raise PlaywrightTimeoutError("Timeout waiting for element")
        return self.elements[0]

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None):
        if not self.elements or (state == "visible" and not self.elements[0].visible):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def click(self, **kwargs):
        await self.elements[0].click()

    async def is_checked(self, **kwargs):
        return await self.elements[0].is_checked()

    async def get_attribute(self, name: str, **kwargs):
        return await self.elements[0].get_attribute(name)

    async def text_content(self, **kwargs):
        return await self.elements[0].text_content()

    def locator(self, selector: str) -> "FakeLocator":
        if not self.elements:
            return FakeLocator([])
        child = self.elements[0].children.get(selector)
        return FakeLocator([child] if child else [])


class FakeKeyboard:
    def __init__(self):
        self.pressed: List[str] = []

    async def press(self, key: str, **kwargs):
        self.pressed.append(key)


class FakePage:
    """
    Lookup tables stand in for the DOM: ``selectors`` for CSS, ``labels`` for
    get_by_label, ``roles`` keyed by (role, name), ``texts`` for get_by_text.
    Every lookup is recorded in ``lookups`` in call order.
    """

    def __init__(self):
        self.selectors: Dict[str, List[FakeElement]] = {}
        self.broken_selectors: Dict[str, Exception] = {}
        self.labels: Dict[str, List[FakeElement]] = {}
        self.roles: Dict[tuple, List[FakeElement]] = {}
        self.texts: Dict[str, List[FakeElement]] = {}
        self.lookups: List[tuple] = []
        self.screenshots: List[str] = []
        self.screenshot_error: Optional[Exception] = None
        self.keyboard = FakeKeyboard()
        self.evaluate_handler: Optional[Callable[[str, Any], Any]] = None

    def locator(self, selector: str) -> FakeLocator:
        self.lookups.append(("css", selector))
        if selector in self.broken_selectors:
            return FakeLocator([], error=self.broken_selectors[selector])
        return FakeLocator(self.selectors.get(selector, []))

    def get_by_label(self, label: str, exact: bool = False) -> FakeLocator:
        self.lookups.append(("label", label))
        return FakeLocator(self.labels.get(label, []))

    def get_by_role(self, role: str, name: Any = None, exact: bool = False) -> FakeLocator:
        self.lookups.append(("role", role, name))
        return FakeLocator(self.roles.get((role, name), []))

    def get_by_text(self, text: str, exact: bool = False) -> FakeLocator:
        self.lookups.append(("text", text))
        return FakeLocator(self.texts.get(text, []))

    async def query_selector(self, selector: str):
        matches = self.selectors.get(selector, [])
        return matches[0] if matches else None

    async def screenshot(self, path: str, **kwargs):
        if self.screenshot_error is not None:
            raise self.screenshot_error
        self.screenshots.append(path)

    async def evaluate(self, script: str, arg: Any = None):
        if self.evaluate_handler is not None:
            return self.evaluate_handler(script, arg)
        return None

    async def wait_for_timeout(self, ms: float):
        return None

    def lookup_kinds(self) -> List[str]:
        return [entry[0] for entry in self.lookups]


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def run_context(tmp_path) -> RunContext:
    return RunContext(
        run_id="run_20250101_120000",
        screenshots_dir=str(tmp_path / "screenshots"),
        group_name="Frontend",
        service_name="Amazon EC2",
    )
