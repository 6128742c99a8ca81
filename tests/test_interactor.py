import pytest
from playwright.async_api import Error as PlaywrightError

from form_agent import field_strategies, interactor
from form_agent.errors import BrowserError
from form_agent.field_strategies import best_option_match, selection_matches, wants_checked
from form_agent.find_in_page import shortcut
from form_agent.interactor import FillOptions, fill, normalize_field_type

from conftest import FakeElement

OS_OPTIONS = [
    {"text": "Linux", "value": "linux"},
    {"text": "Windows Server", "value": "windows"},
    {"text": "Red Hat Enterprise Linux", "value": "rhel"},
]


@pytest.fixture(autouse=True)
def no_action_delay(monkeypatch):
    monkeypatch.setattr(field_strategies, "DELAY_BETWEEN_ACTIONS", 0)


def options_for(page, sleep, key="Field", **kwargs):
    return FillOptions(page=page, dimension_key=key, delay_ms=1000, sleep=sleep, **kwargs)


async def test_text_fill_is_verified(page, sleep):
    element = FakeElement("input", {"type": "number"})

    result = await fill(element, "NUMBER", 3, options_for(page, sleep))

    assert result.status == "success"
    assert result.verified
    assert result.retries_used == 0
    assert element.value == "3"


async def test_failed_readback_retries_then_fails_with_screenshot(page, sleep, run_context):
    element = FakeElement("input", {"type": "text"}, readback="wrong")

    result = await fill(element, "TEXT", "5", options_for(page, sleep, key="Quantity", context=run_context))

    assert result.status == "failed"
    assert result.retries_used == 2
    assert result.screenshot is not None
    assert result.screenshot == page.screenshots[0]
    assert "fill_fail_quantity" in result.screenshot
    assert sleep.delays == pytest.approx([1.0, 1.5])
    assert [c for c in element.calls if c[0] == "fill"] == [("fill", "5")] * 3


async def test_failed_optional_fill_is_skipped_without_screenshot(page, sleep, run_context):
    element = FakeElement("input", {"type": "text"}, readback="wrong")

    result = await fill(element, "TEXT", "5", options_for(page, sleep, required=False, context=run_context))

    assert result.status == "skipped"
    assert result.screenshot is None
    assert page.screenshots == []


async def test_native_fill_failure_falls_back_to_typing(page, sleep):
    element = FakeElement("input", {"type": "number"}, value="1", fill_error=PlaywrightError("Element is not an <input>"))

    result = await fill(element, "NUMBER", "42", options_for(page, sleep))

    assert result.status == "success"
    assert element.value == "42"
    assert ("press", shortcut("select_all")) in element.calls
    assert ("press", "Backspace") in element.calls


async def test_lost_session_during_fill_propagates(page, sleep):
    element = FakeElement("input", fill_error=PlaywrightError("Target page, context or browser has been closed"))

    with pytest.raises(BrowserError):
        await fill(element, "TEXT", "x", options_for(page, sleep))
    assert sleep.delays == []


async def test_select_by_label(page, sleep):
    element = FakeElement("select", options=OS_OPTIONS)

    result = await fill(element, "SELECT", "Windows Server", options_for(page, sleep))

    assert result.status == "success"
    assert element.selected_index == 1


async def test_select_falls_back_to_fuzzy_option(page, sleep):
    element = FakeElement("select", options=OS_OPTIONS)

    result = await fill(element, "SELECT", "Red Hat Enterprise", options_for(page, sleep))

    assert result.status == "success"
    assert OS_OPTIONS[element.selected_index]["value"] == "rhel"


async def test_select_without_any_match_fails(page, sleep):
    element = FakeElement("select", options=OS_OPTIONS)

    result = await fill(element, "SELECT", "FreeBSD", options_for(page, sleep))

    assert result.status == "failed"
    assert 'option "FreeBSD" not found' in result.message


async def test_combobox_picks_best_option(page, sleep):
    element = FakeElement("input", {"role": "combobox"})
    ohio = FakeElement("li", text="US East (Ohio)")
    virginia = FakeElement("li", text="US East (N. Virginia)")
    page.selectors["[role='option']"] = [ohio, virginia]

    result = await fill(element, "COMBOBOX", "US East (N. Virginia)", options_for(page, sleep))

    assert result.status == "success"
    assert ("click",) in virginia.calls
    assert ("click",) not in ohio.calls


async def test_combobox_presses_enter_without_options(page, sleep):
    element = FakeElement("input", {"role": "combobox"})

    await fill(element, "COMBOBOX", "anything", options_for(page, sleep))

    assert ("press", "Enter") in element.calls


@pytest.mark.parametrize("initial, value, clicks", [
    (False, "true", 1),
    (True, "true", 0),
    (True, False, 1),
    (False, "no", 0),
])
async def test_toggle_only_clicks_when_state_differs(page, sleep, initial, value, clicks):
    element = FakeElement("input", {"type": "checkbox"}, checked=initial, toggle_like=True)

    result = await fill(element, "TOGGLE", value, options_for(page, sleep))

    assert result.status == "success"
    assert element.calls.count(("click",)) == clicks
    assert element.checked is wants_checked(value)


async def test_toggle_uses_nested_control(page, sleep):
    switch = FakeElement("button", {"role": "switch"}, checked=False, toggle_like=True)
    wrapper = FakeElement("div")
    wrapper.children["[role='switch']"] = switch

    result = await fill(wrapper, "TOGGLE", "on", options_for(page, sleep))

    assert result.status == "success"
    assert switch.checked is True


async def test_radio_by_value(page, sleep):
    radio = FakeElement("input", {"type": "radio", "value": "Linux"}, checked=False)
    page.selectors["input[type='radio'][value='Linux']"] = [radio]

    result = await fill(FakeElement("fieldset"), "RADIO", "Linux", options_for(page, sleep))

    assert result.status == "success"
    assert radio.checked is True


def yes_no_group():
    yes = FakeElement("input", {"type": "radio", "value": "Yes"}, checked=False)
    group = FakeElement("fieldset")
    group.children["input[type='radio'], [role='radio']"] = yes
    group.children["input[type='radio'][value='Yes']"] = yes
    return group, yes


async def test_radio_stays_inside_located_group(page, sleep):
    _, other_yes = yes_no_group()
    page.selectors["input[type='radio'][value='Yes']"] = [other_yes]
    group, own_yes = yes_no_group()

    result = await fill(group, "RADIO", "Yes", options_for(page, sleep))

    assert result.status == "success"
    assert own_yes.checked is True
    assert other_yes.checked is False


async def test_radio_missing_from_located_group_does_not_leak_to_page(page, sleep):
    other_no = FakeElement("input", {"type": "radio", "value": "No"}, checked=False)
    page.selectors["input[type='radio'][value='No']"] = [other_no]
    group, _ = yes_no_group()

    result = await fill(group, "RADIO", "No", options_for(page, sleep, max_retries=0))

    assert result.status == "failed"
    assert other_no.checked is False


async def test_toggle_with_unreadable_state_wanting_off_is_done(page, sleep):
    wrapper = FakeElement("div")

    result = await fill(wrapper, "TOGGLE", "false", options_for(page, sleep))

    assert result.status == "success"
    assert result.retries_used == 0
    assert wrapper.calls == []
    assert sleep.delays == []


async def test_fill_retries_follow_configured_max(page, sleep, monkeypatch):
    monkeypatch.setattr(interactor, "FILL_MAX_RETRIES", 2)
    interactor.load_interactor_config({"retry": {"max_retries": 0}})
    element = FakeElement("input", {"type": "text"}, readback="wrong")

    result = await fill(element, "TEXT", "right", options_for(page, sleep))

    assert result.status == "failed"
    assert result.retries_used == 0
    assert sleep.delays == []


async def test_instance_search_selects_row_and_skips_verification(page, sleep):
    radio = FakeElement("input", {"type": "radio"}, checked=False)
    row = FakeElement("tr")
    row.children["input[type='radio']"] = radio
    page.selectors["tr:has-text('t3.micro')"] = [row]
    search = FakeElement("input", {"type": "search"})

    result = await fill(search, "INSTANCE_SEARCH", "t3.micro", options_for(page, sleep))

    assert result.status == "success"
    assert result.verified is False
    assert radio.checked is True
    assert search.value == "t3.micro"


def test_best_option_match_prefers_exact_text():
    options = [{"text": "gp3", "value": "gp2"}, {"text": "gp2", "value": "x"}]
    assert best_option_match("gp2", options)["value"] == "x"


def test_best_option_match_skips_disabled_and_weak_matches():
    options = [{"text": "Linux", "value": "linux", "disabled": True}, {"text": "Windows", "value": "win"}]
    assert best_option_match("Linux", options, threshold=85) is None


def test_selection_matches():
    assert selection_matches("linux", "Linux linux")
    assert selection_matches("Red Hat Linux", "Red Hat Enterprise Linux rhel")
    assert not selection_matches("Windows", "Linux linux")
    assert not selection_matches("Linux", "")


@pytest.mark.parametrize("raw, expected", [
    ("number", "NUMBER"),
    (" select ", "SELECT"),
    ("instance_search", "INSTANCE_SEARCH"),
    ("slider", "SLIDER"),
    (None, "TEXT"),
])
def test_normalize_field_type(raw, expected):
    assert normalize_field_type(raw) == expected


def test_shortcut_is_platform_aware():
    assert shortcut("select_all", "darwin") == "Meta+a"
    assert shortcut("select_all", "linux") == "Control+a"
    with pytest.raises(KeyError):
        shortcut("undo")


async def test_unknown_type_uses_text_strategy_without_read_back(page, sleep):
    element = FakeElement("div", readback="something else")

    result = await fill(element, "slider", "7", options_for(page, sleep))

    assert result.status == "success"
    assert result.verified is False
    assert ("fill", "7") in element.calls
