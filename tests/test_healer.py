import json

import pytest

from form_agent.errors import CatalogHealError, StaleSelectorError
from form_agent.healer import CatalogHealer
from form_agent.locator import aria_label_selector
from form_agent.models import CatalogDimension, CatalogEntry

from conftest import FakeElement


def control(selector, tag="input"):
    return FakeElement(tag, selector=selector)


async def test_heal_via_aria_label_generates_selector(page):
    fresh = control("#storage-gb")
    page.selectors[aria_label_selector("Storage amount")] = [fresh]
    page.selectors["#storage-gb"] = [fresh]
    healer = CatalogHealer(page, "Amazon EBS")

    new_selector = await healer.heal("Storage amount", "#old-storage")

    assert new_selector == "#storage-gb"
    assert healer.get_corrections() == {"#old-storage": "#storage-gb"}
    assert healer.healed_dimensions == ["Storage amount"]


async def test_heal_via_role_then_text_neighbour(page):
    switch = control("button.toggle:nth-child(2)", tag="button")
    page.roles[("switch", "Monitoring")] = [switch]
    page.selectors["button.toggle:nth-child(2)"] = [switch]

    assert await CatalogHealer(page, "EC2").heal("Monitoring", "#gone") == "button.toggle:nth-child(2)"

    label = FakeElement("span", text="Hours per day")
    label.nearest = control("[data-testid=\"hours\"]")
    page.texts["Hours per day"] = [label]
    page.selectors['[data-testid="hours"]'] = [label.nearest]

    assert await CatalogHealer(page, "EC2").heal("Hours per day", "#hrs") == '[data-testid="hours"]'


async def test_heal_uses_fallback_label(page):
    fresh = control("#os")
    page.selectors[aria_label_selector("Operating system")] = [fresh]
    page.selectors["#os"] = [fresh]

    healer = CatalogHealer(page, "EC2")
    assert await healer.heal("os", "#old-os", fallback_label="Operating system") == "#os"


async def test_candidate_that_is_not_visible_is_rejected(page):
    hidden = FakeElement("input", selector="#hidden", visible=False)
    page.selectors[aria_label_selector("Tenancy")] = [hidden]
    page.selectors["#hidden"] = [hidden]
    healer = CatalogHealer(page, "EC2")

    assert await healer.heal("Tenancy", "#old") is None
    assert healer.get_corrections() == {}
    with pytest.raises(CatalogHealError):
        await healer.heal_or_raise("Tenancy", "#old")


async def test_check_selector(page):
    page.selectors["#live"] = [FakeElement()]
    healer = CatalogHealer(page, "EC2")

    await healer.check_selector("Live", "#live")
    with pytest.raises(StaleSelectorError) as excinfo:
        await healer.check_selector("Dead", "#dead")
    assert excinfo.value.stale_selector == "#dead"


async def test_heal_entry_reports_each_dimension(page):
    page.selectors["#ok"] = [FakeElement()]
    fresh = control("#new-volume")
    page.selectors[aria_label_selector("Volume size")] = [fresh]
    page.selectors["#new-volume"] = [fresh]
    entry = CatalogEntry(
        service_name="Amazon EBS",
        dimensions=[
            CatalogDimension(key="Still fine", css_selector="#ok"),
            CatalogDimension(key="Volume size", css_selector="#old-volume"),
            CatalogDimension(key="Snapshot frequency", css_selector="#old-snap"),
            CatalogDimension(key="No hint"),
        ],
    )
    healer = CatalogHealer(page, entry.service_name)

    report = await healer.heal_entry(entry)

    assert report.checked == ["Still fine", "Volume size", "Snapshot frequency"]
    assert [c.new_selector for c in report.healed] == ["#new-volume"]
    assert report.failed == ["Snapshot frequency"]
    assert not report.ok
    assert report.to_dict()["healed"][0] == {
        "dimension_key": "Volume size",
        "old_selector": "#old-volume",
        "new_selector": "#new-volume",
    }


async def test_save_corrections_appends_to_existing_file(page, tmp_path):
    fresh = control("#region")
    page.selectors[aria_label_selector("Region")] = [fresh]
    page.selectors["#region"] = [fresh]
    path = str(tmp_path / "out" / "corrections.json")

    first = CatalogHealer(page, "EC2")
    await first.heal("Region", "#old-region")
    first.save_corrections(path)
    CatalogHealer(page, "S3").save_corrections(path)

    with open(path, encoding="utf-8") as f:
        saved = json.load(f)
    assert [s["service_name"] for s in saved] == ["EC2", "S3"]
    assert saved[0]["corrections"] == [
        {"dimension_key": "Region", "old_selector": "#old-region", "new_selector": "#region"}
    ]
    assert saved[0]["healed_dimensions"] == ["Region"]
    assert saved[1]["corrections"] == []


def test_save_corrections_recovers_from_corrupt_file(page, tmp_path):
    path = tmp_path / "corrections.json"
    path.write_text("{not json", encoding="utf-8")

    CatalogHealer(page, "EC2").save_corrections(str(path))

    assert len(json.loads(path.read_text(encoding="utf-8"))) == 1
