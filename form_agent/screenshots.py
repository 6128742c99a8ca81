import logging
import os
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from playwright.async_api import Page

from .event_log import log_event

logger = logging.getLogger("screenshots")

SLUG_MAX_LEN = 30


def slugify(text: Optional[str], max_len: int = SLUG_MAX_LEN) -> str:
    if not text or not isinstance(text, str):
        return "unknown"
    slug = text.lower()
    slug = re.sub(r"\s+", "_", slug)
    slug = re.sub(r"[^a-z0-9_-]", "", slug)
    slug = re.sub(r"[_-]{2,}", "_", slug)
    slug = slug.strip("_-")
    slug = slug[:max_len].rstrip("_-")
    return slug or "unknown"


def build_run_id(now: Optional[datetime] = None) -> str:
    """run_YYYYMMDD_HHMMSS"""
    return (now or datetime.now()).strftime("run_%Y%m%d_%H%M%S")


def build_screenshot_filename(run_id: str, group_name: Optional[str], service_name: Optional[str],
                              step_name: Optional[str], epoch_ms: Optional[int] = None) -> str:
    ts = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
    return f"{run_id}_{slugify(group_name)}_{slugify(service_name)}_{slugify(step_name)}_{ts}.png"


def build_screenshot_path(screenshots_dir: str, run_id: str, group_name: Optional[str],
                          service_name: Optional[str], step_name: Optional[str],
                          epoch_ms: Optional[int] = None) -> str:
    return os.path.join(screenshots_dir, build_screenshot_filename(run_id, group_name, service_name, step_name, epoch_ms))


@dataclass(frozen=True)
class RunContext:
    """Where diagnostic screenshots for the current step should go."""
    run_id: str
    screenshots_dir: str = "screenshots"
    group_name: Optional[str] = None
    service_name: Optional[str] = None

    def for_service(self, group_name: str, service_name: str) -> "RunContext":
        return replace(self, group_name=group_name, service_name=service_name)


async def capture_screenshot(page: Page, context: Optional[RunContext], step_name: str) -> Optional[str]:
    """
    Best-effort full-page screenshot. Never raises; returns None when no context
    is available or capture fails.
    """
    if page is None or context is None:
        return None
    screenshot_path = build_screenshot_path(
        context.screenshots_dir, context.run_id, context.group_name, context.service_name, step_name
    )
    try:
        os.makedirs(context.screenshots_dir, exist_ok=True)
        await page.screenshot(path=screenshot_path, full_page=True, timeout=10000)
        log_event(logger, "INFO", "EVT-SCR-01", step=step_name, path=screenshot_path)
        return screenshot_path
    except Exception as e:
        log_event(logger, "ERROR", "EVT-SCR-02", step=step_name, error=str(e))
        return None
