"""
resolve → locate → fill → verify → report, one dimension at a time.

Dimensions run strictly in catalog order within a service, and services in
profile order. Dimension-level failures become DimensionResults; only
resolution failures (before any browser action) and session-level browser
errors end the run early.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Page

from . import interactor, locator
from .errors import (
    AutomationError,
    BrowserError,
    BrowserTimeoutError,
    RunCancelledError,
    categorize_error,
)
from .event_log import log_event
from .loaders import catalog_names, find_catalog
from .models import (
    CatalogDimension,
    CatalogEntry,
    Dimension,
    DimensionResult,
    GroupResult,
    LocatorHints,
    Profile,
    RunResult,
    Service,
    ServiceResult,
)
from .resolver import OverrideKey, assert_no_unresolved, prepare_profile, resolve_profile
from .retry_policy import CancellationToken
from .screenshots import RunContext

logger = logging.getLogger("pipeline")

OpenService = Callable[[Page, Service, Optional[CatalogEntry], RunContext], Awaitable[None]]
CloseService = Callable[[Page], Awaitable[None]]

FILL_STATUS = {"success": "filled", "skipped": "skipped", "failed": "failed"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def skip_reason_for(dimension: Dimension) -> str:
    return "prompt_deferred" if dimension.resolution_source == "prompt" else "optional_unresolved"


def ordered_dimensions(service: Service, catalog_entry: Optional[CatalogEntry]) -> List[Dimension]:
    """Catalog order first, then profile-only keys in profile order."""
    if catalog_entry is None:
        return service.get_dimensions()
    ordered = [service.dimensions[d.key] for d in catalog_entry.dimensions if d.key in service.dimensions]
    seen = {d.key for d in ordered}
    ordered.extend(d for d in service.get_dimensions() if d.key not in seen)
    return ordered


class PipelineRunner:
    """Drives one profile through a single live page."""

    def __init__(self, page: Page, catalogs: Optional[Dict[str, CatalogEntry]], context: RunContext,
                 open_service: Optional[OpenService] = None, close_service: Optional[CloseService] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.page = page
        self.catalogs = catalogs or {}
        self.context = context
        self.open_service = open_service
        self.close_service = close_service
        self.cancel_token = cancel_token or CancellationToken()
        self.sleep = sleep

    async def _locate_and_fill(self, key: str, value: Any, required: bool, hints: LocatorHints,
                               field_type: Optional[str], context: RunContext) -> DimensionResult:
        located = await locator.locate(
            self.page, key, hints, required=required, context=context,
            cancel_token=self.cancel_token, sleep=self.sleep,
        )
        if not located.ok:
            return DimensionResult(
                key=key,
                status=located.status,
                error_detail=located.error,
                screenshot_path=located.screenshot_path,
                skip_reason="locator_optional" if located.status == "skipped" else None,
            )

        self.cancel_token.checkpoint(f"fill-{key}")
        fill_result = await interactor.fill(
            located.element,
            field_type or located.field_type,
            value,
            interactor.FillOptions(
                page=self.page,
                dimension_key=key,
                required=required,
                context=context,
                cancel_token=self.cancel_token,
                sleep=self.sleep,
            ),
        )
        status = FILL_STATUS[fill_result.status]
        return DimensionResult(
            key=key,
            status=status,
            error_detail=None if status == "filled" else fill_result.message,
            screenshot_path=fill_result.screenshot,
            skip_reason="fill_optional" if status == "skipped" else None,
        )

    async def _fill_unit(self, dimension: Dimension, catalog_dim: CatalogDimension, context: RunContext) -> None:
        unit_key = catalog_dim.unit_sibling
        result = await self._locate_and_fill(unit_key, dimension.unit, False, LocatorHints(), None, context)
        if result.status != "filled":
            logger.warning(f"⚠️ Unit '{dimension.unit}' for '{dimension.key}' not applied via '{unit_key}': {result.error_detail}")

    async def process_dimension(self, dimension: Dimension, catalog_entry: Optional[CatalogEntry],
                                context: RunContext) -> DimensionResult:
        if dimension.resolution_status == "skipped":
            logger.info(f"Skipping '{dimension.key}' ({skip_reason_for(dimension)})")
            return DimensionResult(key=dimension.key, status="skipped", skip_reason=skip_reason_for(dimension))

        if not dimension.is_resolved():
            if dimension.required:
                return DimensionResult(key=dimension.key, status="failed", error_detail="No resolved value for required dimension")
            return DimensionResult(key=dimension.key, status="skipped", skip_reason="optional_unresolved")

        catalog_dim = catalog_entry.get_dimension(dimension.key) if catalog_entry else None
        hints = catalog_dim.hints() if catalog_dim else LocatorHints()
        field_type = catalog_dim.field_type if catalog_dim else None

        result = await self._locate_and_fill(
            dimension.key, dimension.resolved_value, dimension.required, hints, field_type, context,
        )
        if result.status == "filled" and catalog_dim and catalog_dim.has_unit_sibling() and dimension.unit:
            await self._fill_unit(dimension, catalog_dim, context)
        return result

    async def run_service(self, group_name: str, service: Service, service_result: ServiceResult) -> None:
        context = self.context.for_service(group_name, service.service_name)
        catalog_entry = find_catalog(self.catalogs, service.service_name) if self.catalogs else None
        if catalog_entry is None and self.catalogs:
            logger.warning(f"⚠️ No catalog entry for '{service.service_name}' (available: {', '.join(catalog_names(self.catalogs))}); "
                           "using profile order and no hints.")

        self.cancel_token.checkpoint(f"open-{service.service_name}")
        if self.open_service is not None:
            try:
                await self.open_service(self.page, service, catalog_entry, context)
            except (RunCancelledError, BrowserError) as e:
                if not isinstance(e, BrowserTimeoutError):
                    raise
                self._navigation_failed(service_result, e)
                return
            except Exception as e:
                self._navigation_failed(service_result, e)
                return

        for dimension in ordered_dimensions(service, catalog_entry):
            self.cancel_token.checkpoint(f"dimension-{dimension.key}")
            try:
                result = await self.process_dimension(dimension, catalog_entry, context)
            except RunCancelledError:
                service_result.add_dimension(
                    DimensionResult(key=dimension.key, status="skipped", error_detail="cancelled", skip_reason="cancelled")
                )
                raise
            service_result.add_dimension(result)

        if self.close_service is not None:
            self.cancel_token.checkpoint(f"save-{service.service_name}")
            try:
                await self.close_service(self.page)
            except AutomationError as e:
                if isinstance(e, BrowserError) and not isinstance(e, BrowserTimeoutError):
                    raise
                service_result.failed_step = "save"
                service_result.add_dimension(DimensionResult(key="__save__", status="failed", error_detail=str(e)))

    def _navigation_failed(self, service_result: ServiceResult, error: Exception) -> None:
        category = categorize_error(error).category
        logger.error(f"❌ Could not open service '{service_result.service_name}' ({category}): {error}")
        service_result.failed_step = "navigation"
        service_result.add_dimension(
            DimensionResult(key="__navigation__", status="failed", error_detail=str(error))
        )

    async def run(self, profile: Profile, target_url: Optional[str] = None) -> RunResult:
        assert_no_unresolved(resolve_profile(profile))

        run = RunResult(
            run_id=self.context.run_id,
            profile_name=profile.project_name,
            timestamp_start=_now(),
            target_url=target_url,
        )
        log_event(logger, "INFO", "EVT-RUN-01", run_id=run.run_id, profile=profile.project_name)

        try:
            for group in profile.groups:
                group_result = GroupResult(group_name=group.group_name)
                run.groups.append(group_result)
                for service in group.services:
                    service_result = ServiceResult(service_name=service.service_name, human_label=service.human_label)
                    group_result.services.append(service_result)
                    await self.run_service(group.group_name, service, service_result)
        except RunCancelledError as e:
            run.cancelled = True
            log_event(logger, "WARN", "EVT-RUN-03", run_id=run.run_id, step=e.step_name)
        except BrowserError as e:
            run.fatal_error = str(e)
            logger.critical(f"❌ Browser session failed, aborting run: {e}")

        run.timestamp_end = _now()
        log_event(logger, "INFO", "EVT-RUN-02", run_id=run.run_id, status=run.status)
        return run


async def run_profile(page: Page, profile: Profile, catalogs: Optional[Dict[str, CatalogEntry]], context: RunContext,
                      open_service: Optional[OpenService] = None, close_service: Optional[CloseService] = None,
                      cancel_token: Optional[CancellationToken] = None, target_url: Optional[str] = None,
                      sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> RunResult:
    runner = PipelineRunner(page, catalogs, context, open_service=open_service, close_service=close_service,
                            cancel_token=cancel_token, sleep=sleep)
    return await runner.run(profile, target_url=target_url)


def dry_run(profile: Profile, overrides: Optional[Dict[OverrideKey, Any]] = None) -> Dict[str, Any]:
    """
    Applies overrides and resolves the profile without touching a browser.

    Raises:
        OverrideTargetError, ResolutionError: Same as a real run's pre-flight.
    """
    summary = prepare_profile(profile, overrides)
    plan = [
        {
            "group": group.group_name,
            "service": service.service_name,
            "key": dimension.key,
            "status": dimension.resolution_status,
            "source": dimension.resolution_source,
            "value": dimension.resolved_value,
        }
        for group, service, dimension in profile.iter_dimensions()
    ]
    return {"profile_name": profile.project_name, "summary": summary, "dimensions": plan}
