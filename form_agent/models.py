"""
Data records shared by the resolver, locator, interactor, healer and pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


FIELD_TYPES = ("NUMBER", "TEXT", "SELECT", "COMBOBOX", "TOGGLE", "RADIO", "INSTANCE_SEARCH")


# --- Profile ---

@dataclass
class Dimension:
    """One field to be set on the target form."""
    key: str
    user_value: Any = None
    default_value: Any = None
    unit: Optional[str] = None
    prompt_message: Optional[str] = None
    required: bool = True
    resolved_value: Any = None
    resolution_source: Optional[str] = None
    resolution_status: Optional[str] = None

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "Dimension":
        return cls(
            key=key,
            user_value=data.get("user_value"),
            default_value=data.get("default_value"),
            unit=data.get("unit"),
            prompt_message=data.get("prompt_message"),
            required=data.get("required", True),
            resolved_value=data.get("resolved_value"),
            resolution_source=data.get("resolution_source"),
            resolution_status=data.get("resolution_status"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_value": self.user_value,
            "default_value": self.default_value,
            "unit": self.unit,
            "prompt_message": self.prompt_message,
            "required": self.required,
            "resolved_value": self.resolved_value,
            "resolution_source": self.resolution_source,
            "resolution_status": self.resolution_status,
        }

    def is_resolved(self) -> bool:
        return self.resolution_status == "resolved" and self.resolved_value is not None


@dataclass
class Service:
    service_name: str
    human_label: Optional[str] = None
    region: Optional[str] = None
    dimensions: Dict[str, Dimension] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Service":
        dimensions = {
            key: Dimension.from_dict(key, dim or {})
            for key, dim in (data.get("dimensions") or {}).items()
        }
        return cls(
            service_name=data["service_name"],
            human_label=data.get("human_label"),
            region=data.get("region"),
            dimensions=dimensions,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "human_label": self.human_label,
            "region": self.region,
            "dimensions": {key: dim.to_dict() for key, dim in self.dimensions.items()},
        }

    def get_dimensions(self) -> List[Dimension]:
        return list(self.dimensions.values())


@dataclass
class Group:
    group_name: str
    services: List[Service] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Group":
        return cls(
            group_name=data["group_name"],
            services=[Service.from_dict(s) for s in data.get("services") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"group_name": self.group_name, "services": [s.to_dict() for s in self.services]}


@dataclass
class Profile:
    project_name: str
    schema_version: str = "2.0"
    description: Optional[str] = None
    groups: List[Group] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            project_name=data.get("project_name", "unnamed"),
            schema_version=data.get("schema_version", "2.0"),
            description=data.get("description"),
            groups=[Group.from_dict(g) for g in data.get("groups") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "project_name": self.project_name,
            "description": self.description,
            "groups": [g.to_dict() for g in self.groups],
        }

    def iter_dimensions(self):
        """Yields (group, service, dimension) in profile order."""
        for group in self.groups:
            for service in group.services:
                for dimension in service.get_dimensions():
                    yield group, service, dimension


@dataclass(frozen=True)
class UnresolvedDimension:
    group_name: str
    service_name: str
    dimension_key: str
    required: bool = True
    reason: str = "Required dimension has no user_value, default_value, or prompt_message"


# --- Catalog ---

@dataclass
class CatalogDimension:
    """Per-dimension hints supplied by the service catalog."""
    key: str
    field_type: Optional[str] = None
    default_value: Any = None
    required: bool = True
    options: Optional[List[str]] = None
    unit: Optional[str] = None
    unit_sibling: Optional[str] = None
    css_selector: Optional[str] = None
    fallback_label: Optional[str] = None
    disambiguation_index: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogDimension":
        return cls(
            key=data["key"],
            field_type=str(data["field_type"]).upper() if data.get("field_type") else None,
            default_value=data.get("default_value"),
            required=data.get("required", True),
            options=data.get("options"),
            unit=data.get("unit"),
            unit_sibling=data.get("unit_sibling"),
            css_selector=data.get("css_selector"),
            fallback_label=data.get("fallback_label"),
            disambiguation_index=int(data.get("disambiguation_index") or 0),
        )

    def has_unit_sibling(self) -> bool:
        return self.unit_sibling is not None

    def hints(self) -> "LocatorHints":
        return LocatorHints(
            css_selector=self.css_selector,
            fallback_label=self.fallback_label,
            disambiguation_index=self.disambiguation_index,
        )


@dataclass
class CatalogEntry:
    service_name: str
    search_term: Optional[str] = None
    calculator_page_title: Optional[str] = None
    supported_regions: List[str] = field(default_factory=list)
    search_keywords: List[str] = field(default_factory=list)
    dimensions: List[CatalogDimension] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogEntry":
        return cls(
            service_name=data["service_name"],
            search_term=data.get("search_term"),
            calculator_page_title=data.get("calculator_page_title"),
            supported_regions=list(data.get("supported_regions") or []),
            search_keywords=list(data.get("search_keywords") or []),
            dimensions=[CatalogDimension.from_dict(d) for d in data.get("dimensions") or []],
        )

    def get_dimension(self, key: str) -> Optional[CatalogDimension]:
        return next((d for d in self.dimensions if d.key == key), None)

    def search_terms(self) -> List[str]:
        terms = [self.search_term, self.service_name, self.calculator_page_title, *self.search_keywords]
        return [t for t in terms if t]


# --- Locator / interactor / healer outcomes ---

@dataclass(frozen=True)
class LocatorHints:
    css_selector: Optional[str] = None
    fallback_label: Optional[str] = None
    disambiguation_index: int = 0


@dataclass
class LocatorResult:
    """
    Outcome of finding a control. ``element`` is a transient live handle: use it
    within the same pipeline step and do not keep it across steps.
    """
    status: str
    strategy: str
    field_type: str = "TEXT"
    element: Any = None
    match_top: float = 0.0
    screenshot_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success" and self.element is not None


@dataclass
class FillResult:
    dimension_key: str
    status: str
    message: str
    retries_used: int = 0
    screenshot: Optional[str] = None
    verified: bool = False
    field_type: Optional[str] = None


@dataclass(frozen=True)
class CorrectionRecord:
    dimension_key: str
    old_selector: str
    new_selector: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "dimension_key": self.dimension_key,
            "old_selector": self.old_selector,
            "new_selector": self.new_selector,
        }


# --- Run reporting ---

def _aggregate_status(statuses: List[str]) -> str:
    if "failed" in statuses:
        return "failed"
    if "partial_success" in statuses or "skipped" in statuses:
        return "partial_success"
    return "success"


@dataclass
class DimensionResult:
    key: str
    status: str = "filled"
    error_detail: Optional[str] = None
    screenshot_path: Optional[str] = None
    skip_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "status": self.status,
            "error_detail": self.error_detail,
            "screenshot_path": self.screenshot_path,
            "skip_reason": self.skip_reason,
        }


@dataclass
class ServiceResult:
    service_name: str
    human_label: Optional[str] = None
    dimensions: List[DimensionResult] = field(default_factory=list)
    failed_step: Optional[str] = None

    @property
    def metrics(self) -> Dict[str, int]:
        counts = {"filled": 0, "skipped": 0, "failed": 0}
        for dim in self.dimensions:
            if dim.status in counts:
                counts[dim.status] += 1
        return counts

    @property
    def status(self) -> str:
        return _aggregate_status([d.status for d in self.dimensions])

    def add_dimension(self, result: DimensionResult) -> None:
        self.dimensions.append(result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "human_label": self.human_label or self.service_name,
            "status": self.status,
            "metrics": self.metrics,
            "dimensions": [d.to_dict() for d in self.dimensions],
            "failed_step": self.failed_step,
        }


@dataclass
class GroupResult:
    group_name: str
    services: List[ServiceResult] = field(default_factory=list)

    @property
    def status(self) -> str:
        return _aggregate_status([s.status for s in self.services])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_name": self.group_name,
            "status": self.status,
            "services": [s.to_dict() for s in self.services],
        }


@dataclass
class RunResult:
    run_id: str
    profile_name: str
    timestamp_start: str
    timestamp_end: Optional[str] = None
    target_url: Optional[str] = None
    groups: List[GroupResult] = field(default_factory=list)
    schema_version: str = "2.0"
    cancelled: bool = False
    fatal_error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.fatal_error:
            return "failed"
        return _aggregate_status([g.status for g in self.groups])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "run_id": self.run_id,
            "profile_name": self.profile_name,
            "status": self.status,
            "timestamp_start": self.timestamp_start,
            "timestamp_end": self.timestamp_end,
            "target_url": self.target_url,
            "fatal_error": self.fatal_error,
            "groups": [g.to_dict() for g in self.groups],
        }
