"""
Value resolution for profile dimensions.

Every dimension goes through the same fixed priority chain, first match wins:
user_value, then default_value, then a prompt (deferred, reported as skipped),
then optional-skip or unresolved. Nothing here touches a browser, so the whole
module is safe to use in dry-run mode.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import (
    OverrideEmptySegmentError,
    OverrideSyntaxError,
    OverrideTargetError,
    ResolutionError,
)
from .event_log import log_event
from .models import Dimension, Profile, UnresolvedDimension

logger = logging.getLogger("resolver")

OverrideKey = Tuple[str, str, str]


# --- Overrides ---

def parse_override(raw: str) -> Tuple[OverrideKey, str]:
    """
    Parses one ``group.service.dimension=value`` string.

    Only the first ``=`` separates path from value, so the value may itself
    contain ``=``.
    """
    if not isinstance(raw, str) or "=" not in raw:
        raise OverrideSyntaxError(str(raw))

    path, value = raw.split("=", 1)
    segments = path.split(".")
    if len(segments) != 3:
        raise OverrideSyntaxError(raw)

    for index, segment in enumerate(segments):
        if segment == "":
            raise OverrideEmptySegmentError(raw, index)

    return (segments[0], segments[1], segments[2]), value


def parse_overrides(values: Optional[Iterable[str]]) -> Dict[OverrideKey, str]:
    """Parses ``--set`` values; a later value for the same target wins."""
    overrides: Dict[OverrideKey, str] = {}
    for raw in values or []:
        key, value = parse_override(raw)
        overrides[key] = value
    return overrides


def apply_overrides(profile: Profile, overrides: Optional[Dict[OverrideKey, Any]]) -> Profile:
    """
    Sets ``user_value`` on every targeted dimension and clears its resolution state.

    Raises:
        OverrideTargetError: Listing every target that matched no dimension.
    """
    if not overrides:
        return profile

    unmatched = set(overrides)
    for group, service, dimension in profile.iter_dimensions():
        key = (group.group_name, service.service_name, dimension.key)
        if key not in overrides:
            continue
        dimension.user_value = overrides[key]
        dimension.resolved_value = None
        dimension.resolution_source = None
        dimension.resolution_status = None
        unmatched.discard(key)
        logger.info(f"Override applied: {'.'.join(key)}")

    if unmatched:
        targets = [".".join(key) for key in overrides if key in unmatched]
        raise OverrideTargetError(targets)
    return profile


# --- Priority chain ---

def _set_resolution(dimension: Dimension, value: Any, source: Optional[str], status: str) -> None:
    dimension.resolved_value = value
    dimension.resolution_source = source
    dimension.resolution_status = status


def resolve_dimension(dimension: Dimension, group_name: str, service_name: str) -> Optional[UnresolvedDimension]:
    """
    Resolves one dimension in place.

    Returns:
        Optional[UnresolvedDimension]: The unresolved entry for a required dimension
        with no value path, otherwise None.
    """
    if dimension.user_value is not None:
        _set_resolution(dimension, dimension.user_value, "user_value", "resolved")
        return None

    if dimension.default_value is not None:
        _set_resolution(dimension, dimension.default_value, "default_value", "resolved")
        return None

    if isinstance(dimension.prompt_message, str) and dimension.prompt_message != "":
        _set_resolution(dimension, None, "prompt", "skipped")
        return None

    if not dimension.required:
        _set_resolution(dimension, None, None, "skipped")
        return None

    _set_resolution(dimension, None, None, "unresolved")
    return UnresolvedDimension(
        group_name=group_name,
        service_name=service_name,
        dimension_key=dimension.key,
        required=True,
    )


def resolve_profile(profile: Profile) -> List[UnresolvedDimension]:
    """Runs the priority chain over every dimension; returns the unresolved entries."""
    unresolved: List[UnresolvedDimension] = []
    for group, service, dimension in profile.iter_dimensions():
        entry = resolve_dimension(dimension, group.group_name, service.service_name)
        if entry is not None:
            unresolved.append(entry)
    return unresolved


def assert_no_unresolved(unresolved: Iterable[UnresolvedDimension]) -> None:
    """
    Pre-flight gate: raises ResolutionError carrying every required unresolved entry.
    Pure; calling it twice on the same list behaves the same.
    """
    required = [u for u in unresolved if u.required]
    if required:
        log_event(
            logger, "ERROR", "EVT-RES-02",
            count=len(required),
            dimensions=[f"{u.group_name}.{u.service_name}.{u.dimension_key}" for u in required],
        )
        raise ResolutionError(required)


def resolution_summary(profile: Profile) -> Dict[str, int]:
    summary = {
        "total": 0,
        "resolved": 0,
        "skipped": 0,
        "skipped_prompt": 0,
        "skipped_optional": 0,
        "unresolved": 0,
    }
    for _, _, dimension in profile.iter_dimensions():
        summary["total"] += 1
        status = dimension.resolution_status
        if status == "resolved":
            summary["resolved"] += 1
        elif status == "skipped":
            summary["skipped"] += 1
            if dimension.resolution_source == "prompt":
                summary["skipped_prompt"] += 1
            else:
                summary["skipped_optional"] += 1
        elif status == "unresolved":
            summary["unresolved"] += 1
    return summary


def prepare_profile(profile: Profile, overrides: Optional[Dict[OverrideKey, Any]] = None) -> Dict[str, int]:
    """
    Applies overrides, resolves every dimension and runs the gate.

    Raises:
        OverrideTargetError: If an override targets a missing dimension.
        ResolutionError: If required dimensions remain unresolved.
    """
    apply_overrides(profile, overrides)
    unresolved = resolve_profile(profile)
    summary = resolution_summary(profile)
    log_event(logger, "INFO", "EVT-RES-01", **summary)
    assert_no_unresolved(unresolved)
    return summary
