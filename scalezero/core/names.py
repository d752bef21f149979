"""Workload name validation and the unit-to-workload join.

Every lookup of "which unit belongs to workload X" goes through
match_by_metadata(), which validates the name before comparing anything.
A malformed name therefore can never match another workload's units.

Usage:
    from scalezero.core.names import match_by_metadata, validate_workload_name

    name = validate_workload_name(raw)          # raises InvalidWorkloadNameError
    unit = match_by_metadata(units, name, EndpointRole.BACKEND)
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from scalezero.core.models import (
    TERMINAL_STATUSES,
    WORKLOAD_METADATA_KEY,
    EndpointRole,
    UnitDetail,
)
from scalezero.utils.exceptions import InvalidWorkloadNameError

MAX_WORKLOAD_NAME_LENGTH = 63

# DNS label: alphanumerics and hyphens, must start and end with an alphanumeric
WORKLOAD_NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$", re.IGNORECASE)

DEFAULT_STARTED_BY_PREFIX = "wrapper"

# ECS rejects startedBy values longer than this
MAX_STARTED_BY_LENGTH = 36


def validate_workload_name(name: str | None) -> str:
    """Validate a workload name and return it unchanged.

    Raises:
        InvalidWorkloadNameError: If the name is empty, too long, or not a DNS label.
    """
    if not name:
        raise InvalidWorkloadNameError(name or "", "name is required")
    if len(name) > MAX_WORKLOAD_NAME_LENGTH:
        raise InvalidWorkloadNameError(
            name, f"must be {MAX_WORKLOAD_NAME_LENGTH} characters or less"
        )
    if not WORKLOAD_NAME_PATTERN.match(name):
        raise InvalidWorkloadNameError(
            name,
            "must contain only alphanumeric characters and hyphens, "
            "and start/end with an alphanumeric",
        )
    return name


def is_valid_workload_name(name: str | None) -> bool:
    try:
        validate_workload_name(name)
    except InvalidWorkloadNameError:
        return False
    return True


def started_by_tag(workload: str, prefix: str = DEFAULT_STARTED_BY_PREFIX) -> str:
    """Tag written into the provider's started-by field on create (truncated)."""
    return f"{prefix}-{workload}"[:MAX_STARTED_BY_LENGTH]


def unit_belongs_to(
    unit: UnitDetail,
    workload: str,
    prefix: str = DEFAULT_STARTED_BY_PREFIX,
) -> bool:
    """True if the unit was created for ``workload``.

    The WORKLOAD_NAME metadata entry decides when present. Units without it
    fall back to an exact started-by tag comparison, so "demo" never claims
    a unit of "demo-2".
    """
    if not is_valid_workload_name(workload):
        return False
    owner = unit.metadata.get(WORKLOAD_METADATA_KEY)
    if owner is not None:
        return owner == workload
    return unit.started_by == started_by_tag(workload, prefix)


def match_by_metadata(
    units: Iterable[UnitDetail],
    workload: str,
    role: EndpointRole,
    prefix: str = DEFAULT_STARTED_BY_PREFIX,
) -> UnitDetail | None:
    """Return the first live unit of ``role`` that belongs to ``workload``.

    Units that are stopping/stopped or that use the other role's launch
    type are skipped. Returns None for an invalid workload name.
    """
    if not is_valid_workload_name(workload):
        return None

    for unit in units:
        if unit.launch_type and unit.launch_type != role.launch_type:
            continue
        if (unit.status or "").upper() in TERMINAL_STATUSES:
            continue
        if unit_belongs_to(unit, workload, prefix):
            return unit
    return None
