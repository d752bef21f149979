"""Tests for workload name validation and the unit-to-workload join."""

from __future__ import annotations

import pytest

from scalezero.core.models import WORKLOAD_METADATA_KEY, EndpointRole, UnitDetail
from scalezero.core.names import (
    MAX_STARTED_BY_LENGTH,
    is_valid_workload_name,
    match_by_metadata,
    started_by_tag,
    unit_belongs_to,
    validate_workload_name,
)
from scalezero.utils.exceptions import InvalidWorkloadNameError


def _unit(
    ref: str = "task-1",
    status: str = "RUNNING",
    launch_type: str = "EC2",
    started_by: str | None = None,
    workload: str | None = None,
) -> UnitDetail:
    metadata = {WORKLOAD_METADATA_KEY: workload} if workload else {}
    return UnitDetail(
        ref=ref,
        status=status,
        launch_type=launch_type,
        started_by=started_by,
        metadata=metadata,
    )


class TestValidateWorkloadName:
    """Tests for validate_workload_name()."""

    @pytest.mark.parametrize("name", ["a", "demo", "my-service-1", "A1", "x" * 63])
    def test_accepts_dns_labels(self, name):
        """Valid DNS labels are returned unchanged."""
        assert validate_workload_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "-demo", "demo-", "my_service", "demo.app", "x" * 64, "dé", "a b"],
    )
    def test_rejects_invalid_names(self, name):
        """Anything that is not a 1-63 char DNS label is rejected."""
        with pytest.raises(InvalidWorkloadNameError):
            validate_workload_name(name)

    def test_none_is_rejected(self):
        with pytest.raises(InvalidWorkloadNameError, match="required"):
            validate_workload_name(None)

    def test_error_is_a_value_error(self):
        """Callers catching ValueError also catch invalid names."""
        with pytest.raises(ValueError):
            validate_workload_name("bad_name")

    def test_is_valid_workload_name(self):
        assert is_valid_workload_name("demo")
        assert not is_valid_workload_name("demo#fleet")


class TestUnitBelongsTo:
    """Tests for tag and metadata matching."""

    def test_started_by_tag(self):
        assert started_by_tag("demo") == "wrapper-demo"
        assert started_by_tag("demo", prefix="zero") == "zero-demo"

    def test_matches_on_started_by(self):
        assert unit_belongs_to(_unit(started_by="wrapper-demo"), "demo")

    def test_matches_on_metadata(self):
        assert unit_belongs_to(_unit(workload="demo"), "demo")

    def test_longer_name_does_not_claim_shorter(self):
        """wrapper-demo2 is not a unit of workload demo."""
        assert not unit_belongs_to(_unit(started_by="wrapper-demo2"), "demo")

    def test_invalid_workload_never_matches(self):
        assert not unit_belongs_to(_unit(started_by="wrapper-"), "")

    def test_hyphenated_suffix_is_another_workload(self):
        """demo must not claim the units of demo-2."""
        assert not unit_belongs_to(_unit(started_by="wrapper-demo-2"), "demo")
        assert not unit_belongs_to(
            _unit(started_by="wrapper-demo-2", workload="demo-2"), "demo"
        )

    def test_metadata_decides_over_started_by(self):
        """A tag that looks right does not override the metadata owner."""
        unit = _unit(started_by="wrapper-demo", workload="other")
        assert not unit_belongs_to(unit, "demo")
        assert unit_belongs_to(unit, "other")

    def test_long_name_matches_truncated_tag(self):
        name = "a" * 40
        unit = _unit(started_by=started_by_tag(name))
        assert len(unit.started_by) == MAX_STARTED_BY_LENGTH
        assert unit_belongs_to(unit, name)


class TestMatchByMetadata:
    """Tests for match_by_metadata()."""

    def test_returns_matching_unit(self):
        units = [_unit("t1", workload="other"), _unit("t2", workload="demo")]
        match = match_by_metadata(units, "demo", EndpointRole.BACKEND)
        assert match is not None
        assert match.ref == "t2"

    def test_skips_other_launch_type(self):
        """A frontend (FARGATE) unit is never returned for the backend role."""
        units = [_unit("t1", launch_type="FARGATE", workload="demo")]
        assert match_by_metadata(units, "demo", EndpointRole.BACKEND) is None
        assert match_by_metadata(units, "demo", EndpointRole.FRONTEND).ref == "t1"

    @pytest.mark.parametrize("status", ["STOPPED", "DEPROVISIONING"])
    def test_skips_terminal_units(self, status):
        units = [_unit("t1", status=status, workload="demo")]
        assert match_by_metadata(units, "demo", EndpointRole.BACKEND) is None

    def test_pending_unit_matches(self):
        units = [_unit("t1", status="PENDING", workload="demo")]
        assert match_by_metadata(units, "demo", EndpointRole.BACKEND).ref == "t1"

    def test_invalid_name_returns_none(self):
        """An invalid name never matches, even if metadata carries it."""
        units = [_unit("t1", workload="bad_name", started_by="wrapper-bad_name")]
        assert match_by_metadata(units, "bad_name", EndpointRole.BACKEND) is None

    def test_prefix_named_workload_is_not_matched(self):
        units = [
            _unit("t1", started_by="wrapper-demo-2", workload="demo-2"),
            _unit("t2", started_by="wrapper-demo", workload="demo"),
        ]
        assert match_by_metadata(units, "demo", EndpointRole.BACKEND).ref == "t2"
        assert match_by_metadata(units[:1], "demo", EndpointRole.BACKEND) is None

    def test_empty_units(self):
        assert match_by_metadata([], "demo", EndpointRole.FRONTEND) is None
