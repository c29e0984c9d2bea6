"""Tests for result schemas and serialization."""

from datetime import datetime, timedelta, timezone

import pytest

from phaseflow.schemas import (
    CheckResult,
    ErrorInfo,
    JobResult,
    LifecycleResult,
    Phase,
    Result,
    Status,
    TargetResult,
)


T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds):
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def lifecycle():
    check = CheckResult("not_empty", Status.FAILED, at(1), at(2),
                        error=ErrorInfo("CheckFailed", "no rows"))
    verify = TargetResult("orders", Status.FAILED, at(1), at(3), phase=Phase.VERIFY,
                          children=(check,), error=ErrorInfo("VerificationFailedError", "failed checks: not_empty"))
    skipped = TargetResult("customers", Status.SKIPPED, at(0), at(0), phase=Phase.BUILD)
    return LifecycleResult(
        name="main",
        status=Status.FAILED,
        start_time=at(0),
        end_time=at(4),
        children=(
            JobResult("main", Status.SKIPPED, at(0), at(1), phase=Phase.BUILD, children=(skipped,)),
            JobResult("main", Status.FAILED, at(1), at(4), phase=Phase.VERIFY, children=(verify,)),
        ),
    )


class TestStatus:
    """Tests for status aggregation."""

    @pytest.mark.parametrize("children,expected", [
        ([], Status.SUCCESS),
        ([Status.SKIPPED, Status.SKIPPED], Status.SKIPPED),
        ([Status.SKIPPED, Status.SUCCESS], Status.SUCCESS),
        ([Status.SUCCESS, Status.ABORTED], Status.ABORTED),
        ([Status.ABORTED, Status.FAILED, Status.SUCCESS], Status.FAILED),
    ])
    def test_aggregate(self, children, expected):
        assert Status.aggregate(children) == expected

    def test_is_success(self):
        assert Status.SUCCESS.is_success
        assert Status.SKIPPED.is_success
        assert not Status.FAILED.is_success
        assert not Status.ABORTED.is_success


class TestResult:
    def test_end_before_start_clamped(self):
        result = TargetResult("x", Status.SUCCESS, at(2), at(1))
        assert result.end_time == at(2)
        assert result.duration_ms == 0

    def test_children_become_tuple(self):
        result = JobResult("j", Status.SUCCESS, at(0), at(1), children=[TargetResult("t", Status.SUCCESS, at(0), at(1))])
        assert isinstance(result.children, tuple)

    def test_duration(self):
        assert TargetResult("x", Status.SUCCESS, at(0), at(1.5)).duration_ms == 1500

    def test_find(self, lifecycle):
        assert lifecycle.find("not_empty").status == Status.FAILED
        assert lifecycle.find("missing") is None

    def test_phase_result(self, lifecycle):
        assert lifecycle.phase_result(Phase.VERIFY).status == Status.FAILED
        assert lifecycle.phase_result(Phase.CREATE) is None

    def test_failed_children(self, lifecycle):
        assert [c.phase for c in lifecycle.failed_children()] == [Phase.VERIFY]

    def test_success(self, lifecycle):
        assert not lifecycle.success
        assert lifecycle.children[0].success


class TestSerialization:
    """Tests for lossless dict / JSON serialization."""

    def test_json_round_trip(self, lifecycle):
        restored = Result.from_json(lifecycle.to_json())
        assert restored == lifecycle
        assert isinstance(restored, LifecycleResult)
        assert isinstance(restored.children[1].children[0].children[0], CheckResult)

    def test_to_dict_shape(self, lifecycle):
        data = lifecycle.to_dict()
        assert data["category"] == "lifecycle"
        assert data["start_time"] == "2024-01-01T12:00:00+00:00"
        assert "phase" not in data
        assert "error" not in data
        target = data["children"][0]["children"][0]
        assert target == {
            "category": "target",
            "name": "customers",
            "status": "skipped",
            "start_time": "2024-01-01T12:00:00+00:00",
            "end_time": "2024-01-01T12:00:00+00:00",
            "phase": "build",
        }

    def test_subclass_from_dict(self, lifecycle):
        data = lifecycle.children[0].to_dict()
        assert isinstance(JobResult.from_dict(data), JobResult)
        with pytest.raises(ValueError, match="Expected target result"):
            TargetResult.from_dict(data)

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="Unknown result category"):
            Result.from_dict({"category": "widget", "name": "x", "status": "success",
                              "start_time": T0.isoformat(), "end_time": T0.isoformat()})
