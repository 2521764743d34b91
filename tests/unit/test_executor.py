"""Tests for applying reconciliation plans."""

import threading
import time
from unittest.mock import Mock

import pytest

from dagdeploy.models import DagAction, DagStatus, ReconciliationPlan
from dagdeploy.resolver import LocalFileTree, ObjectStoreTree
from dagdeploy.services.executor import ApplyExecutor


class ConcurrencyProbe:
    """Control plane call that records how many calls overlap."""

    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, dag_id):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1


@pytest.fixture
def local_tree(make_tree):
    return LocalFileTree(make_tree({"a.py": "A", "team/b.py": "B"}))


@pytest.fixture
def remote_tree(fake_store):
    fake_store.objects.update({"dags/c.py": b"C", "dags/d.py": b"D", "dags/team/b.py": b"old B"})
    return ObjectStoreTree(fake_store, "dags")


@pytest.fixture
def build_executor(fake_control_plane, remote_tree, local_tree, no_wait_retry):
    stop_retry, unpause_retry = no_wait_retry

    def _build(**kwargs):
        kwargs.setdefault("stop_retry", stop_retry)
        kwargs.setdefault("unpause_retry", unpause_retry)
        return ApplyExecutor(fake_control_plane, remote_tree, local_tree, **kwargs)

    return _build


class TestApplyPhases:
    """Test ordering and per-DAG steps of the apply phases."""

    def test_stop_phase_finishes_before_start_phase(self, build_executor, fake_control_plane):
        plan = ReconciliationPlan(to_stop={"c": "c.py", "d": "d.py"}, to_start={"a": "a.py"})

        build_executor().apply(plan)

        ops = [op for op, dag_id in fake_control_plane.calls if dag_id != "airflow_monitoring"]
        last_stop = max(i for i, op in enumerate(ops) if op in ("pause", "purge"))
        first_start = min(i for i, op in enumerate(ops) if op == "unpause")
        assert last_stop < first_start

    def test_stop_pauses_deletes_and_purges(self, build_executor, fake_control_plane, fake_store):
        report = build_executor().apply(ReconciliationPlan(to_stop={"c": "c.py"}))

        assert fake_control_plane.calls_for("c") == ["pause", "purge"]
        assert ("delete", "dags/c.py") in fake_store.calls
        assert "dags/c.py" not in fake_store.objects
        assert report.ok

    def test_start_replaces_object_and_unpauses(self, build_executor, fake_control_plane, fake_store):
        report = build_executor().apply(ReconciliationPlan(to_start={"b": "team/b.py"}))

        assert fake_store.objects["dags/team/b.py"] == b"B"
        assert fake_control_plane.calls_for("b") == ["unpause"]
        [result] = report.for_action(DagAction.START)
        assert result.ok
        assert result.warnings == []

    def test_failed_pre_delete_is_only_a_warning(self, build_executor, fake_store):
        report = build_executor().apply(ReconciliationPlan(to_start={"a": "a.py"}))

        [result] = report.for_action(DagAction.START)
        assert result.ok
        assert fake_store.objects["dags/a.py"] == b"A"
        assert len(result.warnings) == 1
        assert "dags/a.py" in result.warnings[0]

    def test_monitoring_dag_is_unpaused_last(self, build_executor, fake_control_plane):
        report = build_executor().apply(ReconciliationPlan(to_stop={"c": "c.py"}, to_start={"a": "a.py"}))

        assert fake_control_plane.calls[-1] == ("unpause", "airflow_monitoring")
        [housekeeping] = report.for_action(DagAction.HOUSEKEEPING)
        assert housekeeping.dag_id == "airflow_monitoring"
        assert housekeeping.ok

    def test_empty_plan_only_unpauses_monitoring_dag(self, build_executor, fake_control_plane):
        report = build_executor().apply(ReconciliationPlan())

        assert fake_control_plane.calls == [("unpause", "airflow_monitoring")]
        assert report.ok


class TestApplyFailures:
    """Test retry and isolation of per-DAG failures."""

    def test_purge_retries_until_success(self, build_executor, fake_control_plane):
        fake_control_plane.failures[("purge", "c")] = 4

        report = build_executor().apply(ReconciliationPlan(to_stop={"c": "c.py"}))

        [result] = report.for_action(DagAction.STOP)
        assert result.ok
        assert result.attempts == 5

    def test_purge_exhaustion_fails_only_that_dag(self, build_executor, fake_control_plane):
        fake_control_plane.failures[("purge", "c")] = 10
        plan = ReconciliationPlan(to_stop={"c": "c.py", "d": "d.py"}, to_start={"a": "a.py"})

        report = build_executor().apply(plan)

        results = {(r.action, r.dag_id): r for r in report.results}
        failed = results[(DagAction.STOP, "c")]
        assert failed.status == DagStatus.FAILED
        assert failed.attempts == 5
        assert "delete still failing" in failed.error
        assert results[(DagAction.STOP, "d")].ok
        assert results[(DagAction.START, "a")].ok
        assert not report.ok
        assert [r.dag_id for r in report.failed] == ["c"]

    def test_unpause_exhaustion_is_reported(self, build_executor, fake_control_plane):
        fake_control_plane.failures[("unpause", "a")] = 5

        report = build_executor().apply(ReconciliationPlan(to_start={"a": "a.py"}))

        [result] = report.for_action(DagAction.START)
        assert result.status == DagStatus.FAILED
        assert "unpause still failing" in result.error
        assert fake_control_plane.calls_for("a") == ["unpause"] * 5

    def test_pause_failure_leaves_object_in_place(self, build_executor, fake_control_plane, fake_store):
        fake_control_plane.failures[("pause", "c")] = 1

        report = build_executor().apply(ReconciliationPlan(to_stop={"c": "c.py"}))

        assert not report.ok
        assert "dags/c.py" in fake_store.objects
        assert fake_control_plane.calls_for("c") == ["pause"]

    def test_upload_failure_skips_unpause(self, build_executor, fake_control_plane, fake_store):
        fake_store.fail_upload.add("dags/a.py")

        report = build_executor().apply(ReconciliationPlan(to_start={"a": "a.py"}))

        assert not report.ok
        assert fake_control_plane.calls_for("a") == []

    def test_unexpected_worker_error_becomes_failed_result(self, build_executor, fake_control_plane):
        fake_control_plane.pause = Mock(side_effect=RuntimeError("boom"))

        report = build_executor().apply(ReconciliationPlan(to_stop={"c": "c.py"}, to_start={"a": "a.py"}))

        results = {r.dag_id: r for r in report.results}
        assert results["c"].status == DagStatus.FAILED
        assert "boom" in results["c"].error
        assert results["a"].ok

    def test_monitoring_failure_does_not_fail_the_report(self, build_executor, fake_control_plane):
        fake_control_plane.failures[("unpause", "airflow_monitoring")] = 1

        report = build_executor().apply(ReconciliationPlan(to_start={"a": "a.py"}))

        assert report.ok
        [housekeeping] = report.for_action(DagAction.HOUSEKEEPING)
        assert not housekeeping.ok


class TestApplyConcurrency:
    """Test worker bounds and cancellation."""

    def test_max_workers_bounds_concurrency(self, build_executor, fake_control_plane, fake_store):
        probe = ConcurrencyProbe()
        fake_control_plane.pause = probe
        to_stop = {}
        for n in range(6):
            fake_store.objects[f"dags/s{n}.py"] = b""
            to_stop[f"s{n}"] = f"s{n}.py"

        report = build_executor(max_workers=2).apply(ReconciliationPlan(to_stop=to_stop))

        assert report.ok
        assert 1 <= probe.peak <= 2

    def test_negative_max_workers_is_rejected(self, build_executor):
        with pytest.raises(ValueError):
            build_executor(max_workers=-1)

    def test_cancelled_run_touches_nothing(self, build_executor, fake_control_plane, fake_store):
        event = threading.Event()
        event.set()

        report = build_executor(cancel_event=event).apply(
            ReconciliationPlan(to_stop={"c": "c.py"}, to_start={"a": "a.py"})
        )

        assert fake_control_plane.calls == []
        assert "dags/c.py" in fake_store.objects
        assert all(r.status == DagStatus.CANCELLED for r in report.results)
        assert not report.ok
