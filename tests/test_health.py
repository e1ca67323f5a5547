"""
Tests for pipeline health checks.
"""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import pipe_status_json

from snowlink.monitoring import (
    HealthCheck,
    HealthRegistry,
    PipelineSnapshot,
    Severity,
    collect_snapshot,
    default_checks,
    expect,
    integration_has_service_account,
    no_failed_loads,
    notification_channel_bound,
    pending_files_below,
    pipe_is_running,
    recent_load_within,
    run_health_checks,
)
from snowlink.monitoring.status import (
    CopyHistoryEntry,
    IntegrationDescription,
    LoadStatus,
    PipeStatus,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clear_registry():
    HealthRegistry.clear()
    yield
    HealthRegistry.clear()


def _snapshot(state="RUNNING", history=(), pending=0, channel="projects/p/subscriptions/s"):
    return PipelineSnapshot(
        pipe_name="gcs_orders_pipe",
        pipe_status=PipeStatus.from_dict({
            "executionState": state,
            "pendingFileCount": pending,
            "notificationChannelName": channel,
        }),
        history=list(history),
        integrations={
            "gcs_bucket_read_int": IntegrationDescription(
                "gcs_bucket_read_int", {"STORAGE_GCP_SERVICE_ACCOUNT": "a@x"}),
            "gcs_notification_int": IntegrationDescription("gcs_notification_int", {}),
        },
        collected_at=NOW,
    )


class TestBuiltInChecks:
    """Individual check functions."""

    def test_pipe_is_running(self):
        assert pipe_is_running(_snapshot())[0]
        passed, message = pipe_is_running(_snapshot("PAUSED"))
        assert not passed
        assert "PAUSED" in message

    def test_pipe_without_status(self):
        snapshot = PipelineSnapshot(pipe_name="p")
        assert not pipe_is_running(snapshot)[0]
        assert not notification_channel_bound(snapshot)[0]

    def test_notification_channel_bound(self):
        assert notification_channel_bound(_snapshot())[0]
        assert not notification_channel_bound(_snapshot(channel=None))[0]

    def test_integration_service_accounts(self):
        snapshot = _snapshot()
        assert integration_has_service_account("gcs_bucket_read_int")(snapshot)[0]
        assert not integration_has_service_account("gcs_notification_int")(snapshot)[0]
        passed, message = integration_has_service_account("other_int")(snapshot)
        assert not passed
        assert "was not described" in message

    def test_no_failed_loads(self):
        ok = _snapshot(history=[CopyHistoryEntry("a.csv", LoadStatus.LOADED, row_count=5)])
        assert no_failed_loads(ok)[0]

        bad = _snapshot(history=[CopyHistoryEntry(
            "b.csv", LoadStatus.LOAD_FAILED, first_error_message="Number of columns in file")])
        passed, message = no_failed_loads(bad)
        assert not passed
        assert "b.csv: Number of columns in file" in message

    def test_pending_files_below(self):
        assert pending_files_below(10)(_snapshot(pending=10))[0]
        assert not pending_files_below(10)(_snapshot(pending=11))[0]

    def test_recent_load_within(self):
        fresh = CopyHistoryEntry("a.csv", LoadStatus.LOADED,
                                 last_load_time=NOW - timedelta(hours=1))
        # Naive timestamps are treated as UTC
        stale = CopyHistoryEntry("b.csv", LoadStatus.LOADED,
                                 last_load_time=datetime(2024, 5, 31, 0, 0))

        assert recent_load_within(2)(_snapshot(history=[fresh]))[0]
        assert not recent_load_within(2)(_snapshot(history=[stale]))[0]
        assert not recent_load_within(2)(_snapshot(history=[]))[0]


class TestRunHealthChecks:
    """Report assembly, severities and registered checks."""

    def test_default_checks_report(self):
        report = run_health_checks(
            _snapshot(pending=500),
            default_checks("gcs_bucket_read_int", "gcs_notification_int", max_pending=100),
        )
        failed = {r.check_name for r in report.failures}
        warned = {r.check_name for r in report.warnings}

        assert failed == {"notification_integration_service_account"}
        assert warned == {"pending_files_below"}
        assert not report.ok

    def test_max_age_adds_freshness_check(self):
        names = [c.name for c in default_checks("a", "b", max_age_hours=6)]
        assert "recent_load_within" in names
        assert "recent_load_within" not in [c.name for c in default_checks("a", "b")]

    def test_check_exception_counts_as_failure(self):
        def boom(snapshot):
            raise KeyError("missing")

        report = run_health_checks(_snapshot(), [HealthCheck("boom", boom)])
        assert not report.ok
        assert "Check 'boom' raised exception" in report.results[0].message

    def test_disabled_checks_are_skipped(self):
        check = HealthCheck("off", lambda s: (False, "nope"), enabled=False)
        assert run_health_checks(_snapshot(), [check]).results == []

    def test_registered_checks_run_for_their_pipe(self):
        @expect("gcs_orders_pipe", severity=Severity.WARN)
        def no_skipped_files(snapshot):
            """No files skipped."""
            skipped = [e for e in snapshot.history if e.status is LoadStatus.LOAD_SKIPPED]
            return (not skipped, f"{len(skipped)} skipped file(s)")

        @expect("another_pipe")
        def never_runs(snapshot):
            return (False, "wrong pipe")

        snapshot = _snapshot(history=[CopyHistoryEntry("x.csv", LoadStatus.LOAD_SKIPPED)])
        report = run_health_checks(snapshot, [])

        assert [r.check_name for r in report.results] == ["no_skipped_files"]
        assert report.ok
        assert len(report.warnings) == 1
        assert HealthRegistry.get_checks("gcs_orders_pipe")[0].description == "No files skipped."


def test_collect_snapshot(warehouse, config):
    warehouse.add_response("SELECT FILE_NAME", [
        {"FILE_NAME": "orders/a.csv", "STATUS": "Loaded", "ROW_COUNT": 3},
    ])

    snapshot = collect_snapshot(warehouse, config, hours=6)

    assert snapshot.pipe_status.execution_state.is_running
    assert snapshot.integrations["gcs_bucket_read_int"].storage_service_account
    assert snapshot.integrations["gcs_notification_int"].pubsub_service_account
    assert snapshot.history[0].row_count == 3
    assert snapshot.history_hours == 6
    assert any("DATEADD(hours, -6" in sql for sql in warehouse.statements)


def test_collect_snapshot_without_table(warehouse, config):
    config.target_table = None
    warehouse.add_response("SELECT SYSTEM$PIPE_STATUS", [{"PIPE_STATUS": pipe_status_json("PAUSED")}])

    snapshot = collect_snapshot(warehouse, config)

    assert snapshot.pipe_status.execution_state.is_paused
    assert snapshot.history == []
    assert not any(sql.startswith("SELECT FILE_NAME") for sql in warehouse.statements)
