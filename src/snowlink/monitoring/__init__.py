"""
Ingestion health checks for snowlink.
Evaluate pipe status, integrations and copy history after provisioning.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from snowlink.infra import ddl
from .status import (
    CopyHistoryEntry,
    IntegrationDescription,
    LoadStatus,
    PipeExecutionState,
    PipeStatus,
    parse_copy_history,
)

logger = logging.getLogger('snowlink')


class Severity(Enum):
    """Severity level for health check failures."""
    WARN = "warn"      # Report but keep exit code 0
    ERROR = "error"    # Ingestion is broken


@dataclass
class PipelineSnapshot:
    """Everything the checks look at, collected in one pass."""

    pipe_name: str
    pipe_status: Optional[PipeStatus] = None
    history: List[CopyHistoryEntry] = field(default_factory=list)
    integrations: Dict[str, IntegrationDescription] = field(default_factory=dict)
    history_hours: int = 24
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class HealthCheck:
    """Represents a single health check."""

    name: str
    check_fn: Callable[[PipelineSnapshot], tuple]
    description: Optional[str] = None
    severity: Severity = Severity.ERROR
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthResult:
    """Result of a health check execution."""

    check_name: str
    passed: bool
    message: str
    severity: Severity


@dataclass
class HealthReport:
    results: List[HealthResult] = field(default_factory=list)

    @property
    def failures(self) -> List[HealthResult]:
        return [r for r in self.results if not r.passed and r.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[HealthResult]:
        return [r for r in self.results if not r.passed and r.severity == Severity.WARN]

    @property
    def ok(self) -> bool:
        return not self.failures


class HealthRegistry:
    """Global registry for extra health checks, keyed by pipe name."""

    _checks: Dict[str, List[HealthCheck]] = {}

    @classmethod
    def register(cls, pipe_name: str, check: HealthCheck) -> None:
        """Register a health check for a pipe."""
        if pipe_name not in cls._checks:
            cls._checks[pipe_name] = []

        cls._checks[pipe_name].append(check)

    @classmethod
    def get_checks(cls, pipe_name: str) -> List[HealthCheck]:
        """Get all checks for a pipe."""
        return cls._checks.get(pipe_name, [])

    @classmethod
    def clear(cls) -> None:
        """Clear all checks (useful for testing)."""
        cls._checks.clear()


def expect(
    pipe_name: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    severity: Severity = Severity.ERROR,
    enabled: bool = True,
    **metadata
):
    """
    Decorator registering a function as a health check for a pipe.

    The function receives a PipelineSnapshot and returns (passed, message).

    Example:
        @expect("gcs_orders_pipe", severity=Severity.WARN)
        def no_skipped_files(snapshot):
            skipped = [e for e in snapshot.history if e.status is LoadStatus.LOAD_SKIPPED]
            return (not skipped, f"{len(skipped)} skipped file(s)")
    """

    def decorator(func):
        HealthRegistry.register(pipe_name, HealthCheck(
            name=name or func.__name__,
            check_fn=func,
            description=description or func.__doc__,
            severity=severity,
            enabled=enabled,
            metadata=metadata,
        ))
        return func

    return decorator


# Built-in health check functions

def pipe_is_running(snapshot: PipelineSnapshot) -> tuple:
    """Check that SYSTEM$PIPE_STATUS reports RUNNING."""
    status = snapshot.pipe_status
    if status is None:
        return (False, f"No status returned for pipe {snapshot.pipe_name}")
    state = status.execution_state
    msg = f"Pipe {snapshot.pipe_name} is {state.value}"
    if status.error:
        msg += f" (error: {status.error})"
    return (state is PipeExecutionState.RUNNING, msg)


def notification_channel_bound(snapshot: PipelineSnapshot) -> tuple:
    """Check that the pipe reports a notification channel (auto-ingest is wired)."""
    status = snapshot.pipe_status
    channel = status.notification_channel_name if status else None
    if channel:
        return (True, f"Notification channel: {channel}")
    return (False, "Pipe has no notification channel; AUTO_INGEST is not receiving events")


def integration_has_service_account(integration_name: str):
    """Check that DESC INTEGRATION returned a non-empty GCP service account."""
    def check(snapshot: PipelineSnapshot) -> tuple:
        description = snapshot.integrations.get(integration_name)
        if description is None:
            return (False, f"Integration {integration_name} was not described")
        account = description.service_account
        if account:
            return (True, f"{integration_name} uses {account}")
        return (False, f"{integration_name} has no GCP service account")
    return check


def no_failed_loads(snapshot: PipelineSnapshot) -> tuple:
    """Check that no file failed to load in the history window."""
    failed = [e for e in snapshot.history if e.failed]
    if not failed:
        return (True, f"No failed loads in the last {snapshot.history_hours}h")
    first = failed[0]
    return (
        False,
        f"{len(failed)} failed load(s) in the last {snapshot.history_hours}h; "
        f"{first.file_name}: {first.first_error_message or first.status.value}",
    )


def pending_files_below(max_pending: int):
    """Check that the pipe backlog stays under max_pending files."""
    def check(snapshot: PipelineSnapshot) -> tuple:
        status = snapshot.pipe_status
        pending = status.pending_file_count if status else 0
        passed = pending <= max_pending
        msg = f"{pending} pending file(s) {'within' if passed else 'exceeds'} limit {max_pending}"
        return (passed, msg)
    return check


def recent_load_within(hours: int):
    """Check that at least one file loaded within the last `hours` hours."""
    def check(snapshot: PipelineSnapshot) -> tuple:
        loaded = [e for e in snapshot.history if e.loaded and e.last_load_time]
        if not loaded:
            return (False, f"No successful loads in the last {snapshot.history_hours}h")

        latest = max(e.last_load_time for e in loaded)
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=timezone.utc)
        age = snapshot.collected_at - latest
        passed = age <= timedelta(hours=hours)
        age_hours = age.total_seconds() / 3600
        msg = (f"Latest load is {age_hours:.1f} hours old "
               f"({'fresh' if passed else 'stale'}, max age {hours}h)")
        return (passed, msg)
    return check


def default_checks(storage_integration: str, notification_integration: str,
                   max_pending: int = 100, max_age_hours: Optional[int] = None) -> List[HealthCheck]:
    """The standard checks run by 'snowlink health'."""
    checks = [
        HealthCheck("pipe_is_running", pipe_is_running),
        HealthCheck("notification_channel_bound", notification_channel_bound),
        HealthCheck("storage_integration_service_account",
                    integration_has_service_account(storage_integration)),
        HealthCheck("notification_integration_service_account",
                    integration_has_service_account(notification_integration)),
        HealthCheck("no_failed_loads", no_failed_loads),
        HealthCheck("pending_files_below", pending_files_below(max_pending),
                    severity=Severity.WARN),
    ]
    if max_age_hours:
        checks.append(HealthCheck("recent_load_within", recent_load_within(max_age_hours),
                                  severity=Severity.WARN))
    return checks


def run_health_checks(snapshot: PipelineSnapshot, checks: List[HealthCheck]) -> HealthReport:
    """
    Run checks against a snapshot. A check that raises counts as failed.
    """
    report = HealthReport()
    for check in list(checks) + HealthRegistry.get_checks(snapshot.pipe_name):
        if not check.enabled:
            continue
        try:
            passed, message = check.check_fn(snapshot)
        except Exception as e:
            passed, message = False, f"Check '{check.name}' raised exception: {str(e)}"

        result = HealthResult(check.name, bool(passed), message, check.severity)
        if not result.passed:
            level = logging.ERROR if check.severity == Severity.ERROR else logging.WARNING
            logger.log(level, f"{check.name}: {message}")
        report.results.append(result)
    return report


def collect_snapshot(warehouse, config, table: Optional[str] = None,
                     hours: int = 24) -> PipelineSnapshot:
    """
    Query pipe status, integrations and copy history for the configured pipe.

    Args:
        warehouse: WarehouseAdapter to query through
        config: ProjectConfig naming the objects
        table: Landing table for COPY_HISTORY (defaults to TARGET_TABLE)
        hours: COPY_HISTORY window
    """
    snapshot = PipelineSnapshot(pipe_name=config.pipe_name, history_hours=hours)

    raw_status = warehouse.scalar(ddl.pipe_status_sql(config.pipe_name))
    if raw_status is not None:
        snapshot.pipe_status = PipeStatus.from_json(raw_status)

    for name in (config.storage_integration, config.notification_integration):
        rows = warehouse.execute(ddl.describe_integration_sql(name))
        snapshot.integrations[name] = IntegrationDescription.from_rows(name, rows)

    table = table or config.target_table
    if table:
        snapshot.history = parse_copy_history(
            warehouse.execute(ddl.copy_history_sql(table, hours))
        )
    return snapshot


__all__ = [
    # Core classes
    "Severity",
    "PipelineSnapshot",
    "HealthCheck",
    "HealthResult",
    "HealthReport",
    "HealthRegistry",
    # Decorator
    "expect",
    # Built-in checks
    "pipe_is_running",
    "notification_channel_bound",
    "integration_has_service_account",
    "no_failed_loads",
    "pending_files_below",
    "recent_load_within",
    "default_checks",
    "run_health_checks",
    "collect_snapshot",
    # Status parsing
    "PipeStatus",
    "PipeExecutionState",
    "CopyHistoryEntry",
    "LoadStatus",
    "IntegrationDescription",
]
