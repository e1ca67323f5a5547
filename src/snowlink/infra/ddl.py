"""
Snowflake DDL for the GCS auto-ingest integration objects.

Every function here is pure: it validates its inputs and returns SQL text.
Execution is the job of the warehouse adapters.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from snowlink.core.sql import quote_literal, validate_identifier


class CreateMode(Enum):
    """How CREATE statements treat an existing object."""
    IF_NOT_EXISTS = "if_not_exists"
    OR_REPLACE = "or_replace"
    PLAIN = "plain"


def _create(kind: str, name: str, mode: CreateMode) -> str:
    if mode == CreateMode.OR_REPLACE:
        return f"CREATE OR REPLACE {kind} {name}"
    if mode == CreateMode.IF_NOT_EXISTS:
        return f"CREATE {kind} IF NOT EXISTS {name}"
    return f"CREATE {kind} {name}"


def normalize_gcs_location(location: str) -> str:
    """
    Validate a gcs:// location and make sure it ends with '/'.

    Raises:
        ValueError: If the location is not a gcs:// URL with a bucket
    """
    if not isinstance(location, str) or not location.startswith("gcs://"):
        raise ValueError(f"GCS locations must start with 'gcs://': {location!r}")
    if len(location) <= len("gcs://") or location[len("gcs://")] == "/":
        raise ValueError(f"GCS location has no bucket: {location!r}")
    return location if location.endswith("/") else location + "/"


@dataclass(frozen=True)
class FileFormat:
    """
    Inline CSV file format used by the pipe's COPY statement.

    Only options that differ from Snowflake defaults are rendered, so the
    default instance renders as FILE_FORMAT = (TYPE = 'CSV').
    """

    type: str = "CSV"
    skip_header: int = 0
    field_delimiter: str = ","
    field_optionally_enclosed_by: Optional[str] = None
    skip_blank_lines: bool = False
    error_on_column_count_mismatch: bool = True

    def __post_init__(self):
        if self.type.upper() != "CSV":
            raise ValueError(f"Only CSV file formats are supported, got {self.type!r}")
        if self.skip_header < 0:
            raise ValueError(f"skip_header must be >= 0, got {self.skip_header}")

    def to_sql(self) -> str:
        options = [f"TYPE = {quote_literal(self.type.upper())}"]
        if self.skip_header:
            options.append(f"SKIP_HEADER = {self.skip_header}")
        if self.field_delimiter != ",":
            options.append(f"FIELD_DELIMITER = {quote_literal(self.field_delimiter)}")
        if self.field_optionally_enclosed_by:
            options.append(
                f"FIELD_OPTIONALLY_ENCLOSED_BY = {quote_literal(self.field_optionally_enclosed_by)}"
            )
        if self.skip_blank_lines:
            options.append("SKIP_BLANK_LINES = TRUE")
        if not self.error_on_column_count_mismatch:
            options.append("ERROR_ON_COLUMN_COUNT_MISMATCH = FALSE")
        return f"FILE_FORMAT = ({' '.join(options)})"


# Integrations

def create_storage_integration_sql(
    name: str,
    allowed_locations: Sequence[str],
    blocked_locations: Sequence[str] = (),
    mode: CreateMode = CreateMode.IF_NOT_EXISTS,
    comment: Optional[str] = None,
) -> str:
    """
    Storage integration granting Snowflake read access to the allow-listed GCS paths.
    """
    validate_identifier(name, kind="storage integration name")
    if not allowed_locations:
        raise ValueError("A storage integration needs at least one allowed location")

    allowed = ", ".join(quote_literal(normalize_gcs_location(loc)) for loc in allowed_locations)
    lines = [
        _create("STORAGE INTEGRATION", name, mode),
        "  TYPE = EXTERNAL_STAGE",
        "  STORAGE_PROVIDER = 'GCS'",
        "  ENABLED = TRUE",
        f"  STORAGE_ALLOWED_LOCATIONS = ({allowed})",
    ]
    if blocked_locations:
        blocked = ", ".join(quote_literal(normalize_gcs_location(loc)) for loc in blocked_locations)
        lines.append(f"  STORAGE_BLOCKED_LOCATIONS = ({blocked})")
    if comment:
        lines.append(f"  COMMENT = {quote_literal(comment)}")
    return "\n".join(lines) + ";"


def create_notification_integration_sql(
    name: str,
    subscription_path: str,
    mode: CreateMode = CreateMode.IF_NOT_EXISTS,
    comment: Optional[str] = None,
) -> str:
    """
    Notification integration subscribing Snowflake to the Pub/Sub subscription.

    Args:
        subscription_path: Full path, projects/<project>/subscriptions/<name>
    """
    validate_identifier(name, kind="notification integration name")
    parts = subscription_path.split("/") if subscription_path else []
    if len(parts) != 4 or parts[0] != "projects" or parts[2] != "subscriptions" \
            or not parts[1] or not parts[3]:
        raise ValueError(
            f"Subscription must look like projects/<project>/subscriptions/<name>: "
            f"{subscription_path!r}"
        )

    lines = [
        _create("NOTIFICATION INTEGRATION", name, mode),
        "  TYPE = QUEUE",
        "  NOTIFICATION_PROVIDER = GCP_PUBSUB",
        "  ENABLED = TRUE",
        f"  GCP_PUBSUB_SUBSCRIPTION_NAME = {quote_literal(subscription_path)}",
    ]
    if comment:
        lines.append(f"  COMMENT = {quote_literal(comment)}")
    return "\n".join(lines) + ";"


# Stage and pipe

def create_stage_sql(
    name: str,
    url: str,
    storage_integration: str,
    mode: CreateMode = CreateMode.IF_NOT_EXISTS,
) -> str:
    """External stage pointing at the GCS location through the storage integration."""
    validate_identifier(name, kind="stage name")
    validate_identifier(storage_integration, kind="storage integration name")
    return (
        f"{_create('STAGE', name, mode)}\n"
        f"  URL = {quote_literal(normalize_gcs_location(url))}\n"
        f"  STORAGE_INTEGRATION = {storage_integration};"
    )


def create_pipe_sql(
    name: str,
    table: str,
    stage: str,
    notification_integration: str,
    file_format: Optional[FileFormat] = None,
    mode: CreateMode = CreateMode.IF_NOT_EXISTS,
    columns: Optional[Iterable[str]] = None,
) -> str:
    """
    Auto-ingest pipe copying new stage files into the landing table.

    Snowpipe tracks load history per pipe, so re-delivered notifications for
    an already loaded file do not load it twice.
    """
    validate_identifier(name, kind="pipe name")
    validate_identifier(table, kind="table name")
    validate_identifier(stage, kind="stage name")
    validate_identifier(notification_integration, kind="notification integration name")
    file_format = file_format or FileFormat()

    target = table
    if columns:
        column_list = [validate_identifier(c, kind="column name") for c in columns]
        target = f"{table} ({', '.join(column_list)})"

    return (
        f"{_create('PIPE', name, mode)}\n"
        f"  AUTO_INGEST = TRUE\n"
        f"  INTEGRATION = {quote_literal(notification_integration.upper())}\n"
        f"AS\n"
        f"COPY INTO {target}\n"
        f"FROM @{stage}\n"
        f"{file_format.to_sql()};"
    )


# Describe / monitor

def describe_integration_sql(name: str) -> str:
    validate_identifier(name, kind="integration name")
    return f"DESC INTEGRATION {name};"


def pipe_status_sql(pipe: str) -> str:
    validate_identifier(pipe, kind="pipe name")
    return f"SELECT SYSTEM$PIPE_STATUS({quote_literal(pipe)}) AS PIPE_STATUS;"


def copy_history_sql(table: str, hours: int = 24) -> str:
    """
    Per-file load outcomes for a table over the last `hours` hours.

    COPY_HISTORY retains at most 14 days of history.
    """
    validate_identifier(table, kind="table name")
    if not isinstance(hours, int) or hours <= 0:
        raise ValueError(f"hours must be a positive integer, got {hours!r}")
    if hours > 14 * 24:
        raise ValueError("COPY_HISTORY only covers the last 14 days (336 hours)")

    return (
        "SELECT FILE_NAME, STAGE_LOCATION, LAST_LOAD_TIME, ROW_COUNT, ROW_PARSED,\n"
        "       FILE_SIZE, FIRST_ERROR_MESSAGE, ERROR_COUNT, STATUS, PIPE_NAME\n"
        "FROM TABLE(INFORMATION_SCHEMA.COPY_HISTORY(\n"
        f"  TABLE_NAME => {quote_literal(table)},\n"
        f"  START_TIME => DATEADD(hours, -{hours}, CURRENT_TIMESTAMP())))\n"
        "ORDER BY LAST_LOAD_TIME DESC;"
    )


def count_rows_sql(table: str) -> str:
    validate_identifier(table, kind="table name")
    return f"SELECT COUNT(*) AS ROW_COUNT FROM {table};"


def alter_pipe_refresh_sql(pipe: str, prefix: Optional[str] = None) -> str:
    """Queue files already in the stage (last 7 days) that the pipe has not loaded."""
    validate_identifier(pipe, kind="pipe name")
    if prefix:
        return f"ALTER PIPE {pipe} REFRESH PREFIX = {quote_literal(prefix)};"
    return f"ALTER PIPE {pipe} REFRESH;"


def alter_pipe_paused_sql(pipe: str, paused: bool) -> str:
    validate_identifier(pipe, kind="pipe name")
    return f"ALTER PIPE {pipe} SET PIPE_EXECUTION_PAUSED = {'TRUE' if paused else 'FALSE'};"


# Teardown

def drop_pipe_sql(name: str) -> str:
    validate_identifier(name, kind="pipe name")
    return f"DROP PIPE IF EXISTS {name};"


def drop_stage_sql(name: str) -> str:
    validate_identifier(name, kind="stage name")
    return f"DROP STAGE IF EXISTS {name};"


def drop_integration_sql(name: str) -> str:
    validate_identifier(name, kind="integration name")
    return f"DROP INTEGRATION IF EXISTS {name};"


def drop_table_sql(name: str) -> str:
    validate_identifier(name, kind="table name")
    return f"DROP TABLE IF EXISTS {name};"


def teardown_sql(pipe: str, stage: str, notification_integration: str,
                 storage_integration: str, tables: Sequence[str] = ()) -> List[str]:
    """Drop statements in dependency order (pipe first, tables last)."""
    statements = [
        drop_pipe_sql(pipe),
        drop_stage_sql(stage),
        drop_integration_sql(notification_integration),
        drop_integration_sql(storage_integration),
    ]
    statements.extend(drop_table_sql(t) for t in tables)
    return statements


__all__ = [
    "CreateMode",
    "FileFormat",
    "normalize_gcs_location",
    "create_storage_integration_sql",
    "create_notification_integration_sql",
    "create_stage_sql",
    "create_pipe_sql",
    "describe_integration_sql",
    "pipe_status_sql",
    "copy_history_sql",
    "count_rows_sql",
    "alter_pipe_refresh_sql",
    "alter_pipe_paused_sql",
    "drop_pipe_sql",
    "drop_stage_sql",
    "drop_integration_sql",
    "drop_table_sql",
    "teardown_sql",
]
