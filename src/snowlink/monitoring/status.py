"""
Parsers for Snowflake's ingestion monitoring surfaces.

- SYSTEM$PIPE_STATUS returns a JSON document describing the pipe
- COPY_HISTORY returns one row per file load attempt
- DESC INTEGRATION returns property/value rows
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class PipeExecutionState(Enum):
    """Execution states reported by SYSTEM$PIPE_STATUS."""
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    PAUSED_BY_SNOWFLAKE_ADMIN = "PAUSED_BY_SNOWFLAKE_ADMIN"
    PAUSED_BY_ACCOUNT_ADMIN = "PAUSED_BY_ACCOUNT_ADMIN"
    READ_ONLY = "READ_ONLY"
    STOPPED_CLONED = "STOPPED_CLONED"
    STOPPED_FEATURE_DISABLED = "STOPPED_FEATURE_DISABLED"
    STOPPED_STAGE_ALTERED = "STOPPED_STAGE_ALTERED"
    STOPPED_STAGE_DROPPED = "STOPPED_STAGE_DROPPED"
    STOPPED_FILE_FORMAT_DROPPED = "STOPPED_FILE_FORMAT_DROPPED"
    STOPPED_NOTIFICATION_INTEGRATION_DROPPED = "STOPPED_NOTIFICATION_INTEGRATION_DROPPED"
    STOPPED_MISSING_PIPE = "STOPPED_MISSING_PIPE"
    STOPPED_MISSING_TABLE = "STOPPED_MISSING_TABLE"
    STALLED_COMPILATION_ERROR = "STALLED_COMPILATION_ERROR"
    STALLED_INITIALIZATION_ERROR = "STALLED_INITIALIZATION_ERROR"
    STALLED_EXECUTION_ERROR = "STALLED_EXECUTION_ERROR"
    STALLED_INTERNAL_ERROR = "STALLED_INTERNAL_ERROR"
    STALLED_STAGE_PERMISSION_ERROR = "STALLED_STAGE_PERMISSION_ERROR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PipeExecutionState":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_running(self) -> bool:
        return self is PipeExecutionState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.value.startswith("PAUSED")

    @property
    def is_stalled(self) -> bool:
        return self.value.startswith("STALLED")

    @property
    def is_stopped(self) -> bool:
        return self.value.startswith("STOPPED")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass
class PipeStatus:
    """Parsed SYSTEM$PIPE_STATUS output."""

    execution_state: PipeExecutionState
    pending_file_count: int = 0
    notification_channel_name: Optional[str] = None
    num_outstanding_messages: int = 0
    last_received_message_timestamp: Optional[datetime] = None
    last_forwarded_message_timestamp: Optional[datetime] = None
    last_ingested_timestamp: Optional[datetime] = None
    last_ingested_file_path: Optional[str] = None
    error: Optional[str] = None
    fault: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, text: str) -> "PipeStatus":
        """
        Parse the JSON string returned by SYSTEM$PIPE_STATUS.

        Raises:
            ValueError: If the text is not a JSON object
        """
        try:
            data = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"SYSTEM$PIPE_STATUS did not return JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("SYSTEM$PIPE_STATUS did not return a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipeStatus":
        error = data.get("error")
        fault = data.get("fault")
        return cls(
            execution_state=PipeExecutionState.parse(data.get("executionState")),
            pending_file_count=int(data.get("pendingFileCount") or 0),
            notification_channel_name=data.get("notificationChannelName"),
            num_outstanding_messages=int(data.get("numOutstandingMessagesOnChannel") or 0),
            last_received_message_timestamp=_parse_timestamp(
                data.get("lastReceivedMessageTimestamp")),
            last_forwarded_message_timestamp=_parse_timestamp(
                data.get("lastForwardedMessageTimestamp")),
            last_ingested_timestamp=_parse_timestamp(data.get("lastIngestedTimestamp")),
            last_ingested_file_path=data.get("lastIngestedFilePath"),
            error=json.dumps(error) if isinstance(error, (dict, list)) else error,
            fault=json.dumps(fault) if isinstance(fault, (dict, list)) else fault,
            raw=dict(data),
        )

    @property
    def healthy(self) -> bool:
        return self.execution_state.is_running and not self.error and not self.fault


class LoadStatus(Enum):
    """COPY_HISTORY STATUS values."""
    LOADED = "Loaded"
    LOAD_FAILED = "Load failed"
    PARTIALLY_LOADED = "Partially loaded"
    LOAD_SKIPPED = "Load skipped"
    LOAD_IN_PROGRESS = "Load in progress"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "LoadStatus":
        if not value:
            return cls.UNKNOWN
        wanted = str(value).strip().lower()
        for status in cls:
            if status.value.lower() == wanted:
                return status
        return cls.UNKNOWN


@dataclass
class CopyHistoryEntry:
    """One file load outcome from COPY_HISTORY."""

    file_name: str
    status: LoadStatus
    row_count: int = 0
    row_parsed: int = 0
    error_count: int = 0
    first_error_message: Optional[str] = None
    last_load_time: Optional[datetime] = None
    file_size: int = 0
    stage_location: Optional[str] = None
    pipe_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CopyHistoryEntry":
        """Build an entry from a result row (column names matched case-insensitively)."""
        normalized = {str(k).upper(): v for k, v in row.items()}

        def as_int(key: str) -> int:
            value = normalized.get(key)
            return int(value) if value not in (None, "") else 0

        return cls(
            file_name=str(normalized.get("FILE_NAME") or ""),
            status=LoadStatus.parse(normalized.get("STATUS")),
            row_count=as_int("ROW_COUNT"),
            row_parsed=as_int("ROW_PARSED"),
            error_count=as_int("ERROR_COUNT"),
            first_error_message=normalized.get("FIRST_ERROR_MESSAGE") or None,
            last_load_time=_parse_timestamp(normalized.get("LAST_LOAD_TIME")),
            file_size=as_int("FILE_SIZE"),
            stage_location=normalized.get("STAGE_LOCATION"),
            pipe_name=normalized.get("PIPE_NAME"),
        )

    @property
    def loaded(self) -> bool:
        return self.status is LoadStatus.LOADED

    @property
    def failed(self) -> bool:
        return self.status in (LoadStatus.LOAD_FAILED, LoadStatus.PARTIALLY_LOADED)

    @property
    def terminal(self) -> bool:
        return self.status is not LoadStatus.LOAD_IN_PROGRESS

    def matches(self, blob_name: str) -> bool:
        """True if this entry is for the given object name (FILE_NAME is stage-relative)."""
        name = self.file_name.lstrip("/")
        target = blob_name.lstrip("/")
        return name == target or target.endswith("/" + name) or name.endswith("/" + target)


def parse_copy_history(rows: List[Mapping[str, Any]]) -> List[CopyHistoryEntry]:
    return [CopyHistoryEntry.from_row(row) for row in rows]


@dataclass
class IntegrationDescription:
    """Parsed DESC INTEGRATION output."""

    name: str
    properties: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, name: str, rows: List[Mapping[str, Any]]) -> "IntegrationDescription":
        properties: Dict[str, str] = {}
        for row in rows:
            normalized = {str(k).lower(): v for k, v in row.items()}
            key = normalized.get("property")
            if key:
                value = normalized.get("property_value")
                properties[str(key).upper()] = "" if value is None else str(value)
        return cls(name=name, properties=properties)

    def get(self, key: str) -> Optional[str]:
        value = self.properties.get(key.upper())
        return value or None

    @property
    def enabled(self) -> bool:
        return (self.get("ENABLED") or "").lower() == "true"

    @property
    def storage_service_account(self) -> Optional[str]:
        return self.get("STORAGE_GCP_SERVICE_ACCOUNT")

    @property
    def pubsub_service_account(self) -> Optional[str]:
        return self.get("GCP_PUBSUB_SERVICE_ACCOUNT")

    @property
    def service_account(self) -> Optional[str]:
        return self.storage_service_account or self.pubsub_service_account


__all__ = [
    "PipeExecutionState",
    "PipeStatus",
    "LoadStatus",
    "CopyHistoryEntry",
    "parse_copy_history",
    "IntegrationDescription",
]
