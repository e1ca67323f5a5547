"""
Ingestion verification utilities.

Scope:
- Preflight: validate CSV bytes against a LandingTable contract before upload
- Acceptance: upload a file to the bound GCS prefix and wait for its
  COPY_HISTORY outcome
- Rejection: upload a malformed file and confirm it loads no rows
- Dedup: re-upload identical content and confirm the row count is unchanged
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Type, Union

import csv
import io
import logging
import time

from snowlink.config import ProjectConfig
from snowlink.core.contracts import LandingTable
from snowlink.infra import ddl
from snowlink.monitoring.status import CopyHistoryEntry, parse_copy_history

logger = logging.getLogger('snowlink')


class CsvSchemaError(ValueError):
    """Raised when a CSV file does not satisfy the contract schema."""


@dataclass(frozen=True)
class CsvValidationResult:
    ok: bool
    errors: Tuple[str, ...] = ()
    row_count: int = 0
    sampled_rows: int = 0


def _decode(data: bytes, encoding: str) -> str:
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as e:
        raise CsvSchemaError(f"file is not valid {encoding}: {e}") from e


def _reader(text: str, file_format: ddl.FileFormat):
    """csv.reader that splits fields the way COPY does for the given file format."""
    if file_format.field_optionally_enclosed_by:
        return csv.reader(io.StringIO(text), delimiter=file_format.field_delimiter,
                          quotechar=file_format.field_optionally_enclosed_by)
    # Without FIELD_OPTIONALLY_ENCLOSED_BY a quote is ordinary data
    return csv.reader(io.StringIO(text), delimiter=file_format.field_delimiter,
                      quoting=csv.QUOTE_NONE)


def validate_csv_bytes(
    csv_bytes: bytes,
    contract: Type[LandingTable],
    *,
    file_format: Optional[ddl.FileFormat] = None,
    skip_header: int = 0,
    sample_rows: int = 50,
    encoding: str = "utf-8",
) -> CsvValidationResult:
    """
    Check a CSV file the way the pipe's COPY will read it: positionally.

    COPY INTO with TYPE = 'CSV' maps columns by position and, by default,
    fails a file whose column count differs from the table's. Quotes only
    enclose fields when FIELD_OPTIONALLY_ENCLOSED_BY is set, and a blank
    line is a short record unless SKIP_BLANK_LINES is TRUE. Every row is
    checked for column count; the first `sample_rows` rows are also
    type-checked.

    Args:
        csv_bytes: File contents
        contract: Target landing table
        file_format: The pipe's file format (default: TYPE = 'CSV' with skip_header)
        skip_header: Leading lines to ignore when no file_format is given
        sample_rows: Rows to type-check
    """
    file_format = file_format or ddl.FileFormat(skip_header=skip_header)
    fields = list(contract.get_fields().values())
    expected_columns = len(fields)

    try:
        text = _decode(csv_bytes, encoding)
    except CsvSchemaError as e:
        return CsvValidationResult(ok=False, errors=(str(e),))

    errors: List[str] = []
    row_count = 0
    sampled = 0

    for line_number, row in enumerate(_reader(text, file_format), 1):
        if line_number <= file_format.skip_header:
            continue
        # One bad file is enough to know; keep the report readable
        if len(errors) >= 20:
            errors.append("too many errors, stopped checking")
            break
        if not row:
            if file_format.skip_blank_lines:
                continue
            row_count += 1
            errors.append(f"line {line_number}: blank line (SKIP_BLANK_LINES is FALSE)")
            continue

        row_count += 1
        if len(row) != expected_columns and file_format.error_on_column_count_mismatch:
            errors.append(
                f"line {line_number}: expected {expected_columns} columns, found {len(row)}"
            )
            continue

        if sampled < sample_rows:
            sampled += 1
            for column, raw in zip(fields, row):
                try:
                    column.parse(raw)
                except ValueError as e:
                    errors.append(f"line {line_number}: column '{column.name}': {str(e)}")
                    break

    if row_count == 0:
        errors.append("file has no data rows")

    return CsvValidationResult(
        ok=not errors,
        errors=tuple(errors),
        row_count=row_count,
        sampled_rows=sampled,
    )


class VerificationStatus(Enum):
    LOADED = "loaded"
    FAILED = "failed"
    MISMATCH = "mismatch"
    TIMEOUT = "timeout"


@dataclass
class VerificationResult:
    blob_name: str
    status: VerificationStatus
    expected_rows: int
    loaded_rows: int = 0
    error: Optional[str] = None
    waited_seconds: float = 0.0
    entry: Optional[CopyHistoryEntry] = None

    @property
    def ok(self) -> bool:
        return self.status is VerificationStatus.LOADED


@dataclass
class DedupResult:
    blob_name: str
    rows_before: int
    rows_after: int
    history_entries: List[CopyHistoryEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.rows_after == self.rows_before


@dataclass
class RejectionResult:
    """Outcome of uploading a file the pipe is expected to refuse."""

    load: VerificationResult
    rows_before: int
    rows_after: int

    @property
    def ok(self) -> bool:
        return (self.load.status is VerificationStatus.FAILED
                and self.rows_after == self.rows_before)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")


class IngestionVerifier:
    """End-to-end acceptance checks against the live pipeline."""

    def __init__(
        self,
        config: ProjectConfig,
        contract: Type[LandingTable],
        warehouse,
        cloud,
        poll_interval: float = 15.0,
        timeout: float = 600.0,
        history_hours: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the verifier.

        Args:
            config: Project settings (bucket, prefix, object names)
            contract: Landing table the pipe loads into
            warehouse: WarehouseAdapter for COPY_HISTORY and row counts
            cloud: CloudAdapter used to upload test files
            poll_interval: Seconds between COPY_HISTORY polls
            timeout: Seconds to wait for a load outcome
            history_hours: COPY_HISTORY window to search
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.config = config
        self.contract = contract
        self.warehouse = warehouse
        self.cloud = cloud
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.history_hours = history_hours
        self._sleep = sleep
        self._clock = clock

    @property
    def table(self) -> str:
        return self.contract.get_table_name()

    def _read(self, source: Union[str, Path, bytes]) -> bytes:
        if isinstance(source, bytes):
            return source
        return Path(source).read_bytes()

    def history_for(self, blob_name: str) -> List[CopyHistoryEntry]:
        rows = self.warehouse.execute(ddl.copy_history_sql(self.table, self.history_hours))
        return [entry for entry in parse_copy_history(rows) if entry.matches(blob_name)]

    def count_rows(self) -> int:
        value = self.warehouse.scalar(ddl.count_rows_sql(self.table))
        return int(value or 0)

    @property
    def file_format(self) -> ddl.FileFormat:
        """The file format the pipe's COPY reads with."""
        return ddl.FileFormat(skip_header=self.config.skip_header)

    def preflight(self, data: bytes) -> CsvValidationResult:
        return validate_csv_bytes(data, self.contract, file_format=self.file_format)

    def expected_rows(self, data: bytes) -> int:
        return self.preflight(data).row_count

    def wait_for_load(self, blob_name: str, expected_rows: int) -> VerificationResult:
        """Poll COPY_HISTORY until the file has a terminal outcome or the timeout passes."""
        started = self._clock()
        while True:
            entries = [e for e in self.history_for(blob_name) if e.terminal]
            waited = self._clock() - started

            if entries:
                entry = entries[0]
                logger.info(
                    f"COPY_HISTORY: {entry.file_name} {entry.status.value} "
                    f"({entry.row_count} rows, {entry.error_count} errors)"
                )
                if entry.failed or not entry.loaded:
                    return VerificationResult(
                        blob_name, VerificationStatus.FAILED, expected_rows,
                        loaded_rows=entry.row_count,
                        error=entry.first_error_message or entry.status.value,
                        waited_seconds=waited, entry=entry,
                    )
                if entry.row_count != expected_rows:
                    return VerificationResult(
                        blob_name, VerificationStatus.MISMATCH, expected_rows,
                        loaded_rows=entry.row_count,
                        error=f"expected {expected_rows} rows, loaded {entry.row_count}",
                        waited_seconds=waited, entry=entry,
                    )
                return VerificationResult(
                    blob_name, VerificationStatus.LOADED, expected_rows,
                    loaded_rows=entry.row_count, waited_seconds=waited, entry=entry,
                )

            if waited >= self.timeout:
                return VerificationResult(
                    blob_name, VerificationStatus.TIMEOUT, expected_rows,
                    error=(f"no COPY_HISTORY entry after {waited:.0f}s; check "
                           f"'snowlink status' for the pipe and the bucket notification"),
                    waited_seconds=waited,
                )

            logger.info(f"Waiting for {blob_name} to load ({waited:.0f}s elapsed)...")
            self._sleep(self.poll_interval)

    def verify_file(self, source: Union[str, Path, bytes],
                    blob_name: Optional[str] = None) -> VerificationResult:
        """
        Upload a file under the bound prefix and wait for its load outcome.

        Args:
            source: Local path or file contents
            blob_name: File name under the prefix (default: unique name from the path)
        """
        data = self._read(source)
        if blob_name is None:
            stem = Path(source).stem if not isinstance(source, bytes) else "verify"
            blob_name = f"{stem}_{_utc_stamp()}.csv"

        object_name = self.config.blob_name(blob_name)
        expected = self.expected_rows(data)
        self.cloud.upload_file(self.config.gcs_bucket, object_name, data)
        return self.wait_for_load(object_name, expected)

    def verify_rejected(self, source: Union[str, Path, bytes],
                        blob_name: Optional[str] = None) -> RejectionResult:
        """
        Upload a malformed file and confirm the pipe rejects it.

        A rejected file leaves an error entry in COPY_HISTORY and adds no rows.
        """
        before = self.count_rows()
        load = self.verify_file(source, blob_name)
        after = self.count_rows()

        result = RejectionResult(load, before, after)
        if not result.ok:
            logger.error(
                f"Expected {load.blob_name} to be rejected; status {load.status.value}, "
                f"rows {before} -> {after}"
            )
        return result

    def verify_no_duplicates(self, source: Union[str, Path, bytes], blob_name: str,
                             settle_seconds: float = 60.0) -> DedupResult:
        """
        Re-upload identical content to an already loaded object name.

        Snowpipe's load history should skip the file, leaving the row count unchanged.
        """
        data = self._read(source)
        object_name = self.config.blob_name(blob_name)

        before = self.count_rows()
        self.cloud.upload_file(self.config.gcs_bucket, object_name, data)
        logger.info(f"Re-uploaded {object_name}; waiting {settle_seconds:.0f}s before recount")
        self._sleep(settle_seconds)
        after = self.count_rows()

        result = DedupResult(object_name, before, after, self.history_for(object_name))
        if not result.ok:
            logger.error(f"Row count changed after re-upload: {before} -> {after}")
        return result


__all__ = [
    "CsvSchemaError",
    "CsvValidationResult",
    "validate_csv_bytes",
    "VerificationStatus",
    "VerificationResult",
    "DedupResult",
    "RejectionResult",
    "IngestionVerifier",
]
