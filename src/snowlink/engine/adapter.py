"""
Warehouse adapters for different execution modes.
Handles live Snowflake sessions vs dry runs that only record SQL.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger('snowlink')

Row = Dict[str, Any]


class WarehouseError(RuntimeError):
    """Raised when a statement fails in the warehouse."""

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.sql = sql


def _first_line(sql: str) -> str:
    return sql.strip().splitlines()[0] if sql.strip() else ""


class WarehouseAdapter(ABC):
    """Abstract base class for warehouse adapters."""

    @abstractmethod
    def execute(self, sql: str) -> List[Row]:
        """
        Execute one SQL statement.

        Args:
            sql: Statement text

        Returns:
            Result rows as dicts keyed by column name (empty for DDL)
        """
        pass

    def close(self) -> None:
        """Release any open session."""

    def scalar(self, sql: str) -> Any:
        """Execute a statement and return the first column of the first row."""
        rows = self.execute(sql)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SnowflakeAdapter(WarehouseAdapter):
    """Snowflake adapter using snowflake-connector-python."""

    def __init__(self, connection_params: Dict[str, Any], connection=None):
        """
        Initialize SnowflakeAdapter.

        Args:
            connection_params: Keyword arguments for snowflake.connector.connect()
            connection: Pre-built connection (mainly for tests)
        """
        self.connection_params = dict(connection_params)
        self._connection = connection

    def _get_connection(self):
        """Lazily open the Snowflake session."""
        if self._connection is None:
            import snowflake.connector

            params = self.connection_params
            logger.info(
                f"Connecting to Snowflake account '{params.get('account')}' "
                f"as '{params.get('user')}' "
                f"({params.get('database')}.{params.get('schema')})"
            )
            try:
                self._connection = snowflake.connector.connect(
                    session_parameters={"QUERY_TAG": "snowlink"},
                    **params,
                )
            except snowflake.connector.errors.Error as e:
                raise WarehouseError(
                    f"""
[ERROR] Could not connect to Snowflake

Account: {params.get('account')}
User: {params.get('user')}

Possible causes:
1. Wrong SNOWLINK_SNOWFLAKE_ACCOUNT (use the <org>-<account> identifier)
2. Wrong password or key in SNOWFLAKE_PASSWORD / SNOWFLAKE_PRIVATE_KEY_PATH
3. Network policy blocks this client

Original error: {str(e)}
"""
                ) from e
        return self._connection

    def execute(self, sql: str) -> List[Row]:
        import snowflake.connector
        from snowflake.connector import DictCursor

        connection = self._get_connection()
        logger.debug(f"Executing: {_first_line(sql)}")

        cursor = connection.cursor(DictCursor)
        try:
            cursor.execute(sql)
            rows = cursor.fetchall() if cursor.description else []
            return [dict(row) for row in rows]
        except snowflake.connector.errors.ProgrammingError as e:
            raise WarehouseError(
                f"""
[ERROR] Statement failed: {_first_line(sql)}

Possible causes:
1. The current role lacks the privilege (integrations need ACCOUNTADMIN
   or CREATE INTEGRATION; pipes need CREATE PIPE on the schema)
2. An object referenced by the statement does not exist yet
3. The object already exists and the statement did not use IF NOT EXISTS

Original error: {str(e)}
""",
                sql=sql,
            ) from e
        except snowflake.connector.errors.Error as e:
            raise WarehouseError(
                f"Snowflake error while running {_first_line(sql)}: {str(e)}",
                sql=sql,
            ) from e
        finally:
            cursor.close()

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None


class DryRunWarehouseAdapter(WarehouseAdapter):
    """
    Adapter that records statements instead of running them.

    Canned results can be registered per statement prefix so callers that
    read rows back (DESC INTEGRATION, SYSTEM$PIPE_STATUS) still work.
    """

    def __init__(self):
        self.statements: List[str] = []
        self._responses: List[Tuple[str, Any]] = []
        self._failures: List[Tuple[str, str]] = []

    def add_response(self, prefix: str, rows) -> None:
        """
        Register rows returned for statements starting with `prefix`.

        `rows` may be a list (returned every time) or a callable taking the SQL.
        Later registrations win over earlier ones.
        """
        self._responses.insert(0, (prefix.strip().upper(), rows))

    def add_failure(self, prefix: str, message: str) -> None:
        """Make statements starting with `prefix` raise WarehouseError."""
        self._failures.insert(0, (prefix.strip().upper(), message))

    def execute(self, sql: str) -> List[Row]:
        self.statements.append(sql)
        logger.info(f"[dry-run] {_first_line(sql)}")

        normalized = sql.strip().upper()
        for prefix, message in self._failures:
            if normalized.startswith(prefix):
                raise WarehouseError(message, sql=sql)

        for prefix, rows in self._responses:
            if normalized.startswith(prefix):
                result = rows(sql) if callable(rows) else rows
                return [dict(row) for row in result]
        return []


__all__ = [
    "Row",
    "WarehouseError",
    "WarehouseAdapter",
    "SnowflakeAdapter",
    "DryRunWarehouseAdapter",
]
