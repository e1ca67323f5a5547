"""
Field definitions for snowlink landing-table schemas.
These fields map to Snowflake column types.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .sql import quote_literal


class Field:
    """Base field class for all data types."""

    sql_type = "VARCHAR"

    def __init__(self, nullable: bool = True, description: Optional[str] = None):
        self.nullable = nullable
        self.description = description
        self.name: Optional[str] = None  # Set by the metaclass

    def to_sql_type(self) -> str:
        """Render the Snowflake column type for this field."""
        return self.sql_type

    def to_sql_column(self) -> str:
        """Render the column definition used inside CREATE TABLE."""
        if self.name is None:
            raise ValueError("Field name has not been set")

        column = f"{self.name} {self.to_sql_type()}"
        if not self.nullable:
            column += " NOT NULL"
        if self.description:
            column += f" COMMENT {quote_literal(self.description)}"
        return column

    def parse(self, raw: Optional[str]) -> Any:
        """
        Convert a raw CSV cell into a Python value.

        Empty cells are only accepted for nullable fields.

        Raises:
            ValueError: If the value cannot be converted
        """
        value = "" if raw is None else raw.strip()
        if value == "":
            if self.nullable:
                return None
            raise ValueError("value is required")
        return self._convert(value)

    def _convert(self, value: str) -> Any:
        return value


class StringField(Field):
    """String/Text field, optionally bounded."""

    def __init__(self, max_length: Optional[int] = None, nullable: bool = True,
                 description: Optional[str] = None):
        super().__init__(nullable=nullable, description=description)
        if max_length is not None and max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length

    def to_sql_type(self) -> str:
        if self.max_length:
            return f"VARCHAR({self.max_length})"
        return "VARCHAR"

    def _convert(self, value: str) -> str:
        if self.max_length is not None and len(value) > self.max_length:
            raise ValueError(
                f"value has {len(value)} characters, maximum is {self.max_length}"
            )
        return value


class IntegerField(Field):
    """Integer field."""

    sql_type = "INT"

    def _convert(self, value: str) -> int:
        return int(value)


class LongField(Field):
    """64-bit integer field."""

    sql_type = "BIGINT"

    def _convert(self, value: str) -> int:
        return int(value)


class DoubleField(Field):
    """Double precision float field."""

    sql_type = "FLOAT"

    def _convert(self, value: str) -> float:
        return float(value)


class BooleanField(Field):
    """Boolean field."""

    sql_type = "BOOLEAN"

    def _convert(self, value: str) -> bool:
        v = value.lower()
        if v in {"true", "t", "1", "yes", "y"}:
            return True
        if v in {"false", "f", "0", "no", "n"}:
            return False
        raise ValueError(f"Invalid boolean: {value!r}")


class TimestampField(Field):
    """Timestamp field without timezone."""

    sql_type = "TIMESTAMP_NTZ"

    def _convert(self, value: str) -> datetime:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)


class DateField(Field):
    """Date field (without time)."""

    sql_type = "DATE"

    def _convert(self, value: str) -> date:
        return date.fromisoformat(value)


class DecimalField(Field):
    """Decimal field with precision and scale."""

    def __init__(self, precision: int = 38, scale: int = 0, nullable: bool = True,
                 description: Optional[str] = None):
        super().__init__(nullable=nullable, description=description)
        self.precision = precision
        self.scale = scale

    def to_sql_type(self) -> str:
        return f"NUMBER({self.precision},{self.scale})"

    def _convert(self, value: str) -> Decimal:
        try:
            return Decimal(value)
        except InvalidOperation:
            raise ValueError(f"Invalid decimal: {value!r}")


class VariantField(Field):
    """Semi-structured VARIANT column. Values are not parsed."""

    sql_type = "VARIANT"


__all__ = [
    "Field",
    "StringField",
    "IntegerField",
    "LongField",
    "DoubleField",
    "BooleanField",
    "TimestampField",
    "DateField",
    "DecimalField",
    "VariantField",
]
