"""Core module for snowlink."""

from .contracts import BaseTable, LandingTable, TableMeta, select_target_table
from .fields import (
    Field,
    StringField,
    IntegerField,
    LongField,
    DoubleField,
    BooleanField,
    TimestampField,
    DateField,
    DecimalField,
    VariantField,
)
from .sql import quote_literal, validate_identifier

__all__ = [
    "BaseTable",
    "LandingTable",
    "TableMeta",
    "select_target_table",
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
    "quote_literal",
    "validate_identifier",
]
