"""
Table contract definitions using metaclass pattern.
Defines BaseTable and LandingTable classes.
"""

import re
from typing import Dict, List, Optional

from .fields import Field
from .sql import quote_literal, validate_identifier


class TableMeta:
    """Metadata container for table configuration."""

    def __init__(self):
        self.table_name: Optional[str] = None
        self.description: Optional[str] = None
        self.cluster_by: List[str] = []


class BaseTableMeta(type):
    """Metaclass for BaseTable that processes field definitions."""

    _BASE_CLASSES = ("BaseTable", "LandingTable")

    @staticmethod
    def _derive_table_name(class_name: str) -> str:
        """
        Derive a snake_case table name from class name.

        Examples:
            OrdersDataLz -> orders_data_lz
            OrdersTable -> orders
        """
        if class_name.endswith("Table") and class_name != "Table":
            class_name = class_name[:-len("Table")]

        snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", class_name)
        snake = re.sub(r"(?<=[A-Z])([A-Z][a-z])", r"_\1", snake)
        return snake.lower()

    def __new__(mcs, name, bases, namespace, **kwargs):
        if name in mcs._BASE_CLASSES:
            return super().__new__(mcs, name, bases, namespace)

        # Inherit fields from parent contracts, then add our own in declaration order
        fields: Dict[str, Field] = {}
        for base in bases:
            fields.update(getattr(base, "_fields", {}))

        for attr_name, attr_value in list(namespace.items()):
            if isinstance(attr_value, Field):
                attr_value.name = attr_name
                fields[attr_name] = attr_value

        namespace["_fields"] = fields

        meta = namespace.get("Meta", None)
        table_meta = TableMeta()

        if meta:
            table_meta.table_name = getattr(meta, "table_name", None)
            table_meta.description = getattr(meta, "description", None)
            table_meta.cluster_by = list(getattr(meta, "cluster_by", []) or [])

        namespace["_meta"] = table_meta
        namespace["_table_name"] = validate_identifier(
            table_meta.table_name or mcs._derive_table_name(name),
            kind="table name",
        )

        for column in table_meta.cluster_by:
            if column not in fields:
                raise ValueError(
                    f"cluster_by column '{column}' is not a field of {name}"
                )

        return super().__new__(mcs, name, bases, namespace)


class BaseTable(metaclass=BaseTableMeta):
    """Base class for all table definitions."""

    _fields: Dict[str, Field] = {}
    _meta: TableMeta = TableMeta()
    _table_name: str = ""

    class Meta:
        """Override this in subclasses to provide table metadata."""
        table_name: Optional[str] = None
        description: Optional[str] = None
        cluster_by: List[str] = []

    @classmethod
    def get_table_name(cls) -> str:
        """Get the table name (e.g., 'orders_data_lz')."""
        return cls._table_name

    @classmethod
    def get_fields(cls) -> Dict[str, Field]:
        """Get all fields defined for this table, in declaration order."""
        return cls._fields

    @classmethod
    def get_column_names(cls) -> List[str]:
        """Get the column names in load order."""
        return list(cls._fields.keys())

    @classmethod
    def get_comment(cls) -> Optional[str]:
        """Get the table comment (Meta.description or the class docstring)."""
        if cls._meta.description:
            return cls._meta.description
        doc = cls.__doc__
        if doc and doc is not BaseTable.__doc__:
            return doc.strip().splitlines()[0]
        return None

    @classmethod
    def to_create_table_sql(cls, if_not_exists: bool = True, or_replace: bool = False) -> str:
        """
        Render the CREATE TABLE statement for this contract.

        Args:
            if_not_exists: Add IF NOT EXISTS (ignored when or_replace is set)
            or_replace: Use CREATE OR REPLACE (drops existing data)

        Returns:
            str: Snowflake DDL
        """
        if not cls._fields:
            raise ValueError(f"Table {cls.__name__} has no fields defined")

        if or_replace:
            head = f"CREATE OR REPLACE TABLE {cls._table_name}"
        elif if_not_exists:
            head = f"CREATE TABLE IF NOT EXISTS {cls._table_name}"
        else:
            head = f"CREATE TABLE {cls._table_name}"

        columns = ",\n".join(f"  {field.to_sql_column()}" for field in cls._fields.values())
        sql = f"{head} (\n{columns}\n)"

        if cls._meta.cluster_by:
            sql += f"\nCLUSTER BY ({', '.join(cls._meta.cluster_by)})"

        comment = cls.get_comment()
        if comment:
            sql += f"\nCOMMENT = {quote_literal(comment)}"

        return sql + ";"


class LandingTable(BaseTable):
    """
    Landing-zone table (raw file data, append-only).
    - Loaded only by Snowpipe COPY INTO
    - Never updated or deleted by the pipeline
    """

    _write_mode = "append"

    @classmethod
    def get_write_mode(cls) -> str:
        """Get the write mode for landing tables."""
        return cls._write_mode


def select_target_table(contracts, target_table: Optional[str] = None):
    """
    Pick the contract the pipe loads into.

    Args:
        contracts: Landing contracts in scan order (a sequence of classes)
        target_table: TARGET_TABLE setting; the first contract is used when empty

    Raises:
        ValueError: If there are no contracts or target_table matches none of them
    """
    contracts = list(contracts)
    if not contracts:
        raise ValueError("No LandingTable contracts to choose a target table from")
    if not target_table:
        return contracts[0]
    for contract in contracts:
        if contract.get_table_name().lower() == target_table.lower():
            return contract
    raise ValueError(
        f"TARGET_TABLE '{target_table}' does not match any contract: "
        f"{[c.get_table_name() for c in contracts]}"
    )


__all__ = [
    "BaseTable",
    "LandingTable",
    "TableMeta",
    "select_target_table",
]
