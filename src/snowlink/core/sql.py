"""
Identifier and literal helpers shared by contracts and DDL rendering.
"""

import re

_IDENTIFIER_RE = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*){0,2}$"
)


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """
    Validate an unquoted (optionally database/schema qualified) Snowflake identifier.

    Args:
        name: Identifier such as 'orders_data_lz' or 'db.schema.orders_data_lz'
        kind: Object kind used in the error message

    Returns:
        str: The identifier unchanged

    Raises:
        ValueError: If the identifier is empty or contains unsupported characters
    """
    if not isinstance(name, str) or not name:
        raise ValueError(f"{kind} must be a non-empty string")
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {kind} {name!r}: use letters, digits, '_' or '$', "
            f"starting with a letter or '_' (optionally qualified as db.schema.name)"
        )
    return name


def quote_literal(value: str) -> str:
    """Quote a value as a Snowflake single-quoted string literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


__all__ = ["validate_identifier", "quote_literal"]
