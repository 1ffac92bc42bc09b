# bizbase/sql/helpers.py
"""Identifier checks and SQL type helpers shared by the query engine."""

import re
from typing import Any, Optional, Type, Union

from sqlalchemy import types as sa_types

from bizbase.core.exceptions import QueryValidationError

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.]+$")
SORT_FIELD_PATTERN = re.compile(r"[^A-Za-z0-9_. ]")

SqlType = Union[sa_types.TypeEngine, Type[sa_types.TypeEngine]]

NUMERIC_TYPES = (
    sa_types.Integer,
    sa_types.Numeric,
    sa_types.Float,
)


def sanitize_field(field_name: str) -> str:
    """Replace every character outside [A-Za-z0-9_. ] with an underscore.

    ORDER BY and GROUP BY fields cannot be parameterized, so this is the only
    protection those clauses get.
    """
    return SORT_FIELD_PATTERN.sub("_", field_name)


def sanitize_field_list(fields: str) -> str:
    """Sanitize a comma separated list of sort or group fields."""
    parts = [sanitize_field(part.strip()) for part in fields.split(",")]
    return ", ".join(part for part in parts if part)


def is_valid_field_name(field_name: Any) -> bool:
    return isinstance(field_name, str) and bool(FIELD_NAME_PATTERN.match(field_name))


def validate_field_name(field_name: str) -> str:
    """Return the field name unchanged, or raise if it is not a plain identifier."""
    if not is_valid_field_name(field_name):
        raise QueryValidationError(
            f"Invalid field name: {field_name}. Only alphanumeric characters, "
            "underscores, and dots are allowed."
        )
    return field_name


def to_type_instance(sql_type: Optional[SqlType]) -> Optional[sa_types.TypeEngine]:
    """Accept either a SQLAlchemy type class or instance."""
    if sql_type is None:
        return None
    if isinstance(sql_type, type):
        return sql_type()
    return sql_type


def is_numeric_type(sql_type: Optional[SqlType]) -> bool:
    instance = to_type_instance(sql_type)
    return isinstance(instance, NUMERIC_TYPES)


def is_integer_type(sql_type: Optional[SqlType]) -> bool:
    return isinstance(to_type_instance(sql_type), sa_types.Integer)
