# bizbase/sql/dialects.py
"""
Dialect adapters for the two relational engines the engine targets.

Every piece of dialect-specific syntax lives here: placeholder prefixes,
pagination, identifier quoting, JSON-array derived tables used for large
value lists, identity retrieval and vendor error codes. The parameter
binder, predicate compiler and query assembler only talk to this interface.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Type

from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.helpers import SqlType, is_integer_type, is_numeric_type

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_NATIVE_ERROR_PATTERN = re.compile(r"\((\d{3,5})\)")


class Dialect(ABC):
    """Shared interface consumed by the query engine."""

    name: str = ""
    param_prefix: str = ":"
    parameter_ceiling: int = 0
    supports_table_parameters: bool = False
    unique_violation_codes: Set[int] = set()

    def __init__(self, parameter_ceiling: Optional[int] = None):
        if parameter_ceiling is not None:
            self.parameter_ceiling = parameter_ceiling

    def placeholder(self, name: str) -> str:
        return f"{self.param_prefix}{name}"

    @abstractmethod
    def quote(self, identifier: str) -> str:
        """Quote a single identifier."""

    @abstractmethod
    def pagination(self, start_placeholder: str, limit_placeholder: str, has_order: bool) -> str:
        """Return the clause that skips `start` rows and returns `limit` rows."""

    @abstractmethod
    def values_table(self, placeholder: str, alias: str, sql_type: Optional[SqlType]) -> str:
        """Expand a JSON array parameter into a one-column derived table named `value`."""

    @abstractmethod
    def insert_statement(
        self, table_name: str, key_field: str, columns: List[str], placeholders: List[str]
    ) -> str:
        """INSERT for one row; may return the new identity directly."""

    @property
    @abstractmethod
    def identity_statement(self) -> Optional[str]:
        """Follow-up statement returning the identity as `Id`, if the insert does not."""

    @abstractmethod
    def utc_now(self) -> str:
        """SQL expression for the current UTC timestamp."""

    def boolean_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def format_datetime(self, value: Any) -> str:
        if isinstance(value, datetime):
            return value.strftime(DATETIME_FORMAT)
        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")
        return str(value)

    def to_driver_sql(self, sql: str, names: Iterable[str]) -> str:
        """Rewrite placeholders into SQLAlchemy's `:name` bind syntax."""
        return sql

    def error_code(self, exc: BaseException) -> Optional[int]:
        """Pull the vendor error number out of a driver exception."""
        orig = getattr(exc, "orig", exc)
        args = getattr(orig, "args", ()) or ()
        for arg in args:
            if isinstance(arg, int) and not isinstance(arg, bool):
                return arg
        # ODBC messages carry the native error as "(2627)"; bare numbers are SQLSTATEs
        for arg in args:
            if isinstance(arg, str):
                match = _NATIVE_ERROR_PATTERN.search(arg)
                if match:
                    return int(match.group(1))
        return None

    def is_unique_violation(self, exc: BaseException) -> bool:
        return self.error_code(exc) in self.unique_violation_codes


class MssqlDialect(Dialect):
    """Primary dialect (T-SQL)."""

    name = "mssql"
    param_prefix = "@"
    parameter_ceiling = 2100
    supports_table_parameters = True
    unique_violation_codes = {2627, 2601}

    _placeholder_pattern = re.compile(r"(?<![@\w])@(\w+)")

    def quote(self, identifier: str) -> str:
        return f"[{identifier}]"

    def pagination(self, start_placeholder: str, limit_placeholder: str, has_order: bool) -> str:
        clause = f"OFFSET {start_placeholder} ROWS FETCH NEXT {limit_placeholder} ROWS ONLY"
        if not has_order:
            # OFFSET/FETCH is only legal after an ORDER BY
            clause = "ORDER BY (SELECT NULL) " + clause
        return clause

    def values_table(self, placeholder: str, alias: str, sql_type: Optional[SqlType]) -> str:
        if is_integer_type(sql_type):
            column_type = "BIGINT"
        elif is_numeric_type(sql_type):
            column_type = "DECIMAL(38, 10)"
        else:
            column_type = "NVARCHAR(4000)"
        return f"OPENJSON({placeholder}) WITH ([value] {column_type} '$') AS {alias}"

    def insert_statement(
        self, table_name: str, key_field: str, columns: List[str], placeholders: List[str]
    ) -> str:
        column_list = ", ".join(self.quote(column) for column in columns)
        return (
            f"INSERT INTO {self.quote(table_name)} ({column_list}) "
            f"OUTPUT INSERTED.{self.quote(key_field)} AS Id "
            f"VALUES ({', '.join(placeholders)})"
        )

    @property
    def identity_statement(self) -> Optional[str]:
        return None

    def utc_now(self) -> str:
        return "GETUTCDATE()"

    def to_driver_sql(self, sql: str, names: Iterable[str]) -> str:
        known = set(names)

        def replace(match: "re.Match[str]") -> str:
            name = match.group(1)
            return f":{name}" if name in known else match.group(0)

        return self._placeholder_pattern.sub(replace, sql)


class MySqlDialect(Dialect):
    """Secondary dialect (MySQL). No table-valued parameters; JSON_TABLE stands in."""

    name = "mysql"
    param_prefix = ":"
    parameter_ceiling = 65535
    supports_table_parameters = False
    unique_violation_codes = {1062}

    def quote(self, identifier: str) -> str:
        return f"`{identifier}`"

    def pagination(self, start_placeholder: str, limit_placeholder: str, has_order: bool) -> str:
        return f"LIMIT {start_placeholder}, {limit_placeholder}"

    def values_table(self, placeholder: str, alias: str, sql_type: Optional[SqlType]) -> str:
        if is_integer_type(sql_type):
            column_type = "BIGINT"
        elif is_numeric_type(sql_type):
            column_type = "DECIMAL(38, 10)"
        else:
            column_type = "VARCHAR(4000)"
        return f"JSON_TABLE({placeholder}, '$[*]' COLUMNS (value {column_type} PATH '$')) AS {alias}"

    def insert_statement(
        self, table_name: str, key_field: str, columns: List[str], placeholders: List[str]
    ) -> str:
        column_list = ", ".join(self.quote(column) for column in columns)
        return f"INSERT INTO {self.quote(table_name)} ({column_list}) VALUES ({', '.join(placeholders)})"

    @property
    def identity_statement(self) -> Optional[str]:
        return "SELECT LAST_INSERT_ID() AS Id"

    def utc_now(self) -> str:
        return "UTC_TIMESTAMP()"

    def boolean_literal(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"


DIALECTS: Dict[str, Type[Dialect]] = {
    MssqlDialect.name: MssqlDialect,
    MySqlDialect.name: MySqlDialect,
}


def get_dialect(name: str, parameter_ceiling: Optional[int] = None) -> Dialect:
    """Resolve a dialect adapter by name."""
    dialect_cls = DIALECTS.get((name or "").lower())
    if dialect_cls is None:
        raise QueryValidationError(f"Unknown SQL dialect: {name}")
    return dialect_cls(parameter_ceiling=parameter_ceiling)
