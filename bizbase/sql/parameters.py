# bizbase/sql/parameters.py
"""
Parameter registration for dynamically assembled statements.

A ParameterSet belongs to exactly one statement while it is being built.
The ParameterBinder registers scalar values, value lists and ranges into it
and hands back placeholder text, so callers never interpolate values.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import types as sa_types

from bizbase.core.config import SUPPORTED_IN_STRATEGIES
from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.dialects import Dialect
from bizbase.sql.helpers import SqlType, is_numeric_type, to_type_instance

logger = logging.getLogger(__name__)

LIST_OPERATORS = {"=": "IN", "!=": "NOT IN", "<>": "NOT IN", "IN": "IN", "NOT IN": "NOT IN"}
RANGE_OPERATORS = ("BETWEEN", "NOT BETWEEN")


@dataclass
class BoundParameter:
    name: str
    value: Any
    sql_type: Optional[sa_types.TypeEngine] = None


class ParameterSet:
    """Ordered, uniquely named parameters for one statement."""

    def __init__(self):
        self._parameters: Dict[str, BoundParameter] = {}
        self._alias_count = 0

    def unique_name(self, base: str) -> str:
        """Return `base`, or `base_<n>` when the name is already taken."""
        if base not in self._parameters:
            return base
        suffix = 1
        while f"{base}_{suffix}" in self._parameters:
            suffix += 1
        return f"{base}_{suffix}"

    def add(self, name: str, value: Any, sql_type: Optional[SqlType] = None) -> BoundParameter:
        parameter = BoundParameter(self.unique_name(name), value, to_type_instance(sql_type))
        self._parameters[parameter.name] = parameter
        return parameter

    def next_alias(self) -> str:
        """Allocate an alias for a derived values table (_tvp1, _tvp2, ...)."""
        self._alias_count += 1
        return f"_tvp{self._alias_count}"

    def names(self) -> List[str]:
        return list(self._parameters)

    def values(self) -> Dict[str, Any]:
        return {name: parameter.value for name, parameter in self._parameters.items()}

    def get(self, name: str) -> Optional[BoundParameter]:
        return self._parameters.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._parameters

    def __iter__(self) -> Iterator[BoundParameter]:
        return iter(self._parameters.values())

    def __len__(self) -> int:
        return len(self._parameters)


@dataclass(frozen=True)
class ListBinding:
    """Result of binding a value list; `statement` is None when nothing was bound."""

    statement: Optional[str]
    param_names: List[str] = field(default_factory=list)
    value_count: int = 0
    strategy: Optional[str] = None


def _split_values(values: Any) -> List[Any]:
    if values is None:
        return []
    if isinstance(values, str):
        return values.split(",")
    if isinstance(values, (list, tuple, set)):
        return list(values)
    return [values]


def _coerce_number(value: Any, param_name: str) -> Any:
    """Parse one list entry for a numeric column; returns None for blanks."""
    if isinstance(value, bool):
        raise QueryValidationError(f"Invalid value type {type(value).__name__} for {param_name}")
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise QueryValidationError(f"Invalid value {value} for {param_name}")
    raise QueryValidationError(f"Invalid value type {type(value).__name__} for {param_name}")


class ParameterBinder:
    """Registers values into a ParameterSet using the dialect's placeholder syntax."""

    def __init__(self, dialect: Dialect, params: Optional[ParameterSet] = None, strategy: str = "auto"):
        self.dialect = dialect
        self.params = params if params is not None else ParameterSet()
        self.strategy = self._validate_strategy(strategy)

    @staticmethod
    def _validate_strategy(strategy: str) -> str:
        if strategy not in SUPPORTED_IN_STRATEGIES:
            raise QueryValidationError(
                f"Invalid IN operator strategy: {strategy}. "
                f"Supported strategies are: {', '.join(SUPPORTED_IN_STRATEGIES)}"
            )
        return strategy

    def bind(self, name: str, value: Any, sql_type: Optional[SqlType] = None) -> str:
        """Register a scalar value and return its placeholder."""
        parameter = self.params.add(name, value, sql_type)
        return self.dialect.placeholder(parameter.name)

    def normalize_values(
        self,
        values: Any,
        param_name: str,
        sql_type: Optional[SqlType] = sa_types.Integer,
        ignore_zero: bool = False,
    ) -> List[Any]:
        numeric = is_numeric_type(sql_type)
        normalized = []
        for value in _split_values(values):
            if numeric:
                value = _coerce_number(value, param_name)
                if value is None:
                    continue
                if ignore_zero and value == 0:
                    continue
            elif value is None:
                continue
            normalized.append(value)
        return normalized

    def _resolve_strategy(self, strategy: Optional[str], value_count: int) -> str:
        strategy = self._validate_strategy(strategy or self.strategy)
        if strategy != "auto":
            return strategy
        if len(self.params) + value_count <= self.dialect.parameter_ceiling:
            return "in"
        # Dialects without table parameters correlate against the JSON table function
        resolved = "join" if self.dialect.supports_table_parameters else "exists"
        logger.debug(
            "List of %s values exceeds parameter ceiling %s, binding as JSON (%s)",
            value_count,
            self.dialect.parameter_ceiling,
            resolved,
        )
        return resolved

    def bind_list(
        self,
        field_name: str,
        param_prefix: str,
        values: Any,
        operator: str = "=",
        sql_type: Optional[SqlType] = sa_types.Integer,
        ignore_zero: bool = False,
        strategy: Optional[str] = None,
    ) -> ListBinding:
        """Bind a membership test of `field_name` against `values`."""
        canonical = LIST_OPERATORS.get(operator.strip().upper())
        if canonical is None:
            raise QueryValidationError(f"Operator {operator} cannot be used with a list of values")

        normalized = self.normalize_values(values, param_prefix, sql_type, ignore_zero)
        if not normalized:
            return ListBinding(statement=None)

        resolved = self._resolve_strategy(strategy, len(normalized))

        if resolved == "in":
            placeholders = [
                self.bind(f"{param_prefix}_{index}", value, sql_type)
                for index, value in enumerate(normalized)
            ]
            names = [placeholder[len(self.dialect.param_prefix):] for placeholder in placeholders]
            statement = f"{field_name} {canonical} ({', '.join(placeholders)})"
            return ListBinding(statement, names, len(normalized), resolved)

        payload = json.dumps(normalized, default=str)
        placeholder = self.bind(param_prefix, payload, sa_types.String)
        name = placeholder[len(self.dialect.param_prefix):]
        alias = self.params.next_alias()
        values_table = self.dialect.values_table(placeholder, alias, sql_type)

        if resolved == "join":
            statement = f"{field_name} {canonical} (SELECT {alias}.value FROM {values_table})"
        else:
            negate = "NOT " if canonical == "NOT IN" else ""
            statement = f"{negate}EXISTS (SELECT 1 FROM {values_table} WHERE {alias}.value = {field_name})"
        return ListBinding(statement, [name], len(normalized), resolved)

    def bind_range(
        self,
        field_name: str,
        param_prefix: str,
        values: Any,
        operator: str = "BETWEEN",
        sql_type: Optional[SqlType] = sa_types.String,
    ) -> ListBinding:
        """Bind `field BETWEEN lo AND hi`; exactly two values are required."""
        canonical = operator.strip().upper()
        if canonical not in RANGE_OPERATORS:
            raise QueryValidationError(f"Operator {operator} is not a range operator")
        bounds = _split_values(values)
        if len(bounds) != 2:
            raise QueryValidationError(f"Between operator supports only 2 values, found {len(bounds)}")
        if is_numeric_type(sql_type):
            bounds = [_coerce_number(bound, param_prefix) for bound in bounds]
        low = self.bind(f"{param_prefix}_0", bounds[0], sql_type)
        high = self.bind(f"{param_prefix}_1", bounds[1], sql_type)
        names = [low[len(self.dialect.param_prefix):], high[len(self.dialect.param_prefix):]]
        return ListBinding(f"{field_name} {canonical} {low} AND {high}", names, 2, "between")

    def bind_all(self, values: Dict[str, Any], types: Optional[Dict[str, SqlType]] = None) -> Dict[str, str]:
        """Bind several scalars at once, returning name -> placeholder."""
        types = types or {}
        return {name: self.bind(name, value, types.get(name)) for name, value in values.items()}


def integer_ids(values: Iterable[Any]) -> List[int]:
    """Parse, drop non-positive or unparsable entries, dedupe preserving order."""
    seen = []
    for value in values:
        try:
            number = int(str(value).strip())
        except ValueError:
            continue
        if number > 0 and number not in seen:
            seen.append(number)
    return seen
