# bizbase/sql/predicates.py
"""Compile field -> PredicateSpec maps into WHERE fragments."""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import types as sa_types

from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.helpers import SqlType, validate_field_name
from bizbase.sql.parameters import LIST_OPERATORS, RANGE_OPERATORS, ParameterBinder


class _Unset:
    """Marker for a predicate whose value was never supplied."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

NULL_OPERATORS = ("IS NULL", "IS NOT NULL")
SCALAR_OPERATORS = ("=", "!=", "<>", ">", "<", ">=", "<=", "LIKE", "NOT LIKE")
LOGICAL_OPERATORS = ("AND", "OR")


@dataclass
class PredicateSpec:
    """One field's comparison. A literal `statement` wins over everything else."""

    operator: str = "="
    value: Any = UNSET
    field_name: Optional[str] = None
    sql_type: Optional[SqlType] = None
    ignore_null: bool = True
    statement: Optional[str] = None
    ignore_zero: bool = False


PredicateMap = Dict[str, Union[PredicateSpec, Any]]


def as_spec(value: Union[PredicateSpec, Any]) -> PredicateSpec:
    """Plain values in a predicate map mean `field = value`."""
    if isinstance(value, PredicateSpec):
        return value
    return PredicateSpec(value=value)


def _is_missing(value: Any) -> bool:
    if value is UNSET:
        return True
    return isinstance(value, float) and math.isnan(value)


class PredicateCompiler:
    """Turns predicate maps into SQL text, registering values with the binder."""

    def __init__(self, binder: ParameterBinder):
        self.binder = binder

    def compile_fragment(self, key: str, predicate: Union[PredicateSpec, Any]) -> Optional[str]:
        spec = as_spec(predicate)
        if spec.statement:
            return spec.statement

        field_name = validate_field_name(spec.field_name or key)
        # Qualified names bind under their last segment
        param_name = field_name.rsplit(".", 1)[-1]
        operator = (spec.operator or "=").strip().upper()

        if operator in NULL_OPERATORS:
            return f"{field_name} {operator}"

        value = spec.value
        if _is_missing(value):
            return None
        if value is None:
            if spec.ignore_null:
                return None
            return f"{field_name} IS NOT NULL" if operator in ("!=", "<>") else f"{field_name} IS NULL"

        if operator in RANGE_OPERATORS:
            binding = self.binder.bind_range(
                field_name, param_name, value, operator, spec.sql_type or sa_types.String
            )
            return binding.statement

        if isinstance(value, (list, tuple, set)) or operator in ("IN", "NOT IN"):
            if operator not in LIST_OPERATORS:
                raise QueryValidationError(f"Operator {operator} cannot be used with a list of values")
            binding = self.binder.bind_list(
                field_name,
                param_name,
                value,
                operator=operator,
                sql_type=spec.sql_type or sa_types.Integer,
                ignore_zero=spec.ignore_zero,
            )
            return binding.statement

        if operator not in SCALAR_OPERATORS:
            raise QueryValidationError(f"Unsupported operator: {spec.operator}")
        placeholder = self.binder.bind(param_name, value, spec.sql_type)
        return f"{field_name} {operator} {placeholder}"

    def compile_fragments(self, predicates: Mapping[str, Union[PredicateSpec, Any]]) -> List[str]:
        """One fragment per emitted predicate, in insertion order."""
        fragments = []
        for key, predicate in predicates.items():
            fragment = self.compile_fragment(key, predicate)
            if fragment:
                fragments.append(fragment)
        return fragments

    def compile(
        self,
        predicates: Mapping[str, Union[PredicateSpec, Any]],
        combine_for_where: bool = True,
        logical_operator: str = "AND",
    ) -> str:
        joiner = logical_operator.strip().upper()
        if joiner not in LOGICAL_OPERATORS:
            raise QueryValidationError(f"Invalid logical operator: {logical_operator}")
        fragments = self.compile_fragments(predicates)
        if not fragments:
            return ""
        text = f" {joiner} ".join(fragments)
        return f"WHERE {text}" if combine_for_where else text

    def bind_only(self, predicates: Mapping[str, Union[PredicateSpec, Any]]) -> Dict[str, str]:
        """Register values without producing WHERE text; returns key -> placeholder."""
        placeholders = {}
        for key, predicate in predicates.items():
            spec = as_spec(predicate)
            placeholders[key] = self.binder.bind(spec.field_name or key, spec.value, spec.sql_type)
        return placeholders
