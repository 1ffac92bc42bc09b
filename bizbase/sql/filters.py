# bizbase/sql/filters.py
"""
Client filter DSL -> PredicateSpec translation.

A filter entry is `{field, operator, value, type}` as sent by grid clients.
Each operator maps to one PredicateSpec; date types expand day-only values to
day-boundary ranges, sentinel operators ignore the value entirely.
"""

import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import types as sa_types

from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.helpers import validate_field_name
from bizbase.sql.predicates import PredicateSpec

START_OF_DAY = "00:00:00"
END_OF_DAY = "23:59:59"

DATE_TYPES = ("date", "dateTime", "dateTimeLocal")
LOCAL_DATETIME = "dateTimeLocal"

# Audit columns come from the user lookups joined in list statements
AUDIT_FIELD_ALIASES = {
    "CreatedByUser": "Created_",
    "ModifiedByUser": "Modified_",
}


class FilterItem(BaseModel):
    """One entry of the client filter array."""

    model_config = ConfigDict(extra="ignore")

    field: str
    operator: str
    value: Any = None
    type: Optional[str] = None


def parse_filters(raw: Union[None, str, Iterable[Any]]) -> List[FilterItem]:
    """Accept a JSON string, a list of dicts, or FilterItems."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise QueryValidationError(f"Invalid filter: {e.msg}")
    if isinstance(raw, dict):
        raw = [raw]
    items = []
    try:
        for entry in raw:
            items.append(entry if isinstance(entry, FilterItem) else FilterItem.model_validate(entry))
    except ValidationError as e:
        raise QueryValidationError(f"Invalid filter entry: {e.errors()[0]['msg']}")
    return items


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _to_datetime(value: Any) -> Any:
    if isinstance(value, (datetime, date)) or not isinstance(value, str):
        return value
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise QueryValidationError(f"Invalid date value: {value}")


def _day_range(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [f"{value} {START_OF_DAY}", f"{value} {END_OF_DAY}"]


# ===== OPERATOR HANDLERS =====
# Each handler receives (value, data_type, field) and returns a PredicateSpec.


def _like(template: str, operator: str = "LIKE") -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        if value is None:
            return PredicateSpec(operator=operator)
        return PredicateSpec(operator=operator, value=template.format(value=value))

    return handler


def _comparator(operator: str) -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        return PredicateSpec(operator=operator, value=value)

    return handler


def _equality(operator: str) -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        return PredicateSpec(operator=operator, value=None if value == "" else value)

    return handler


def _is_empty(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
    return PredicateSpec(statement=f"({field} IS NULL OR {field} = '')")


def _is_not_empty(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
    return PredicateSpec(statement=f"({field} IS NOT NULL AND {field} <> '')")


def _is(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
    if data_type not in DATE_TYPES:
        return PredicateSpec(operator="=", value=value)
    if data_type == LOCAL_DATETIME:
        return PredicateSpec(operator="=", value=_to_datetime(value), sql_type=sa_types.DateTime)
    if value in (None, ""):
        return PredicateSpec(operator="BETWEEN")
    return PredicateSpec(operator="BETWEEN", value=_day_range(value), sql_type=sa_types.String)


def _not(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
    if data_type not in DATE_TYPES:
        return PredicateSpec(operator="!=", value=value)
    if data_type == LOCAL_DATETIME:
        return PredicateSpec(operator="!=", value=_to_datetime(value), sql_type=sa_types.DateTime)
    if value in (None, ""):
        return PredicateSpec(operator="NOT BETWEEN")
    return PredicateSpec(operator="NOT BETWEEN", value=_day_range(value), sql_type=sa_types.String)


def _bounded(operator: str, time_of_day: str) -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        if value is None:
            return PredicateSpec(operator=operator)
        if data_type == LOCAL_DATETIME:
            return PredicateSpec(operator=operator, value=f"{value}")
        return PredicateSpec(operator=operator, value=f"{value} {time_of_day}")

    return handler


def _is_any_of(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
    return PredicateSpec(operator="IN", value=value, sql_type=sa_types.String)


def _boolean(flag: bool) -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        return PredicateSpec(operator="=", value=flag, sql_type=sa_types.Boolean)

    return handler


def _null_test(operator: str) -> Callable[..., PredicateSpec]:
    def handler(value: Any, data_type: Optional[str], field: str) -> PredicateSpec:
        return PredicateSpec(operator=operator)

    return handler


COMPARE_LOOKUPS: Dict[str, Callable[..., PredicateSpec]] = {
    "contains": _like("%{value}%"),
    "startsWith": _like("{value}%"),
    "endsWith": _like("%{value}"),
    "notContains": _like("%{value}%", "NOT LIKE"),
    "=": _equality("="),
    "!=": _equality("!="),
    "isEmpty": _is_empty,
    "isNotEmpty": _is_not_empty,
    ">": _comparator(">"),
    "<": _comparator("<"),
    ">=": _comparator(">="),
    "<=": _comparator("<="),
    "is": _is,
    "not": _not,
    "onOrAfter": _bounded(">=", START_OF_DAY),
    "onOrBefore": _bounded("<=", END_OF_DAY),
    "after": _bounded(">", END_OF_DAY),
    "before": _bounded("<", START_OF_DAY),
    "isAnyOf": _is_any_of,
    "isTrue": _boolean(True),
    "isFalse": _boolean(False),
    "isNull": _null_test("IS NULL"),
    "isNotNull": _null_test("IS NOT NULL"),
}

OPERATOR_ALIASES = {
    "isBlank": "isEmpty",
    "isNotBlank": "isNotEmpty",
    "equals": "=",
    "notEquals": "!=",
    "greaterThan": ">",
    "lessThan": "<",
    "greaterThanOrEqual": ">=",
    "lessThanOrEqual": "<=",
    "isBefore": "<",
    "isAfter": ">",
    "isOnOrBefore": "<=",
    "isOnOrAfter": ">=",
}

RELATIVE_DAYS = {"isToday": 0, "isYesterday": -1, "isTomorrow": 1}

SUPPORTED_OPERATORS = sorted(set(COMPARE_LOOKUPS) | set(OPERATOR_ALIASES) | set(RELATIVE_DAYS))


class FilterTranslator:
    """Translate filter entries to a predicate map for the PredicateCompiler."""

    def __init__(
        self,
        is_view_source: bool = False,
        alias: str = "Main",
        today: Callable[[], date] = _utc_today,
    ):
        self.is_view_source = is_view_source
        self.alias = alias
        self.today = today

    def field_reference(self, field: str) -> str:
        validate_field_name(field)
        if field in AUDIT_FIELD_ALIASES:
            return f"{AUDIT_FIELD_ALIASES[field]}.{field}"
        if self.is_view_source or not self.alias:
            return field
        return f"{self.alias}.{field}"

    def translate_item(self, item: FilterItem) -> PredicateSpec:
        operator = OPERATOR_ALIASES.get(item.operator, item.operator)
        field_name = self.field_reference(item.field)

        if operator in RELATIVE_DAYS:
            anchor = self.today() + timedelta(days=RELATIVE_DAYS[operator])
            spec = PredicateSpec(operator="=", value=anchor, sql_type=sa_types.Date)
        else:
            handler = COMPARE_LOOKUPS.get(operator)
            if handler is None:
                raise QueryValidationError(f"Unsupported filter operator: {item.operator}")
            spec = handler(item.value, item.type, field_name)
        spec.field_name = field_name
        return spec

    def translate(self, items: Union[None, str, Iterable[Any]]) -> Dict[str, PredicateSpec]:
        predicates: Dict[str, PredicateSpec] = {}
        for item in parse_filters(items):
            spec = self.translate_item(item)
            key = spec.field_name
            # Repeated fields keep every filter under a distinct key
            suffix = 1
            while key in predicates:
                key = f"{spec.field_name}__{suffix}"
                suffix += 1
            predicates[key] = spec
        return predicates
