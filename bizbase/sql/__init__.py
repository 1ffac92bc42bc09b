"""
SQL engine for business objects.

Main Components:
- ParameterBinder: scalar, list and range parameter registration
- PredicateCompiler: field -> PredicateSpec maps to WHERE text
- FilterTranslator: client filter DSL to predicate maps
- SelectStatement: segment-based SELECT with a derived COUNT
- SqlExecutor: request-scoped execution and transactions
- Dialect adapters for T-SQL and MySQL
"""

from .dialects import Dialect, MssqlDialect, MySqlDialect, get_dialect
from .executor import QueryResult, SqlExecutor
from .filters import FilterItem, FilterTranslator, parse_filters
from .parameters import ListBinding, ParameterBinder, ParameterSet
from .predicates import UNSET, PredicateCompiler, PredicateSpec
from .statement import SelectStatement, split_select

__all__ = [
    # Dialects
    "Dialect",
    "MssqlDialect",
    "MySqlDialect",
    "get_dialect",
    # Binding and compilation
    "ParameterSet",
    "ParameterBinder",
    "ListBinding",
    "PredicateSpec",
    "PredicateCompiler",
    "UNSET",
    "FilterItem",
    "FilterTranslator",
    "parse_filters",
    # Statements and execution
    "SelectStatement",
    "split_select",
    "SqlExecutor",
    "QueryResult",
]
