"""
Test configuration and fixtures for the business-object engine tests.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest
from fastapi.testclient import TestClient

from bizbase.app import create_app
from bizbase.business.context import RequestContext
from bizbase.business.registry import BusinessObjectRegistry
from bizbase.core.config import Settings
from bizbase.core.dependencies import get_executor, get_request_context
from bizbase.sql.dialects import Dialect, MssqlDialect, MySqlDialect
from bizbase.sql.executor import QueryResult
from bizbase.sql.parameters import ParameterSet


class RecordingExecutor:
    """Stands in for SqlExecutor: records statements and replays queued results."""

    def __init__(self, dialect: Optional[Dialect] = None):
        self.dialect = dialect or MssqlDialect()
        self.statements: List[Tuple[str, Dict[str, Any]]] = []
        self.events: List[str] = []
        self._results: List[Union[QueryResult, Exception]] = []
        self._depth = 0

    def queue(self, *results: Union[QueryResult, List[Dict[str, Any]], Exception]) -> "RecordingExecutor":
        for result in results:
            if isinstance(result, list):
                result = QueryResult(rows=result, rowcount=len(result))
            self._results.append(result)
        return self

    async def execute(self, sql: str, params: Union[ParameterSet, Dict[str, Any], None] = None) -> QueryResult:
        if isinstance(params, ParameterSet):
            values = params.values()
        else:
            values = dict(params or {})
        self.statements.append((sql, values))
        self.events.append("EXECUTE")
        if not self._results:
            return QueryResult()
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    @asynccontextmanager
    async def transaction(self):
        if self._depth:
            yield self
            return
        self._depth = 1
        self.events.append("BEGIN")
        try:
            yield self
        except Exception:
            self.events.append("ROLLBACK")
            raise
        else:
            self.events.append("COMMIT")
        finally:
            self._depth = 0

    # ===== INSPECTION HELPERS =====

    @property
    def sql(self) -> List[str]:
        return [statement for statement, _ in self.statements]

    def writes(self) -> List[str]:
        return [
            statement
            for statement in self.sql
            if statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE"))
        ]


# ===== EXECUTOR AND CONTEXT FIXTURES =====


@pytest.fixture
def mssql() -> MssqlDialect:
    return MssqlDialect()


@pytest.fixture
def mysql() -> MySqlDialect:
    return MySqlDialect()


@pytest.fixture
def executor() -> RecordingExecutor:
    """Recording executor speaking T-SQL"""
    return RecordingExecutor(MssqlDialect())


@pytest.fixture
def mysql_executor() -> RecordingExecutor:
    """Recording executor speaking MySQL"""
    return RecordingExecutor(MySqlDialect())


@pytest.fixture
def context() -> RequestContext:
    """Caller scoped to tenant 5"""
    return RequestContext(user_id=11, user_name="jdoe", scope_id=5)


# ===== REGISTRY FIXTURES =====


@pytest.fixture
def registry() -> BusinessObjectRegistry:
    """Registry with a handful of representative business objects"""
    registry = BusinessObjectRegistry()
    registry.register(
        "Order",
        {
            "defaultSortOrder": "OrderDate DESC",
            "displayField": "OrderNumber",
            "relations": [
                {"relation": "OrderTag", "foreignTable": "Tag", "countInList": True},
            ],
        },
    )
    registry.register("Tag", {"displayField": "TagName"})
    registry.register(
        "Customer",
        {
            "useView": False,
            "relatedFields": ["Order"],
            "childTables": [{"tableName": "CustomerNote", "useDeleteKey": True}],
            "relations": [
                {"relation": "Tag", "table": "CustomerTag", "field": "TagId"},
                {
                    "relation": "Region",
                    "type": "OneToOne",
                    "table": "Region",
                    "listColumns": "RegionName",
                    "join": {"RegionId": "RegionId"},
                },
            ],
            "multiSelectColumns": {"Channel": {"type": "number"}},
        },
    )
    registry.register(
        "Country",
        {"standardTable": False, "clientBased": False, "softDelete": False, "displayField": "CountryName"},
    )
    return registry


# ===== API FIXTURES =====


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite://", sql_dialect="mssql", log_level="WARNING")


@pytest.fixture
def api_executor() -> RecordingExecutor:
    return RecordingExecutor(MssqlDialect())


@pytest.fixture
def client(test_settings, registry, api_executor, context):
    """Create FastAPI test client with executor and principal overrides"""
    app = create_app(settings=test_settings, registry=registry)

    def override_get_executor():
        return api_executor

    def override_get_request_context():
        return context

    app.dependency_overrides[get_executor] = override_get_executor
    app.dependency_overrides[get_request_context] = override_get_request_context

    with TestClient(app) as test_client:
        yield test_client

    # Clean up overrides
    app.dependency_overrides.clear()
