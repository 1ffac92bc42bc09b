# bizbase/sql/executor.py
"""Runs assembled statements on one request-scoped connection."""

import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncConnection

from bizbase.sql.dialects import Dialect
from bizbase.sql.parameters import BoundParameter, ParameterSet

logger = logging.getLogger(__name__)

# Same rule SQLAlchemy's text() uses to find :name binds
_BIND_PATTERN = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")

Parameters = Union[ParameterSet, Dict[str, Any], None]


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self, key: Optional[str] = None, default: Any = None) -> Any:
        row = self.first()
        if row is None:
            return default
        if key is None:
            return next(iter(row.values()), default)
        return row.get(key, default)


def _as_parameters(params: Parameters) -> List[BoundParameter]:
    if params is None:
        return []
    if isinstance(params, ParameterSet):
        return list(params)
    return [BoundParameter(name, value) for name, value in params.items()]


class SqlExecutor:
    """Binds parameters with SQLAlchemy, executes, and logs slow statements."""

    def __init__(self, connection: AsyncConnection, dialect: Dialect, slow_query_ms: int = 1000):
        self.connection = connection
        self.dialect = dialect
        self.slow_query_ms = slow_query_ms
        self._transaction_depth = 0

    def build(self, sql: str, params: Parameters = None):
        """Build the executable text() clause for `sql` and its parameters."""
        parameters = _as_parameters(params)
        driver_sql = self.dialect.to_driver_sql(sql, [p.name for p in parameters])
        present = set(_BIND_PATTERN.findall(driver_sql))
        binds = [
            bindparam(p.name, p.value, type_=p.sql_type) if p.sql_type is not None else bindparam(p.name, p.value)
            for p in parameters
            if p.name in present
        ]
        clause = text(driver_sql)
        if binds:
            clause = clause.bindparams(*binds)
        return clause

    async def execute(self, sql: str, params: Parameters = None) -> QueryResult:
        clause = self.build(sql, params)
        logger.debug("Executing SQL: %s", sql)

        start_time = time.perf_counter()
        result = await self.connection.execute(clause)
        duration_ms = (time.perf_counter() - start_time) * 1000

        if result.returns_rows:
            rows = [dict(row._mapping) for row in result]
            query_result = QueryResult(rows=rows, rowcount=len(rows))
        else:
            query_result = QueryResult(rowcount=result.rowcount)

        if duration_ms > self.slow_query_ms:
            logger.warning(
                "Slow query (%.0f ms) with parameters %s: %s",
                duration_ms,
                [p.name for p in _as_parameters(params)],
                sql,
            )
        return query_result

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlExecutor"]:
        """Explicit transaction; nested use joins the outer one."""
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        # Reads issued earlier autobegin a transaction that must end first
        if self.connection.in_transaction():
            await self.connection.commit()

        self._transaction_depth = 1
        try:
            async with self.connection.begin():
                yield self
        except Exception:
            logger.warning("Transaction rolled back")
            raise
        finally:
            self._transaction_depth = 0
