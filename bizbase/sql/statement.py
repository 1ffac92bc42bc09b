# bizbase/sql/statement.py
"""
Segment-based SELECT builder.

The listing query and its COUNT companion are rendered from the same
segments, so the count never has to be cut out of finished SQL text.
Custom list statements are decomposed into segments with sqlparse.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

import sqlparse
from sqlparse import sql as sp_sql
from sqlparse import tokens as sp_tokens

from bizbase.core.exceptions import QueryValidationError

_WHERE_PREFIX = re.compile(r"^\s*WHERE\s+", re.IGNORECASE)


def _keyword(token) -> str:
    if not token.is_keyword:
        return ""
    return " ".join(token.normalized.split())


@dataclass
class SelectStatement:
    """A SELECT split into independently editable segments."""

    from_clause: str
    select_list: str = "*"
    cte: str = ""
    joins: List[str] = field(default_factory=list)
    where: List[str] = field(default_factory=list)
    extra_columns: List[str] = field(default_factory=list)
    group_by: str = ""
    order_by: str = ""
    pagination: str = ""

    # ===== MUTATORS =====

    def add_column(self, column: str) -> None:
        self.extra_columns.append(column)

    def add_join(self, join: str) -> None:
        self.joins.append(join)

    def add_where(self, fragment: Optional[str]) -> None:
        if fragment:
            self.where.append(fragment)

    # ===== RENDERING =====

    @property
    def columns(self) -> str:
        return ", ".join([self.select_list, *self.extra_columns])

    def where_clause(self) -> str:
        if not self.where:
            return ""
        return "WHERE " + " AND ".join(self.where)

    def body(self) -> str:
        """FROM, joins and WHERE; shared by the listing and the count."""
        parts = [f"FROM {self.from_clause}", *self.joins, self.where_clause()]
        return "\n".join(part for part in parts if part)

    def render(self) -> str:
        parts = [
            self.cte,
            f"SELECT {self.columns}",
            self.body(),
            f"GROUP BY {self.group_by}" if self.group_by else "",
            f"ORDER BY {self.order_by}" if self.order_by else "",
            self.pagination,
        ]
        return "\n".join(part for part in parts if part)

    def render_count(self) -> str:
        """COUNT over the same FROM/WHERE; grouped statements count groups."""
        if self.group_by:
            inner = f"SELECT 1 AS GroupRow\n{self.body()}\nGROUP BY {self.group_by}"
            parts = [self.cte, f"SELECT COUNT(1) AS TotalCount FROM ({inner}) AS Grouped"]
        else:
            parts = [self.cte, "SELECT COUNT(1) AS TotalCount", self.body()]
        return "\n".join(part for part in parts if part)


def split_select(statement: str) -> SelectStatement:
    """Decompose a custom SELECT (optionally CTE-prefixed) into segments.

    Only top-level tokens are inspected, so SELECT/FROM keywords inside CTE
    bodies or subqueries never split the statement.
    """
    parsed = sqlparse.parse(statement.strip().rstrip(";"))
    if not parsed:
        raise QueryValidationError("List statement is empty")
    stmt = parsed[0]

    segments = {"cte": [], "select": [], "from": [], "group": [], "order": []}
    where = ""
    state = None

    for token in stmt.tokens:
        if token.ttype is sp_tokens.Keyword.CTE:
            state = "cte"
        elif token.ttype is sp_tokens.Keyword.DML and token.normalized == "SELECT" and state in (None, "cte"):
            state = "select"
            continue
        elif _keyword(token) == "FROM" and state == "select":
            state = "from"
            continue
        elif isinstance(token, sp_sql.Where):
            where = _WHERE_PREFIX.sub("", str(token)).strip()
            continue
        elif _keyword(token) == "GROUP BY":
            state = "group"
            continue
        elif _keyword(token) == "ORDER BY":
            state = "order"
            continue
        elif _keyword(token).startswith("UNION"):
            raise QueryValidationError("List statements combining SELECTs must be wrapped in a derived table")

        if state is not None:
            segments[state].append(str(token))

    select_list = "".join(segments["select"]).strip()
    from_clause = "".join(segments["from"]).strip()
    if not select_list or not from_clause:
        raise QueryValidationError("List statement must be a SELECT with a FROM clause")

    return SelectStatement(
        from_clause=from_clause,
        select_list=select_list,
        cte="".join(segments["cte"]).strip(),
        where=[f"({where})"] if where else [],
        group_by="".join(segments["group"]).strip(),
        order_by="".join(segments["order"]).strip(),
    )
