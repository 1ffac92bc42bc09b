# bizbase/business/dao.py
"""
Statement assembly and execution for one business object.

The DAO knows how to turn a descriptor plus request options into SQL and
run it on the request's executor. Orchestration (hooks, transactions,
result envelopes) lives in the service.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import types as sa_types

from bizbase.business.context import RequestContext
from bizbase.business.descriptor import BusinessObjectDescriptor, RelationType
from bizbase.business.relations import KeyFieldResolver, RelationExpander
from bizbase.business.schemas import ListRequest
from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.executor import SqlExecutor
from bizbase.sql.filters import FilterTranslator
from bizbase.sql.helpers import sanitize_field_list, validate_field_name
from bizbase.sql.parameters import ParameterBinder, ParameterSet
from bizbase.sql.predicates import PredicateCompiler, PredicateSpec
from bizbase.sql.statement import SelectStatement, split_select

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditLookup:
    """User table joined to resolve CreatedByUser / ModifiedByUser names."""

    table: str = "Security_User"
    key: str = "UserId"
    name: str = "UserName"


@dataclass
class ListQuery:
    statement: SelectStatement
    params: ParameterSet
    paginated: bool


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BusinessObjectDAO:
    """SQL for list, lookup, load, save and delete of one descriptor."""

    def __init__(
        self,
        descriptor: BusinessObjectDescriptor,
        executor: SqlExecutor,
        context: RequestContext,
        strategy: str = "auto",
        audit: Optional[AuditLookup] = None,
        resolve_key_field: Optional[KeyFieldResolver] = None,
    ):
        self.descriptor = descriptor
        self.executor = executor
        self.context = context
        self.dialect = executor.dialect
        self.strategy = strategy
        self.audit = audit or AuditLookup()
        self.relations = RelationExpander(descriptor, self.dialect, resolve_key_field, strategy)

    def new_binder(self) -> ParameterBinder:
        return ParameterBinder(self.dialect, ParameterSet(), self.strategy)

    # ===== SHARED PREDICATES =====

    def tenant_predicates(self, alias: Optional[str] = "Main") -> Dict[str, PredicateSpec]:
        """Scope predicate for tenant-based descriptors; empty otherwise."""
        tenant_ids = self.context.tenant_ids
        if not self.descriptor.client_based or not tenant_ids:
            return {}
        field_name = f"{alias}.{self.descriptor.tenant_field}" if alias else self.descriptor.tenant_field
        if len(tenant_ids) == 1:
            return {field_name: PredicateSpec(value=tenant_ids[0], sql_type=sa_types.Integer)}
        return {field_name: PredicateSpec(operator="IN", value=tenant_ids, sql_type=sa_types.Integer)}

    def soft_delete_predicates(self, alias: Optional[str] = "Main") -> Dict[str, PredicateSpec]:
        if not self.descriptor.soft_delete:
            return {}
        field_name = f"{alias}.IsDeleted" if alias else "IsDeleted"
        return {field_name: PredicateSpec(value=0, sql_type=sa_types.Integer)}

    def scope_predicates(self, alias: Optional[str] = "Main", filter_deleted: bool = True) -> Dict[str, PredicateSpec]:
        predicates = self.tenant_predicates(alias)
        if filter_deleted:
            predicates.update(self.soft_delete_predicates(alias))
        return predicates

    # ===== LIST =====

    def base_statement(self, use_list_statement: bool = True) -> SelectStatement:
        descriptor = self.descriptor
        if use_list_statement and descriptor.list_statement:
            return split_select(descriptor.list_statement)
        source = descriptor.view_name if descriptor.uses_view else descriptor.table_name
        return SelectStatement(from_clause=f"{source} Main", select_list="Main.*")

    def is_view_source(self, statement: SelectStatement) -> bool:
        if self.descriptor.list_statement:
            return "vw" in statement.from_clause
        return self.descriptor.uses_view

    def attach_audit_joins(self, statement: SelectStatement) -> None:
        audit = self.audit
        for alias, column in (("Created_", "CreatedByUser"), ("Modified_", "ModifiedByUser")):
            statement.add_join(
                f"LEFT OUTER JOIN (SELECT {audit.key} AS {alias}UserId, {audit.name} AS {column} "
                f"FROM {audit.table}) {alias} ON {alias}.{alias}UserId = Main.{column}Id"
            )
            statement.add_column(f"{alias}.{column}")

    def attach_relation_joins(self, statement: SelectStatement, binder: ParameterBinder) -> None:
        for relation in self.descriptor.relations:
            if relation.type == RelationType.ONE_TO_MANY and relation.count_in_list:
                join, column = self.relations.count_join(relation, binder)
                statement.add_join(join)
                statement.add_column(column)
            elif relation.type == RelationType.ONE_TO_ONE and relation.list_columns:
                join, columns = self.relations.one_to_one_join(relation)
                statement.add_join(join)
                for column in columns:
                    statement.add_column(column)

    def key_list_predicates(self, request: ListRequest) -> Dict[str, PredicateSpec]:
        key_field = f"Main.{self.descriptor.key_field}"
        predicates = {}
        if request.include is not None:
            predicates["_include"] = PredicateSpec(
                field_name=key_field, operator="IN", value=request.include, sql_type=sa_types.Integer
            )
        if request.exclude is not None:
            predicates["_exclude"] = PredicateSpec(
                field_name=key_field, operator="NOT IN", value=request.exclude, sql_type=sa_types.Integer
            )
        if self.descriptor.use_is_active and predicates:
            predicates["_isActive"] = PredicateSpec(
                field_name="Main.IsActive", value=True, sql_type=sa_types.Boolean
            )
        return predicates

    def build_list_query(self, request: ListRequest) -> ListQuery:
        binder = self.new_binder()
        compiler = PredicateCompiler(binder)

        statement = self.base_statement()
        is_view = self.is_view_source(statement)
        if self.descriptor.standard_table and not is_view and not self.descriptor.list_statement:
            self.attach_audit_joins(statement)

        # Relation sub-selects bind first; ParameterSet keeps every name unique
        self.attach_relation_joins(statement, binder)

        fixed = self.scope_predicates()
        fixed.update(self.key_list_predicates(request))
        for fragment in compiler.compile_fragments(fixed):
            statement.add_where(fragment)

        translator = FilterTranslator(is_view_source=is_view)
        fragments = compiler.compile_fragments(translator.translate(request.filter))
        if request.logical_operator == "OR" and len(fragments) > 1:
            statement.add_where(f"({' OR '.join(fragments)})")
        else:
            for fragment in fragments:
                statement.add_where(fragment)

        sort = request.sort or self.descriptor.default_sort
        if sort:
            statement.order_by = sanitize_field_list(sort)
        if request.group_by:
            statement.group_by = sanitize_field_list(request.group_by)

        paginated = request.limit > 0
        if paginated:
            placeholders = compiler.bind_only(
                {
                    "_start": PredicateSpec(value=request.start, sql_type=sa_types.Integer),
                    "_limit": PredicateSpec(value=request.limit, sql_type=sa_types.Integer),
                }
            )
            statement.pagination = self.dialect.pagination(
                placeholders["_start"], placeholders["_limit"], has_order=bool(statement.order_by)
            )
        return ListQuery(statement, binder.params, paginated)

    async def fetch_list(self, request: ListRequest) -> Dict[str, Any]:
        query = self.build_list_query(request)
        record_count = None
        if request.return_count and query.paginated:
            # Page and total read inside one transaction
            async with self.executor.transaction():
                result = await self.executor.execute(query.statement.render(), query.params)
                count = await self.executor.execute(query.statement.render_count(), query.params)
            record_count = int(count.scalar("TotalCount", 0) or 0)
        else:
            result = await self.executor.execute(query.statement.render(), query.params)
            if request.return_count:
                record_count = result.rowcount
        return {"records": result.rows, "record_count": record_count}

    async def fetch_lookup(self, scope_id: Optional[int] = None) -> List[Dict[str, Any]]:
        descriptor = self.descriptor
        if descriptor.lookup_list_statement:
            return (await self.executor.execute(descriptor.lookup_list_statement)).rows

        sort = descriptor.lookup_sort or descriptor.default_sort
        label = descriptor.display_field or sort
        if not label:
            logger.error("No display field or sort field defined for %s lookup list", descriptor.name)
            raise QueryValidationError(f"No display field or sort field defined for {descriptor.name}")

        binder = self.new_binder()
        compiler = PredicateCompiler(binder)
        statement = self.base_statement()
        statement.select_list = (
            f"{self.dialect.quote(descriptor.key_field)} AS value, {self.dialect.quote(validate_field_name(label))} AS label"
        )
        predicates = self.scope_predicates()
        if not descriptor.client_based and scope_id:
            predicates["ScopeId"] = PredicateSpec(value=scope_id, sql_type=sa_types.Integer)
        for fragment in compiler.compile_fragments(predicates):
            statement.add_where(fragment)
        if sort:
            statement.order_by = sanitize_field_list(sort)
        return (await self.executor.execute(statement.render(), binder.params)).rows

    # ===== LOAD =====

    async def fetch_row(self, id: Any) -> Optional[Dict[str, Any]]:
        binder = self.new_binder()
        compiler = PredicateCompiler(binder)
        statement = self.base_statement(use_list_statement=False)
        predicates = self.scope_predicates()
        predicates[f"Main.{self.descriptor.key_field}"] = PredicateSpec(value=id)
        for fragment in compiler.compile_fragments(predicates):
            statement.add_where(fragment)
        return (await self.executor.execute(statement.render(), binder.params)).first()

    async def fetch_tenant(self, id: Any) -> Optional[Dict[str, Any]]:
        """Existing row's tenant column, or None when the row does not exist."""
        binder = self.new_binder()
        key = self.descriptor.write_key_field
        tenant = self.descriptor.tenant_field
        sql = (
            f"SELECT {self.dialect.quote(tenant)} AS TenantId FROM {self.dialect.quote(self.descriptor.table_name)} "
            f"WHERE {self.dialect.quote(key)} = {binder.bind(key, id)}"
        )
        return (await self.executor.execute(sql, binder.params)).first()

    async def row_exists(self, id: Any) -> bool:
        binder = self.new_binder()
        key = self.descriptor.write_key_field
        sql = (
            f"SELECT 1 AS Found FROM {self.dialect.quote(self.descriptor.table_name)} "
            f"WHERE {self.dialect.quote(key)} = {binder.bind(key, id)}"
        )
        return (await self.executor.execute(sql, binder.params)).first() is not None

    # ===== SAVE =====

    async def insert_row(self, values: Dict[str, Any]) -> Any:
        binder = self.new_binder()
        columns = [validate_field_name(column) for column in values]
        placeholders = [binder.bind(column, value) for column, value in values.items()]
        sql = self.dialect.insert_statement(
            self.descriptor.table_name, self.descriptor.write_key_field, columns, placeholders
        )
        result = await self.executor.execute(sql, binder.params)
        if self.dialect.identity_statement:
            result = await self.executor.execute(self.dialect.identity_statement)
        return result.scalar("Id")

    async def update_row(self, id: Any, values: Dict[str, Any]) -> int:
        if not values:
            return 0
        binder = self.new_binder()
        compiler = PredicateCompiler(binder)
        assignments = [
            f"{self.dialect.quote(validate_field_name(column))} = {binder.bind(column, value)}"
            for column, value in values.items()
        ]
        predicates = {self.descriptor.write_key_field: PredicateSpec(value=id)}
        predicates.update(self.tenant_predicates(alias=None))
        where = compiler.compile(predicates)
        sql = f"UPDATE {self.dialect.quote(self.descriptor.table_name)} SET {', '.join(assignments)} {where}"
        return (await self.executor.execute(sql, binder.params)).rowcount

    # ===== DELETE =====

    async def count_related(self, related_table: str, id: Any) -> int:
        binder = self.new_binder()
        key = self.descriptor.key_field
        sql = (
            f"SELECT COUNT(1) AS RelatedCount FROM {self.dialect.quote(validate_field_name(related_table))} "
            f"WHERE {self.dialect.quote(key)} = {binder.bind(key, id, sa_types.Integer)} AND IsDeleted = 0"
        )
        return int((await self.executor.execute(sql, binder.params)).scalar("RelatedCount", 0) or 0)

    async def delete_children(self, id: Any, soft: bool) -> None:
        for child in self.descriptor.child_tables:
            binder = self.new_binder()
            foreign_key = child.foreign_key or self.descriptor.key_field
            condition = f"{foreign_key} = {binder.bind(foreign_key, id)}"
            if soft:
                assignments = "IsDeleted = 1"
                if child.use_delete_key:
                    assignments += f", DeleteKey = {child.table_name}.{child.child_key_field}"
                sql = f"UPDATE {child.table_name} SET {assignments} WHERE {condition}"
            else:
                sql = f"DELETE FROM {child.table_name} WHERE {condition}"
            await self.executor.execute(sql, binder.params)

    async def soft_delete_row(self, id: Any, values: Dict[str, Any]) -> int:
        assignments = dict(values)
        assignments["IsDeleted"] = 1
        if self.descriptor.standard_table:
            assignments["ModifiedOn"] = utc_now()
            if self.context.user_id:
                assignments["ModifiedByUserId"] = self.context.user_id
        return await self.update_row(id, assignments)

    async def hard_delete_row(self, id: Any) -> int:
        binder = self.new_binder()
        compiler = PredicateCompiler(binder)
        predicates = {self.descriptor.key_field: PredicateSpec(value=id)}
        predicates.update(self.tenant_predicates(alias=None))
        sql = f"DELETE FROM {self.dialect.quote(self.descriptor.table_name)} {compiler.compile(predicates)}"
        return (await self.executor.execute(sql, binder.params)).rowcount
