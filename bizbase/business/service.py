# bizbase/business/service.py
"""
Business-object service: list, lookup, load, save and delete orchestration.

Subclasses customise behaviour through the before_load, before_save,
after_save and before_delete hooks and are attached to a name with
`registry.register(name, config, service_cls=...)`.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from bizbase.business.context import RequestContext
from bizbase.business.dao import AuditLookup, BusinessObjectDAO, utc_now
from bizbase.business.descriptor import BusinessObjectDescriptor
from bizbase.business.error_mapper import SqlErrorMapper
from bizbase.business.multiselect import MultiSelectHandler
from bizbase.business.schemas import DeleteRequest, ListRequest, ListResult, OperationResult
from bizbase.core.exceptions import (
    BusinessObjectNotFoundError,
    QueryValidationError,
    ReferentialIntegrityError,
    SecurityViolationError,
)
from bizbase.sql.executor import SqlExecutor

logger = logging.getLogger(__name__)


def parse_id(id: Any) -> int:
    """Integer key of a request; blank or missing ids are 0 (insert)."""
    if id is None or id == "":
        return 0
    if isinstance(id, bool):
        raise QueryValidationError(f"Invalid id: {id}")
    try:
        return int(str(id).strip())
    except ValueError:
        raise QueryValidationError(f"Invalid id: {id}")


class BusinessObjectService:
    """Generic CRUD/list engine driven by a descriptor."""

    def __init__(
        self,
        descriptor: BusinessObjectDescriptor,
        executor: SqlExecutor,
        context: RequestContext,
        registry=None,
        strategy: str = "auto",
        audit: Optional[AuditLookup] = None,
        error_mapper: Optional[SqlErrorMapper] = None,
    ):
        self.descriptor = descriptor
        self.executor = executor
        self.context = context
        self.registry = registry
        self.error_mapper = error_mapper or SqlErrorMapper(mappings=[])
        resolve_key_field = registry.key_field_for if registry is not None else None
        self.dao = BusinessObjectDAO(descriptor, executor, context, strategy, audit, resolve_key_field)
        self.multi_select = MultiSelectHandler(descriptor, executor.dialect, strategy)

    # ===== HOOKS =====

    async def before_load(self, id: Any) -> None:
        pass

    async def before_save(self, id: Any, values: Dict[str, Any]) -> None:
        pass

    async def after_save(self, id: Any, values: Dict[str, Any], is_update: bool) -> None:
        pass

    async def before_delete(self, id: Any) -> None:
        pass

    # ===== READ =====

    async def list(self, request: Optional[ListRequest] = None) -> ListResult:
        request = request or ListRequest()
        result = await self.dao.fetch_list(request)
        return ListResult(records=result["records"], record_count=result["record_count"])

    async def lookup_list(self, scope_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.dao.fetch_lookup(scope_id)

    async def load(self, id: Any, relations: bool = True) -> Optional[Dict[str, Any]]:
        """Row by key with relation ids and multi-select values folded in; None when absent."""
        await self.before_load(id)
        row = await self.dao.fetch_row(id)
        if row is None:
            return None

        if relations:
            for relation in self.descriptor.one_to_many_relations:
                row[relation.property_name] = await self.dao.relations.load_child_ids(self.executor, relation, id)

        if self.descriptor.multi_select_columns:
            await self.multi_select.load_values(self.executor, row, id)
        return row

    # ===== SAVE =====

    def _strip_protected(self, values: Dict[str, Any]) -> Dict[str, Any]:
        protected = {column.lower() for column in self.descriptor.protected_columns()}
        return {column: value for column, value in values.items() if column.lower() not in protected}

    async def _check_tenant(self, id: int, values: Dict[str, Any]) -> None:
        """Updates must target a row inside the caller's scope and keep its tenant."""
        tenant_field = self.descriptor.tenant_field
        supplied = values.pop(tenant_field, None)
        existing = await self.dao.fetch_tenant(id)
        if existing is None:
            return
        existing_tenant = existing.get("TenantId")
        if existing_tenant not in self.context.tenant_ids:
            logger.warning("User %s tried to update %s %s outside its scope", self.context.user_id, self.descriptor.name, id)
            raise SecurityViolationError()
        if supplied not in (None, "") and parse_id(supplied) != existing_tenant:
            logger.warning("User %s tried to move %s %s to another tenant", self.context.user_id, self.descriptor.name, id)
            raise SecurityViolationError()

    async def save(self, payload: Mapping[str, Any]) -> OperationResult:
        values = dict(payload)
        id = values.pop("id", None)
        save_relations = values.pop("relations", True) is not False
        values.pop("relationsObject", None)

        await self.before_save(id, values)

        descriptor = self.descriptor
        key_field = descriptor.write_key_field
        id = parse_id(id)
        is_update = id != 0

        values = self._strip_protected(values)

        multi_select_values = {}
        for column_name in descriptor.multi_select_columns:
            value = values.pop(column_name, None)
            if value is not None:
                multi_select_values[column_name] = value

        relation_values = {}
        for relation in descriptor.one_to_many_relations:
            if relation.property_name in values:
                value = values.pop(relation.property_name)
                if save_relations:
                    relation_values[relation.relation] = value

        values.pop(key_field, None)

        if descriptor.standard_table:
            now = utc_now()
            if not is_update:
                if self.context.user_id:
                    values["CreatedByUserId"] = self.context.user_id
                values["CreatedOn"] = now
            if self.context.user_id:
                values["ModifiedByUserId"] = self.context.user_id
            values["ModifiedOn"] = now

        if descriptor.client_based and self.context.tenant_ids:
            if is_update:
                await self._check_tenant(id, values)
            else:
                values[descriptor.tenant_field] = self.context.scope_id or self.context.tenant_ids[0]

        try:
            async with self.executor.transaction():
                if is_update:
                    affected = await self.dao.update_row(id, values)
                    if not affected and (values or not await self.dao.row_exists(id)):
                        raise BusinessObjectNotFoundError(descriptor.name, f"{descriptor.name} {id} not found.")
                else:
                    id = await self.dao.insert_row(values)

                await self.after_save(id, values, is_update)

                for column_name, value in multi_select_values.items():
                    await self.multi_select.reconcile(
                        self.executor, column_name, value, id, self.context.user_id, is_update
                    )

                for relation in descriptor.one_to_many_relations:
                    if relation.relation in relation_values:
                        await self.dao.relations.reconcile(
                            self.executor, relation, id, relation_values[relation.relation], self.context.user_id
                        )
        except SQLAlchemyError as e:
            message = self.error_mapper.map_exception(e)
            if not is_update and self.executor.dialect.is_unique_violation(e):
                logger.warning("Unique constraint violated saving new %s; insert rolled back", descriptor.name)
            else:
                logger.error("Failed to save %s %s: %s", descriptor.name, id, message)
            return OperationResult(success=False, err=message)

        return OperationResult(success=True, data={"Id": id})

    # ===== DELETE =====

    async def _check_related(self, id: Any) -> None:
        for related_table in self.descriptor.related_fields:
            count = await self.dao.count_related(related_table, id)
            if count:
                raise ReferentialIntegrityError(self.descriptor.table_name, related_table, count)

    async def _owns_row(self, id: int) -> bool:
        """False when the row is missing; rows of another tenant raise."""
        if not (self.descriptor.client_based and self.context.tenant_ids):
            return True
        existing = await self.dao.fetch_tenant(id)
        if existing is None:
            return False
        if existing.get("TenantId") not in self.context.tenant_ids:
            logger.warning("User %s tried to delete %s %s outside its scope", self.context.user_id, self.descriptor.name, id)
            raise SecurityViolationError()
        return True

    async def delete(self, id: Any, request: Optional[DeleteRequest] = None) -> OperationResult:
        await self.before_delete(id)
        if not self.descriptor.soft_delete:
            return await self.hard_delete(id)

        id = parse_id(id)
        values = self._strip_protected(dict(request.values) if request else {})
        values.pop(self.descriptor.key_field, None)
        values.pop(self.descriptor.tenant_field, None)

        if not await self._owns_row(id):
            return OperationResult(success=True, data={"rowsAffected": 0})
        await self._check_related(id)

        try:
            async with self.executor.transaction():
                await self.dao.delete_children(id, soft=True)
                affected = await self.dao.soft_delete_row(id, values)
        except SQLAlchemyError as e:
            message = self.error_mapper.map_exception(e)
            logger.error("Failed to delete %s %s: %s", self.descriptor.name, id, message)
            return OperationResult(success=False, err=message)
        return OperationResult(success=True, data={"rowsAffected": affected})

    async def hard_delete(self, id: Any) -> OperationResult:
        """Physically remove the row and its child rows."""
        id = parse_id(id)
        if not await self._owns_row(id):
            return OperationResult(success=True, data={"rowsAffected": 0})
        await self._check_related(id)

        try:
            async with self.executor.transaction():
                await self.dao.delete_children(id, soft=False)
                affected = await self.dao.hard_delete_row(id)
        except SQLAlchemyError as e:
            message = self.error_mapper.map_exception(e)
            logger.error("Failed to delete %s %s: %s", self.descriptor.name, id, message)
            return OperationResult(success=False, err=message)
        return OperationResult(success=True, data={"rowsAffected": affected})
