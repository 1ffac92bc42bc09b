# bizbase/business/relations.py
"""
Relation expansion: count joins and one-to-one lookups for list views,
child-id folding for load, and association reconciliation for save.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import types as sa_types

from bizbase.business.descriptor import BusinessObjectDescriptor, RelationSpec
from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.dialects import Dialect
from bizbase.sql.executor import SqlExecutor
from bizbase.sql.parameters import ParameterBinder, ParameterSet, integer_ids

logger = logging.getLogger(__name__)

KeyFieldResolver = Callable[[Optional[str]], Optional[str]]


class RelationExpander:
    """SQL for a descriptor's declared relations."""

    def __init__(
        self,
        descriptor: BusinessObjectDescriptor,
        dialect: Dialect,
        resolve_key_field: Optional[KeyFieldResolver] = None,
        strategy: str = "auto",
    ):
        self.descriptor = descriptor
        self.dialect = dialect
        self.resolve_key_field = resolve_key_field or (lambda name: None)
        self.strategy = strategy

    def new_binder(self) -> ParameterBinder:
        return ParameterBinder(self.dialect, ParameterSet(), self.strategy)

    def relation_field(self, relation: RelationSpec) -> str:
        """Column in the relation table holding the related id."""
        field = relation.field or self.resolve_key_field(relation.foreign_table)
        if not field:
            raise QueryValidationError(
                f"Relation {relation.relation} needs a field or a registered foreign table"
            )
        return field

    def additional_where(self, relation: RelationSpec, binder: ParameterBinder) -> List[Tuple[str, str]]:
        """(column, placeholder) pairs for the relation's extra constraints."""
        pairs = []
        for column, value in relation.where.items():
            pairs.append((column, binder.bind(f"_rel_{column}", value)))
        return pairs

    def _conditions(self, pairs: List[Tuple[str, str]]) -> List[str]:
        return [f"{column} = {placeholder}" for column, placeholder in pairs]

    # ===== LIST =====

    def count_join(self, relation: RelationSpec, binder: ParameterBinder) -> Tuple[str, str]:
        """LEFT JOIN to a per-parent count of live relation rows; returns (join, column)."""
        key = self.descriptor.key_field
        name = relation.relation
        alias = self.dialect.quote(name)
        conditions = ["IsDeleted = 0"] if self.descriptor.soft_delete else []
        conditions.extend(self._conditions(self.additional_where(relation, binder)))
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        join = (
            f"LEFT OUTER JOIN (SELECT {key} AS {name}_{key}, COUNT(1) AS {name}Count "
            f"FROM {self.dialect.quote(relation.table_name)}{where} GROUP BY {key}) {alias} "
            f"ON {alias}.{name}_{key} = Main.{key}"
        )
        return join, f"{alias}.{name}Count AS {name}Count"

    def one_to_one_join(self, relation: RelationSpec) -> Tuple[str, List[str]]:
        """LEFT JOIN embedding the relation's list columns; returns (join, columns)."""
        if not relation.join:
            raise QueryValidationError(f"Relation {relation.relation} has list columns but no join mapping")
        name = relation.relation
        list_columns = [column.strip() for column in (relation.list_columns or "").split(",") if column.strip()]
        selected = list(list_columns)
        for relation_column in relation.join:
            if relation_column not in selected:
                selected.append(relation_column)
        deleted = " WHERE IsDeleted = 0" if self.descriptor.soft_delete else ""
        on = " AND ".join(f"{name}.{relation_column} = Main.{main_column}" for relation_column, main_column in relation.join.items())
        join = (
            f"LEFT OUTER JOIN (SELECT {', '.join(selected)} "
            f"FROM {self.dialect.quote(relation.table_name)}{deleted}) {name} ON {on}"
        )
        return join, [f"{name}.{column}" for column in list_columns]

    # ===== LOAD =====

    def child_ids_query(self, relation: RelationSpec, binder: ParameterBinder, parent_id: Any) -> str:
        field = self.relation_field(relation)
        key = self.descriptor.key_field
        placeholder = binder.bind(key, parent_id)
        conditions = [f"{self.dialect.quote(key)} = {placeholder}"]
        if self.descriptor.soft_delete:
            conditions.append("IsDeleted = 0")
        conditions.extend(self._conditions(self.additional_where(relation, binder)))
        return (
            f"SELECT {self.dialect.quote(field)} AS ForeignId FROM {self.dialect.quote(relation.table_name)} "
            f"WHERE {' AND '.join(conditions)}"
        )

    async def load_child_ids(self, executor: SqlExecutor, relation: RelationSpec, parent_id: Any) -> str:
        binder = self.new_binder()
        sql = self.child_ids_query(relation, binder, parent_id)
        result = await executor.execute(sql, binder.params)
        return ",".join(str(row["ForeignId"]) for row in result.rows)

    # ===== SAVE =====

    @staticmethod
    def parse_related_values(value: Any) -> List[int]:
        """Deduplicated positive integer ids from a comma string or list."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return []
            value = value.split(",")
        elif not isinstance(value, (list, tuple, set)):
            value = [value]
        return integer_ids(value)

    async def existing_ids(self, executor: SqlExecutor, relation: RelationSpec, parent_id: Any) -> List[int]:
        text = await self.load_child_ids(executor, relation, parent_id)
        return self.parse_related_values(text)

    async def reconcile(
        self,
        executor: SqlExecutor,
        relation: RelationSpec,
        parent_id: Any,
        values: Any,
        user_id: Optional[int],
    ) -> Dict[str, List[int]]:
        """Bring the association rows of `parent_id` in line with `values`."""
        selected = self.parse_related_values(values)
        existing = await self.existing_ids(executor, relation, parent_id)
        removed = [value for value in existing if value not in selected]
        added = [value for value in selected if value not in existing]

        if removed:
            await self._remove(executor, relation, parent_id, selected, user_id)
        if added:
            await self._add(executor, relation, parent_id, added, user_id)

        logger.debug(
            "Reconciled %s for %s %s: removed %s, added %s",
            relation.relation,
            self.descriptor.name,
            parent_id,
            removed,
            added,
        )
        return {"removed": removed, "added": added}

    async def _remove(
        self,
        executor: SqlExecutor,
        relation: RelationSpec,
        parent_id: Any,
        selected: List[int],
        user_id: Optional[int],
    ) -> None:
        binder = self.new_binder()
        field = self.relation_field(relation)
        key = self.descriptor.key_field
        table = self.dialect.quote(relation.table_name)

        conditions = [f"{self.dialect.quote(key)} = {binder.bind('KeyField', parent_id)}"]
        conditions.extend(self._conditions(self.additional_where(relation, binder)))
        keep = binder.bind_list(field, "selected", selected, "NOT IN", sa_types.Integer)
        if keep.statement:
            conditions.append(keep.statement)

        if self.descriptor.soft_delete:
            assignments = ["IsDeleted = 1"]
            if self.descriptor.standard_table:
                assignments.append(f"ModifiedByUserId = {binder.bind('UserId', user_id)}")
                assignments.append(f"ModifiedOn = {self.dialect.utc_now()}")
            sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE IsDeleted = 0 AND {' AND '.join(conditions)}"
        else:
            sql = f"DELETE FROM {table} WHERE {' AND '.join(conditions)}"
        await executor.execute(sql, binder.params)

    async def _add(
        self,
        executor: SqlExecutor,
        relation: RelationSpec,
        parent_id: Any,
        added: List[int],
        user_id: Optional[int],
    ) -> None:
        binder = self.new_binder()
        field = self.relation_field(relation)
        key = self.descriptor.key_field
        table = self.dialect.quote(relation.table_name)

        key_placeholder = binder.bind("KeyField", parent_id)
        extra = self.additional_where(relation, binder)
        values_placeholder = binder.bind("added", json.dumps(added), sa_types.String)
        alias = binder.params.next_alias()
        source = self.dialect.values_table(values_placeholder, alias, sa_types.Integer)

        insert_columns = [key, field] + [column for column, _ in extra]
        select_values = [key_placeholder, f"{alias}.value"] + [placeholder for _, placeholder in extra]
        if self.descriptor.standard_table:
            user_placeholder = binder.bind("UserId", user_id)
            insert_columns += ["CreatedByUserId", "ModifiedByUserId"]
            select_values += [user_placeholder, user_placeholder]

        guard = [f"{self.dialect.quote(key)} = {key_placeholder}", f"{field} = {alias}.value"]
        if self.descriptor.soft_delete:
            guard.insert(0, "IsDeleted = 0")
        guard.extend(self._conditions(extra))

        sql = (
            f"INSERT INTO {table} ({', '.join(insert_columns)}) "
            f"SELECT {', '.join(select_values)} FROM {source} "
            f"WHERE NOT EXISTS (SELECT 1 FROM {table} WHERE {' AND '.join(guard)})"
        )
        await executor.execute(sql, binder.params)
