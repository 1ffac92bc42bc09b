# bizbase/business/multiselect.py
"""Multi-select columns stored as rows of a child table."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import types as sa_types

from bizbase.business.descriptor import BusinessObjectDescriptor, MultiSelectColumn
from bizbase.sql.dialects import Dialect
from bizbase.sql.executor import SqlExecutor
from bizbase.sql.helpers import validate_field_name
from bizbase.sql.parameters import ParameterBinder, ParameterSet, integer_ids

logger = logging.getLogger(__name__)


def _split_entries(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [entry.strip() for entry in str(value).split(",")]


class MultiSelectHandler:
    def __init__(self, descriptor: BusinessObjectDescriptor, dialect: Dialect, strategy: str = "auto"):
        self.descriptor = descriptor
        self.dialect = dialect
        self.strategy = strategy

    def new_binder(self) -> ParameterBinder:
        return ParameterBinder(self.dialect, ParameterSet(), self.strategy)

    def _column_config(self, column_name: str) -> MultiSelectColumn:
        return self.descriptor.multi_select_columns.get(column_name) or MultiSelectColumn()

    def _names(self, column_name: str):
        config = self._column_config(column_name)
        table = self.descriptor.multi_select_table(column_name)
        foreign_key = validate_field_name(config.column or column_name)
        primary_key = f"{table}Id"
        return config, table, foreign_key, primary_key

    async def _fetch(self, executor: SqlExecutor, column_name: str, parent_id: Any) -> List[Dict[str, Any]]:
        _, table, foreign_key, primary_key = self._names(column_name)
        binder = self.new_binder()
        projection = [f"{foreign_key} AS Value"]
        if foreign_key != primary_key:
            projection.append(f"{primary_key} AS RowId")
        conditions = [f"{self.descriptor.key_field} = {binder.bind(self.descriptor.key_field, parent_id)}"]
        if self.descriptor.soft_delete:
            conditions.append("IsDeleted = 0")
        sql = f"SELECT {', '.join(projection)} FROM {table} WHERE {' AND '.join(conditions)}"
        result = await executor.execute(sql, binder.params)
        for row in result.rows:
            row.setdefault("RowId", row["Value"])
        return result.rows

    async def load_values(self, executor: SqlExecutor, row: Dict[str, Any], parent_id: Any) -> Dict[str, Any]:
        """Fold each column's distinct non-empty child values into `row`."""
        for column_name, config in self.descriptor.multi_select_columns.items():
            rows = await self._fetch(executor, column_name, parent_id)
            current = row.get(column_name)
            values = _split_entries(current) if current else []
            for child in rows:
                if child["Value"] not in values:
                    values.append(child["Value"])
            values = [value for value in values if value not in (None, "")]
            row[column_name] = values if config.is_array else ", ".join(str(value) for value in values)
        return row

    async def reconcile(
        self,
        executor: SqlExecutor,
        column_name: str,
        value: Any,
        parent_id: Any,
        user_id: Optional[int],
        is_update: bool,
    ) -> Dict[str, List[Any]]:
        config, table, foreign_key, primary_key = self._names(column_name)
        rows = await self._fetch(executor, column_name, parent_id)

        if config.is_number:
            new_entries = integer_ids(_split_entries(value))
            row_ids = {int(row["Value"]): row["RowId"] for row in rows}
        else:
            new_entries = []
            for entry in _split_entries(value):
                entry = str(entry).strip()
                if entry and entry not in new_entries:
                    new_entries.append(entry)
            row_ids = {str(row["Value"]): row["RowId"] for row in rows}

        existing = list(row_ids)
        removed = [entry for entry in existing if entry not in new_entries]
        added = [entry for entry in new_entries if entry not in existing]

        if removed and is_update:
            binder = self.new_binder()
            selection = binder.bind_list(primary_key, "RowId", [row_ids[entry] for entry in removed], "IN", sa_types.Integer)
            if self.descriptor.soft_delete:
                assignments = "IsDeleted = 1"
                if config.use_delete_key:
                    child_key = config.key_field or primary_key
                    assignments += f", DeleteKey = {table}.{child_key}"
                sql = f"UPDATE {table} SET {assignments} WHERE {selection.statement}"
            else:
                sql = f"DELETE FROM {table} WHERE {selection.statement}"
            await executor.execute(sql, binder.params)

        if added:
            binder = self.new_binder()
            key_placeholder = binder.bind("KeyField", parent_id)
            user_placeholder = binder.bind("UserId", user_id)
            value_type = sa_types.Integer if config.is_number else sa_types.String
            rows_sql = [
                f"({binder.bind(f'Value_{index}', entry, value_type)}, {key_placeholder}, {user_placeholder}, {user_placeholder})"
                for index, entry in enumerate(added)
            ]
            sql = (
                f"INSERT INTO {table} ({foreign_key}, {self.descriptor.key_field}, ModifiedByUserId, CreatedByUserId) "
                f"VALUES {', '.join(rows_sql)}"
            )
            await executor.execute(sql, binder.params)

        logger.debug("Reconciled %s for %s %s: removed %s, added %s", column_name, self.descriptor.name, parent_id, removed, added)
        return {"removed": removed, "added": added}
