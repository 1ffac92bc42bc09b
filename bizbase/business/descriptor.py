# bizbase/business/descriptor.py
"""
Business-object descriptors.

A descriptor is the immutable configuration for one entity type: where it
lives, how it is keyed, whether it is soft-deleted or tenant-scoped, and
which relations and multi-select columns hang off it. Configurations arrive
in camelCase (as stored in JSON) or snake_case.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.helpers import validate_field_name

# Columns the engine manages itself on standard tables
SYSTEM_COLUMNS = (
    "IsDeleted",
    "CreatedByUserId",
    "CreatedByUser",
    "ModifiedByUserId",
    "ModifiedByUser",
    "CreatedOn",
    "ModifiedOn",
)

_KEY_RENAMES = {
    "default_sort_order": "default_sort",
    "lookup_sort_order": "lookup_sort",
    "is_standard": "standard_table",
}


class RelationType(str, Enum):
    """Association kinds a descriptor can declare."""

    ONE_TO_MANY = "OneToMany"
    ONE_TO_ONE = "OneToOne"


class DescriptorModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _validate_optional_identifier(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return validate_field_name(value)


class RelationSpec(DescriptorModel):
    """A OneToMany join table or a OneToOne lookup hanging off the main row."""

    relation: str
    type: RelationType = RelationType.ONE_TO_MANY
    table: Optional[str] = None
    field: Optional[str] = None
    foreign_table: Optional[str] = None
    where: Dict[str, Any] = {}
    count_in_list: bool = False
    list_columns: Optional[str] = None
    join: Dict[str, str] = {}

    @field_validator("relation", "table", "field", "foreign_table")
    @classmethod
    def validate_identifier(cls, value: Optional[str]) -> Optional[str]:
        return _validate_optional_identifier(value)

    @field_validator("where")
    @classmethod
    def validate_where_keys(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        for key in value:
            validate_field_name(key)
        return value

    @field_validator("join")
    @classmethod
    def validate_join(cls, value: Dict[str, str]) -> Dict[str, str]:
        for relation_column, main_column in value.items():
            validate_field_name(relation_column)
            validate_field_name(main_column)
        return value

    @field_validator("list_columns")
    @classmethod
    def validate_list_columns(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        for column in value.split(","):
            validate_field_name(column.strip())
        return value

    @property
    def table_name(self) -> str:
        return self.table or self.relation

    @property
    def property_name(self) -> str:
        """Virtual property carrying the comma separated ids on load/save."""
        return f"{self.relation}s"

    @property
    def is_one_to_many(self) -> bool:
        return self.type == RelationType.ONE_TO_MANY


class MultiSelectColumn(DescriptorModel):
    """A column whose values live as rows in a separate child table."""

    table: Optional[str] = None
    column: Optional[str] = None
    type: str = "string"
    data_format: str = "string"
    use_delete_key: bool = False
    key_field: Optional[str] = None

    @field_validator("table", "column", "key_field")
    @classmethod
    def validate_identifier(cls, value: Optional[str]) -> Optional[str]:
        return _validate_optional_identifier(value)

    @property
    def is_number(self) -> bool:
        return self.type == "number"

    @property
    def is_array(self) -> bool:
        return self.data_format == "array"


class ChildTable(DescriptorModel):
    """A dependent table cascaded on delete."""

    table_name: str
    foreign_key: Optional[str] = None
    key_field: Optional[str] = None
    use_delete_key: bool = False

    @field_validator("table_name", "foreign_key", "key_field")
    @classmethod
    def validate_identifier(cls, value: Optional[str]) -> Optional[str]:
        return _validate_optional_identifier(value)

    @property
    def child_key_field(self) -> str:
        return self.key_field or f"{self.table_name}Id"


class BusinessObjectDescriptor(DescriptorModel):
    """Immutable configuration of one business object."""

    name: str
    table_name: str
    key_field: str
    standard_table: bool = True
    client_based: bool = True
    soft_delete: bool = True
    use_view: bool = True
    tenant_field: str = "ClientId"
    read_only_columns: Tuple[str, ...] = ()
    relations: Tuple[RelationSpec, ...] = ()
    multi_select_columns: Dict[str, MultiSelectColumn] = {}
    default_sort: Optional[str] = None
    lookup_sort: Optional[str] = None
    display_field: Optional[str] = None
    related_fields: Tuple[str, ...] = ()
    child_tables: Tuple[ChildTable, ...] = ()
    use_is_active: bool = False
    list_statement: Optional[str] = None
    lookup_list_statement: Optional[str] = None
    update_key_field: Optional[str] = None

    @field_validator("table_name", "key_field", "tenant_field", "display_field", "update_key_field")
    @classmethod
    def validate_identifier(cls, value: Optional[str]) -> Optional[str]:
        return _validate_optional_identifier(value)

    @field_validator("related_fields", "read_only_columns")
    @classmethod
    def validate_identifiers(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for item in value:
            validate_field_name(item)
        return value

    @field_validator("multi_select_columns")
    @classmethod
    def validate_multi_select_names(cls, value: Dict[str, MultiSelectColumn]) -> Dict[str, MultiSelectColumn]:
        for column_name in value:
            validate_field_name(column_name)
        return value

    @classmethod
    def from_config(cls, name: str, config: Optional[Mapping[str, Any]] = None) -> "BusinessObjectDescriptor":
        """Merge a configuration object onto the base defaults."""
        values: Dict[str, Any] = {
            "name": name,
            "standard_table": True,
            "client_based": True,
            "soft_delete": True,
            "table_name": name,
            "key_field": f"{name}Id",
        }
        for key, value in (config or {}).items():
            snake = to_snake(key)
            values[_KEY_RENAMES.get(snake, snake)] = value
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise QueryValidationError(f"Invalid configuration for {name}: {e.errors()[0]['msg']}")

    # ===== DERIVED NAMES =====

    @property
    def uses_view(self) -> bool:
        return self.standard_table and self.use_view and not self.list_statement

    @property
    def view_name(self) -> str:
        return f"vw{self.table_name}List"

    @property
    def write_key_field(self) -> str:
        return self.update_key_field or self.key_field

    @property
    def one_to_many_relations(self) -> List[RelationSpec]:
        return [relation for relation in self.relations if relation.is_one_to_many]

    def multi_select_table(self, column_name: str) -> str:
        config = self.multi_select_columns.get(column_name) or MultiSelectColumn()
        return config.table or f"{self.table_name}{column_name}"

    def protected_columns(self) -> List[str]:
        """Columns callers may never write directly."""
        columns = list(self.read_only_columns)
        if self.standard_table:
            columns.extend(SYSTEM_COLUMNS)
        return columns
