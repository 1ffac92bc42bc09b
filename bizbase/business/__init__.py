"""Business-object descriptors, registry and the CRUD/list service."""

from .context import RequestContext
from .descriptor import BusinessObjectDescriptor, ChildTable, MultiSelectColumn, RelationSpec, RelationType
from .registry import BusinessObjectRegistry
from .service import BusinessObjectService

__all__ = [
    "BusinessObjectDescriptor",
    "BusinessObjectRegistry",
    "BusinessObjectService",
    "ChildTable",
    "MultiSelectColumn",
    "RelationSpec",
    "RelationType",
    "RequestContext",
]
