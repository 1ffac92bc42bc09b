# bizbase/business/registry.py
"""Case-insensitive registry of business-object descriptors."""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from bizbase.business.descriptor import BusinessObjectDescriptor
from bizbase.core.exceptions import BusinessObjectNotFoundError, QueryValidationError

logger = logging.getLogger(__name__)


class RegistryEntry:
    """A registered descriptor plus the service class that handles it."""

    def __init__(self, descriptor: BusinessObjectDescriptor, service_cls: Optional[Type[Any]] = None):
        self.descriptor = descriptor
        self.service_cls = service_cls

    def get_service(self, executor, context, registry: "BusinessObjectRegistry", **kwargs):
        """Build the service instance for this entry."""
        from bizbase.business.service import BusinessObjectService

        service_cls = self.service_cls or BusinessObjectService
        return service_cls(self.descriptor, executor, context, registry=registry, **kwargs)


class BusinessObjectRegistry:
    """Entity name -> descriptor; names are case-insensitive and ignore '-'."""

    def __init__(self):
        self.entries: Dict[str, RegistryEntry] = {}

    @staticmethod
    def normalize(name: str) -> str:
        return name.replace("-", "").upper()

    def register(
        self,
        name: str,
        config: Union[BusinessObjectDescriptor, Mapping[str, Any], None] = None,
        service_cls: Optional[Type[Any]] = None,
    ) -> BusinessObjectDescriptor:
        """Register a descriptor, or a config merged onto the defaults."""
        if isinstance(config, BusinessObjectDescriptor):
            descriptor = config
        else:
            descriptor = BusinessObjectDescriptor.from_config(name, config)
        self.entries[self.normalize(name)] = RegistryEntry(descriptor, service_cls)
        logger.debug("Registered business object %s (table %s)", name, descriptor.table_name)
        return descriptor

    def get(self, name: str) -> RegistryEntry:
        entry = self.entries.get(self.normalize(name))
        if entry is None:
            raise BusinessObjectNotFoundError(name)
        return entry

    def descriptor(self, name: str) -> BusinessObjectDescriptor:
        return self.get(name).descriptor

    def key_field_for(self, name: Optional[str]) -> Optional[str]:
        """Key field of a registered object, or None when it is unknown."""
        if not name:
            return None
        entry = self.entries.get(self.normalize(name))
        return entry.descriptor.key_field if entry else None

    def names(self) -> List[str]:
        return [entry.descriptor.name for entry in self.entries.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.normalize(name) in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def load_file(self, path: str) -> int:
        """Register every `{name: config}` pair from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            configs = json.load(f)
        if not isinstance(configs, dict):
            raise QueryValidationError(f"Business object file {path} must contain an object")
        for name, config in configs.items():
            self.register(name, config)
        logger.info("Loaded %s business objects from %s", len(configs), path)
        return len(configs)
