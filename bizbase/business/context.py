# bizbase/business/context.py
"""Per-request principal used for tenant scoping and audit columns."""

from typing import Any, Dict, List, Mapping, Tuple, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestContext(BaseModel):
    """Authenticated caller, built by the upstream auth layer."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("userId", "user_id", "id"))
    user_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("userName", "user_name", "username"))
    scope_id: Optional[int] = None
    permitted_scope_ids: Tuple[int, ...] = ()
    roles: Tuple[str, ...] = ()
    tags: Dict[str, Any] = {}

    @classmethod
    def from_user(cls, user: Union["RequestContext", Mapping[str, Any]]) -> "RequestContext":
        if isinstance(user, RequestContext):
            return user
        return cls.model_validate(dict(user))

    @property
    def tenant_ids(self) -> List[int]:
        """Scopes visible to the caller; several when policy permits more than one."""
        if self.permitted_scope_ids:
            return list(self.permitted_scope_ids)
        return [self.scope_id] if self.scope_id else []
