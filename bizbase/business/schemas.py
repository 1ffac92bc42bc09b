# bizbase/business/schemas.py
"""Request and result shapes for business-object operations."""

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListRequest(CamelModel):
    """Paging, sorting and filtering for a list call."""

    start: int = 0
    limit: int = 100
    sort: Optional[str] = None
    filter: Union[str, List[Dict[str, Any]], None] = Field(
        default=None, validation_alias=AliasChoices("filter", "where")
    )
    group_by: Optional[str] = None
    include: Union[str, List[int], None] = None
    exclude: Union[str, List[int], None] = None
    return_count: bool = True
    logical_operator: str = "AND"

    @field_validator("start", "limit")
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be zero or greater")
        return value

    @field_validator("logical_operator")
    @classmethod
    def validate_logical_operator(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in ("AND", "OR"):
            raise ValueError("logicalOperator must be AND or OR")
        return value


class ListResult(CamelModel):
    records: List[Dict[str, Any]] = []
    record_count: Optional[int] = None


class OperationResult(CamelModel):
    """Envelope for writes: driver failures come back here instead of raising."""

    success: bool
    data: Any = None
    err: Optional[str] = None


class DeleteRequest(CamelModel):
    values: Dict[str, Any] = {}
