# bizbase/business/router.py
"""API router for registered business objects."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from bizbase.business.dao import AuditLookup
from bizbase.business.schemas import DeleteRequest, ListRequest, ListResult, OperationResult
from bizbase.business.service import BusinessObjectService
from bizbase.core.dependencies import ContextDep, ExecutorDep, RegistryDep, SettingsDep

router = APIRouter(prefix="/business", tags=["business"])


def get_business_service(
    name: str,
    request: Request,
    registry: RegistryDep,
    executor: ExecutorDep,
    context: ContextDep,
    settings: SettingsDep,
) -> BusinessObjectService:
    """Service for the business object named in the path."""
    entry = registry.get(name)
    return entry.get_service(
        executor,
        context,
        registry,
        strategy=settings.in_operator_strategy,
        audit=AuditLookup(settings.audit_user_table, settings.audit_user_key, settings.audit_user_name),
        error_mapper=request.app.state.error_mapper,
    )


# ===== READ ENDPOINTS =====


@router.post("/{name}/list", response_model=ListResult, response_model_exclude_none=True)
async def list_records(
    list_request: Optional[ListRequest] = Body(default=None),
    service: BusinessObjectService = Depends(get_business_service),
) -> ListResult:
    """Filtered, sorted and paged rows with an optional total count."""
    return await service.list(list_request or ListRequest())


@router.get("/{name}/lookup", response_model=List[Dict[str, Any]])
async def lookup_records(
    context: ContextDep,
    scope_id: Optional[int] = None,
    service: BusinessObjectService = Depends(get_business_service),
) -> List[Dict[str, Any]]:
    """value/label pairs for drop-downs."""
    return await service.lookup_list(scope_id if scope_id is not None else context.scope_id)


@router.get("/{name}/{id}")
async def load_record(
    id: int,
    relations: bool = True,
    service: BusinessObjectService = Depends(get_business_service),
) -> Dict[str, Any]:
    row = await service.load(id, relations=relations)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{service.descriptor.name} {id} not found")
    return row


# ===== WRITE ENDPOINTS =====


@router.put("/{name}/{id}", response_model=OperationResult, response_model_exclude_none=True)
async def save_record(
    id: int,
    payload: Dict[str, Any] = Body(...),
    service: BusinessObjectService = Depends(get_business_service),
) -> OperationResult:
    """Insert when id is 0, update otherwise."""
    return await service.save({**payload, "id": id})


@router.delete("/{name}/{id}", response_model=OperationResult, response_model_exclude_none=True)
async def delete_record(
    id: int,
    delete_request: Optional[DeleteRequest] = Body(default=None),
    service: BusinessObjectService = Depends(get_business_service),
) -> OperationResult:
    return await service.delete(id, delete_request)
