# bizbase/core/dependencies.py
"""Dependencies shared by the business-object routes"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncConnection

from bizbase.business.context import RequestContext
from bizbase.business.registry import BusinessObjectRegistry
from bizbase.core.config import Settings
from bizbase.core.database import get_connection
from bizbase.sql.executor import SqlExecutor


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> BusinessObjectRegistry:
    return request.app.state.registry


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
RegistryDep = Annotated[BusinessObjectRegistry, Depends(get_registry)]
ConnectionDep = Annotated[AsyncConnection, Depends(get_connection)]


def get_executor(request: Request, connection: ConnectionDep, settings: SettingsDep) -> SqlExecutor:
    """Executor bound to this request's connection"""
    return SqlExecutor(connection, request.app.state.dialect, settings.slow_query_threshold_ms)


def get_request_context(request: Request) -> RequestContext:
    """Principal attached by the upstream auth layer"""
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return RequestContext.from_user(user)


ExecutorDep = Annotated[SqlExecutor, Depends(get_executor)]
ContextDep = Annotated[RequestContext, Depends(get_request_context)]
