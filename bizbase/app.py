"""FastAPI application entry point for the business-object service."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from bizbase.business.error_mapper import SqlErrorMapper
from bizbase.business.registry import BusinessObjectRegistry
from bizbase.core.config import Settings, get_settings
from bizbase.core.database import create_engine
from bizbase.core.exceptions import (
    BusinessObjectNotFoundError,
    QueryValidationError,
    ReferentialIntegrityError,
    SecurityViolationError,
)
from bizbase.core.router import register_routes
from bizbase.logging.config import configure_logging
from bizbase.logging.exception_handlers import (
    general_exception_handler,
    http_exception_handler,
    not_found_exception_handler,
    query_validation_exception_handler,
    referential_integrity_exception_handler,
    request_validation_exception_handler,
    security_violation_exception_handler,
)
from bizbase.logging.middleware import LoggingMiddleware
from bizbase.sql.dialects import get_dialect

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[BusinessObjectRegistry] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    if registry is None:
        registry = BusinessObjectRegistry()
        if settings.business_objects_file:
            registry.load_file(settings.business_objects_file)

    app.state.settings = settings
    app.state.registry = registry
    app.state.dialect = get_dialect(settings.sql_dialect, settings.max_list_parameters)
    app.state.engine = create_engine(settings)
    app.state.error_mapper = SqlErrorMapper(file=settings.error_mappings_file)

    # Add request logger middleware
    app.add_middleware(
        LoggingMiddleware,
        slow_request_ms=settings.slow_request_threshold_ms,
        application_id=settings.application_id,
    )

    app.add_exception_handler(QueryValidationError, query_validation_exception_handler)
    app.add_exception_handler(SecurityViolationError, security_violation_exception_handler)
    app.add_exception_handler(BusinessObjectNotFoundError, not_found_exception_handler)
    app.add_exception_handler(ReferentialIntegrityError, referential_integrity_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    register_routes(app)

    logger.info(
        "Business object service ready: dialect %s, %s registered objects",
        app.state.dialect.name,
        len(registry),
    )
    return app
