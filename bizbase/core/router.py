# bizbase/core/router.py
"""
Module for registering routes in the FastAPI application.
"""

from fastapi import FastAPI

from bizbase.business.router import router as business_router


def register_routes(app: FastAPI) -> None:
    """
    Registers all the routes for the FastAPI application.

    Args:
        app (FastAPI): The FastAPI application instance.
    """
    app.include_router(business_router, prefix="/api")
