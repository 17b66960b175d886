"""
FastAPI Application Entry Point.

This is the main application file for the WhatPrice Billing Backend.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from whatprice.app.core.config import settings
from whatprice.app.core.observability import ObservabilityMiddleware, configure_logging, logger
from whatprice.app.api.v1.router import router as api_v1_router
from whatprice.app.db.session import Database, get_database
from whatprice.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from whatprice.app.models.vendor import Vendor  # noqa: F401
from whatprice.app.models.product import Product  # noqa: F401
from whatprice.app.models.product_view import ProductView  # noqa: F401
from whatprice.app.models.view_transaction import ViewTransaction  # noqa: F401
from whatprice.app.models.vendor_metrics import VendorMetrics  # noqa: F401


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Builds the Database unless one was installed beforehand (tests).
    2. Creates database tables on startup.
    3. Disposes the engine on shutdown.
    """
    configure_logging(settings.log_level)

    owns_database = getattr(app.state, "database", None) is None
    if owns_database:
        app.state.database = Database.from_settings(settings)

    await app.state.database.create_all()
    logger.info("Application started", extra={"app_name": settings.app_name})
    yield

    if owns_database:
        await app.state.database.dispose()
        app.state.database = None


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Cost-per-view billing and view metering for the WhatPrice marketplace",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(database: Database = Depends(get_database)):
    """
    Health check endpoint.

    Pings the database so a lost connection shows up as "degraded".
    """
    try:
        async with database.session() as db:
            await db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        db_status = "unreachable"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "database": db_status,
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to WhatPrice Billing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
