"""Main application module for the product database admin service."""

import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from loguru import logger

from app.api.deps import get_product_db_manager
from app.api.routes import product_databases
from app.core.exceptions import ProductDatabaseError
from app.db.client import supabase

# Load environment variables
load_dotenv()

# Application settings
APP_TITLE = "🗄️ Product Database Admin API"
APP_DESCRIPTION = "Manage per-product database credentials and browse product databases"
APP_VERSION = "0.1.0"

# CORS settings
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")


# Lifespan context manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for application startup and shutdown events."""
    if supabase is None:
        logger.warning("⚠️ Admin database is not configured, config routes will fail")
    else:
        logger.info("✅ Admin database client ready")

    yield  # Application runs here

    try:
        manager = get_product_db_manager()
        open_connections = await manager.close_all()
        logger.info(f"✅ Shutdown complete, dropped {open_connections} product database clients")
    except Exception as e:
        logger.error(f"❌ Error during shutdown: {str(e)}")


def create_application() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(product_databases.router)

    # Error handling
    @app.exception_handler(ProductDatabaseError)
    async def product_database_exception_handler(request: Request, exc: ProductDatabaseError):
        logger.warning(f"⚠️ {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, **exc.to_dict()},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": f"An unexpected error occurred: {str(exc)}",
            },
        )

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "success": True,
            "message": "Welcome to 🗄️ Product Database Admin API",
            "data": {
                "version": APP_VERSION,
                "documentation": "/docs",
            },
        }

    # Health endpoint
    @app.get("/health")
    async def health():
        return {
            "success": True,
            "message": "Service is healthy",
            "data": {"admin_database": "configured" if supabase is not None else "missing"},
        }

    return app


app = create_application()
