"""
KitchenLink API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from db.session import AsyncSessionLocal
from integrations.adapters import build_default_registry
from integrations.manager import IntegrationManager

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("KitchenLink API starting up", version=settings.app_version)
    manager = IntegrationManager(AsyncSessionLocal, build_default_registry(), settings)
    loaded = await manager.init()
    app.state.integration_manager = manager
    logger.info("KitchenLink integrations loaded", count=loaded, sandbox=settings.sandbox_mode)
    yield
    await manager.shutdown()
    logger.info("KitchenLink API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Delivery-platform order ingestion for restaurant operations",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import integrations

app.include_router(integrations.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
