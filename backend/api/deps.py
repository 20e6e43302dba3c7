"""
KitchenLink API Dependencies

Dependency injection for DB sessions and the integration runtime.
"""

from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import AsyncSessionLocal
from integrations.inbox import IntegrationInbox
from integrations.manager import IntegrationManager


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_manager(request: Request) -> IntegrationManager:
    """The IntegrationManager started by the app lifespan."""
    manager = getattr(request.app.state, "integration_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Integration manager not started",
        )
    return manager


def get_inbox(request: Request) -> IntegrationInbox:
    return get_manager(request).inbox
