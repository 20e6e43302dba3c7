"""Integration-aware scheduler helpers for Celery beat fan-out."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

DEFAULT_ACTIVE_STATUSES = ("CONNECTED",)


@celery_app.task(
    name="workers.scheduler.dispatch_active_integrations",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_integrations(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    platforms: list[str] | None = None,
):
    """
    Dispatch an integration-scoped task across every connected integration
    whose adapter stages orders in the inbox.
    """
    from core.config import get_settings
    from db.models import Integration
    from integrations.adapters import build_default_registry
    from integrations.pipeline import InboxIngestion

    run_id = self.request.id or "manual"
    payload = dict(task_kwargs or {})

    if not task_name.startswith("workers."):
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    registry = build_default_registry()
    eligible = {
        platform
        for platform in registry.platforms()
        if issubclass(registry.resolve(platform), InboxIngestion)
    }
    if platforms:
        eligible &= {p.strip().lower() for p in platforms}

    async def _dispatch():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                result = await db.execute(
                    select(Integration.integration_id, Integration.platform)
                    .where(Integration.status.in_(DEFAULT_ACTIVE_STATUSES))
                    .order_by(Integration.created_at)
                )
                integrations = [
                    str(row.integration_id) for row in result.all() if row.platform.lower() in eligible
                ]

            dispatched = 0
            for integration_id in integrations:
                kwargs = dict(payload)
                kwargs["integration_id"] = integration_id
                celery_app.send_task(task_name, kwargs=kwargs)
                dispatched += 1

            summary = {
                "status": "success",
                "task_name": task_name,
                "integration_count": len(integrations),
                "dispatched_count": dispatched,
                "platforms": sorted(eligible),
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("scheduler.dispatch_complete", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_dispatch())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
