"""
Integrations Router — delivery-platform connections, inbox and webhooks.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_inbox, get_manager
from core.config import get_settings
from db.models import Integration
from integrations.errors import (
    AdapterNotFoundError,
    CapabilityError,
    ConfigurationError,
    InboxItemNotFoundError,
    InboxTransitionError,
    IntegrationError,
    IntegrationNotFoundError,
    PlatformAPIError,
    ValidationError,
)
from integrations.inbox import IntegrationInbox
from integrations.manager import IntegrationManager, config_from_row
from integrations.types import IntegrationStatus

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])
settings = get_settings()
logger = structlog.get_logger()


# ─── Schemas ────────────────────────────────────────────────────────────────


class IntegrationResponse(BaseModel):
    integration_id: UUID
    cost_center_id: UUID
    organization_id: UUID | None
    platform: str
    name: str
    status: str
    sync_frequency_minutes: int
    last_sync_at: datetime | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class IntegrationCreate(BaseModel):
    platform: str
    name: str
    cost_center_id: UUID
    organization_id: UUID | None = None
    credentials: dict[str, Any]
    webhook_secret: str | None = None
    sync_frequency_minutes: int = Field(default=15, ge=1)


class IntegrationUpdate(BaseModel):
    sync_frequency_minutes: int = Field(ge=1)


class PlatformResponse(BaseModel):
    platform: str
    type: str
    credential_fields: list[str]


class InboxItemResponse(BaseModel):
    id: UUID
    integration_id: UUID
    source: str
    event: str | None
    external_id: str | None
    correlation_id: str
    status: str
    error_message: str | None
    retries_count: int
    raw_payload: dict[str, Any] | list[Any]
    parsed_payload: dict[str, Any] | None
    received_at: datetime
    processed_at: datetime | None

    model_config = {"from_attributes": True}


class InboxPageResponse(BaseModel):
    items: list[InboxItemResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def _http_error(exc: IntegrationError) -> HTTPException:
    if isinstance(exc, (IntegrationNotFoundError, InboxItemNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InboxTransitionError, CapabilityError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ConfigurationError, ValidationError, AdapterNotFoundError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, PlatformAPIError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


async def _get_row(db: AsyncSession, integration_id: UUID) -> Integration:
    integration = await db.get(Integration, integration_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


# ─── Catalog of platforms ───────────────────────────────────────────────────


@router.get("/platforms", response_model=list[PlatformResponse])
async def list_platforms(manager: IntegrationManager = Depends(get_manager)):
    """Registered platforms with their integration type and credential fields."""
    platforms = []
    for platform in manager.registry.platforms():
        adapter_cls = manager.registry.resolve(platform)
        platforms.append(
            PlatformResponse(
                platform=platform,
                type=adapter_cls.integration_type.value,
                credential_fields=list(adapter_cls.credentials_cls.required_fields()),
            )
        )
    return platforms


# ─── Inbox ──────────────────────────────────────────────────────────────────


@router.get("/inbox", response_model=InboxPageResponse)
async def list_inbox(
    integration_id: UUID | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, le=500),
    inbox: IntegrationInbox = Depends(get_inbox),
):
    """Inbox items, newest first."""
    result = await inbox.list_items(
        integration_id=integration_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return InboxPageResponse(
        items=[InboxItemResponse.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.post("/inbox/{item_id}/reprocess")
async def reprocess_inbox_item(
    item_id: UUID,
    manager: IntegrationManager = Depends(get_manager),
):
    """Re-run processing for one inbox item, whatever its current state."""
    try:
        success = await manager.reprocess_inbox_item(item_id)
        item = await manager.inbox.get_item(item_id)
    except IntegrationError as exc:
        raise _http_error(exc) from exc
    return {"success": success, "item": InboxItemResponse.model_validate(item)}


# ─── CRUD ───────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[IntegrationResponse])
async def list_integrations(
    cost_center_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
):
    """List integrations, optionally for one cost center."""
    query = select(Integration).order_by(Integration.created_at)
    if cost_center_id is not None:
        query = query.where(Integration.cost_center_id == cost_center_id)
    result = await db.execute(query)
    return result.scalars().all()


@router.post("/", response_model=IntegrationResponse, status_code=201)
async def connect_integration(
    body: IntegrationCreate,
    db: AsyncSession = Depends(get_db),
    manager: IntegrationManager = Depends(get_manager),
):
    """
    Connect a platform: validate the credential shape, save as CONNECTED and
    activate it. A failed first authentication leaves the row DEGRADED.
    """
    platform = body.platform.strip().lower()
    try:
        adapter_cls = manager.registry.resolve(platform)
        adapter_cls.credentials_cls.from_mapping(body.credentials, platform)
    except IntegrationError as exc:
        raise _http_error(exc) from exc

    integration = Integration(
        cost_center_id=body.cost_center_id,
        organization_id=body.organization_id,
        platform=platform,
        name=body.name,
        credentials=body.credentials,
        webhook_secret=body.webhook_secret,
        status=IntegrationStatus.CONNECTED.value,
        sync_frequency_minutes=body.sync_frequency_minutes,
    )
    db.add(integration)
    await db.commit()
    await db.refresh(integration)

    if not await manager.add_integration(config_from_row(integration, manager.settings)):
        integration.status = IntegrationStatus.DEGRADED.value
        integration.last_error = "Authentication failed on connect"
        await db.commit()
        await db.refresh(integration)

    logger.info(
        "integrations.connected",
        integration_id=str(integration.integration_id),
        platform=platform,
        status=integration.status,
    )
    return integration


@router.patch("/{integration_id}", response_model=IntegrationResponse)
async def update_integration(
    integration_id: UUID,
    body: IntegrationUpdate,
    db: AsyncSession = Depends(get_db),
    manager: IntegrationManager = Depends(get_manager),
):
    """Change the polling interval; a running job is rescheduled."""
    try:
        await manager.update_sync_interval(integration_id, body.sync_frequency_minutes)
    except IntegrationError as exc:
        raise _http_error(exc) from exc
    integration = await _get_row(db, integration_id)
    await db.refresh(integration)
    return integration


@router.delete("/{integration_id}", status_code=204)
async def disconnect_integration(
    integration_id: UUID,
    db: AsyncSession = Depends(get_db),
    manager: IntegrationManager = Depends(get_manager),
):
    """Soft disconnect: the row and its inbox history are kept as STOPPED."""
    integration = await _get_row(db, integration_id)
    integration.status = IntegrationStatus.STOPPED.value
    await db.commit()
    await manager.remove_integration(integration_id)


# ─── Runtime ────────────────────────────────────────────────────────────────


@router.get("/{integration_id}/status")
async def integration_status(
    integration_id: UUID,
    manager: IntegrationManager = Depends(get_manager),
):
    try:
        return await manager.status(integration_id)
    except IntegrationError as exc:
        raise _http_error(exc) from exc


@router.post("/{integration_id}/sync")
async def sync_integration(
    integration_id: UUID,
    manager: IntegrationManager = Depends(get_manager),
):
    """Pull the current business day now."""
    try:
        count = await manager.manual_sync(integration_id)
    except IntegrationError as exc:
        raise _http_error(exc) from exc
    return {"status": "completed", "items": count}


@router.post("/{integration_id}/test")
async def test_integration(
    integration_id: UUID,
    manager: IntegrationManager = Depends(get_manager),
):
    try:
        connected = await manager.test_connection(integration_id)
    except IntegrationError as exc:
        raise _http_error(exc) from exc
    return {"connected": connected}


# ─── Webhook ────────────────────────────────────────────────────────────────


@router.post("/{integration_id}/webhook", status_code=202, response_model=InboxItemResponse)
async def receive_webhook(
    integration_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: IntegrationManager = Depends(get_manager),
):
    """Stage a pushed platform event in the inbox, verifying its signature when a secret is set."""
    integration = await _get_row(db, integration_id)
    body = await request.body()

    if integration.webhook_secret:
        signature = request.headers.get(settings.webhook_signature_header, "")
        expected = hmac.new(
            integration.webhook_secret.encode(),
            body,
            hashlib.sha256,
        ).hexdigest()
        if not hmac.compare_digest(signature, expected):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=422, detail="Webhook body must be a JSON object")

    try:
        item = await manager.receive_webhook(
            integration_id,
            payload,
            event=request.headers.get("x-event-type") or payload.get("event"),
            correlation_id=request.headers.get("x-correlation-id"),
        )
    except IntegrationError as exc:
        raise _http_error(exc) from exc
    return item
