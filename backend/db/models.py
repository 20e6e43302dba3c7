"""
KitchenLink Database Models

Tables for the delivery-platform ingestion pipeline.
Every operational row is scoped by cost center (restaurant).

Tables:
  Integrations (1-3):
  1. integrations              - One configured connection to one platform
  2. integration_sync_logs     - Poll / manual / backfill run history
  3. integration_inbox         - Durable staging of raw inbound payloads

  Orders (4-7):
  4. orders                    - Legacy logistics order with timing metrics
  5. pdv_orders                - Point-of-sale order mirror
  6. pdv_order_status_history  - POS status transitions
  7. work_time_orders          - Per-order operational timing for analytics
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

INTEGRATION_STATUSES = ("CONFIGURED", "CONNECTED", "INGESTING", "STOPPED", "DEGRADED")
INBOX_STATUSES = ("PENDING", "PROCESSED", "FAILED", "IGNORED")
SYNC_TYPES = ("POLL", "MANUAL", "BACKFILL")
SYNC_STATUSES = ("SUCCESS", "PARTIAL", "FAILED")
PDV_ORDER_STATUSES = ("NEW", "PREPARING", "READY", "OUT_FOR_DELIVERY", "COMPLETED", "CANCELLED")
SHIFTS = ("DAY", "NIGHT")


def _in(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


# ─── 1. Integrations ───────────────────────────────────────────────────────


class Integration(Base):
    __tablename__ = "integrations"

    integration_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    cost_center_id = Column(GUID(), nullable=False)
    organization_id = Column(GUID())
    platform = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    credentials = Column(JSON, default=dict)  # Shape validated per adapter
    webhook_secret = Column(String(255))
    status = Column(String(20), nullable=False, default="CONFIGURED")
    sync_frequency_minutes = Column(Integer, nullable=False, default=15)
    last_sync_at = Column(DateTime)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_integrations_cost_center", "cost_center_id"),
        Index("ix_integrations_status", "status"),
        CheckConstraint(_in("status", INTEGRATION_STATUSES), name="ck_integration_status"),
        CheckConstraint("sync_frequency_minutes >= 1", name="ck_integration_sync_frequency"),
    )

    sync_logs = relationship("IntegrationSyncLog", back_populates="integration")
    inbox_items = relationship("InboxItem", back_populates="integration")


# ─── 2. Sync Logs ──────────────────────────────────────────────────────────


class IntegrationSyncLog(Base):
    __tablename__ = "integration_sync_logs"

    sync_log_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    integration_id = Column(GUID(), ForeignKey("integrations.integration_id"), nullable=False)
    sync_type = Column(String(20), nullable=False, default="POLL")
    status = Column(String(20), nullable=False)
    items_processed = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime)
    window_end = Column(DateTime)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)
    error_message = Column(Text)

    __table_args__ = (
        Index("ix_sync_logs_integration_started", "integration_id", "started_at"),
        CheckConstraint(_in("sync_type", SYNC_TYPES), name="ck_sync_log_type"),
        CheckConstraint(_in("status", SYNC_STATUSES), name="ck_sync_log_status"),
    )

    integration = relationship("Integration", back_populates="sync_logs")


# ─── 3. Integration Inbox ──────────────────────────────────────────────────


class InboxItem(Base):
    """
    One durable record per raw inbound payload.

    Lifecycle:
        PENDING → PROCESSED | FAILED | IGNORED
        (any terminal state) → PENDING only through an explicit reprocess

    Items are never deleted; failed items stay inspectable and reprocessable.
    """

    __tablename__ = "integration_inbox"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    integration_id = Column(GUID(), ForeignKey("integrations.integration_id"), nullable=False)
    source = Column(String(50), nullable=False)
    event = Column(String(100))
    external_id = Column(String(255))
    raw_payload = Column(JSON, nullable=False)
    parsed_payload = Column(JSON)
    correlation_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    error_message = Column(Text)
    retries_count = Column(Integer, nullable=False, default=0)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_inbox_integration_status_received", "integration_id", "status", "received_at"),
        Index("ix_inbox_external", "integration_id", "external_id"),
        CheckConstraint(_in("status", INBOX_STATUSES), name="ck_inbox_status"),
    )

    integration = relationship("Integration", back_populates="inbox_items")


# ─── 4. Orders (legacy logistics view) ─────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    cost_center_id = Column(GUID(), nullable=False)
    organization_id = Column(GUID())
    integration_id = Column(GUID(), ForeignKey("integrations.integration_id"))
    external_id = Column(String(255), nullable=False)
    logistics_provider = Column(String(50), nullable=False)
    order_datetime = Column(DateTime, nullable=False)
    ready_datetime = Column(DateTime)
    out_for_delivery_datetime = Column(DateTime)
    delivered_datetime = Column(DateTime)
    prep_time = Column(Float)
    pickup_time = Column(Float)
    delivery_time = Column(Float)
    total_time = Column(Float)
    customer_name = Column(String(255))
    delivery_address = Column(String(500))
    order_value = Column(Float)
    order_metadata = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "cost_center_id", "external_id", "logistics_provider", name="uq_order_cost_center_external_provider"
        ),
        Index("ix_orders_cost_center_datetime", "cost_center_id", "order_datetime"),
    )


# ─── 5-6. Point-of-sale orders ─────────────────────────────────────────────


class PdvOrder(Base):
    __tablename__ = "pdv_orders"

    pdv_order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    cost_center_id = Column(GUID(), nullable=False)
    organization_id = Column(GUID())
    code = Column(String(255), nullable=False)
    order_type = Column(String(20), nullable=False, default="DELIVERY")
    sales_channel = Column(String(50), nullable=False)
    status = Column(String(30), nullable=False, default="NEW")
    customer_name = Column(String(255))
    customer_phone = Column(String(50))
    subtotal = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    ready_at = Column(DateTime)
    delivered_at = Column(DateTime)
    order_metadata = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("cost_center_id", "code", name="uq_pdv_order_cost_center_code"),
        CheckConstraint(_in("status", PDV_ORDER_STATUSES), name="ck_pdv_order_status"),
        CheckConstraint("order_type IN ('DELIVERY', 'TAKEOUT', 'DINE_IN')", name="ck_pdv_order_type"),
    )

    status_history = relationship(
        "PdvOrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PdvOrderStatusHistory.created_at",
    )


class PdvOrderStatusHistory(Base):
    __tablename__ = "pdv_order_status_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    pdv_order_id = Column(GUID(), ForeignKey("pdv_orders.pdv_order_id"), nullable=False)
    from_status = Column(String(30))
    to_status = Column(String(30), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_pdv_status_history_order", "pdv_order_id", "created_at"),)

    order = relationship("PdvOrder", back_populates="status_history")


# ─── 7. Work-time orders ───────────────────────────────────────────────────


class WorkTimeOrder(Base):
    """Operational timing per physical order, keyed for idempotent upsert."""

    __tablename__ = "work_time_orders"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(GUID(), nullable=False)
    provider = Column(String(50), nullable=False)
    provider_order_id = Column(String(255), nullable=False)
    order_date = Column(DateTime, nullable=False)
    arrived_at = Column(DateTime, nullable=False)
    ready_at = Column(DateTime)
    picked_up_at = Column(DateTime)
    delivered_at = Column(DateTime)
    shift = Column(String(10), nullable=False)
    workday = Column(Date, nullable=False)
    raw_payload = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "provider", "provider_order_id", name="uq_work_time_order_key"),
        Index("ix_work_time_orders_workday", "restaurant_id", "workday", "shift"),
        CheckConstraint(_in("shift", SHIFTS), name="ck_work_time_shift"),
    )
