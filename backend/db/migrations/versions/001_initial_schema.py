"""
Initial schema - integrations, inbox and the three order tables

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Integrations
    op.create_table(
        "integrations",
        sa.Column("integration_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", UUID(as_uuid=True)),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("credentials", sa.JSON),
        sa.Column("webhook_secret", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="CONFIGURED"),
        sa.Column("sync_frequency_minutes", sa.Integer, nullable=False, server_default="15"),
        sa.Column("last_sync_at", sa.DateTime),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('CONFIGURED', 'CONNECTED', 'INGESTING', 'STOPPED', 'DEGRADED')",
            name="ck_integration_status",
        ),
        sa.CheckConstraint("sync_frequency_minutes >= 1", name="ck_integration_sync_frequency"),
    )
    op.create_index("ix_integrations_cost_center", "integrations", ["cost_center_id"])
    op.create_index("ix_integrations_status", "integrations", ["status"])

    # 2. Sync logs
    op.create_table(
        "integration_sync_logs",
        sa.Column("sync_log_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "integration_id", UUID(as_uuid=True), sa.ForeignKey("integrations.integration_id"), nullable=False
        ),
        sa.Column("sync_type", sa.String(20), nullable=False, server_default="POLL"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("items_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("items_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("window_start", sa.DateTime),
        sa.Column("window_end", sa.DateTime),
        sa.Column("started_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("error_message", sa.Text),
        sa.CheckConstraint("sync_type IN ('POLL', 'MANUAL', 'BACKFILL')", name="ck_sync_log_type"),
        sa.CheckConstraint("status IN ('SUCCESS', 'PARTIAL', 'FAILED')", name="ck_sync_log_status"),
    )
    op.create_index("ix_sync_logs_integration_started", "integration_sync_logs", ["integration_id", "started_at"])

    # 3. Inbox
    op.create_table(
        "integration_inbox",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "integration_id", UUID(as_uuid=True), sa.ForeignKey("integrations.integration_id"), nullable=False
        ),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event", sa.String(100)),
        sa.Column("external_id", sa.String(255)),
        sa.Column("raw_payload", sa.JSON, nullable=False),
        sa.Column("parsed_payload", sa.JSON),
        sa.Column("correlation_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("error_message", sa.Text),
        sa.Column("retries_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("received_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime),
        sa.CheckConstraint("status IN ('PENDING', 'PROCESSED', 'FAILED', 'IGNORED')", name="ck_inbox_status"),
    )
    op.create_index(
        "ix_inbox_integration_status_received", "integration_inbox", ["integration_id", "status", "received_at"]
    )
    op.create_index("ix_inbox_external", "integration_inbox", ["integration_id", "external_id"])

    # 4. Legacy orders
    op.create_table(
        "orders",
        sa.Column("order_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", UUID(as_uuid=True)),
        sa.Column("integration_id", UUID(as_uuid=True), sa.ForeignKey("integrations.integration_id")),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("logistics_provider", sa.String(50), nullable=False),
        sa.Column("order_datetime", sa.DateTime, nullable=False),
        sa.Column("ready_datetime", sa.DateTime),
        sa.Column("out_for_delivery_datetime", sa.DateTime),
        sa.Column("delivered_datetime", sa.DateTime),
        sa.Column("prep_time", sa.Float),
        sa.Column("pickup_time", sa.Float),
        sa.Column("delivery_time", sa.Float),
        sa.Column("total_time", sa.Float),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("delivery_address", sa.String(500)),
        sa.Column("order_value", sa.Float),
        sa.Column("order_metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "cost_center_id", "external_id", "logistics_provider", name="uq_order_cost_center_external_provider"
        ),
    )
    op.create_index("ix_orders_cost_center_datetime", "orders", ["cost_center_id", "order_datetime"])

    # 5. POS orders
    op.create_table(
        "pdv_orders",
        sa.Column("pdv_order_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("cost_center_id", UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", UUID(as_uuid=True)),
        sa.Column("code", sa.String(255), nullable=False),
        sa.Column("order_type", sa.String(20), nullable=False, server_default="DELIVERY"),
        sa.Column("sales_channel", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="NEW"),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("customer_phone", sa.String(50)),
        sa.Column("subtotal", sa.Float, nullable=False, server_default="0"),
        sa.Column("delivery_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("discount", sa.Float, nullable=False, server_default="0"),
        sa.Column("total", sa.Float, nullable=False, server_default="0"),
        sa.Column("ready_at", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("order_metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("cost_center_id", "code", name="uq_pdv_order_cost_center_code"),
        sa.CheckConstraint(
            "status IN ('NEW', 'PREPARING', 'READY', 'OUT_FOR_DELIVERY', 'COMPLETED', 'CANCELLED')",
            name="ck_pdv_order_status",
        ),
        sa.CheckConstraint("order_type IN ('DELIVERY', 'TAKEOUT', 'DINE_IN')", name="ck_pdv_order_type"),
    )

    # 6. POS status history
    op.create_table(
        "pdv_order_status_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("pdv_order_id", UUID(as_uuid=True), sa.ForeignKey("pdv_orders.pdv_order_id"), nullable=False),
        sa.Column("from_status", sa.String(30)),
        sa.Column("to_status", sa.String(30), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_pdv_status_history_order", "pdv_order_status_history", ["pdv_order_id", "created_at"])

    # 7. Work-time orders
    op.create_table(
        "work_time_orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("restaurant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_order_id", sa.String(255), nullable=False),
        sa.Column("order_date", sa.DateTime, nullable=False),
        sa.Column("arrived_at", sa.DateTime, nullable=False),
        sa.Column("ready_at", sa.DateTime),
        sa.Column("picked_up_at", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("shift", sa.String(10), nullable=False),
        sa.Column("workday", sa.Date, nullable=False),
        sa.Column("raw_payload", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("restaurant_id", "provider", "provider_order_id", name="uq_work_time_order_key"),
        sa.CheckConstraint("shift IN ('DAY', 'NIGHT')", name="ck_work_time_shift"),
    )
    op.create_index("ix_work_time_orders_workday", "work_time_orders", ["restaurant_id", "workday", "shift"])


def downgrade() -> None:
    tables = [
        "work_time_orders",
        "pdv_order_status_history",
        "pdv_orders",
        "orders",
        "integration_inbox",
        "integration_sync_logs",
        "integrations",
    ]
    for table in tables:
        op.drop_table(table)
