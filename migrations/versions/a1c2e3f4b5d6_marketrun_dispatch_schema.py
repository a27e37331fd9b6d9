"""marketrun dispatch schema: users, agents, markets, orders, payments, trails

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "a1c2e3f4b5d6"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    try:
        indexes = sa.inspect(bind).get_indexes(table_name)
        return any((idx.get("name") or "") == index_name for idx in indexes)
    except Exception:
        return False


def _create_indexes(bind, table_name: str, specs) -> None:
    for columns, unique in specs:
        name = f"ix_{table_name}_{'_'.join(columns)}"
        if not _index_exists(bind, table_name, name):
            op.create_index(name, table_name, list(columns), unique=unique)


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("first_name", sa.String(length=80), nullable=False, server_default=""),
            sa.Column("last_name", sa.String(length=80), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("user_type", sa.String(length=16), nullable=False, server_default="customer"),
            sa.Column("is_deactivated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_kyc_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(bind, "users", [(("email",), True), (("phone",), True), (("user_type",), False)])

    if not _table_exists(bind, "agent_settings"):
        op.create_table(
            "agent_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("current_status", sa.String(length=16), nullable=False, server_default="offline"),
            sa.Column("is_accepting_orders", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("last_status_update", sa.DateTime(), nullable=True),
            sa.Column("kyc_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("kyc_completed_at", sa.DateTime(), nullable=True),
            sa.Column("nin", sa.String(length=32), nullable=True),
            sa.Column("images_json", sa.Text(), nullable=True),
            sa.Column("identity_document_json", sa.Text(), nullable=True),
            sa.Column("liveness_verification_json", sa.Text(), nullable=True),
            sa.Column("metadata_version", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(
        bind,
        "agent_settings",
        [(("agent_id",), True), (("current_status",), False), (("is_accepting_orders",), False)],
    )

    if not _table_exists(bind, "agent_locations"):
        op.create_table(
            "agent_locations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("latitude", sa.Float(), nullable=False),
            sa.Column("longitude", sa.Float(), nullable=False),
            sa.Column("radius", sa.Float(), nullable=False, server_default="5.0"),
            sa.Column("location_type", sa.String(length=24), nullable=False, server_default="service_area"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("name", sa.String(length=120), nullable=True),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(
        bind,
        "agent_locations",
        [(("agent_id",), False), (("location_type",), False), (("is_active",), False)],
    )

    if not _table_exists(bind, "markets"):
        op.create_table(
            "markets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists(bind, "shopping_lists"):
        op.create_table(
            "shopping_lists",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("market_id", sa.Integer(), sa.ForeignKey("markets.id"), nullable=True),
            sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="draft"),
            sa.Column("estimated_total", sa.Float(), nullable=False, server_default="0"),
            sa.Column("payment_status", sa.String(length=16), nullable=True),
            sa.Column("payment_id", sa.String(length=128), nullable=True),
            sa.Column("payment_processed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(
        bind,
        "shopping_lists",
        [(("customer_id",), False), (("market_id",), False), (("agent_id",), False), (("status",), False)],
    )

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_number", sa.String(length=32), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("shopping_list_id", sa.Integer(), sa.ForeignKey("shopping_lists.id"), nullable=False, unique=True),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("payment_id", sa.String(length=128), nullable=True),
            sa.Column("payment_processed_at", sa.DateTime(), nullable=True),
            sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("service_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("delivery_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("delivery_address_json", sa.Text(), nullable=True),
            sa.Column("customer_notes", sa.Text(), nullable=True),
            sa.Column("agent_notes", sa.Text(), nullable=True),
            sa.Column("accepted_at", sa.DateTime(), nullable=True),
            sa.Column("shopping_started_at", sa.DateTime(), nullable=True),
            sa.Column("shopping_completed_at", sa.DateTime(), nullable=True),
            sa.Column("delivery_started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(
        bind,
        "orders",
        [
            (("order_number",), True),
            (("customer_id",), False),
            (("agent_id",), False),
            (("status",), False),
            (("payment_status",), False),
            (("created_at",), False),
        ],
    )

    if not _table_exists(bind, "order_rejections"):
        op.create_table(
            "order_rejections",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reason", sa.String(length=240), nullable=False, server_default=""),
            sa.Column("rejected_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_id", "agent_id", name="uq_order_rejection_order_agent"),
        )
    _create_indexes(bind, "order_rejections", [(("order_id",), False), (("agent_id",), False)])

    if not _table_exists(bind, "order_trails"):
        op.create_table(
            "order_trails",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("previous_value_json", sa.Text(), nullable=True),
            sa.Column("new_value_json", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(
        bind,
        "order_trails",
        [(("order_id",), False), (("user_id",), False), (("action",), False), (("created_at",), False)],
    )

    if not _table_exists(bind, "payment_transactions"):
        op.create_table(
            "payment_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reference_id", sa.Integer(), nullable=False),
            sa.Column("reference_type", sa.String(length=24), nullable=False, server_default="order"),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="mock"),
            sa.Column("provider_transaction_id", sa.String(length=128), nullable=True),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="NGN"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("idempotency_key", sa.String(length=128), nullable=False, server_default=""),
            sa.Column("provider_response_json", sa.Text(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint(
                "reference_id",
                "reference_type",
                "provider",
                "idempotency_key",
                name="uq_payment_txn_reference_provider_key",
            ),
        )
    _create_indexes(
        bind,
        "payment_transactions",
        [
            (("reference_id",), False),
            (("user_id",), False),
            (("provider_transaction_id",), True),
            (("status",), False),
            (("expires_at",), False),
        ],
    )

    if not _table_exists(bind, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="alatpay"),
            sa.Column("event_id", sa.String(length=128), nullable=False, unique=True),
            sa.Column("provider_transaction_id", sa.String(length=128), nullable=True),
            sa.Column("provider_status", sa.String(length=32), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("payload_json", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(bind, "webhook_events", [(("provider_transaction_id",), False)])

    if not _table_exists(bind, "chat_channels"):
        op.create_table(
            "chat_channels",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("activated_by", sa.String(length=64), nullable=True),
            sa.Column("activated_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists(bind, "chat_messages"):
        op.create_table(
            "chat_messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("sender_id", sa.Integer(), nullable=True),
            sa.Column("sender_type", sa.String(length=16), nullable=False, server_default="system"),
            sa.Column("body", sa.Text(), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_indexes(bind, "chat_messages", [(("order_id",), False)])

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("summary_json", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
        )
    _create_indexes(bind, "job_runs", [(("job_name",), False), (("ran_at",), False), (("ok",), False)])


def downgrade():
    bind = op.get_bind()
    for table_name in (
        "job_runs",
        "chat_messages",
        "chat_channels",
        "webhook_events",
        "payment_transactions",
        "order_trails",
        "order_rejections",
        "orders",
        "shopping_lists",
        "markets",
        "agent_locations",
        "agent_settings",
        "users",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
