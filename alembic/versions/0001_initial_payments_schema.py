"""initial payments schema

Revision ID: 0001_initial_payments
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "0001_initial_payments"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

subscription_status = sa.Enum(
    "trial", "active", "suspended", "expired", name="subscriptionstatus"
)
bank_provider = sa.Enum("equity", "kcb", "coop", name="bankprovider")
account_status = sa.Enum(
    "active", "suspended", "alumni", "transferred", name="accountstatus"
)
payment_source = sa.Enum(
    "mpesa", "bank_agent", "bank_transfer", "cash", "cheque", name="paymentsource"
)
payment_provider = sa.Enum(
    "mpesa", "equity", "kcb", "coop", "manual", name="paymentprovidername"
)
ledger_direction = sa.Enum("credit", "debit", name="ledgerdirection")
ledger_status = sa.Enum("completed", "pending", "failed", "reversed", name="ledgerstatus")
reconciliation_status = sa.Enum(
    "running",
    "completed",
    "failed",
    "cancel_requested",
    "cancelled",
    name="reconciliationstatus",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("paybill_number", sa.String(10), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="KES"),
        sa.Column("subscription_status", subscription_status, nullable=False, server_default="trial"),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_accounts", sa.Integer, nullable=False, server_default="500"),
        sa.Column("operator_key_hash", sa.String(128), nullable=True),
        sa.Column("sms_receipts", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_tenants_code"),
    )
    op.create_index("ix_tenants_operator_key_hash", "tenants", ["operator_key_hash"])

    op.create_table(
        "tenant_integrations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("provider", bank_provider, nullable=False),
        sa.Column("routing_identifier", sa.String(80), nullable=False),
        sa.Column("api_key", sa.Text, nullable=True),
        sa.Column("api_secret", sa.Text, nullable=True),
        sa.Column("consumer_key", sa.Text, nullable=True),
        sa.Column("consumer_secret", sa.Text, nullable=True),
        sa.Column("callback_url", sa.String(255), nullable=True),
        sa.Column("is_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "tenant_id", "provider", name="uq_tenant_integrations_tenant_provider"
        ),
        sa.UniqueConstraint(
            "provider", "routing_identifier", name="uq_tenant_integrations_provider_routing"
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("reference_code", sa.String(40), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("class_level", sa.String(40), nullable=True),
        sa.Column("guardian_name", sa.String(160), nullable=True),
        sa.Column("guardian_phone", sa.String(20), nullable=True),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", account_status, nullable=False, server_default="active"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "reference_code", name="uq_accounts_tenant_reference"),
    )
    op.create_index("ix_accounts_reference_code", "accounts", ["reference_code"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.String(120), nullable=False),
        sa.Column("scope_key", sa.String(64), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("account_id", UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("source", payment_source, nullable=False),
        sa.Column("provider", payment_provider, nullable=False),
        sa.Column("direction", ledger_direction, nullable=False, server_default="credit"),
        sa.Column("status", ledger_status, nullable=False, server_default="completed"),
        sa.Column("reference", sa.String(120), nullable=False),
        sa.Column("payer_name", sa.String(160), nullable=True),
        sa.Column("payer_phone", sa.String(12), nullable=True),
        sa.Column("raw_payload", sa.JSON, nullable=True),
        sa.Column("memo", sa.Text, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "scope_key", "external_id", name="uq_ledger_entries_scope_external_id"
        ),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
    )
    op.create_index("ix_ledger_entries_tenant_id", "ledger_entries", ["tenant_id"])
    op.create_index("ix_ledger_entries_account_id", "ledger_entries", ["account_id"])
    op.create_index(
        "ix_ledger_entries_tenant_status", "ledger_entries", ["tenant_id", "status"]
    )
    op.create_index(
        "ix_ledger_entries_tenant_provider", "ledger_entries", ["tenant_id", "provider"]
    )

    op.create_table(
        "provider_tokens",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("scope_key", sa.String(64), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("scope_key", "provider", name="uq_provider_tokens_scope_provider"),
    )
    op.create_index("ix_provider_tokens_expires_at", "provider_tokens", ["expires_at"])

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("from_date", sa.Date, nullable=False),
        sa.Column("to_date", sa.Date, nullable=False),
        sa.Column("status", reconciliation_status, nullable=False, server_default="running"),
        sa.Column("bank_side_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("ledger_side_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("missing_from_ledger", sa.JSON, nullable=True),
        sa.Column("missing_from_provider", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_reconciliation_runs_tenant_id", "reconciliation_runs", ["tenant_id"])


def downgrade() -> None:
    op.drop_table("reconciliation_runs")
    op.drop_table("provider_tokens")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")
    op.drop_table("tenant_integrations")
    op.drop_table("tenants")
    for enum_type in (
        reconciliation_status,
        ledger_status,
        ledger_direction,
        payment_provider,
        payment_source,
        account_status,
        bank_provider,
        subscription_status,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
