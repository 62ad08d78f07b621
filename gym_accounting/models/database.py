import uuid
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
    Index,
    UniqueConstraint,
)
from gym_accounting.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """User profile; role decides admin access."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True)  # auth user id
    email = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="member")  # "member", "coach", "admin"
    created_at = Column(DateTime, default=datetime.utcnow)


class Payment(Base):
    """A captured payment. Amounts are in minor units (pence)."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=True, index=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="gbp")
    payment_type = Column(String, nullable=False)  # "day-pass", "service-booking", "subscription", "refund"
    payment_intent_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="succeeded")  # "succeeded", "refunded", "pending", "failed"
    # "metadata" is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    accounting_synced_qb = Column(Boolean, nullable=False, default=False)
    accounting_synced_xero = Column(Boolean, nullable=False, default=False)
    accounting_last_sync_attempt = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_payments_synced_qb", "accounting_synced_qb", "created_at"),
        Index("idx_payments_synced_xero", "accounting_synced_xero", "created_at"),
    )


class AccountingIntegration(Base):
    """Connection to an external accounting provider, one row per provider."""

    __tablename__ = "accounting_integrations"

    id = Column(String, primary_key=True, default=_uuid)
    provider = Column(String, nullable=False, unique=True)  # "quickbooks", "xero"
    status = Column(String, nullable=False, default="disconnected")  # "active", "disconnected", "error", "expired"

    # OAuth tokens, encrypted with core.encryption
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    realm_id = Column(String, nullable=True)  # QuickBooks company id
    tenant_id = Column(String, nullable=True)  # Xero tenant id
    company_name = Column(String, nullable=True)

    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success", "error"
    last_error = Column(Text, nullable=True)

    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_frequency_minutes = Column(Integer, nullable=False, default=60)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AccountMapping(Base):
    """Revenue category -> external ledger account, per provider."""

    __tablename__ = "accounting_account_mappings"

    id = Column(String, primary_key=True, default=_uuid)
    provider = Column(String, nullable=False, index=True)
    revenue_category = Column(String, nullable=False)
    external_account_id = Column(String, nullable=False)
    external_account_name = Column(String, nullable=False)
    external_account_code = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("provider", "revenue_category", name="uix_mapping_provider_category"),)


class SyncedTransaction(Base):
    """A payment exported to a provider.

    Rows with is_synced=False are claims held by a running sync.
    """

    __tablename__ = "accounting_synced_transactions"

    id = Column(String, primary_key=True, default=_uuid)
    provider = Column(String, nullable=False)
    payment_id = Column(String, nullable=False, index=True)
    external_transaction_id = Column(String, nullable=True)
    external_transaction_number = Column(String, nullable=True)
    external_transaction_type = Column(String, nullable=True)  # "sales_receipt", "credit_memo"
    external_customer_id = Column(String, nullable=True)
    sync_log_id = Column(String, nullable=True, index=True)
    synced_amount = Column(Integer, nullable=False)
    synced_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    is_synced = Column(Boolean, nullable=False, default=False)

    __table_args__ = (UniqueConstraint("provider", "payment_id", name="uix_synced_provider_payment"),)


class OAuthState(Base):
    """CSRF state issued by the connect endpoint, consumed by the callback."""

    __tablename__ = "accounting_oauth_states"

    state = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    redirect_url = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
