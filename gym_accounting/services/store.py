"""Database access for the accounting sync flow."""

import logging
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import delete, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.models.database import (
    AccountingIntegration,
    AccountMapping,
    Payment,
    Profile,
    SyncedTransaction,
)
from gym_accounting.models.sync_log import SyncLog
from gym_accounting.services.categorizer import CategorizedPayment, RevenueCategory

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("quickbooks", "xero")

# Payment columns holding the per-provider synced flag
_SYNCED_FIELD = {
    "quickbooks": "accounting_synced_qb",
    "xero": "accounting_synced_xero",
}

# Payment statuses eligible for export
_EXPORTABLE_STATUSES = ("succeeded", "refunded")


def synced_column(provider: str):
    """Return the Payment column that flags export to this provider."""
    return getattr(Payment, _SYNCED_FIELD[provider])


# Integrations

async def get_integration(session: AsyncSession, provider: str) -> Optional[AccountingIntegration]:
    result = await session.execute(
        select(AccountingIntegration).where(AccountingIntegration.provider == provider)
    )
    return result.scalar_one_or_none()


async def get_active_integrations(session: AsyncSession) -> list[AccountingIntegration]:
    result = await session.execute(
        select(AccountingIntegration).where(AccountingIntegration.status == "active")
    )
    return list(result.scalars().all())


async def update_integration_last_sync(
    session: AsyncSession,
    integration: AccountingIntegration,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Record the outcome of the latest sync on the integration row."""
    now = datetime.utcnow()
    integration.last_sync_at = now
    integration.last_sync_status = status
    integration.last_error = error
    integration.updated_at = now
    await session.flush()


# Account mappings

async def get_account_mappings(session: AsyncSession, provider: str) -> list[AccountMapping]:
    result = await session.execute(
        select(AccountMapping)
        .where(AccountMapping.provider == provider, AccountMapping.is_active.is_(True))
        .order_by(AccountMapping.revenue_category)
    )
    return list(result.scalars().all())


def find_mapping(mappings: list[AccountMapping], category_key: str) -> Optional[AccountMapping]:
    for mapping in mappings:
        if mapping.revenue_category == category_key:
            return mapping
    return None


async def validate_account_mappings(
    session: AsyncSession,
    provider: str,
    categories: tuple[RevenueCategory, ...],
) -> list[str]:
    """Return the categories that have no active mapping (empty when valid)."""
    mapped = {m.revenue_category for m in await get_account_mappings(session, provider)}
    return [c.value for c in categories if c.value not in mapped]


async def upsert_account_mapping(
    session: AsyncSession,
    provider: str,
    category: RevenueCategory,
    external_account_id: str,
    external_account_name: str,
    external_account_code: Optional[str] = None,
    is_active: bool = True,
) -> AccountMapping:
    """Create or replace the mapping for (provider, category)."""
    result = await session.execute(
        select(AccountMapping).where(
            AccountMapping.provider == provider,
            AccountMapping.revenue_category == category.value,
        )
    )
    mapping = result.scalar_one_or_none()

    if mapping is None:
        mapping = AccountMapping(provider=provider, revenue_category=category.value)
        session.add(mapping)

    mapping.external_account_id = external_account_id
    mapping.external_account_name = external_account_name
    mapping.external_account_code = external_account_code
    mapping.is_active = is_active
    mapping.updated_at = datetime.utcnow()

    await session.flush()
    return mapping


# Payments

async def get_unsynced_payments(session: AsyncSession, provider: str, limit: int = 100) -> list[Payment]:
    """Exportable payments not yet flagged as synced to the provider.

    Payments never attempted come first, then those whose last failed attempt
    is oldest, so payments that keep failing cannot hold up the rest.
    """
    result = await session.execute(
        select(Payment)
        .where(
            synced_column(provider).is_(False),
            Payment.status.in_(_EXPORTABLE_STATUSES),
        )
        .order_by(
            Payment.accounting_last_sync_attempt.is_not(None),
            Payment.accounting_last_sync_attempt,
            Payment.created_at,
        )
        .limit(limit)
    )
    return list(result.scalars().all())


async def mark_payment_synced(session: AsyncSession, payment_id: str, provider: str) -> None:
    payment = await session.get(Payment, payment_id)
    if payment is None:
        logger.warning(f"Cannot mark missing payment {payment_id} as synced")
        return
    setattr(payment, _SYNCED_FIELD[provider], True)
    payment.accounting_last_sync_attempt = datetime.utcnow()
    await session.flush()


async def mark_sync_attempted(session: AsyncSession, payment_id: str) -> None:
    """Stamp a failed export attempt; the payment stays unsynced."""
    payment = await session.get(Payment, payment_id)
    if payment is None:
        return
    payment.accounting_last_sync_attempt = datetime.utcnow()
    await session.flush()


async def get_profile(session: AsyncSession, user_id: Optional[str]) -> Optional[Profile]:
    if not user_id:
        return None
    return await session.get(Profile, user_id)


# Idempotency

async def get_synced_payment_ids(
    session: AsyncSession,
    provider: str,
    payment_ids: Optional[list[str]] = None,
) -> set[str]:
    """Payment ids exported or claimed for the provider, optionally limited to `payment_ids`."""
    query = select(SyncedTransaction.payment_id).where(SyncedTransaction.provider == provider)
    if payment_ids is not None:
        query = query.where(SyncedTransaction.payment_id.in_(payment_ids))
    result = await session.execute(query)
    return set(result.scalars().all())


async def release_stale_claims(session: AsyncSession, provider: str, older_than: datetime) -> int:
    """Delete claims left behind by syncs that never finished."""
    result = await session.execute(
        delete(SyncedTransaction).where(
            SyncedTransaction.provider == provider,
            SyncedTransaction.is_synced.is_(False),
            SyncedTransaction.synced_at < older_than,
        )
    )
    if result.rowcount:
        logger.warning(f"Released {result.rowcount} stale {provider} sync claims")
    return result.rowcount or 0


async def claim_payment(
    session: AsyncSession,
    payment: CategorizedPayment,
    provider: str,
    sync_log_id: str,
) -> bool:
    """
    Reserve a payment for export.

    The unique (provider, payment_id) constraint is the idempotency signal:
    returns False when another sync already holds or exported the payment.
    """
    try:
        async with session.begin_nested():
            session.add(SyncedTransaction(
                provider=provider,
                payment_id=payment.payment_id,
                sync_log_id=sync_log_id,
                synced_amount=payment.amount,
                synced_at=datetime.utcnow(),
                is_synced=False,
            ))
    except IntegrityError:
        logger.info(f"Payment {payment.payment_id} already claimed for {provider}")
        return False
    return True


async def record_synced_transaction(
    session: AsyncSession,
    provider: str,
    payment_id: str,
    external_transaction_id: str,
    external_transaction_number: Optional[str],
    external_transaction_type: Optional[str],
    external_customer_id: Optional[str],
    sync_log_id: str,
    amount: int,
) -> SyncedTransaction:
    """Fill in the claim row for an exported payment (inserting it if absent)."""
    result = await session.execute(
        select(SyncedTransaction).where(
            SyncedTransaction.provider == provider,
            SyncedTransaction.payment_id == payment_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = SyncedTransaction(provider=provider, payment_id=payment_id)
        session.add(row)

    row.external_transaction_id = external_transaction_id
    row.external_transaction_number = external_transaction_number
    row.external_transaction_type = external_transaction_type
    row.external_customer_id = external_customer_id
    row.sync_log_id = sync_log_id
    row.synced_amount = amount
    row.synced_at = datetime.utcnow()
    row.is_synced = True

    await session.flush()
    return row


async def release_claim(session: AsyncSession, provider: str, payment_id: str, sync_log_id: str) -> None:
    """Drop this sync's unfinished claim so a later sync retries the payment."""
    await session.execute(
        delete(SyncedTransaction).where(
            SyncedTransaction.provider == provider,
            SyncedTransaction.payment_id == payment_id,
            SyncedTransaction.sync_log_id == sync_log_id,
            SyncedTransaction.is_synced.is_(False),
        )
    )


# Sync logs

async def create_sync_log(
    session: AsyncSession,
    provider: str,
    sync_type: str,
    triggered_by: Optional[str] = None,
) -> SyncLog:
    sync_log = SyncLog(
        provider=provider,
        sync_type=sync_type,
        status="running",
        started_at=datetime.utcnow(),
        transactions_attempted=0,
        transactions_succeeded=0,
        transactions_failed=0,
        triggered_by=triggered_by,
    )
    session.add(sync_log)
    await session.flush()
    return sync_log


async def complete_sync_log(
    session: AsyncSession,
    sync_log: SyncLog,
    status: str,
    attempted: int,
    succeeded: int,
    failed: int,
    error_message: Optional[str] = None,
    error_details: Optional[list[dict[str, Any]]] = None,
) -> SyncLog:
    now = datetime.utcnow()
    sync_log.status = status
    sync_log.transactions_attempted = attempted
    sync_log.transactions_succeeded = succeeded
    sync_log.transactions_failed = failed
    sync_log.error_message = error_message
    sync_log.error_details = error_details or None
    sync_log.completed_at = now
    sync_log.duration_seconds = int((now - sync_log.started_at).total_seconds())
    await session.flush()
    return sync_log


async def get_sync_log(session: AsyncSession, sync_log_id: str) -> Optional[SyncLog]:
    return await session.get(SyncLog, sync_log_id)


async def list_sync_logs(
    session: AsyncSession,
    provider: Optional[str] = None,
    limit: int = 20,
) -> list[SyncLog]:
    stmt = select(SyncLog).order_by(desc(SyncLog.started_at)).limit(limit)
    if provider:
        stmt = stmt.where(SyncLog.provider == provider)
    result = await session.execute(stmt)
    return list(result.scalars().all())
