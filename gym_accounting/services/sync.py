"""Sync orchestration - exports unsynced payments to an accounting provider."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.core.config import Settings
from gym_accounting.core.errors import (
    InvalidProviderError,
    MissingMappingsError,
    ProviderNotActiveError,
    ProviderNotConfiguredError,
)
from gym_accounting.models.database import AccountingIntegration, AccountMapping
from gym_accounting.models.sync_log import SyncLog
from gym_accounting.services import store
from gym_accounting.services.categorizer import (
    REQUIRED_CATEGORIES,
    CategorizedPayment,
    categorize_payments,
)
from gym_accounting.services.providers import (
    AdapterFactory,
    ProviderSyncResult,
    SyncError,
    build_adapter,
)

logger = logging.getLogger(__name__)


def determine_status(succeeded: int, failed: int) -> str:
    """completed when nothing failed, failed when nothing succeeded, else partial."""
    if failed == 0:
        return "completed"
    if succeeded > 0:
        return "partial"
    return "failed"


@dataclass
class SyncSummary:
    sync_log_id: str
    status: str
    attempted: int
    succeeded: int
    failed: int
    errors: list[SyncError] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "syncLogId": self.sync_log_id,
            "status": self.status,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.message:
            data["message"] = self.message
        return data


class AccountingSyncService:
    """Runs one sync of unsynced payments to a provider."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        adapter_factory: AdapterFactory = build_adapter,
    ):
        self.session = session
        self.settings = settings
        self.adapter_factory = adapter_factory

    async def validate(self, provider: str) -> tuple[AccountingIntegration, list[AccountMapping]]:
        """
        Check the provider can be synced. Writes nothing.

        Raises:
            InvalidProviderError, ProviderNotConfiguredError,
            ProviderNotActiveError, MissingMappingsError
        """
        if provider not in store.SUPPORTED_PROVIDERS:
            raise InvalidProviderError(provider)

        integration = await store.get_integration(self.session, provider)
        if integration is None:
            raise ProviderNotConfiguredError(provider)
        if integration.status != "active":
            raise ProviderNotActiveError(provider)

        mappings = await store.get_account_mappings(self.session, provider)
        if not mappings:
            raise MissingMappingsError(provider, [])

        missing = await store.validate_account_mappings(self.session, provider, REQUIRED_CATEGORIES)
        if missing:
            raise MissingMappingsError(provider, missing)

        return integration, mappings

    async def _claim_batch(
        self,
        categorized: list[CategorizedPayment],
        provider: str,
        sync_log: SyncLog,
    ) -> list[CategorizedPayment]:
        """Drop payments already exported or held by another sync, claim the rest."""
        batch = []
        synced_ids = await store.get_synced_payment_ids(
            self.session, provider, [p.payment_id for p in categorized]
        )
        for payment in categorized:
            if payment.payment_id in synced_ids:
                logger.info(f"[Sync] Skipping already-synced payment {payment.payment_id}")
                continue
            if await store.claim_payment(self.session, payment, provider, sync_log.id):
                batch.append(payment)
        return batch

    async def _record_results(
        self,
        provider: str,
        batch: list[CategorizedPayment],
        result: ProviderSyncResult,
        sync_log: SyncLog,
    ) -> list[SyncError]:
        """Persist exports, release failed claims; returns the failures."""
        failures = list(result.failed)
        handled = {e.payment_id for e in result.succeeded} | {f.payment_id for f in failures}

        # Every attempted payment ends up either succeeded or failed
        for payment in batch:
            if payment.payment_id not in handled:
                failures.append(SyncError(payment.payment_id, "No result returned by provider"))

        for exported in result.succeeded:
            await store.record_synced_transaction(
                self.session,
                provider=provider,
                payment_id=exported.payment_id,
                external_transaction_id=exported.external_id,
                external_transaction_number=exported.external_number,
                external_transaction_type=exported.transaction_type,
                external_customer_id=exported.customer_id,
                sync_log_id=sync_log.id,
                amount=exported.amount,
            )
            await store.mark_payment_synced(self.session, exported.payment_id, provider)

        for failure in failures:
            await store.release_claim(self.session, provider, failure.payment_id, sync_log.id)
            await store.mark_sync_attempted(self.session, failure.payment_id)

        return failures

    async def run_sync(
        self,
        provider: str,
        limit: Optional[int] = None,
        sync_type: str = "manual",
        triggered_by: Optional[str] = None,
    ) -> SyncSummary:
        """
        Sync unsynced payments to a provider.

        Validation errors are raised before anything is written. Per-payment
        failures are reported in the summary, never raised.
        """
        integration, mappings = await self.validate(provider)
        limit = limit or self.settings.default_sync_limit

        logger.info(f"[Sync] Starting {sync_type} sync for {provider}")
        sync_log = await store.create_sync_log(self.session, provider, sync_type, triggered_by)
        await self.session.commit()
        logger.info(f"[Sync] Created sync log {sync_log.id}")

        stale_before = datetime.utcnow() - timedelta(minutes=self.settings.sync_claim_timeout_minutes)
        await store.release_stale_claims(self.session, provider, stale_before)

        payments = await store.get_unsynced_payments(self.session, provider, limit)
        logger.info(f"[Sync] Found {len(payments)} unsynced payments")

        if not payments:
            await store.complete_sync_log(self.session, sync_log, "completed", 0, 0, 0)
            await store.update_integration_last_sync(self.session, integration, "success")
            await self.session.commit()
            return SyncSummary(
                sync_log_id=sync_log.id,
                status="completed",
                attempted=0,
                succeeded=0,
                failed=0,
                message="No unsynced payments found",
            )

        categorized = categorize_payments(payments)
        batch = await self._claim_batch(categorized, provider, sync_log)
        sync_log.transactions_attempted = len(batch)
        await self.session.commit()
        logger.info(f"[Sync] Processing {len(batch)} payments after idempotency check")

        adapter = None
        try:
            adapter = self.adapter_factory(provider, self.session, integration, self.settings)
            result = await adapter.sync(batch, mappings)
        except Exception as e:
            logger.error(f"[Sync] Provider adapter failed for {provider}: {e}")
            for payment in batch:
                await store.release_claim(self.session, provider, payment.payment_id, sync_log.id)
                await store.mark_sync_attempted(self.session, payment.payment_id)
            await store.complete_sync_log(
                self.session,
                sync_log,
                "failed",
                len(batch),
                0,
                len(batch),
                error_message=str(e),
                error_details=[{"payment_id": p.payment_id, "error": str(e)} for p in batch],
            )
            await store.update_integration_last_sync(self.session, integration, "error", str(e))
            await self.session.commit()
            raise
        finally:
            if adapter is not None:
                await adapter.close()

        failures = await self._record_results(provider, batch, result, sync_log)
        succeeded = len(result.succeeded)
        failed = len(failures)
        status = determine_status(succeeded, failed)
        error_message = f"{failed} transactions failed to sync" if failed else None

        await store.complete_sync_log(
            self.session,
            sync_log,
            status,
            attempted=succeeded + failed,
            succeeded=succeeded,
            failed=failed,
            error_message=error_message,
            error_details=[{"payment_id": f.payment_id, "error": f.error} for f in failures],
        )
        await store.update_integration_last_sync(
            self.session,
            integration,
            "error" if status == "failed" else "success",
            error_message,
        )
        await self.session.commit()

        logger.info(f"[Sync] Sync complete for {provider}: {succeeded} succeeded, {failed} failed ({status})")

        return SyncSummary(
            sync_log_id=sync_log.id,
            status=status,
            attempted=succeeded + failed,
            succeeded=succeeded,
            failed=failed,
            errors=failures,
        )
