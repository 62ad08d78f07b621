"""Provider adapters: export categorized payments to an accounting system."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.core.config import Settings
from gym_accounting.models.database import AccountingIntegration, AccountMapping
from gym_accounting.services import store
from gym_accounting.services.categorizer import CategorizedPayment
from gym_accounting.services.oauth import OAuthClient, get_access_token
from gym_accounting.services.quickbooks import QuickBooksClient

logger = logging.getLogger(__name__)

XERO_NOT_IMPLEMENTED = "Xero integration not yet implemented"


@dataclass
class ExportedTransaction:
    """A payment accepted by the provider."""
    payment_id: str
    external_id: str
    external_number: Optional[str]
    transaction_type: str  # "sales_receipt", "credit_memo"
    amount: int
    customer_id: Optional[str] = None


@dataclass
class SyncError:
    payment_id: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"paymentId": self.payment_id, "error": self.error}


@dataclass
class ProviderSyncResult:
    succeeded: list[ExportedTransaction] = field(default_factory=list)
    failed: list[SyncError] = field(default_factory=list)


class ProviderAdapter:
    """Shared export loop; subclasses implement export_payment."""

    provider: str = ""
    supports_sync: bool = True
    unsupported_message: str = "Sync is not supported for this provider"

    async def sync(
        self,
        payments: list[CategorizedPayment],
        mappings: list[AccountMapping],
    ) -> ProviderSyncResult:
        """Export each payment; one failure never stops the others."""
        result = ProviderSyncResult()

        if not self.supports_sync:
            result.failed = [SyncError(p.payment_id, self.unsupported_message) for p in payments]
            return result

        for payment in payments:
            mapping = store.find_mapping(mappings, payment.category_key)
            if mapping is None:
                result.failed.append(SyncError(
                    payment.payment_id,
                    f"No account mapping found for category: {payment.category_key}",
                ))
                continue

            try:
                exported = await self.export_payment(payment, mapping)
            except Exception as e:
                logger.error(f"[{self.provider}] Error syncing payment {payment.payment_id}: {e}")
                result.failed.append(SyncError(payment.payment_id, str(e) or "Unknown error"))
                continue

            logger.info(
                f"[{self.provider}] Synced payment {payment.payment_id} as "
                f"{exported.transaction_type} {exported.external_number or exported.external_id}"
            )
            result.succeeded.append(exported)

        return result

    async def export_payment(self, payment: CategorizedPayment, mapping: AccountMapping) -> ExportedTransaction:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class QuickBooksAdapter(ProviderAdapter):
    """Posts sales receipts and credit memos to QuickBooks Online."""

    provider = "quickbooks"

    def __init__(
        self,
        session: AsyncSession,
        integration: AccountingIntegration,
        settings: Settings,
        oauth: Optional[OAuthClient] = None,
    ):
        self.session = session
        self.integration = integration
        self.settings = settings
        self.oauth = oauth or OAuthClient(settings)
        self.client: Optional[QuickBooksClient] = None

    async def connect(self) -> QuickBooksClient:
        if self.client is None:
            access_token = await get_access_token(
                self.integration, self.oauth, self.settings.accounting_encryption_key
            )
            self.client = QuickBooksClient(
                access_token,
                self.integration.realm_id,
                self.settings.quickbooks_environment,
            )
        return self.client

    async def sync(self, payments, mappings) -> ProviderSyncResult:
        try:
            await self.connect()
        except Exception as e:
            # Without a client every payment fails the same way
            logger.error(f"[quickbooks] Could not create client: {e}")
            return ProviderSyncResult(
                failed=[SyncError(p.payment_id, f"QuickBooks connection failed: {e}") for p in payments]
            )
        return await super().sync(payments, mappings)

    async def export_payment(self, payment: CategorizedPayment, mapping: AccountMapping) -> ExportedTransaction:
        client = await self.connect()

        profile = await store.get_profile(self.session, payment.user_id)
        email = (profile.email if profile else None) or "unknown@example.com"
        display_name = (profile.full_name if profile else None) or "Unknown Customer"
        customer = await client.get_or_create_customer(email, display_name)

        amount = payment.amount / 100
        txn_date = payment.created_at.date().isoformat()

        if payment.is_refund:
            txn = await client.create_credit_memo(
                customer_id=customer["Id"],
                amount=amount,
                description=payment.description,
                txn_date=txn_date,
            )
            txn_type = "credit_memo"
        else:
            txn = await client.create_sales_receipt(
                customer_id=customer["Id"],
                amount=amount,
                description=payment.description,
                account_id=mapping.external_account_id,
                txn_date=txn_date,
                payment_ref_num=payment.payment_intent_id or payment.payment_id[:8],
            )
            txn_type = "sales_receipt"

        return ExportedTransaction(
            payment_id=payment.payment_id,
            external_id=txn["Id"],
            external_number=txn.get("DocNumber"),
            transaction_type=txn_type,
            amount=payment.amount,
            customer_id=customer["Id"],
        )

    async def get_chart_of_accounts(self) -> list[dict[str, Any]]:
        client = await self.connect()
        return await client.get_chart_of_accounts()

    async def close(self) -> None:
        if self.client:
            await self.client.close()
        await self.oauth.close()


class XeroAdapter(ProviderAdapter):
    """Declared but not implemented; see supports_sync."""

    provider = "xero"
    supports_sync = False
    unsupported_message = XERO_NOT_IMPLEMENTED

    async def export_payment(self, payment, mapping):
        raise NotImplementedError(XERO_NOT_IMPLEMENTED)


AdapterFactory = Callable[[str, AsyncSession, AccountingIntegration, Settings], ProviderAdapter]


def build_adapter(
    provider: str,
    session: AsyncSession,
    integration: AccountingIntegration,
    settings: Settings,
) -> ProviderAdapter:
    if provider == "quickbooks":
        return QuickBooksAdapter(session, integration, settings)
    if provider == "xero":
        return XeroAdapter()
    raise ValueError(f"Unsupported provider: {provider}")
