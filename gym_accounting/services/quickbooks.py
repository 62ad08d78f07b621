"""QuickBooks Online API client."""

import logging
from typing import Any, Optional
import httpx

from gym_accounting.core.errors import ProviderError

logger = logging.getLogger(__name__)

API_BASE_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}

MINOR_VERSION = "65"

# Generic "Services" item; sales lines need an ItemRef
DEFAULT_ITEM_ID = "1"


def _quote(value: str) -> str:
    """Escape a literal for a QuickBooks query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class QuickBooksClient:
    """Async client for the QuickBooks Online accounting API."""

    def __init__(
        self,
        access_token: str,
        realm_id: str,
        environment: str = "sandbox",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.realm_id = realm_id
        self.base_url = API_BASE_URLS.get(environment, API_BASE_URLS["sandbox"])
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0)
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    @property
    def _company_url(self) -> str:
        return f"{self.base_url}/v3/company/{self.realm_id}"

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _raise_for_fault(self, response: httpx.Response, context: str) -> dict[str, Any]:
        """Return the JSON body, or raise ProviderError with the QuickBooks fault message."""
        try:
            body = response.json() if response.text else {}
        except ValueError:
            body = {}

        fault = body.get("Fault") if isinstance(body, dict) else None
        if response.is_error or fault:
            detail = response.text[:200]
            if fault and fault.get("Error"):
                first = fault["Error"][0]
                detail = first.get("Detail") or first.get("Message") or detail
            raise ProviderError(f"{context} failed: {detail}")

        return body

    async def query(self, statement: str) -> dict[str, Any]:
        """Run a QuickBooks SQL-like query and return its QueryResponse."""
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self._company_url}/query",
                params={"query": statement, "minorversion": MINOR_VERSION},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Query failed: {e}") from e
        body = self._raise_for_fault(response, "Query")
        return body.get("QueryResponse", {})

    async def _create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self._company_url}/{entity.lower()}",
                params={"minorversion": MINOR_VERSION},
                headers=self._headers,
                json=payload,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"{entity} creation failed: {e}") from e
        body = self._raise_for_fault(response, f"{entity} creation")
        return body[entity]

    async def get_or_create_customer(self, email: str, display_name: str) -> dict[str, Any]:
        """Find a customer by email, creating one if none exists."""
        result = await self.query(
            f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{_quote(email)}'"
        )
        customers = result.get("Customer") or []
        if customers:
            logger.debug(f"Found existing QuickBooks customer {customers[0]['Id']}")
            return customers[0]

        logger.info(f"Creating QuickBooks customer for {email}")
        customer = await self._create("Customer", {
            "DisplayName": display_name,
            "PrimaryEmailAddr": {"Address": email},
        })
        logger.info(f"Created QuickBooks customer {customer['Id']}")
        return customer

    @staticmethod
    def _sales_line(amount: float, description: str) -> dict[str, Any]:
        return {
            "Amount": amount,
            "DetailType": "SalesItemLineDetail",
            "SalesItemLineDetail": {
                "ItemRef": {"value": DEFAULT_ITEM_ID},
                "Qty": 1,
                "UnitPrice": amount,
            },
            "Description": description,
        }

    async def create_sales_receipt(
        self,
        customer_id: str,
        amount: float,
        description: str,
        account_id: str,
        txn_date: str,
        payment_ref_num: str,
    ) -> dict[str, Any]:
        receipt = await self._create("SalesReceipt", {
            "CustomerRef": {"value": customer_id},
            "TxnDate": txn_date,
            "PaymentRefNum": payment_ref_num,
            "DepositToAccountRef": {"value": account_id},
            "Line": [self._sales_line(amount, description)],
        })
        logger.info(f"Created QuickBooks sales receipt {receipt.get('Id')}")
        return receipt

    async def create_credit_memo(
        self,
        customer_id: str,
        amount: float,
        description: str,
        txn_date: str,
    ) -> dict[str, Any]:
        memo = await self._create("CreditMemo", {
            "CustomerRef": {"value": customer_id},
            "TxnDate": txn_date,
            "Line": [self._sales_line(amount, description)],
        })
        logger.info(f"Created QuickBooks credit memo {memo.get('Id')}")
        return memo

    async def get_chart_of_accounts(self) -> list[dict[str, Any]]:
        """Income and expense accounts, for the mapping form."""
        result = await self.query(
            "SELECT * FROM Account WHERE AccountType IN ('Income', 'Expense') MAXRESULTS 1000"
        )
        return result.get("Account") or []

    async def get_company_name(self) -> str:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self._company_url}/companyinfo/{self.realm_id}",
                params={"minorversion": MINOR_VERSION},
                headers=self._headers,
            )
            body = self._raise_for_fault(response, "Company info")
        except (httpx.HTTPError, ProviderError) as e:
            logger.error(f"Failed to fetch QuickBooks company info: {e}")
            return "Unknown Company"
        return body.get("CompanyInfo", {}).get("CompanyName") or "Unknown Company"
