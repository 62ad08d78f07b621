"""Domain exceptions for the accounting sync flow.

Routers map these to HTTP responses:

- AuthError -> 403
- SyncValidationError (and subclasses) -> 400
- ProviderError -> 502 outside the sync loop; inside the loop it is
  recorded per payment and never raised
"""


class AccountingError(Exception):
    """Base class for accounting errors."""
    pass


class AuthError(AccountingError):
    """Raised when the caller is not an authenticated admin."""
    pass


class SyncValidationError(AccountingError):
    """Raised when a sync request is rejected before any row is written."""
    pass


class InvalidProviderError(SyncValidationError):
    def __init__(self, provider):
        self.provider = provider
        super().__init__('Invalid provider. Must be "quickbooks" or "xero"')


class ProviderNotConfiguredError(SyncValidationError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} integration not found")


class ProviderNotActiveError(SyncValidationError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} integration is not active. Please connect first.")


class MissingMappingsError(SyncValidationError):
    def __init__(self, provider: str, missing: list[str]):
        self.provider = provider
        self.missing = missing
        if missing:
            message = f"Missing account mappings for categories: {', '.join(missing)}"
        else:
            message = "No account mappings configured. Please map revenue categories to accounts first."
        super().__init__(message)


class ProviderError(AccountingError):
    """Raised when an external accounting provider call fails."""
    pass


class TokenEncryptionError(AccountingError):
    """Raised when an OAuth token cannot be encrypted or decrypted."""
    pass
