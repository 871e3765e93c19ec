"""Services package."""

from securefin.services.identity import (
    IdentityProviderError,
    IdentityProviderInterface,
    SignInCancelledError,
    StaticIdentityProvider,
)
from securefin.services.storage import (
    AuditStorageInterface,
    DocumentStoreAuditStorage,
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    Subscription,
)

__all__ = [
    # Identity services
    "IdentityProviderError",
    "IdentityProviderInterface",
    "SignInCancelledError",
    "StaticIdentityProvider",
    # Storage services
    "AuditStorageInterface",
    "DocumentStoreAuditStorage",
    "DocumentStoreInterface",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    "Subscription",
]
