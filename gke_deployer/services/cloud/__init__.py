"""Google Cloud adapters: credential store and cluster metadata."""

from .container import ContainerClient
from .credentials import DEFAULT_CREDENTIALS_ID, ServiceAccountCredentialResolver
from .factory import ClientFactory, ClientFactoryCache, client_factory_cache

__all__ = [
    "DEFAULT_CREDENTIALS_ID",
    "ClientFactory",
    "ClientFactoryCache",
    "ContainerClient",
    "ServiceAccountCredentialResolver",
    "client_factory_cache",
]
