"""Client factory for one credential, and a single-slot cache over it."""

import threading
from typing import Any, Callable, Optional

import structlog

from ..interfaces import ClusterClientInterface, CredentialResolverInterface
from ..kubernetes.models import AccessToken
from .container import ContainerClient
from .credentials import ServiceAccountCredentialResolver

logger = structlog.get_logger(__name__)


class ClientFactory:
    """Builds the Google clients for one credential id.

    The cluster client is created on first use and reused; access tokens
    are resolved fresh on every call.
    """

    def __init__(
        self,
        credentials_id: str,
        resolver: Optional[CredentialResolverInterface] = None,
        cluster_client_builder: Optional[Callable[[Any], ClusterClientInterface]] = None,
    ):
        self.credentials_id = credentials_id
        self.resolver = resolver or ServiceAccountCredentialResolver.from_settings()
        self._cluster_client_builder = cluster_client_builder or ContainerClient
        self._cluster_client: Optional[ClusterClientInterface] = None
        self._lock = threading.Lock()

    def access_token(self) -> AccessToken:
        """Resolve a fresh access token for the credential."""
        return self.resolver.resolve(self.credentials_id)

    def cluster_client(self) -> ClusterClientInterface:
        """Get the cluster client authenticated with the credential."""
        with self._lock:
            if self._cluster_client is None:
                credentials = self.resolver.load_credentials(self.credentials_id)
                self._cluster_client = self._cluster_client_builder(credentials)
            return self._cluster_client


class ClientFactoryCache:
    """Holds the factory for the most recently used credential id.

    Asking for a different id replaces the cached factory.
    """

    def __init__(self, builder: Optional[Callable[[str], ClientFactory]] = None):
        self._builder = builder or ClientFactory
        self._current: Optional[ClientFactory] = None
        self._lock = threading.Lock()

    def get(self, credentials_id: str) -> ClientFactory:
        with self._lock:
            if self._current is None or self._current.credentials_id != credentials_id:
                if self._current is not None:
                    logger.debug("Replacing client factory", credentials_id=credentials_id)
                self._current = self._builder(credentials_id)
            return self._current

    def invalidate(self) -> None:
        """Drop the cached factory."""
        with self._lock:
            self._current = None


# Global client factory cache
client_factory_cache = ClientFactoryCache()
