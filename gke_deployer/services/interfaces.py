"""Service interfaces for the GKE deployer."""

# Standard library imports
from abc import ABC, abstractmethod
from typing import Any, List

# Local application imports
from .kubernetes.models import AccessToken, ClusterMetadata


class CredentialResolverInterface(ABC):
    """Interface for the credential store."""

    @abstractmethod
    def load_credentials(self, credentials_id: str) -> Any:
        """Load the Google credentials object stored under an id."""
        pass

    @abstractmethod
    def resolve(self, credentials_id: str) -> AccessToken:
        """Resolve a stored credential to a bearer access token."""
        pass


class ClusterClientInterface(ABC):
    """Interface for the cluster metadata service."""

    @abstractmethod
    def get_cluster(self, project_id: str, zone: str, cluster_name: str) -> ClusterMetadata:
        """Fetch metadata for one cluster."""
        pass

    @abstractmethod
    def list_clusters(self, project_id: str, zone: str = "-") -> List[ClusterMetadata]:
        """List clusters in a zone, or in every location when zone is ``-``."""
        pass
