"""GKE cluster metadata client."""

from typing import Any, List, Optional

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud import container_v1

from ...models.errors import ClusterResolutionFailure
from ..interfaces import ClusterClientInterface
from ..kubernetes.models import ClusterMetadata

logger = structlog.get_logger(__name__)

ALL_LOCATIONS = "-"


def to_cluster_metadata(cluster: Any, zone: str) -> ClusterMetadata:
    """Convert a container API Cluster message to ClusterMetadata."""
    master_auth = cluster.master_auth
    return ClusterMetadata(
        name=cluster.name,
        location=cluster.location or zone,
        endpoint=cluster.endpoint,
        ca_certificate=master_auth.cluster_ca_certificate if master_auth else "",
    )


class ContainerClient(ClusterClientInterface):
    """Thin wrapper over ``container_v1.ClusterManagerClient``.

    All calls block; async callers run them in an executor.
    """

    def __init__(self, credentials: Any = None, client: Optional[Any] = None):
        self._client = client or container_v1.ClusterManagerClient(credentials=credentials)

    def get_cluster(self, project_id: str, zone: str, cluster_name: str) -> ClusterMetadata:
        """Fetch one cluster's endpoint and CA certificate.

        Raises:
            ClusterResolutionFailure: the cluster does not exist or the lookup failed
        """
        path = f"projects/{project_id}/locations/{zone}/clusters/{cluster_name}"
        try:
            cluster = self._client.get_cluster(name=path)
        except google_exceptions.NotFound as e:
            logger.error("Cluster not found", project_id=project_id, zone=zone, cluster=cluster_name)
            raise ClusterResolutionFailure(
                f"Cluster {cluster_name} not found in project {project_id}, zone {zone}"
            ) from e
        except google_exceptions.GoogleAPIError as e:
            logger.error("Cluster lookup failed", project_id=project_id, zone=zone, cluster=cluster_name, error=str(e))
            raise ClusterResolutionFailure(f"Failed to look up cluster {cluster_name}: {e}") from e

        logger.info("Resolved cluster", project_id=project_id, zone=zone, cluster=cluster_name)
        return to_cluster_metadata(cluster, zone)

    def list_clusters(self, project_id: str, zone: str = ALL_LOCATIONS) -> List[ClusterMetadata]:
        """List clusters in one zone, or in every location of the project.

        Raises:
            ClusterResolutionFailure: the listing failed
        """
        try:
            response = self._client.list_clusters(parent=f"projects/{project_id}/locations/{zone}")
        except google_exceptions.GoogleAPIError as e:
            logger.error("Cluster listing failed", project_id=project_id, zone=zone, error=str(e))
            raise ClusterResolutionFailure(f"Failed to list clusters in project {project_id}: {e}") from e

        return [to_cluster_metadata(cluster, zone) for cluster in response.clusters]
