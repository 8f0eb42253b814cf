"""Kubeconfig synthesis from GKE cluster metadata.

Pure data transformation: no network or disk I/O happens here.
"""

import base64
import binascii

from ...models.errors import CredentialAuthFailure, InvalidClusterMetadata
from .models import ClusterCredentials, ClusterMetadata, KubeConfig


def kubeconfig_name(project_id: str, location: str, cluster_name: str) -> str:
    """Context name for a cluster, following the gcloud ``gke_`` convention."""
    return f"gke_{project_id}_{location}_{cluster_name}"


def _server_url(cluster: ClusterMetadata) -> str:
    endpoint = (cluster.endpoint or "").strip()
    if not endpoint:
        raise InvalidClusterMetadata(cluster.name, "endpoint is missing")
    if any(c.isspace() for c in endpoint):
        raise InvalidClusterMetadata(cluster.name, "endpoint contains whitespace")
    if endpoint.startswith("http://"):
        raise InvalidClusterMetadata(cluster.name, "endpoint must use https")
    if endpoint.startswith("https://"):
        return endpoint
    return f"https://{endpoint}"


def _ca_data(cluster: ClusterMetadata) -> str:
    ca = "".join((cluster.ca_certificate or "").split())
    if not ca:
        raise InvalidClusterMetadata(cluster.name, "CA certificate is missing")
    try:
        decoded = base64.b64decode(ca, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidClusterMetadata(cluster.name, "CA certificate is not valid base64")
    if not decoded:
        raise InvalidClusterMetadata(cluster.name, "CA certificate is empty")
    return ca


def credentials_for(cluster: ClusterMetadata, access_token: str) -> ClusterCredentials:
    """Build the credentials bundle for a cluster.

    Raises:
        InvalidClusterMetadata: endpoint or CA data is missing or malformed.
        CredentialAuthFailure: the access token is empty.
    """
    server = _server_url(cluster)
    ca_data = _ca_data(cluster)
    if not access_token:
        raise CredentialAuthFailure("", message="Access token is empty")
    return ClusterCredentials(server=server, ca_data=ca_data, token=access_token)


def synthesize(project_id: str, cluster: ClusterMetadata, access_token: str) -> KubeConfig:
    """Convert cluster metadata and an access token into a KubeConfig.

    Args:
        project_id: Project the cluster belongs to
        cluster: Cluster metadata (endpoint and base64 CA certificate)
        access_token: OAuth bearer token for the cluster

    Returns:
        KubeConfig with exactly one cluster, user and context entry, the
        context marked current.
    """
    if not project_id:
        raise InvalidClusterMetadata(cluster.name, "project id is missing")
    if not cluster.name:
        raise InvalidClusterMetadata("<unnamed>", "cluster name is missing")

    credentials = credentials_for(cluster, access_token)
    return KubeConfig(
        name=kubeconfig_name(project_id, cluster.location, cluster.name),
        credentials=credentials,
    )
