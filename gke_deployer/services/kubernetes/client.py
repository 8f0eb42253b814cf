"""Kubernetes API client factory.

Builds API clients directly from a synthesized KubeConfig, in memory, so
rollout polling reuses the same credentials without writing a kubeconfig
per poll.
"""

import structlog
from kubernetes import config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api
from kubernetes.config import ConfigException

from ...models.errors import ClusterResolutionFailure
from .models import KubeConfig

logger = structlog.get_logger(__name__)


def build_api_client(kubeconfig: KubeConfig) -> ApiClient:
    """Create an ApiClient authenticated with the kubeconfig's token.

    Raises:
        ClusterResolutionFailure: the kubeconfig could not be loaded.
    """
    try:
        api_client = config.new_client_from_config_dict(
            kubeconfig.to_dict(),
            context=kubeconfig.context_name,
            persist_config=False,
        )
    except ConfigException as e:
        logger.error("Failed to load cluster configuration", context=kubeconfig.context_name, error=str(e))
        raise ClusterResolutionFailure(f"Failed to load cluster configuration for {kubeconfig.context_name}: {e}")

    logger.debug("Kubernetes API client created", context=kubeconfig.context_name, server=kubeconfig.server)
    return api_client


class KubernetesClientContext:
    """Context manager for Kubernetes API access.

    Provides Apps and Core API clients sharing one connection pool, closed
    on exit.
    """

    def __init__(self, kubeconfig: KubeConfig):
        self.kubeconfig = kubeconfig
        self.api_client: ApiClient | None = None
        self.apps_api: AppsV1Api | None = None
        self.core_api: CoreV1Api | None = None

    def __enter__(self) -> "KubernetesClientContext":
        self.api_client = build_api_client(self.kubeconfig)
        self.apps_api = AppsV1Api(self.api_client)
        self.core_api = CoreV1Api(self.api_client)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.api_client is not None:
            self.api_client.close()
        return False
