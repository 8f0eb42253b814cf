"""Services module for the GKE deployer."""

from .deployer import KubectlCommandStage, KubernetesEngineDeployer, StepContext
from .interfaces import ClusterClientInterface, CredentialResolverInterface

__all__ = [
    "KubernetesEngineDeployer",
    "KubectlCommandStage",
    "StepContext",
    "ClusterClientInterface",
    "CredentialResolverInterface",
]
