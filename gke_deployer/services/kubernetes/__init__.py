"""Kubernetes access services.

This module provides kubeconfig synthesis, kubectl execution and rollout
verification.
"""

from .client import KubernetesClientContext, build_api_client
from .kubeconfig import kubeconfig_name, synthesize
from .kubectl import EphemeralKubeconfig, KubectlExecutor
from .manifests import collect_targets, resolve_manifests
from .models import (
    AccessToken,
    ClusterCredentials,
    ClusterMetadata,
    CommandInvocation,
    CommandResult,
    DeployResult,
    KubeConfig,
    TargetKind,
    TargetOutcome,
    TargetState,
    VerificationResult,
    VerificationTarget,
)
from .verifier import RolloutVerifier

__all__ = [
    "AccessToken",
    "ClusterCredentials",
    "ClusterMetadata",
    "CommandInvocation",
    "CommandResult",
    "DeployResult",
    "KubeConfig",
    "TargetKind",
    "TargetOutcome",
    "TargetState",
    "VerificationResult",
    "VerificationTarget",
    "build_api_client",
    "collect_targets",
    "kubeconfig_name",
    "resolve_manifests",
    "synthesize",
    "EphemeralKubeconfig",
    "KubectlExecutor",
    "KubernetesClientContext",
    "RolloutVerifier",
]
