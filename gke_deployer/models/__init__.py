"""Data models for the GKE deployer."""

from .deploy import DeployConfig
from .errors import (
    AfterApplyStageError,
    ClusterResolutionFailure,
    CommandExecutionError,
    ConfigurationError,
    CredentialAuthFailure,
    CredentialNotFound,
    DeployException,
    ErrorDetail,
    ErrorResponse,
    ErrorType,
    InvalidClusterMetadata,
    KubeconfigIOError,
    ManifestResolutionError,
    ToolInvocationFailure,
    ToolNotFoundError,
    VerificationFailure,
    VerificationTargetError,
    VerificationTimeout,
)

__all__ = [
    "DeployConfig",
    # Errors
    "AfterApplyStageError",
    "ClusterResolutionFailure",
    "CommandExecutionError",
    "ConfigurationError",
    "CredentialAuthFailure",
    "CredentialNotFound",
    "DeployException",
    "ErrorDetail",
    "ErrorResponse",
    "ErrorType",
    "InvalidClusterMetadata",
    "KubeconfigIOError",
    "ManifestResolutionError",
    "ToolInvocationFailure",
    "ToolNotFoundError",
    "VerificationFailure",
    "VerificationTargetError",
    "VerificationTimeout",
]
