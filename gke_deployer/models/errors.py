"""Error models and exception classes for the GKE deployer."""

import time
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ..services.kubernetes.models import VerificationResult


class ErrorType(str, Enum):
    """Error type enumeration.

    Each value maps to a different operator fix, so the CLI reports it
    verbatim and uses it to pick the exit code.
    """

    VALIDATION = "validation"
    CREDENTIAL_AUTH = "credential_auth"
    CLUSTER_RESOLUTION = "cluster_resolution"
    TOOL_INVOCATION = "tool_invocation"
    VERIFICATION_TIMEOUT = "verification_timeout"
    VERIFICATION_TARGET = "verification_target"
    AFTER_APPLY = "after_apply"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field or target the detail refers to")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error report handed back to the pipeline."""

    model_config = ConfigDict(use_enum_values=True)

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(None, description="Additional error details")
    run_id: Optional[str] = Field(None, description="Deployment run identifier")
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")


# Custom Exception Classes


class DeployException(Exception):
    """Base exception for the GKE deployer."""

    exit_status: int = 1

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.TOOL_INVOCATION,
        details: Optional[List[ErrorDetail]] = None,
        run_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or []
        self.run_id = run_id
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
            run_id=self.run_id,
        )


class ConfigurationError(DeployException):
    """Deploy configuration is incomplete or inconsistent."""

    exit_status = 2

    def __init__(self, message: str = "Invalid deploy configuration", **kwargs):
        super().__init__(message=message, error_type=ErrorType.VALIDATION, **kwargs)


class ManifestResolutionError(ConfigurationError):
    """The manifest pattern matched nothing or a manifest could not be read."""

    def __init__(self, pattern: str, message: str = None, **kwargs):
        self.pattern = pattern
        super().__init__(message=message or f"No manifests match pattern: {pattern}", **kwargs)


class CredentialAuthFailure(DeployException):
    """Credentials could not be obtained or validated."""

    exit_status = 3

    def __init__(self, credentials_id: str, message: str = None, **kwargs):
        self.credentials_id = credentials_id
        super().__init__(
            message=message or f"Failed to authenticate with credentials: {credentials_id}",
            error_type=ErrorType.CREDENTIAL_AUTH,
            **kwargs,
        )


class CredentialNotFound(CredentialAuthFailure):
    """No credential is stored under the given id."""

    def __init__(self, credentials_id: str, **kwargs):
        super().__init__(credentials_id, message=f"Credentials not found: {credentials_id}", **kwargs)


class ClusterResolutionFailure(DeployException):
    """Cluster lookup failed or returned unusable metadata."""

    exit_status = 4

    def __init__(self, message: str = "Failed to resolve cluster", **kwargs):
        super().__init__(message=message, error_type=ErrorType.CLUSTER_RESOLUTION, **kwargs)


class InvalidClusterMetadata(ClusterResolutionFailure):
    """Cluster endpoint or CA data is missing or malformed."""

    def __init__(self, cluster: str, reason: str, **kwargs):
        self.cluster = cluster
        self.reason = reason
        super().__init__(message=f"Invalid metadata for cluster {cluster}: {reason}", **kwargs)


class ToolInvocationFailure(DeployException):
    """kubectl could not be launched or did not succeed."""

    exit_status = 5

    def __init__(self, message: str = "kubectl invocation failed", **kwargs):
        super().__init__(message=message, error_type=ErrorType.TOOL_INVOCATION, **kwargs)


class ToolNotFoundError(ToolInvocationFailure):
    """The kubectl binary is not available."""

    def __init__(self, tool: str, **kwargs):
        self.tool = tool
        super().__init__(message=f"Command not found: {tool}", **kwargs)


class KubeconfigIOError(ToolInvocationFailure):
    """The ephemeral kubeconfig could not be written."""

    def __init__(self, message: str = "Failed to write ephemeral kubeconfig", **kwargs):
        super().__init__(message=message, **kwargs)


class CommandExecutionError(ToolInvocationFailure):
    """kubectl exited non-zero or timed out."""

    def __init__(self, command: str, exit_code: int, stderr_tail: str, **kwargs):
        self.command = command
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        message = f"kubectl {command} failed with exit code {exit_code}"
        if stderr_tail:
            message += f": {stderr_tail}"
        super().__init__(message=message, **kwargs)


class VerificationFailure(DeployException):
    """Base class for rollout verification failures.

    The manifests were applied; the rollout did not converge.
    """

    def __init__(self, result: "VerificationResult", error_type: ErrorType, **kwargs):
        self.result = result
        details = [
            ErrorDetail(field=outcome.target.display_name, message=outcome.message, code=outcome.state.value)
            for outcome in result.failures
        ]
        super().__init__(
            message=f"Rollout verification failed: {result.summary()}",
            error_type=error_type,
            details=details,
            **kwargs,
        )


class VerificationTimeout(VerificationFailure):
    """At least one target did not become ready before its deadline."""

    exit_status = 6

    def __init__(self, result: "VerificationResult", **kwargs):
        super().__init__(result, ErrorType.VERIFICATION_TIMEOUT, **kwargs)


class VerificationTargetError(VerificationFailure):
    """At least one target could not be read during polling."""

    exit_status = 7

    def __init__(self, result: "VerificationResult", **kwargs):
        super().__init__(result, ErrorType.VERIFICATION_TARGET, **kwargs)


class AfterApplyStageError(DeployException):
    """An after-apply stage failed."""

    exit_status = 8

    def __init__(self, stage: str, message: str, **kwargs):
        self.stage = stage
        super().__init__(
            message=f"After-apply stage {stage} failed: {message}",
            error_type=ErrorType.AFTER_APPLY,
            **kwargs,
        )
