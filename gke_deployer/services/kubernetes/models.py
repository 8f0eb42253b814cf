"""Data models for cluster access and rollout verification.

These models represent cluster credentials, the synthesized kubeconfig,
kubectl invocations and per-target verification progress.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import yaml


@dataclass(frozen=True)
class ClusterMetadata:
    """Cluster details returned by the cluster metadata service."""

    name: str
    location: str
    endpoint: str
    ca_certificate: str  # base64-encoded PEM


@dataclass(frozen=True)
class AccessToken:
    """Bearer token resolved from a stored credential."""

    token: str = field(repr=False)
    expiry: Any = None
    project_id: str | None = None


@dataclass(frozen=True)
class ClusterCredentials:
    """Everything needed to authenticate to one cluster."""

    server: str
    ca_data: str = field(repr=False)
    token: str = field(repr=False)


@dataclass(frozen=True)
class KubeConfig:
    """Single-purpose kubeconfig: one cluster, one user, one context.

    The token never appears in ``repr``; the only place it is rendered is
    ``to_dict``/``to_yaml``, which the command executor writes to an
    owner-only ephemeral file.
    """

    name: str
    credentials: ClusterCredentials

    @property
    def server(self) -> str:
        return self.credentials.server

    @property
    def context_name(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        """Render the kubeconfig document."""
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [
                {
                    "name": self.name,
                    "cluster": {
                        "server": self.credentials.server,
                        "certificate-authority-data": self.credentials.ca_data,
                    },
                }
            ],
            "users": [
                {
                    "name": self.name,
                    "user": {"token": self.credentials.token},
                }
            ],
            "contexts": [
                {
                    "name": self.name,
                    "context": {"cluster": self.name, "user": self.name},
                }
            ],
            "current-context": self.name,
        }

    def to_yaml(self) -> str:
        """Render the kubeconfig document as YAML text."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)


@dataclass
class CommandInvocation:
    """One kubectl call: argument vector, working directory and env overlay.

    The env overlay carries the ephemeral kubeconfig path and is excluded
    from ``repr`` so it never reaches a log line.
    """

    argv: list[str]
    working_dir: str | None = None
    env_overlay: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def subcommand(self) -> str:
        """The kubectl verb, e.g. ``apply``."""
        return self.argv[1] if len(self.argv) > 1 else ""


@dataclass
class CommandResult:
    """Captured result of a kubectl call."""

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def stderr_tail(self, lines: int = 20) -> str:
        """Last ``lines`` lines of stderr."""
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


class TargetKind(str, Enum):
    """Kinds of objects the verifier knows how to check."""

    DEPLOYMENT = "Deployment"
    SERVICE = "Service"


class TargetState(str, Enum):
    """Verification state of one target."""

    PENDING = "pending"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TargetState.READY, TargetState.TIMED_OUT, TargetState.ERRORED)


@dataclass(frozen=True)
class VerificationTarget:
    """A Deployment or Service to wait for."""

    kind: TargetKind
    name: str
    namespace: str = "default"
    timeout: float | None = None  # overrides the shared deadline when shorter

    @classmethod
    def deployment(cls, name: str, namespace: str = "default", timeout: float | None = None) -> "VerificationTarget":
        return cls(TargetKind.DEPLOYMENT, name, namespace, timeout)

    @classmethod
    def service(cls, name: str, namespace: str = "default", timeout: float | None = None) -> "VerificationTarget":
        return cls(TargetKind.SERVICE, name, namespace, timeout)

    @property
    def display_name(self) -> str:
        return f"{self.kind.value}/{self.namespace}/{self.name}"


_ALLOWED_TRANSITIONS = {
    TargetState.PENDING: {TargetState.POLLING},
    TargetState.POLLING: {TargetState.READY, TargetState.TIMED_OUT, TargetState.ERRORED},
}


@dataclass
class TargetProgress:
    """In-memory progress of one target across polling iterations."""

    target: VerificationTarget
    state: TargetState = TargetState.PENDING
    polls: int = 0
    last_observation: str = "not yet polled"

    def advance(self, state: TargetState, observation: str | None = None) -> None:
        """Move to ``state``; terminal states are final."""
        if state != self.state and state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Illegal transition for {self.target.display_name}: {self.state.value} -> {state.value}")
        self.state = state
        if observation is not None:
            self.last_observation = observation

    def outcome(self) -> "TargetOutcome":
        return TargetOutcome(
            target=self.target,
            state=self.state,
            polls=self.polls,
            message=self.last_observation,
        )


@dataclass(frozen=True)
class TargetOutcome:
    """Terminal result for one target."""

    target: VerificationTarget
    state: TargetState
    polls: int
    message: str

    @property
    def ready(self) -> bool:
        return self.state == TargetState.READY


@dataclass
class VerificationResult:
    """Outcomes for every target, in declaration order."""

    outcomes: list[TargetOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(outcome.ready for outcome in self.outcomes)

    @property
    def failures(self) -> list[TargetOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ready]

    @property
    def timed_out(self) -> list[TargetOutcome]:
        return [outcome for outcome in self.outcomes if outcome.state == TargetState.TIMED_OUT]

    @property
    def errored(self) -> list[TargetOutcome]:
        return [outcome for outcome in self.outcomes if outcome.state == TargetState.ERRORED]

    def summary(self) -> str:
        """One line naming every failed target and how it failed."""
        if self.succeeded:
            return f"{len(self.outcomes)} target(s) ready"
        return "; ".join(
            f"{outcome.target.display_name} {outcome.state.value} after {outcome.polls} poll(s): {outcome.message}"
            for outcome in self.failures
        )


@dataclass
class DeployResult:
    """Outcome of a successful deploy step."""

    kubeconfig_name: str
    manifests: list[str]
    apply_result: CommandResult
    verification: VerificationResult | None = None
    warnings: list[str] = field(default_factory=list)
