"""Rollout verification configuration."""

from dataclasses import dataclass


@dataclass
class VerificationConfig:
    """Polling budget for rollout verification."""

    # Shared deadline for every target
    timeout_seconds: float = 300.0

    # Interval before the second poll; grows by backoff_factor up to max_poll_interval
    poll_interval_seconds: float = 5.0
    max_poll_interval_seconds: float = 30.0
    backoff_factor: float = 1.5

    # Timeout passed to each Kubernetes API read
    request_timeout_seconds: float = 10.0

    # Targets polled at the same time
    max_concurrency: int = 4
