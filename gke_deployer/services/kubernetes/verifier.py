"""Rollout verification for applied Deployments and Services.

After a successful apply, polls each target until it is ready, its
deadline passes, or a read fails in a way that waiting cannot fix. Every
target runs to a terminal state before results are reported, so one run
shows the operator every failing target at once.

Polling discipline: the first poll happens immediately; the interval then
starts at ``poll_interval`` and grows by ``backoff_factor`` per poll, capped
at ``max_poll_interval``. A factor of 1.0 gives a fixed interval. Sleeps are
clipped to the deadline and one final poll runs at the deadline.
"""

import asyncio
import math
from typing import Any

import structlog
import urllib3
from kubernetes.client import ApiException

from .models import (
    TargetKind,
    TargetOutcome,
    TargetProgress,
    TargetState,
    VerificationResult,
    VerificationTarget,
)

logger = structlog.get_logger(__name__)

# Container waiting reasons that mean a replica is crashing or cannot start
CRASH_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "CreateContainerConfigError",
        "InvalidImageName",
    }
)

# HTTP statuses worth retrying on the next poll
RETRYABLE_STATUSES = frozenset({0, 408, 429, 500, 502, 503, 504})


class TargetUnavailable(Exception):
    """A poll failed in a way that further waiting will not fix."""


class _NotReadyYet(Exception):
    """A poll failed transiently; treat as not ready."""


def _classify_api_error(target: VerificationTarget, e: ApiException) -> Exception:
    status = e.status or 0
    if status in (401, 403):
        return TargetUnavailable(f"access denied reading {target.kind.value.lower()} (HTTP {status})")
    if status == 404:
        return TargetUnavailable(f"{target.kind.value.lower()} not found after apply")
    if status in RETRYABLE_STATUSES or status >= 500:
        return _NotReadyYet(f"API error (HTTP {status}): {e.reason}")
    return TargetUnavailable(f"API error (HTTP {status}): {e.reason}")


def evaluate_deployment(deployment: Any) -> tuple[bool, str]:
    """Check replica counts of a Deployment.

    Returns:
        (ready, observation)

    Raises:
        TargetUnavailable: the rollout exceeded its progress deadline.
    """
    spec_replicas = deployment.spec.replicas if deployment.spec.replicas is not None else 1
    status = deployment.status
    generation = deployment.metadata.generation or 0
    observed = (status.observed_generation if status else None) or 0

    for condition in (status.conditions if status else None) or []:
        if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
            raise TargetUnavailable(f"rollout exceeded its progress deadline: {condition.message or ''}".rstrip(": "))

    if observed < generation:
        return False, f"waiting for generation {generation} to be observed (observed {observed})"

    updated = (status.updated_replicas if status else None) or 0
    ready = (status.ready_replicas if status else None) or 0

    if spec_replicas == 0:
        return True, "scaled to zero replicas"
    if updated != spec_replicas:
        return False, f"{updated}/{spec_replicas} replicas updated"
    if ready != spec_replicas:
        return False, f"{ready}/{spec_replicas} replicas ready"
    return True, f"{ready}/{spec_replicas} replicas ready"


def crashing_pods(pods: Any) -> list[str]:
    """Names and reasons of pods with a container stuck in a crash/backoff state."""
    crashing = []
    for pod in pods.items or []:
        if pod.status is None:
            continue
        statuses = list(pod.status.init_container_statuses or []) + list(pod.status.container_statuses or [])
        for cs in statuses:
            waiting = cs.state.waiting if cs.state else None
            if waiting is not None and waiting.reason in CRASH_REASONS:
                crashing.append(f"{pod.metadata.name} {waiting.reason}")
                break
    return crashing


def evaluate_service(service: Any) -> tuple[bool, str] | None:
    """Check a Service's own status.

    Returns:
        (ready, observation), or None when readiness depends on endpoints.
    """
    service_type = service.spec.type or "ClusterIP"
    if service_type == "ExternalName":
        return True, f"external name {service.spec.external_name}"
    if service_type == "LoadBalancer":
        load_balancer = service.status.load_balancer if service.status else None
        for ingress in (load_balancer.ingress if load_balancer else None) or []:
            address = ingress.ip or ingress.hostname
            if address:
                return True, f"external address {address}"
        return False, "waiting for load balancer address"
    return None


def count_ready_addresses(endpoints: Any) -> int:
    return sum(len(subset.addresses or []) for subset in endpoints.subsets or [])


class RolloutVerifier:
    """Polls Deployments and Services until they converge.

    Holds no state between ``verify`` calls; per-target progress lives in
    memory for the duration of one call.
    """

    def __init__(
        self,
        apps_api,
        core_api,
        timeout: float = 300.0,
        poll_interval: float = 5.0,
        max_poll_interval: float = 30.0,
        backoff_factor: float = 1.5,
        request_timeout: float = 10.0,
        max_concurrency: int = 4,
    ):
        """Initialize the verifier.

        Args:
            apps_api: AppsV1Api for Deployment reads
            core_api: CoreV1Api for Service, Endpoints and Pod reads
            timeout: Shared deadline in seconds for all targets
            poll_interval: Initial seconds between polls
            max_poll_interval: Upper bound for the poll interval
            backoff_factor: Multiplier applied to the interval after each poll
            request_timeout: Timeout for each API read
            max_concurrency: Polls with API reads in flight at the same time
        """
        if backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")
        self.apps_api = apps_api
        self.core_api = core_api
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max(max_poll_interval, poll_interval)
        self.backoff_factor = backoff_factor
        self.request_timeout = request_timeout
        self.max_concurrency = max(1, max_concurrency)

    @classmethod
    def from_settings(cls, apps_api, core_api, settings) -> "RolloutVerifier":
        """Build a verifier from the verification settings group."""
        config = settings.verification
        return cls(
            apps_api,
            core_api,
            timeout=config.timeout_seconds,
            poll_interval=config.poll_interval_seconds,
            max_poll_interval=config.max_poll_interval_seconds,
            backoff_factor=config.backoff_factor,
            request_timeout=config.request_timeout_seconds,
            max_concurrency=config.max_concurrency,
        )

    async def verify(self, targets: list[VerificationTarget]) -> VerificationResult:
        """Wait for every target to become ready.

        Returns:
            VerificationResult with one outcome per target, in the order
            the targets were given.
        """
        if not targets:
            return VerificationResult()

        loop = asyncio.get_running_loop()
        started = loop.time()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        logger.info(
            "Verifying rollout",
            targets=[t.display_name for t in targets],
            timeout=self.timeout,
        )

        outcomes = await asyncio.gather(*(self._watch(target, started, semaphore) for target in targets))
        result = VerificationResult(outcomes=list(outcomes))

        if result.succeeded:
            logger.info(
                "Rollout verified",
                targets=len(targets),
                elapsed_seconds=round(loop.time() - started, 2),
            )
        else:
            logger.warning(
                "Rollout verification failed",
                failed=[o.target.display_name for o in result.failures],
                summary=result.summary(),
            )
        return result

    async def _watch(
        self, target: VerificationTarget, started: float, semaphore: asyncio.Semaphore
    ) -> TargetOutcome:
        """Drive one target from Pending to a terminal state.

        The semaphore is held only while a poll's API reads are in flight,
        so sleeping targets never keep others from polling.
        """
        loop = asyncio.get_running_loop()
        budget = min(self.timeout, target.timeout if target.timeout is not None else math.inf)
        deadline = started + budget
        interval = self.poll_interval

        progress = TargetProgress(target)
        progress.advance(TargetState.POLLING)

        while True:
            progress.polls += 1
            # The first poll always gets the full request timeout
            read_deadline = deadline if progress.polls > 1 else None
            try:
                async with semaphore:
                    ready, observation = await self._poll(target, read_deadline)
            except TargetUnavailable as e:
                progress.advance(TargetState.ERRORED, str(e))
                break
            except _NotReadyYet as e:
                ready, observation = False, str(e)
            except Exception as e:
                logger.error(
                    "Unexpected error polling target",
                    target=target.display_name,
                    poll=progress.polls,
                    error=str(e),
                    exc_info=True,
                )
                progress.advance(TargetState.ERRORED, f"unexpected error while polling: {e}")
                break

            if ready:
                progress.advance(TargetState.READY, observation)
                break

            remaining = deadline - loop.time()
            if remaining <= 0:
                progress.advance(
                    TargetState.TIMED_OUT,
                    f"not ready within {budget:g}s ({observation})",
                )
                break

            progress.last_observation = observation
            logger.debug(
                "Target not ready",
                target=target.display_name,
                poll=progress.polls,
                observation=observation,
            )
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * self.backoff_factor, self.max_poll_interval)

        outcome = progress.outcome()
        logger.info(
            "Target verification finished",
            target=target.display_name,
            state=outcome.state.value,
            polls=outcome.polls,
        )
        return outcome

    async def _poll(self, target: VerificationTarget, deadline: float | None) -> tuple[bool, str]:
        if target.kind == TargetKind.DEPLOYMENT:
            return await self._poll_deployment(target, deadline)
        return await self._poll_service(target, deadline)

    async def _read(self, target: VerificationTarget, deadline: float | None, call):
        """Run one blocking API read, bounded by the request timeout and the deadline.

        A deadline of None gives the read the full request timeout.
        """
        loop = asyncio.get_running_loop()
        wait = self.request_timeout
        if deadline is not None:
            wait = max(0.1, min(wait, deadline - loop.time()))
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, call), timeout=wait)
        except asyncio.TimeoutError:
            raise _NotReadyYet(f"API read timed out after {wait:.1f}s")
        except ApiException as e:
            raise _classify_api_error(target, e)
        except (OSError, ValueError, urllib3.exceptions.HTTPError) as e:
            raise _NotReadyYet(f"API read failed: {e}")

    async def _poll_deployment(self, target: VerificationTarget, deadline: float | None) -> tuple[bool, str]:
        deployment = await self._read(
            target,
            deadline,
            lambda: self.apps_api.read_namespaced_deployment(
                target.name, target.namespace, _request_timeout=self.request_timeout
            ),
        )
        ready, observation = evaluate_deployment(deployment)

        selector = deployment.spec.selector.match_labels if deployment.spec.selector else None
        if not selector:
            return ready, observation

        label_selector = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
        try:
            pods = await self._read(
                target,
                deadline,
                lambda: self.core_api.list_namespaced_pod(
                    target.namespace, label_selector=label_selector, _request_timeout=self.request_timeout
                ),
            )
        except (TargetUnavailable, _NotReadyYet) as e:
            # Replica counts are authoritative; pod listing only adds crash diagnostics
            logger.debug("Pod listing failed", target=target.display_name, error=str(e))
            return ready, observation

        crashing = crashing_pods(pods)
        if crashing:
            return False, f"{observation}; crashing: {', '.join(crashing)}"
        return ready, observation

    async def _poll_service(self, target: VerificationTarget, deadline: float | None) -> tuple[bool, str]:
        service = await self._read(
            target,
            deadline,
            lambda: self.core_api.read_namespaced_service(
                target.name, target.namespace, _request_timeout=self.request_timeout
            ),
        )
        evaluated = evaluate_service(service)
        if evaluated is not None:
            return evaluated

        try:
            endpoints = await self._read(
                target,
                deadline,
                lambda: self.core_api.read_namespaced_endpoints(
                    target.name, target.namespace, _request_timeout=self.request_timeout
                ),
            )
        except TargetUnavailable as e:
            if "not found" in str(e):
                return False, "waiting for endpoints to be created"
            raise

        addresses = count_ready_addresses(endpoints)
        if addresses:
            return True, f"{addresses} ready endpoint address(es)"
        return False, "no ready endpoint addresses"
