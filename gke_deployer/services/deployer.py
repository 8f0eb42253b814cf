"""Kubernetes Engine deploy step.

Coordinates one deployment attempt:
1. Resolve an access token for the credential
2. Fetch the cluster's endpoint and CA certificate
3. Synthesize a kubeconfig
4. ``kubectl apply`` the manifests
5. Verify the rollout, when requested
6. Run after-apply stages

Usage:
    deployer = KubernetesEngineDeployer(config)
    result = await deployer.deploy("/path/to/workspace")
"""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from ..config import settings
from ..models import (
    AfterApplyStageError,
    ConfigurationError,
    DeployConfig,
    DeployException,
    VerificationTargetError,
    VerificationTimeout,
)
from ..utils.id_generator import generate_run_id
from .cloud.factory import ClientFactoryCache, client_factory_cache
from .kubernetes.client import KubernetesClientContext
from .kubernetes.kubeconfig import synthesize
from .kubernetes.kubectl import KubectlExecutor
from .kubernetes.manifests import collect_targets, resolve_manifests
from .kubernetes.models import DeployResult, KubeConfig, VerificationResult, VerificationTarget
from .kubernetes.verifier import RolloutVerifier

logger = structlog.get_logger(__name__)


@dataclass
class StepContext:
    """State handed to after-apply stages."""

    config: DeployConfig
    workspace: str
    run_id: str
    executor: KubectlExecutor
    manifests: List[str]
    verification: Optional[VerificationResult] = None
    warnings: List[str] = field(default_factory=list)


AfterApplyStage = Callable[[KubeConfig, StepContext], Awaitable[None]]


class KubectlCommandStage:
    """After-apply stage running one extra kubectl command.

    Example:
        KubectlCommandStage("annotate", ["deployment/web", "deployed-by=ci", "--overwrite"])
    """

    def __init__(self, subcommand: str, args: Sequence[str] = (), name: Optional[str] = None):
        self.subcommand = subcommand
        self.args = list(args)
        self.name = name or f"kubectl-{subcommand}"

    async def __call__(self, kubeconfig: KubeConfig, ctx: StepContext) -> None:
        result = await ctx.executor.run(kubeconfig, self.subcommand, self.args, working_dir=ctx.workspace)
        ctx.warnings.extend(result.warnings)


def _stage_name(stage: AfterApplyStage) -> str:
    return getattr(stage, "name", None) or getattr(stage, "__name__", None) or type(stage).__name__


class KubernetesEngineDeployer:
    """Deploys manifests to a GKE cluster and optionally verifies the rollout.

    One instance serves one deploy attempt; it keeps no state between
    attempts apart from the shared client factory cache.
    """

    def __init__(
        self,
        config: DeployConfig,
        clients: Optional[ClientFactoryCache] = None,
        executor: Optional[KubectlExecutor] = None,
        verifier_factory: Optional[Callable[..., RolloutVerifier]] = None,
        client_context_factory: Optional[Callable[[KubeConfig], KubernetesClientContext]] = None,
        after_apply: Sequence[AfterApplyStage] = (),
        run_id: Optional[str] = None,
    ):
        """Initialize the deployer.

        Args:
            config: Validated deploy configuration
            clients: Client factory cache keyed by credential id
            executor: kubectl executor
            verifier_factory: Builds a verifier from (apps_api, core_api)
            client_context_factory: Builds the Kubernetes API client context
            after_apply: Async callables run after apply and verification
            run_id: Identifier for this attempt
        """
        self.config = config
        self.run_id = run_id or generate_run_id()
        self.clients = clients or client_factory_cache
        self.executor = executor or KubectlExecutor.from_settings(settings, run_id=self.run_id)
        self.verifier_factory = verifier_factory or (
            lambda apps_api, core_api: RolloutVerifier.from_settings(apps_api, core_api, settings)
        )
        self.client_context_factory = client_context_factory or KubernetesClientContext
        self.after_apply = list(after_apply)

    @property
    def namespace(self) -> str:
        return self.config.namespace or settings.default_namespace

    async def deploy(self, workspace: str | Path) -> DeployResult:
        """Run the deploy step against a build workspace.

        Returns:
            DeployResult describing what was applied and verified

        Raises:
            ConfigurationError: workspace or manifests are unusable
            CredentialAuthFailure: the credential could not be resolved
            ClusterResolutionFailure: the cluster could not be resolved
            ToolInvocationFailure: kubectl failed
            VerificationTargetError: a target could not be read
            VerificationTimeout: a target did not become ready in time
            AfterApplyStageError: an after-apply stage failed
        """
        try:
            return await self._deploy(workspace)
        except DeployException as e:
            if e.run_id is None:
                e.run_id = self.run_id
            raise

    async def _deploy(self, workspace: str | Path) -> DeployResult:
        config = self.config
        workspace = str(Path(workspace).resolve())
        if not os.path.isdir(workspace):
            raise ConfigurationError(f"Workspace does not exist: {workspace}")

        log = logger.bind(
            run_id=self.run_id,
            project_id=config.project_id,
            zone=config.zone,
            cluster=config.cluster_name,
        )
        log.info("Starting deploy", credentials_id=config.credentials_id, manifest_pattern=config.manifest_pattern)

        loop = asyncio.get_running_loop()

        # Step 1: Resolve credentials
        factory = self.clients.get(config.credentials_id)
        access_token = await loop.run_in_executor(None, factory.access_token)

        # Step 2: Resolve cluster
        cluster_client = await loop.run_in_executor(None, factory.cluster_client)
        cluster = await loop.run_in_executor(
            None,
            lambda: cluster_client.get_cluster(config.project_id, config.zone, config.cluster_name),
        )

        # Step 3: Synthesize kubeconfig
        kubeconfig = synthesize(config.project_id, cluster, access_token.token)
        log.debug("Kubeconfig synthesized", context=kubeconfig.context_name, server=kubeconfig.server)

        # Step 4: Apply manifests
        manifests = resolve_manifests(workspace, config.manifest_pattern)
        targets: List[VerificationTarget] = []
        if config.verification_enabled:
            targets = collect_targets(
                manifests,
                verify_deployments=config.verify_deployments,
                verify_services=config.verify_services,
                default_namespace=self.namespace,
            )

        apply_result = await self.executor.apply(kubeconfig, workspace, manifests, namespace=config.namespace)
        warnings = list(apply_result.warnings)
        log.info("Manifests applied", manifests=len(manifests), duration_ms=apply_result.duration_ms)

        # Step 5: Verify rollout
        verification = None
        if config.verification_enabled:
            if not targets:
                log.warning("Verification requested but no matching objects found in manifests")
            verification = await self._verify(kubeconfig, targets)
            if not verification.succeeded:
                if verification.errored:
                    raise VerificationTargetError(verification, run_id=self.run_id)
                raise VerificationTimeout(verification, run_id=self.run_id)

        # Step 6: After-apply stages
        ctx = StepContext(
            config=config,
            workspace=workspace,
            run_id=self.run_id,
            executor=self.executor,
            manifests=manifests,
            verification=verification,
        )
        for stage in self.after_apply:
            await self._run_stage(stage, kubeconfig, ctx)
        warnings.extend(ctx.warnings)

        for warning in warnings:
            log.warning("Deploy warning", warning=warning)
        log.info("Deploy succeeded", context=kubeconfig.context_name)

        return DeployResult(
            kubeconfig_name=kubeconfig.name,
            manifests=manifests,
            apply_result=apply_result,
            verification=verification,
            warnings=warnings,
        )

    async def _verify(self, kubeconfig: KubeConfig, targets: List[VerificationTarget]) -> VerificationResult:
        if not targets:
            return VerificationResult()
        with self.client_context_factory(kubeconfig) as clients:
            verifier = self.verifier_factory(clients.apps_api, clients.core_api)
            return await verifier.verify(targets)

    async def _run_stage(self, stage: AfterApplyStage, kubeconfig: KubeConfig, ctx: StepContext) -> None:
        name = _stage_name(stage)
        logger.info("Running after-apply stage", stage=name, run_id=self.run_id)
        try:
            await stage(kubeconfig, ctx)
        except DeployException as e:
            raise AfterApplyStageError(name, e.message) from e
        except Exception as e:
            logger.error("After-apply stage raised", stage=name, error=str(e), exc_info=True)
            raise AfterApplyStageError(name, str(e)) from e
