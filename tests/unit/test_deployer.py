"""Unit tests for the Kubernetes Engine deploy step."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from gke_deployer.models import (
    AfterApplyStageError,
    ClusterResolutionFailure,
    CommandExecutionError,
    ConfigurationError,
    CredentialAuthFailure,
    DeployConfig,
    ManifestResolutionError,
    VerificationTargetError,
    VerificationTimeout,
)
from gke_deployer.services.deployer import KubectlCommandStage, KubernetesEngineDeployer, StepContext
from gke_deployer.services.kubernetes.kubeconfig import kubeconfig_name
from gke_deployer.services.kubernetes.models import (
    CommandResult,
    TargetOutcome,
    TargetState,
    VerificationResult,
    VerificationTarget,
)


@pytest.fixture
def mock_executor():
    executor = MagicMock()
    executor.apply = AsyncMock(
        return_value=CommandResult(exit_code=0, stdout="deployment.apps/web configured", stderr="")
    )
    executor.run = AsyncMock(return_value=CommandResult(exit_code=0, stdout="", stderr=""))
    return executor


@pytest.fixture
def mock_verifier():
    verifier = MagicMock()
    verifier.verify = AsyncMock(
        side_effect=lambda targets: VerificationResult(
            outcomes=[TargetOutcome(t, TargetState.READY, 1, "2/2 replicas ready") for t in targets]
        )
    )
    return verifier


def _deployer(deploy_config, client_cache, executor, client_context, verifier, **kwargs):
    return KubernetesEngineDeployer(
        deploy_config,
        clients=client_cache,
        executor=executor,
        verifier_factory=lambda apps_api, core_api: verifier,
        client_context_factory=client_context,
        run_id="4242-testrun",
        **kwargs,
    )


def _outcome(state, message="1/2 replicas ready"):
    return TargetOutcome(VerificationTarget.deployment("web"), state, 3, message)


class TestDeploy:
    """Tests for the deploy sequence."""

    @pytest.mark.asyncio
    async def test_success(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace, mock_resolver
    ):
        deployer = _deployer(deploy_config, client_cache, mock_executor, client_context, mock_verifier)

        result = await deployer.deploy(workspace)

        mock_resolver.resolve.assert_called_once_with("ci-deployer")
        assert result.kubeconfig_name == kubeconfig_name("p", "z", "c")
        assert result.manifests == [str(workspace.resolve() / "k8s" / "deployment.yaml")]
        assert result.verification.succeeded

        kubeconfig, cwd, manifests = mock_executor.apply.call_args.args
        assert kubeconfig.name == result.kubeconfig_name
        assert cwd == str(workspace.resolve())
        assert mock_executor.apply.call_args.kwargs["namespace"] is None

        mock_verifier.verify.assert_awaited_once_with([VerificationTarget.deployment("web", "default")])
        assert client_context.entered_with is kubeconfig
        assert client_context.closed

    @pytest.mark.asyncio
    async def test_cluster_looked_up_by_zone(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace, mock_cluster_client
    ):
        await _deployer(deploy_config, client_cache, mock_executor, client_context, mock_verifier).deploy(workspace)

        mock_cluster_client.get_cluster.assert_called_once_with("p", "z", "c")

    @pytest.mark.asyncio
    async def test_no_verification_requested(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        config = deploy_config.model_copy(update={"verify_deployments": False})

        result = await _deployer(config, client_cache, mock_executor, client_context, mock_verifier).deploy(workspace)

        assert result.verification is None
        mock_verifier.verify.assert_not_called()
        assert client_context.entered_with is None

    @pytest.mark.asyncio
    async def test_no_matching_targets(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        config = deploy_config.model_copy(update={"verify_deployments": False, "verify_services": True})

        result = await _deployer(config, client_cache, mock_executor, client_context, mock_verifier).deploy(workspace)

        assert result.verification.outcomes == []
        mock_verifier.verify.assert_not_called()

    @pytest.mark.asyncio
    async def test_namespace_passed_to_apply_and_targets(
        self, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        config = DeployConfig(
            project_id="p",
            cluster_name="c",
            zone="z",
            credentials_id="ci-deployer",
            manifest_pattern="k8s/*.yaml",
            verify_deployments=True,
            namespace="staging",
        )

        await _deployer(config, client_cache, mock_executor, client_context, mock_verifier).deploy(workspace)

        assert mock_executor.apply.call_args.kwargs["namespace"] == "staging"
        mock_verifier.verify.assert_awaited_once_with([VerificationTarget.deployment("web", "staging")])


class TestDeployFailures:
    """Tests for failure classification."""

    @pytest.mark.asyncio
    async def test_missing_workspace(self, deploy_config, client_cache, mock_executor, client_context, tmp_path):
        deployer = _deployer(deploy_config, client_cache, mock_executor, client_context, MagicMock())

        with pytest.raises(ConfigurationError) as exc_info:
            await deployer.deploy(tmp_path / "missing")
        assert exc_info.value.run_id == "4242-testrun"

    @pytest.mark.asyncio
    async def test_credential_failure_stops_before_apply(
        self, deploy_config, client_cache, mock_executor, client_context, workspace, mock_resolver
    ):
        mock_resolver.resolve.side_effect = CredentialAuthFailure("ci-deployer")

        with pytest.raises(CredentialAuthFailure) as exc_info:
            await _deployer(deploy_config, client_cache, mock_executor, client_context, MagicMock()).deploy(workspace)

        assert exc_info.value.exit_status == 3
        assert exc_info.value.run_id == "4242-testrun"
        mock_executor.apply.assert_not_called()

    @pytest.mark.asyncio
    async def test_cluster_failure_stops_before_apply(
        self, deploy_config, client_cache, mock_executor, client_context, workspace, mock_cluster_client
    ):
        mock_cluster_client.get_cluster.side_effect = ClusterResolutionFailure("Cluster c not found")

        with pytest.raises(ClusterResolutionFailure):
            await _deployer(deploy_config, client_cache, mock_executor, client_context, MagicMock()).deploy(workspace)

        mock_executor.apply.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_manifests(self, client_cache, mock_executor, client_context, workspace):
        config = DeployConfig(
            project_id="p",
            cluster_name="c",
            zone="z",
            credentials_id="ci-deployer",
            manifest_pattern="helm/*.yaml",
        )

        with pytest.raises(ManifestResolutionError):
            await _deployer(config, client_cache, mock_executor, client_context, MagicMock()).deploy(workspace)

        mock_executor.apply.assert_not_called()

    @pytest.mark.asyncio
    async def test_apply_failure(self, deploy_config, client_cache, mock_executor, client_context, workspace):
        mock_executor.apply.side_effect = CommandExecutionError("apply", 1, "error: the server doesn't have a resource")
        verifier = MagicMock()

        with pytest.raises(CommandExecutionError) as exc_info:
            await _deployer(deploy_config, client_cache, mock_executor, client_context, verifier).deploy(workspace)

        assert exc_info.value.exit_status == 5
        verifier.verify.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout(self, deploy_config, client_cache, mock_executor, client_context, workspace):
        verifier = MagicMock()
        verifier.verify = AsyncMock(return_value=VerificationResult(outcomes=[_outcome(TargetState.TIMED_OUT)]))

        with pytest.raises(VerificationTimeout) as exc_info:
            await _deployer(deploy_config, client_cache, mock_executor, client_context, verifier).deploy(workspace)

        assert "Deployment/default/web" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_errored_target_takes_precedence(
        self, deploy_config, client_cache, mock_executor, client_context, workspace
    ):
        verifier = MagicMock()
        verifier.verify = AsyncMock(
            return_value=VerificationResult(
                outcomes=[
                    _outcome(TargetState.TIMED_OUT),
                    TargetOutcome(VerificationTarget.deployment("api"), TargetState.ERRORED, 1, "not found"),
                ]
            )
        )

        with pytest.raises(VerificationTargetError) as exc_info:
            await _deployer(deploy_config, client_cache, mock_executor, client_context, verifier).deploy(workspace)

        assert len(exc_info.value.details) == 2
        assert client_context.closed


class TestAfterApplyStages:
    """Tests for after-apply stages."""

    @pytest.mark.asyncio
    async def test_stages_run_in_order_with_context(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        seen = []

        async def record(kubeconfig, ctx):
            seen.append((kubeconfig.name, ctx))

        async def warn(kubeconfig, ctx):
            ctx.warnings.append("annotation skipped")

        deployer = _deployer(
            deploy_config, client_cache, mock_executor, client_context, mock_verifier, after_apply=[record, warn]
        )

        result = await deployer.deploy(workspace)

        name, ctx = seen[0]
        assert name == result.kubeconfig_name
        assert isinstance(ctx, StepContext)
        assert ctx.run_id == "4242-testrun"
        assert ctx.verification.succeeded
        assert result.warnings == ["annotation skipped"]

    @pytest.mark.asyncio
    async def test_stage_failure(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        async def notify(kubeconfig, ctx):
            raise RuntimeError("webhook unreachable")

        deployer = _deployer(
            deploy_config, client_cache, mock_executor, client_context, mock_verifier, after_apply=[notify]
        )

        with pytest.raises(AfterApplyStageError) as exc_info:
            await deployer.deploy(workspace)

        assert exc_info.value.stage == "notify"
        assert exc_info.value.exit_status == 8
        assert "webhook unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_stage_skipped_when_verification_fails(
        self, deploy_config, client_cache, mock_executor, client_context, workspace
    ):
        verifier = MagicMock()
        verifier.verify = AsyncMock(return_value=VerificationResult(outcomes=[_outcome(TargetState.TIMED_OUT)]))
        stage = AsyncMock()

        deployer = _deployer(deploy_config, client_cache, mock_executor, client_context, verifier, after_apply=[stage])

        with pytest.raises(VerificationTimeout):
            await deployer.deploy(workspace)

        stage.assert_not_called()

    @pytest.mark.asyncio
    async def test_kubectl_command_stage(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        mock_executor.run.return_value = CommandResult(
            exit_code=0, stdout="", stderr="", warnings=["cleanup failed"]
        )
        stage = KubectlCommandStage("annotate", ["deployment/web", "deployed-by=ci"])

        deployer = _deployer(
            deploy_config, client_cache, mock_executor, client_context, mock_verifier, after_apply=[stage]
        )
        result = await deployer.deploy(workspace)

        assert stage.name == "kubectl-annotate"
        args = mock_executor.run.call_args
        assert args.args[1:] == ("annotate", ["deployment/web", "deployed-by=ci"])
        assert args.kwargs["working_dir"] == str(workspace.resolve())
        assert "cleanup failed" in result.warnings

    @pytest.mark.asyncio
    async def test_kubectl_command_stage_failure(
        self, deploy_config, client_cache, mock_executor, client_context, mock_verifier, workspace
    ):
        mock_executor.run.side_effect = CommandExecutionError("rollout", 1, "timed out waiting")
        stage = KubectlCommandStage("rollout", ["status", "deployment/web"])

        deployer = _deployer(
            deploy_config, client_cache, mock_executor, client_context, mock_verifier, after_apply=[stage]
        )

        with pytest.raises(AfterApplyStageError, match="kubectl-rollout"):
            await deployer.deploy(workspace)
