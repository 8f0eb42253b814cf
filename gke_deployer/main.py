"""gke-deploy command line entry point.

Usage:
  gke-deploy --project P --cluster C --zone Z --credentials-id ID --manifest 'k8s/*.yaml'
  gke-deploy ... --verify-deployments --verify-services --json
  gke-deploy ... --after-apply "annotate deployment/web deployed-by=ci --overwrite"
  gke-deploy ... --validate-only

Exit codes:
  0 success, 2 invalid configuration, 3 credentials, 4 cluster lookup,
  5 kubectl, 6 verification timeout, 7 verification target error,
  8 after-apply stage, 130 cancelled
"""

import argparse
import asyncio
import json
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ._version import __version__
from .models import ConfigurationError, DeployConfig, DeployException, ErrorDetail
from .services.cloud.factory import client_factory_cache
from .services.deployer import KubectlCommandStage, KubernetesEngineDeployer
from .services.kubernetes.models import DeployResult
from .utils.config_validator import ConfigValidator
from .utils.error_handlers import handle_deploy_exception
from .utils.logging import get_logger, setup_logging
from .utils.shutdown import GracefulShutdownHandler

CANCELLED_EXIT_STATUS = 130

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gke-deploy",
        description="Apply Kubernetes manifests to a GKE cluster and verify the rollout.",
        epilog=__doc__.split("Exit codes:", 1)[1].strip() if __doc__ else None,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--project", dest="project_id", required=True, help="Google Cloud project id")
    parser.add_argument("--cluster", dest="cluster_name", required=True, help="GKE cluster name")
    parser.add_argument("--zone", required=True, help="Cluster zone or region")
    parser.add_argument("--credentials-id", required=True, help="Stored credential id ('default' for ADC)")
    parser.add_argument(
        "--manifest", dest="manifest_pattern", required=True, help="Manifest file, directory or glob in the workspace"
    )
    parser.add_argument("--workspace", default=".", help="Build workspace (default: current directory)")
    parser.add_argument("--namespace", help="Namespace for objects whose manifest omits one")
    parser.add_argument("--verify-deployments", action="store_true", help="Wait for Deployments to become ready")
    parser.add_argument("--verify-services", action="store_true", help="Wait for Services to become ready")
    parser.add_argument(
        "--after-apply",
        action="append",
        default=[],
        metavar="KUBECTL_ARGS",
        help="kubectl command to run after a successful deploy (repeatable)",
    )
    parser.add_argument("--validate-only", action="store_true", help="Check the configuration and cluster, then exit")
    parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_after_apply(commands: List[str]) -> List[KubectlCommandStage]:
    stages = []
    for command in commands:
        parts = shlex.split(command)
        if not parts:
            raise ConfigurationError("--after-apply requires a kubectl subcommand")
        stages.append(KubectlCommandStage(parts[0], parts[1:]))
    return stages


def build_config(args: argparse.Namespace) -> DeployConfig:
    """Build the deploy configuration, converting validation errors."""
    try:
        return DeployConfig(
            project_id=args.project_id,
            cluster_name=args.cluster_name,
            zone=args.zone,
            credentials_id=args.credentials_id,
            manifest_pattern=args.manifest_pattern,
            verify_deployments=args.verify_deployments,
            verify_services=args.verify_services,
            namespace=args.namespace,
        )
    except ValidationError as e:
        details = [
            ErrorDetail(
                field=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code=err["type"],
            )
            for err in e.errors()
        ]
        raise ConfigurationError("Invalid deploy configuration", details=details) from e


async def run_deploy(deployer: KubernetesEngineDeployer, workspace: str) -> DeployResult:
    """Run the deploy step with signal-driven cancellation."""
    shutdown_handler = GracefulShutdownHandler()

    async def release_clients() -> None:
        client_factory_cache.invalidate()

    shutdown_handler.add_shutdown_callback(release_clients)
    shutdown_handler.install(asyncio.current_task())
    try:
        return await deployer.deploy(workspace)
    finally:
        shutdown_handler.uninstall()
        if shutdown_handler.received_signal is not None:
            await shutdown_handler.shutdown()


def render_success(result: DeployResult, run_id: str, as_json: bool, console: Console) -> None:
    if as_json:
        payload = {
            "status": "success",
            "run_id": run_id,
            "context": result.kubeconfig_name,
            "manifests": result.manifests,
            "verification": None,
            "warnings": result.warnings,
        }
        if result.verification is not None:
            payload["verification"] = [
                {
                    "target": outcome.target.display_name,
                    "state": outcome.state.value,
                    "polls": outcome.polls,
                    "message": outcome.message,
                }
                for outcome in result.verification.outcomes
            ]
        console.print_json(json.dumps(payload))
        return

    lines = [
        f"[bold]Context:[/bold] {result.kubeconfig_name}",
        f"[bold]Manifests applied:[/bold] {len(result.manifests)}",
    ]
    console.print(Panel("\n".join(lines), title="[green]Deploy succeeded[/green]", border_style="green"))

    if result.verification is not None and result.verification.outcomes:
        table = Table(title="Rollout", box=box.SIMPLE)
        table.add_column("Target")
        table.add_column("State")
        table.add_column("Polls", justify="right")
        table.add_column("Detail")
        for outcome in result.verification.outcomes:
            table.add_row(outcome.target.display_name, outcome.state.value, str(outcome.polls), escape(outcome.message))
        console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


def render_failure(exc: DeployException, as_json: bool, console: Console) -> int:
    response = handle_deploy_exception(exc)
    if as_json:
        payload = response.model_dump()
        payload["status"] = "failed"
        payload["exit_status"] = exc.exit_status
        console.print_json(json.dumps(payload))
    else:
        body = escape(exc.message)
        for detail in exc.details:
            prefix = f"{detail.field}: " if detail.field else ""
            body += f"\n  - {escape(prefix + detail.message)}"
        console.print(
            Panel(body, title=f"[red]Deploy failed ({response.error_type})[/red]", border_style="red")
        )
    return exc.exit_status


def validate_only(args: argparse.Namespace, console: Console) -> int:
    validator = ConfigValidator()
    ok = validator.validate_all(
        {
            "project_id": args.project_id,
            "cluster_name": args.cluster_name,
            "zone": args.zone,
            "credentials_id": args.credentials_id,
            "manifest_pattern": args.manifest_pattern,
        }
    )
    if args.json:
        console.print_json(json.dumps({"valid": ok, "errors": validator.errors, "warnings": validator.warnings}))
    else:
        for warning in validator.warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        for error in validator.errors:
            console.print(f"[red]Error:[/red] {escape(error)}")
        if ok:
            console.print("[green]Configuration is valid[/green]")
    return 0 if ok else ConfigurationError.exit_status


def main(argv: Optional[List[str]] = None) -> int:
    """Run the gke-deploy command."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    console = Console()

    if args.validate_only:
        return validate_only(args, console)

    try:
        config = build_config(args)
        stages = parse_after_apply(args.after_apply)
    except DeployException as e:
        return render_failure(e, args.json, console)

    deployer = KubernetesEngineDeployer(config, after_apply=stages)
    workspace = str(Path(args.workspace).resolve())

    try:
        result = asyncio.run(run_deploy(deployer, workspace))
    except DeployException as e:
        return render_failure(e, args.json, console)
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.warning("Deploy cancelled", run_id=deployer.run_id)
        if args.json:
            console.print_json(json.dumps({"status": "cancelled", "run_id": deployer.run_id}))
        else:
            console.print("[yellow]Deploy cancelled[/yellow]")
        return CANCELLED_EXIT_STATUS

    render_success(result, deployer.run_id, args.json, console)
    return 0


if __name__ == "__main__":
    sys.exit(main())
