"""kubectl command executor.

Runs kubectl against a synthesized kubeconfig. The kubeconfig is written to
a private, per-invocation directory outside the workspace, handed to kubectl
through the KUBECONFIG environment variable, and deleted on every exit path.
"""

import asyncio
import os
import shutil
import tempfile
import time
from collections.abc import Sequence
from pathlib import Path

import structlog

from ...models.errors import (
    CommandExecutionError,
    KubeconfigIOError,
    ToolInvocationFailure,
    ToolNotFoundError,
)
from ...utils.id_generator import generate_run_id
from .manifests import resolve_manifests
from .models import CommandInvocation, CommandResult, KubeConfig

logger = structlog.get_logger(__name__)

KUBECONFIG_FILENAME = "kubeconfig.yaml"
TIMEOUT_EXIT_CODE = 124
READ_CHUNK_BYTES = 64 * 1024


class EphemeralKubeconfig:
    """Context manager owning one on-disk kubeconfig.

    On enter, creates a 0700 directory under ``root`` and writes the
    kubeconfig into it with mode 0600. On exit, deletes both. A deletion
    failure is logged and stored in ``cleanup_error``; it never replaces an
    exception that is already propagating.
    """

    def __init__(self, kubeconfig: KubeConfig, root: str, run_id: str):
        self.kubeconfig = kubeconfig
        self.root = root
        self.run_id = run_id
        self.directory: str | None = None
        self.path: str | None = None
        self.cleanup_error: str | None = None

    def __enter__(self) -> "EphemeralKubeconfig":
        try:
            Path(self.root).mkdir(parents=True, exist_ok=True)
            self.directory = tempfile.mkdtemp(prefix=f"gke-deploy-{self.run_id}-", dir=self.root)
            os.chmod(self.directory, 0o700)
            self.path = os.path.join(self.directory, KUBECONFIG_FILENAME)

            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            try:
                os.fchmod(fd, 0o600)
                os.write(fd, self.kubeconfig.to_yaml().encode("utf-8"))
            finally:
                os.close(fd)
        except OSError as e:
            self._cleanup()
            raise KubeconfigIOError(f"Failed to write ephemeral kubeconfig: {e.strerror or e}") from e

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._cleanup()
        return False

    @property
    def exists(self) -> bool:
        return self.path is not None and os.path.exists(self.path)

    def _cleanup(self) -> None:
        if self.directory is None:
            return
        try:
            if self.path and os.path.lexists(self.path):
                os.unlink(self.path)
            shutil.rmtree(self.directory)
        except OSError as e:
            self.cleanup_error = f"Failed to delete ephemeral kubeconfig: {e.strerror or e}"
            logger.warning(
                "Ephemeral kubeconfig cleanup failed",
                run_id=self.run_id,
                error=e.strerror or str(e),
            )


class KubectlExecutor:
    """Executes kubectl commands with per-invocation credential isolation.

    One subprocess per call; no retries. Retry policy belongs to the
    caller, because ``apply`` is not safe to repeat blindly.
    """

    def __init__(
        self,
        kubectl_path: str = "kubectl",
        timeout_seconds: float = 300,
        ephemeral_dir: str | None = None,
        max_output_bytes: int = 1024 * 1024,
        stderr_tail_lines: int = 20,
        run_id: str | None = None,
    ):
        """Initialize the executor.

        Args:
            kubectl_path: kubectl binary name or path
            timeout_seconds: Maximum wall clock time per command
            ephemeral_dir: Root for per-invocation kubeconfig directories
            max_output_bytes: Captured bytes kept per output stream
            stderr_tail_lines: stderr lines included in failure messages
            run_id: Run-unique identifier embedded in ephemeral paths
        """
        self.kubectl_path = kubectl_path
        self.timeout_seconds = timeout_seconds
        self.ephemeral_dir = ephemeral_dir or tempfile.gettempdir()
        self.max_output_bytes = max_output_bytes
        self.stderr_tail_lines = stderr_tail_lines
        self.run_id = run_id or generate_run_id()

    @classmethod
    def from_settings(cls, settings, run_id: str | None = None) -> "KubectlExecutor":
        """Build an executor from the kubectl settings group."""
        config = settings.kubectl
        return cls(
            kubectl_path=config.kubectl_path,
            timeout_seconds=config.timeout_seconds,
            ephemeral_dir=config.ephemeral_dir,
            max_output_bytes=config.max_output_bytes,
            stderr_tail_lines=config.stderr_tail_lines,
            run_id=run_id,
        )

    def resolve_binary(self) -> str:
        """Locate kubectl, raising ToolNotFoundError when it is unavailable."""
        binary = shutil.which(self.kubectl_path)
        if binary is None:
            raise ToolNotFoundError(self.kubectl_path)
        return binary

    async def apply(
        self,
        kubeconfig: KubeConfig,
        working_dir: str | Path,
        manifests: str | Sequence[str],
        namespace: str | None = None,
    ) -> CommandResult:
        """Run ``kubectl apply`` for a manifest pattern or resolved manifest paths.

        Args:
            kubeconfig: Cluster access descriptor
            working_dir: Build workspace; patterns resolve relative to it
            manifests: Path/glob relative to ``working_dir``, or resolved paths
            namespace: Namespace for objects whose manifest omits one

        Returns:
            CommandResult of the apply.
        """
        if isinstance(manifests, str):
            manifests = resolve_manifests(working_dir, manifests)

        args: list[str] = []
        if namespace:
            args.extend(["--namespace", namespace])
        for manifest in manifests:
            args.extend(["-f", str(manifest)])
        return await self.run(kubeconfig, "apply", args, working_dir=working_dir)

    async def run(
        self,
        kubeconfig: KubeConfig,
        subcommand: str,
        args: Sequence[str] = (),
        working_dir: str | Path | None = None,
    ) -> CommandResult:
        """Run one kubectl subcommand against the cluster.

        Raises:
            ToolNotFoundError: kubectl is not installed
            KubeconfigIOError: the ephemeral kubeconfig could not be written
            CommandExecutionError: kubectl exited non-zero or timed out
            ToolInvocationFailure: kubectl could not be launched
        """
        binary = self.resolve_binary()
        cwd = str(working_dir) if working_dir is not None else None
        if cwd is not None and not os.path.isdir(cwd):
            raise ToolInvocationFailure(f"Working directory does not exist: {cwd}")

        with EphemeralKubeconfig(kubeconfig, self.ephemeral_dir, self.run_id) as handle:
            invocation = CommandInvocation(
                argv=[binary, subcommand, *args],
                working_dir=cwd,
                env_overlay={"KUBECONFIG": handle.path},
            )
            result = await self._execute(invocation)

        if handle.cleanup_error:
            result.warnings.append(handle.cleanup_error)

        if not result.succeeded:
            logger.error(
                "kubectl command failed",
                subcommand=subcommand,
                exit_code=result.exit_code,
                context=kubeconfig.context_name,
            )
            raise CommandExecutionError(
                subcommand,
                result.exit_code,
                result.stderr_tail(self.stderr_tail_lines),
            )

        return result

    async def _execute(self, invocation: CommandInvocation) -> CommandResult:
        """Spawn kubectl, wait for it and capture output."""
        env = {**os.environ, **invocation.env_overlay}
        start_time = time.perf_counter()

        logger.info(
            "Running kubectl",
            subcommand=invocation.subcommand,
            args=invocation.argv[2:],
            working_dir=invocation.working_dir,
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.working_dir,
                env=env,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(invocation.argv[0]) from e
        except OSError as e:
            raise ToolInvocationFailure(f"Failed to launch kubectl: {e.strerror or e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                self._communicate(proc, invocation.subcommand), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            await self._terminate(proc)
            logger.warning(
                "kubectl command timed out",
                subcommand=invocation.subcommand,
                timeout=self.timeout_seconds,
            )
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout="",
                stderr=f"kubectl {invocation.subcommand} timed out after {self.timeout_seconds} seconds",
                duration_ms=int((time.perf_counter() - start_time) * 1000),
            )
        except asyncio.CancelledError:
            logger.warning("kubectl command cancelled", subcommand=invocation.subcommand)
            await self._terminate(proc)
            raise

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        result = CommandResult(
            exit_code=proc.returncode if proc.returncode is not None else 1,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            duration_ms=duration_ms,
        )

        logger.info(
            "kubectl command finished",
            subcommand=invocation.subcommand,
            exit_code=result.exit_code,
            duration_ms=duration_ms,
        )
        return result

    async def _communicate(self, proc: asyncio.subprocess.Process, subcommand: str) -> tuple[bytes, bytes]:
        """Drain both pipes concurrently, then reap the process."""
        (stdout, stdout_dropped), (stderr, stderr_dropped) = await asyncio.gather(
            self._drain(proc.stdout), self._drain(proc.stderr)
        )
        await proc.wait()
        if stdout_dropped or stderr_dropped:
            logger.warning(
                "kubectl output truncated",
                subcommand=subcommand,
                limit_bytes=self.max_output_bytes,
                stdout_dropped_bytes=stdout_dropped,
                stderr_dropped_bytes=stderr_dropped,
            )
        return stdout, stderr

    async def _drain(self, stream: asyncio.StreamReader | None) -> tuple[bytes, int]:
        """Read a pipe to EOF, keeping at most ``max_output_bytes`` of it.

        Returns:
            (kept bytes, number of bytes discarded)
        """
        if stream is None:
            return b"", 0
        kept = bytearray()
        dropped = 0
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            room = self.max_output_bytes - len(kept)
            if room > 0:
                kept += chunk[:room]
            dropped += len(chunk) - min(len(chunk), max(room, 0))
        return bytes(kept), dropped

    @staticmethod
    def _decode(data: bytes) -> str:
        return data.decode("utf-8", errors="replace")

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        """Kill kubectl and reap it."""
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
