"""kubectl invocation configuration.

This module provides settings for the external cluster-management command,
including the binary location, per-command timeout and where ephemeral
kubeconfig files are materialized.
"""

import tempfile
from dataclasses import dataclass, field


@dataclass
class KubectlConfig:
    """kubectl execution configuration."""

    # Binary name or absolute path
    kubectl_path: str = "kubectl"

    # Per-command wall clock limit
    timeout_seconds: int = 300

    # Captured output is truncated to this many bytes per stream
    max_output_bytes: int = 1024 * 1024

    # Lines of stderr kept in failure diagnostics
    stderr_tail_lines: int = 20

    # Root for per-invocation kubeconfig directories (never the workspace)
    ephemeral_dir: str = field(default_factory=tempfile.gettempdir)
