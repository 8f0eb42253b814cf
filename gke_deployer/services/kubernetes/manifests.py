"""Manifest resolution and verification target discovery."""

from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

import structlog
import yaml

from ...models.errors import ManifestResolutionError
from .models import TargetKind, VerificationTarget

logger = structlog.get_logger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
_GLOB_CHARS = set("*?[")


def _inside(base: Path, path: Path) -> bool:
    try:
        path.resolve().relative_to(base)
        return True
    except ValueError:
        return False


def resolve_manifests(workspace: str | Path, pattern: str) -> list[str]:
    """Resolve a manifest path or glob relative to the workspace.

    A directory expands to the manifest files directly inside it (the same
    set ``kubectl apply -f <dir>`` reads). A glob expands to every matching
    file. Paths that escape the workspace are dropped.

    Returns:
        Sorted absolute paths.

    Raises:
        ManifestResolutionError: nothing matched.
    """
    base = Path(workspace).resolve()

    if _GLOB_CHARS & set(pattern):
        candidates = [p for p in base.glob(pattern) if p.is_file()]
    else:
        path = base / pattern
        if path.is_dir():
            candidates = [p for p in path.iterdir() if p.is_file() and p.suffix.lower() in MANIFEST_SUFFIXES]
        elif path.is_file():
            candidates = [path]
        else:
            candidates = []

    manifests = sorted(str(p.resolve()) for p in candidates if _inside(base, p))
    if not manifests:
        raise ManifestResolutionError(pattern)

    logger.debug("Resolved manifests", pattern=pattern, count=len(manifests))
    return manifests


def _iter_objects(documents: Iterable[Any]) -> Iterator[dict[str, Any]]:
    for doc in documents:
        if not isinstance(doc, dict):
            continue
        kind = doc.get("kind") or ""
        if kind.endswith("List") and isinstance(doc.get("items"), list):
            yield from _iter_objects(doc.get("items") or [])
        else:
            yield doc


def load_objects(manifests: Sequence[str]) -> list[dict[str, Any]]:
    """Parse every document in the given manifest files."""
    objects: list[dict[str, Any]] = []
    for manifest in manifests:
        try:
            with open(manifest, encoding="utf-8") as f:
                objects.extend(_iter_objects(yaml.safe_load_all(f)))
        except yaml.YAMLError as e:
            raise ManifestResolutionError(manifest, message=f"Failed to parse manifest {manifest}: {e}") from e
        except OSError as e:
            raise ManifestResolutionError(manifest, message=f"Failed to read manifest {manifest}: {e.strerror}") from e
    return objects


def collect_targets(
    manifests: Sequence[str],
    verify_deployments: bool,
    verify_services: bool,
    default_namespace: str = "default",
) -> list[VerificationTarget]:
    """Find the Deployments and/or Services declared in the applied manifests.

    Targets keep manifest order; duplicates are dropped.
    """
    wanted = set()
    if verify_deployments:
        wanted.add(TargetKind.DEPLOYMENT.value)
    if verify_services:
        wanted.add(TargetKind.SERVICE.value)
    if not wanted:
        return []

    targets: list[VerificationTarget] = []
    seen = set()
    for obj in load_objects(manifests):
        kind = obj.get("kind")
        if kind not in wanted:
            continue
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            logger.warning("Skipping manifest object without a name", kind=kind)
            continue
        target = VerificationTarget(
            kind=TargetKind(kind),
            name=name,
            namespace=metadata.get("namespace") or default_namespace,
        )
        if target not in seen:
            seen.add(target)
            targets.append(target)

    return targets
