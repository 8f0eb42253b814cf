"""Deploy configuration validation utilities."""

from typing import Any, Dict, List, Optional

import structlog

from ..models.errors import ClusterResolutionFailure, CredentialAuthFailure
from ..services.cloud.factory import ClientFactoryCache, client_factory_cache

logger = structlog.get_logger(__name__)

EMPTY_NAME = "- none -"
CREDENTIAL_AUTH_FAILED = "Failed to authenticate with the selected credentials"
ZONE_FILL_ERROR = "Failed to list zones for the selected project"

REQUIRED_FIELDS = {
    "cluster_name": "Cluster name is required",
    "manifest_pattern": "Manifest pattern is required",
    "zone": "Zone is required",
    "project_id": "Project ID is required",
    "credentials_id": "Credentials ID is required",
}


class ConfigValidator:
    """Validates a deploy configuration and the cluster it points at.

    Problems are collected in ``errors`` and ``warnings`` rather than
    raised, so every problem can be reported at once.
    """

    def __init__(self, clients: Optional[ClientFactoryCache] = None):
        self.clients = clients or client_factory_cache
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self, values: Dict[str, Any], check_cluster: bool = True) -> bool:
        """Validate configuration values.

        Args:
            values: Raw deploy configuration fields
            check_cluster: Also confirm the cluster exists in the zone

        Returns:
            True when no errors were found.
        """
        self.errors.clear()
        self.warnings.clear()

        self._validate_required(values)
        self._validate_manifest_pattern(values.get("manifest_pattern"))

        if check_cluster and not self.errors:
            self._validate_cluster(
                values["project_id"].strip(),
                values["zone"].strip(),
                values["cluster_name"].strip(),
                values["credentials_id"].strip(),
            )

        # Log results
        for warning in self.warnings:
            logger.warning("Configuration warning", warning=warning)

        if self.errors:
            for error in self.errors:
                logger.error("Configuration error", error=error)
            return False

        return True

    def _validate_required(self, values: Dict[str, Any]) -> None:
        for name, message in REQUIRED_FIELDS.items():
            value = values.get(name)
            if value is None or not str(value).strip():
                self.errors.append(message)

    def _validate_manifest_pattern(self, pattern: Optional[str]) -> None:
        if not pattern:
            return
        if pattern.startswith("/"):
            self.errors.append("Manifest pattern must be relative to the workspace")
        elif ".." in pattern.replace("\\", "/").split("/"):
            self.errors.append("Manifest pattern must not leave the workspace")
        elif pattern.strip() in (".", "*"):
            self.warnings.append("Manifest pattern applies every manifest in the workspace root")

    def _validate_cluster(self, project_id: str, zone: str, cluster_name: str, credentials_id: str) -> None:
        """Confirm the zone holds clusters in the project and the named cluster is among them."""
        try:
            cluster_client = self.clients.get(credentials_id).cluster_client()
            clusters = cluster_client.list_clusters(project_id)
        except CredentialAuthFailure:
            self.errors.append(CREDENTIAL_AUTH_FAILED)
            return
        except ClusterResolutionFailure as e:
            self.errors.append(f"Failed to verify zone {zone} for project {project_id}: {e.message}")
            return

        in_zone = [c for c in clusters if c.location == zone]
        if not in_zone:
            self.errors.append(f"Zone {zone} has no clusters in project {project_id}")
        elif not any(c.name == cluster_name for c in in_zone):
            self.errors.append(f"Cluster {cluster_name} not found in zone {zone}")

    def list_zone_options(self, project_id: Optional[str], credentials_id: Optional[str]) -> List[str]:
        """Cluster locations visible to a credential, for selection lists.

        The first entry is always the empty choice, unless the lookup failed,
        in which case the only entry describes the failure.
        """
        items = [EMPTY_NAME]
        if not project_id or not credentials_id:
            return items

        try:
            cluster_client = self.clients.get(credentials_id).cluster_client()
            clusters = cluster_client.list_clusters(project_id)
        except CredentialAuthFailure as e:
            logger.error(CREDENTIAL_AUTH_FAILED, credentials_id=credentials_id, error=e.message)
            return [CREDENTIAL_AUTH_FAILED]
        except ClusterResolutionFailure as e:
            logger.error(ZONE_FILL_ERROR, project_id=project_id, error=e.message)
            return [ZONE_FILL_ERROR]

        return items + sorted({c.location for c in clusters if c.location})


def validate_deploy_configuration(
    values: Dict[str, Any], check_cluster: bool = True, clients: Optional[ClientFactoryCache] = None
) -> bool:
    """Validate a deploy configuration."""
    validator = ConfigValidator(clients)
    return validator.validate_all(values, check_cluster=check_cluster)
