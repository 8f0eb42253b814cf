"""Google Cloud configuration."""

from dataclasses import dataclass


@dataclass
class CloudConfig:
    """Credential store and cluster defaults."""

    # Directory of service account keys, one <credentials_id>.json per credential
    credentials_dir: str | None = None

    # OAuth scope requested for container API and cluster access
    scope: str = "https://www.googleapis.com/auth/cloud-platform"

    # Namespace used for verification targets whose manifest omits one
    default_namespace: str = "default"
