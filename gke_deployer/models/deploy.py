"""Deploy step configuration record."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeployConfig(BaseModel):
    """Everything one deploy step needs to know, validated at construction."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., min_length=1, description="Google Cloud project id")
    cluster_name: str = Field(..., min_length=1, description="GKE cluster name")
    credentials_id: str = Field(..., min_length=1, description="Credential store identifier")
    zone: str = Field(..., min_length=1, description="Cluster zone or region")
    manifest_pattern: str = Field(..., min_length=1, description="Manifest path or glob relative to the workspace")
    verify_deployments: bool = Field(default=False)
    verify_services: bool = Field(default=False)
    namespace: str | None = Field(default=None, description="Namespace for targets whose manifest omits one")

    @field_validator("project_id", "cluster_name", "credentials_id", "zone", "manifest_pattern")
    @classmethod
    def strip_required(cls, v: str) -> str:
        """Reject values that are only whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("manifest_pattern")
    @classmethod
    def validate_manifest_pattern(cls, v: str) -> str:
        """Manifests must live inside the workspace."""
        if v.startswith("/"):
            raise ValueError("manifest pattern must be relative to the workspace")
        if ".." in v.replace("\\", "/").split("/"):
            raise ValueError("manifest pattern must not leave the workspace")
        return v

    @property
    def verification_enabled(self) -> bool:
        """Whether any rollout verification was requested."""
        return self.verify_deployments or self.verify_services
