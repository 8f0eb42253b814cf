"""Credential store backed by Google service account keys.

A credential id names a JSON key file ``<credentials_dir>/<id>.json``. The
reserved id ``default`` resolves to application default credentials.
"""

import json
from pathlib import Path
from typing import Any, List, Optional

import google.auth
import google.auth.transport.requests
import structlog
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account

from ...config import settings
from ...models.errors import CredentialAuthFailure, CredentialNotFound
from ..interfaces import CredentialResolverInterface
from ..kubernetes.models import AccessToken

logger = structlog.get_logger(__name__)

DEFAULT_CREDENTIALS_ID = "default"


class ServiceAccountCredentialResolver(CredentialResolverInterface):
    """Resolves credential ids to Google credentials and access tokens."""

    def __init__(self, credentials_dir: Optional[str] = None, scopes: Optional[List[str]] = None):
        """Initialize the resolver.

        Args:
            credentials_dir: Directory holding service account key files
            scopes: OAuth scopes requested for every credential
        """
        self.credentials_dir = credentials_dir
        self.scopes = scopes or [settings.gcp_scope]

    @classmethod
    def from_settings(cls, config=None) -> "ServiceAccountCredentialResolver":
        config = config or settings
        return cls(credentials_dir=config.cloud.credentials_dir, scopes=[config.cloud.scope])

    def key_path(self, credentials_id: str) -> Path:
        """Location of the key file for a credential id."""
        if not credentials_id or "/" in credentials_id or "\\" in credentials_id or credentials_id.startswith("."):
            raise CredentialNotFound(credentials_id)
        if not self.credentials_dir:
            raise CredentialNotFound(credentials_id)
        return Path(self.credentials_dir) / f"{credentials_id}.json"

    def load_credentials(self, credentials_id: str) -> Any:
        """Load the Google credentials stored under an id.

        Raises:
            CredentialNotFound: no credential is stored under the id
            CredentialAuthFailure: the stored credential is unusable
        """
        if credentials_id == DEFAULT_CREDENTIALS_ID:
            try:
                credentials, project_id = google.auth.default(scopes=self.scopes)
            except auth_exceptions.DefaultCredentialsError as e:
                logger.error("Application default credentials unavailable", error=str(e))
                raise CredentialNotFound(credentials_id) from e
            logger.debug("Loaded application default credentials", project_id=project_id)
            return credentials

        path = self.key_path(credentials_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                info = json.load(f)
        except FileNotFoundError as e:
            raise CredentialNotFound(credentials_id) from e
        except (OSError, ValueError) as e:
            logger.error("Failed to read service account key", credentials_id=credentials_id, error=str(e))
            raise CredentialAuthFailure(
                credentials_id, message=f"Failed to read credentials {credentials_id}: {e}"
            ) from e

        try:
            credentials = service_account.Credentials.from_service_account_info(info, scopes=self.scopes)
        except (ValueError, KeyError) as e:
            logger.error("Invalid service account key", credentials_id=credentials_id, error=str(e))
            raise CredentialAuthFailure(
                credentials_id, message=f"Invalid service account key for credentials {credentials_id}"
            ) from e

        logger.debug(
            "Loaded service account credentials",
            credentials_id=credentials_id,
            service_account=info.get("client_email"),
        )
        return credentials

    def resolve(self, credentials_id: str) -> AccessToken:
        """Load a credential and exchange it for a fresh access token.

        Raises:
            CredentialNotFound: no credential is stored under the id
            CredentialAuthFailure: the token exchange failed
        """
        credentials = self.load_credentials(credentials_id)
        try:
            credentials.refresh(google.auth.transport.requests.Request())
        except (auth_exceptions.RefreshError, auth_exceptions.TransportError) as e:
            logger.error("Access token refresh failed", credentials_id=credentials_id, error=str(e))
            raise CredentialAuthFailure(credentials_id) from e

        if not credentials.token:
            raise CredentialAuthFailure(credentials_id, message=f"No access token issued for credentials {credentials_id}")

        logger.info("Resolved access token", credentials_id=credentials_id)
        return AccessToken(
            token=credentials.token,
            expiry=getattr(credentials, "expiry", None),
            project_id=getattr(credentials, "project_id", None),
        )
