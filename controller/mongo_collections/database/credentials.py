"""
Credential providers for the MongoDB connection.

Credentials are resolved once when the motor client is built. After an
authentication failure the database client calls ``refresh()`` and
reconnects, so rotated secrets are picked up without a restart.
"""
import logging
from pathlib import Path
from typing import Any, Optional

from pymongo.auth_oidc import OIDCCallback, OIDCCallbackContext, OIDCCallbackResult

from mongo_collections.config import Settings

logger = logging.getLogger(__name__)


def _read_secret(path: str) -> str:
    return Path(path).read_text().strip()


class CredentialProvider:
    """No credentials beyond what the connection URI carries."""

    def resolve(self) -> dict[str, Any]:
        """Keyword arguments for AsyncIOMotorClient."""
        return {}

    def refresh(self) -> None:
        """Re-read credential material."""


class FileCredentialProvider(CredentialProvider):
    """Username and password read from mounted secret files."""

    def __init__(
        self,
        username_file: str,
        password_file: str,
        auth_source: Optional[str] = None,
    ):
        self.username_file = username_file
        self.password_file = password_file
        self.auth_source = auth_source
        self._credentials: Optional[tuple[str, str]] = None

    def resolve(self) -> dict[str, Any]:
        if self._credentials is None:
            self.refresh()
        username, password = self._credentials
        kwargs: dict[str, Any] = {"username": username, "password": password}
        if self.auth_source:
            kwargs["authSource"] = self.auth_source
        return kwargs

    def refresh(self) -> None:
        self._credentials = (
            _read_secret(self.username_file),
            _read_secret(self.password_file),
        )
        logger.info(f"Loaded MongoDB credentials from {self.username_file}")


class TokenFileCallback(OIDCCallback):
    """OIDC callback handing the driver the current projected token."""

    def __init__(self, token_file: str):
        self.token_file = token_file

    def fetch(self, context: OIDCCallbackContext) -> OIDCCallbackResult:
        return OIDCCallbackResult(access_token=_read_secret(self.token_file))


class TokenFileCredentialProvider(CredentialProvider):
    """
    MONGODB-OIDC authentication with an externally injected token.

    The platform rotates the token file; the callback reads it again each
    time the driver asks, so refresh() has nothing to cache.
    """

    def __init__(self, token_file: str):
        self.token_file = token_file
        self._callback = TokenFileCallback(token_file)

    def resolve(self) -> dict[str, Any]:
        return {
            "authMechanism": "MONGODB-OIDC",
            "authMechanismProperties": {"OIDC_CALLBACK": self._callback},
        }

    def refresh(self) -> None:
        logger.info(f"OIDC token is read from {self.token_file} on every authentication")


class StaticCredentialProvider(CredentialProvider):
    """Credentials come from the connection URI alone."""


def build_credential_provider(settings: Settings) -> CredentialProvider:
    """Pick the provider matching the configured credential material."""
    if settings.mongo_oidc_token_file:
        return TokenFileCredentialProvider(settings.mongo_oidc_token_file)
    if settings.mongo_username_file and settings.mongo_password_file:
        return FileCredentialProvider(
            settings.mongo_username_file,
            settings.mongo_password_file,
            settings.mongo_auth_source,
        )
    return StaticCredentialProvider()
