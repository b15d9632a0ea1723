"""
Controller configuration loaded from environment variables.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # MongoDB
    mongo_uri: str = "mongodb://mongodb:27017"
    mongo_database: str = "app"
    mongo_server_selection_timeout_ms: int = 10000

    # Credentials (mounted secrets or projected tokens)
    mongo_username_file: Optional[str] = None
    mongo_password_file: Optional[str] = None
    mongo_auth_source: Optional[str] = None
    mongo_oidc_token_file: Optional[str] = None

    # Watched resources
    watch_namespaces: str = Field(
        default="*",
        description="Comma separated namespaces, '*' for cluster scope",
    )
    crd_group: str = "pincette.net"
    crd_version: str = "v1"
    crd_plural: str = "mongocollections"
    crd_kind: str = "MongoCollection"
    watch_timeout_seconds: int = 300

    # Scheduling
    max_concurrent_reconciles: int = Field(default=4, ge=1)
    backoff_base_seconds: float = Field(default=5.0, gt=0)
    backoff_max_seconds: float = Field(default=300.0, gt=0)
    permanent_retry_seconds: float = Field(default=600.0, gt=0)
    resync_interval_seconds: float = Field(default=60.0, gt=0)

    # Status reporting
    controller_name: str = "mongo-collections"
    write_status: bool = True

    # HTTP health endpoints
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    # Logging
    log_level: str = "INFO"

    def namespaces(self) -> list[str]:
        """Watched namespaces; an empty list means cluster scope."""
        names = [n.strip() for n in self.watch_namespaces.split(",") if n.strip()]
        if not names or names == ["*"]:
            return []
        return names


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
