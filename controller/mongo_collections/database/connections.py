"""
Database connection management for MongoDB.
"""
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from mongo_collections.config import get_settings
from mongo_collections.database.credentials import (
    CredentialProvider,
    build_credential_provider,
)

logger = logging.getLogger(__name__)

# Global connection instances
_mongo_client: Optional[AsyncIOMotorClient] = None
_credential_provider: Optional[CredentialProvider] = None


def get_credential_provider() -> CredentialProvider:
    """Get or create the credential provider."""
    global _credential_provider
    if _credential_provider is None:
        _credential_provider = build_credential_provider(get_settings())
    return _credential_provider


async def get_mongo_client() -> AsyncIOMotorClient:
    """Get or create MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        settings = get_settings()
        _mongo_client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
            **get_credential_provider().resolve(),
        )
    return _mongo_client


async def refresh_credentials(stale: Optional[AsyncIOMotorClient] = None) -> None:
    """
    Re-resolve credentials and drop the current client.

    The next get_mongo_client() call connects with the new material.
    When ``stale`` is the client that failed and it has already been
    replaced, nothing happens. Concurrent failures on one client then
    reconnect once.

    No await happens between the check and the swap, so the event loop
    can't interleave two refreshes.
    """
    global _mongo_client
    if stale is not None and _mongo_client is not stale:
        logger.debug("Credentials already refreshed by another call")
        return
    get_credential_provider().refresh()
    if _mongo_client is not None:
        logger.info("Reconnecting to MongoDB with refreshed credentials")
        _mongo_client.close()
        _mongo_client = None


async def close_connections():
    """Close all database connections."""
    global _mongo_client

    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
