"""
Database module - MongoDB connection, credentials and the collection client.
"""
from mongo_collections.database.client import CollectionClient, EnsureResult, classify_error
from mongo_collections.database.connections import (
    close_connections,
    get_mongo_client,
    refresh_credentials,
)

__all__ = [
    "CollectionClient",
    "EnsureResult",
    "classify_error",
    "close_connections",
    "get_mongo_client",
    "refresh_credentials",
]
