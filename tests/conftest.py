"""
Global test fixtures for mongo-collections.

This module provides shared fixtures for all tests including:
- Mock MongoDB (mongomock, mongomock-motor)
- An in-memory collection client with failure injection
- Declaration factories
"""

import sys
from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio

# Add the controller package to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "controller"))

from mongo_collections.core.exceptions import DatabaseError  # noqa: E402
from mongo_collections.database.client import EnsureResult  # noqa: E402
from mongo_collections.models.collection import (  # noqa: E402
    CollectionDeclaration,
    CollectionSpec,
)
from mongo_collections.models.index import (  # noqa: E402
    IndexDeclaration,
    LiveIndexDescriptor,
)
from mongo_collections.services.index_diff import resolved_name  # noqa: E402


# =============================================================================
# MongoDB Fixtures (mongomock)
# =============================================================================

@pytest.fixture
def mock_mongo_client():
    """
    Create a mock MongoDB client using mongomock.

    This provides an in-memory MongoDB that behaves like the real thing
    for testing purposes.
    """
    try:
        import mongomock
        client = mongomock.MongoClient()
        yield client
        client.close()
    except ImportError:
        pytest.skip("mongomock not installed")


@pytest_asyncio.fixture
async def mock_async_mongo_client():
    """
    Create an async mock MongoDB client using mongomock-motor.
    """
    try:
        from mongomock_motor import AsyncMongoMockClient
        client = AsyncMongoMockClient()
        yield client
        client.close()
    except ImportError:
        pytest.skip("mongomock-motor not installed")


@pytest.fixture
def mock_get_mongo_client(mock_async_mongo_client):
    """
    Async factory returning the mongomock-motor client, in place of
    get_mongo_client.
    """
    async def _mock():
        return mock_async_mongo_client
    return _mock


# =============================================================================
# In-memory Collection Client
# =============================================================================

class FakeCollectionClient:
    """
    In-memory stand-in for CollectionClient.

    Behaves like the store where the reconciler can tell: a new collection
    gets the _id_ index, indexes created without collation inherit the
    collection's default collation and names are generated from the key
    pattern. ``fail(method, error)`` makes the next call of ``method`` raise.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self._failures: dict[str, list[DatabaseError]] = {}

    def fail(self, method: str, error: DatabaseError, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([error] * times)

    def _check(self, method: str) -> None:
        errors = self._failures.get(method)
        if errors:
            raise errors.pop(0)

    def add_collection(self, name: str, collation: Optional[dict] = None) -> None:
        self.collections[name] = {
            "collation": collation,
            "indexes": {"_id_": {"key": [("_id", 1)], "v": 2}},
        }

    def add_index(self, collection: str, name: str, keys: list[tuple], **options) -> None:
        self.collections[collection]["indexes"][name] = {"key": keys, "v": 2, **options}

    def index_names(self, collection: str) -> list[str]:
        return sorted(self.collections[collection]["indexes"])

    async def ping(self) -> None:
        self._check("ping")

    async def ensure_database_and_collection(self, name: str, spec: CollectionSpec) -> EnsureResult:
        self._check("ensure_database_and_collection")
        self.calls.append(("ensure", name))
        if name in self.collections:
            return EnsureResult.ALREADY_EXISTS
        self.add_collection(name, spec.creation_options().get("collation"))
        self.collections[name]["options"] = spec.creation_options()
        return EnsureResult.CREATED

    async def collection_collation(self, name: str) -> Optional[dict]:
        self._check("collection_collation")
        return self.collections[name]["collation"]

    async def list_indexes(self, collection: str) -> list[LiveIndexDescriptor]:
        self._check("list_indexes")
        return [
            LiveIndexDescriptor.from_index_information(name, info)
            for name, info in sorted(self.collections[collection]["indexes"].items())
        ]

    async def create_index(self, collection: str, index: IndexDeclaration) -> str:
        self._check("create_index")
        name = resolved_name(index)
        self.calls.append(("create", collection, name))
        options = index.options.to_document()
        options.pop("name", None)
        default_collation = self.collections[collection]["collation"]
        if "collation" not in options and default_collation:
            options["collation"] = dict(default_collation)
        self.add_index(collection, name, index.key_pattern(), **options)
        return name

    async def drop_index(self, collection: str, name: str) -> None:
        self._check("drop_index")
        self.calls.append(("drop", collection, name))
        self.collections[collection]["indexes"].pop(name, None)


@pytest.fixture
def fake_client() -> FakeCollectionClient:
    """An empty in-memory database."""
    return FakeCollectionClient()


# =============================================================================
# Declaration Fixtures
# =============================================================================

@pytest.fixture
def make_declaration():
    """
    Factory for CollectionDeclaration objects.

    Usage:
        declaration = make_declaration("orders", indexes=[...], clustered=True)
    """
    def _make(
        name: str = "orders",
        namespace: str = "default",
        generation: int = 1,
        spec: Optional[dict] = None,
        **fields: Any,
    ) -> CollectionDeclaration:
        return CollectionDeclaration(
            namespace=namespace,
            name=name,
            generation=generation,
            resource_version=str(generation),
            spec={**(spec or {}), **fields},
        )
    return _make


@pytest.fixture
def mongo_collection_resource() -> dict:
    """A MongoCollection custom object as returned by the Kubernetes API."""
    return {
        "apiVersion": "pincette.net/v1",
        "kind": "MongoCollection",
        "metadata": {
            "name": "orders",
            "namespace": "shop",
            "generation": 3,
            "resourceVersion": "12345",
        },
        "spec": {
            "clustered": False,
            "collation": {"locale": "en", "strength": 2},
            "indexes": [
                {
                    "keys": [
                        {"field": "customer", "direction": 1},
                        {"field": "created", "direction": -1},
                    ],
                    "options": {"name": "by_customer"},
                },
                {
                    "keys": [{"field": "reference"}],
                    "options": {"unique": True},
                },
            ],
        },
    }


def index(*keys: tuple, **options: Any) -> dict:
    """Raw index declaration: index(("a", 1), ("b", -1), unique=True)."""
    raw_keys = []
    for field, value in keys:
        if isinstance(value, str):
            raw_keys.append({"field": field, "indexType": value})
        else:
            raw_keys.append({"field": field, "direction": value})
    return {"keys": raw_keys, "options": options}


@pytest.fixture
def raw_index():
    """The ``index`` helper as a fixture."""
    return index
