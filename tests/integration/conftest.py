"""
Integration test fixtures.

The live tests need a reachable MongoDB (MONGO_URI, default
mongodb://localhost:27017) and are skipped when there is none.
"""
import os
import uuid

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError


@pytest.fixture
def live_mongo_uri():
    """Connection string of the MongoDB used by live tests."""
    return os.getenv("MONGO_URI", "mongodb://localhost:27017")


@pytest_asyncio.fixture
async def live_mongo_client(live_mongo_uri):
    """A motor client for a live MongoDB, or skip."""
    client = AsyncIOMotorClient(live_mongo_uri, serverSelectionTimeoutMS=2000)
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip("MongoDB not running")
    yield client
    client.close()


@pytest_asyncio.fixture
async def scratch_database(live_mongo_client):
    """Name of a throwaway database, dropped afterwards."""
    name = f"it_{uuid.uuid4().hex[:12]}"
    yield name
    await live_mongo_client.drop_database(name)
