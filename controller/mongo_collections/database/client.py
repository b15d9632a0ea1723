"""
Database client for one logical MongoDB database.

Wraps the shared motor connection with the few operations the
reconciler needs and converts driver errors into transient or
permanent DatabaseErrors.
"""
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.collation import Collation as PyMongoCollation
from pymongo.errors import (
    CollectionInvalid,
    ConfigurationError,
    ConnectionFailure,
    ExecutionTimeout,
    InvalidOperation,
    OperationFailure,
    PyMongoError,
    WTimeoutError,
)

from mongo_collections.core.exceptions import (
    DatabaseError,
    PermanentDatabaseError,
    TransientDatabaseError,
)
from mongo_collections.database.connections import get_mongo_client, refresh_credentials
from mongo_collections.models.collection import CollectionSpec
from mongo_collections.models.index import IndexDeclaration, LiveIndexDescriptor

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_ERROR_CODES = frozenset({
    18,     # AuthenticationFailed
    391,    # ReauthenticationRequired
})

TRANSIENT_ERROR_CODES = frozenset({
    6,      # HostUnreachable
    7,      # HostNotFound
    24,     # LockTimeout
    50,     # MaxTimeMSExpired
    89,     # NetworkTimeout
    91,     # ShutdownInProgress
    112,    # WriteConflict
    189,    # PrimarySteppedDown
    262,    # ExceededTimeLimit
    276,    # IndexBuildAborted
    9001,   # SocketException
    10107,  # NotWritablePrimary
    11600,  # InterruptedAtShutdown
    11601,  # Interrupted
    11602,  # InterruptedDueToReplStateChange
    12586,  # BackgroundOperationInProgressForDatabase
    12587,  # BackgroundOperationInProgressForNamespace
    13435,  # NotPrimaryNoSecondaryOk
    13436,  # NotPrimaryOrSecondary
}) | AUTH_ERROR_CODES

NAMESPACE_EXISTS = 48
NAMESPACE_NOT_FOUND = 26
INDEX_NOT_FOUND = 27


class EnsureResult(str, Enum):
    """Result of ensure_database_and_collection."""
    CREATED = "created"
    ALREADY_EXISTS = "already-exists"


def classify_error(operation: str, error: BaseException) -> DatabaseError:
    """Map a driver error onto the transient/permanent taxonomy."""
    code = getattr(error, "code", None)
    message = str(error)

    if isinstance(error, (ConnectionFailure, ExecutionTimeout, WTimeoutError, InvalidOperation)):
        return TransientDatabaseError(operation, message, error, code)
    if isinstance(error, PyMongoError) and (
        error.has_error_label("RetryableWriteError")
        or error.has_error_label("TransientTransactionError")
    ):
        return TransientDatabaseError(operation, message, error, code)
    if isinstance(error, OperationFailure):
        if code in TRANSIENT_ERROR_CODES:
            return TransientDatabaseError(operation, message, error, code)
        return PermanentDatabaseError(operation, message, error, code)
    if isinstance(error, (ConfigurationError, TypeError, ValueError)):
        return PermanentDatabaseError(operation, message, error, code)
    return TransientDatabaseError(operation, message, error, code)


def _index_options(index: IndexDeclaration) -> dict[str, Any]:
    options = index.options.to_document()
    if "collation" in options:
        options["collation"] = PyMongoCollation(**options["collation"])
    return options


class CollectionClient:
    """
    Collection and index operations against one database.

    Safe for concurrent use: each call picks up the shared motor client,
    which pools connections internally.
    """

    def __init__(
        self,
        database_name: str,
        get_client: Callable[[], Awaitable[AsyncIOMotorClient]] = get_mongo_client,
        on_auth_failure: Callable[[AsyncIOMotorClient], Awaitable[None]] = refresh_credentials,
    ):
        self.database_name = database_name
        self._get_client = get_client
        self._on_auth_failure = on_auth_failure

    async def _connect(self, operation: str) -> AsyncIOMotorClient:
        """The shared client. Unreadable credential material is transient."""
        try:
            return await self._get_client()
        except OSError as e:
            raise TransientDatabaseError(
                operation, f"could not load credentials: {e}", e
            ) from e

    async def _call(
        self,
        operation: str,
        func: Callable[[AsyncIOMotorDatabase], Awaitable[T]],
    ) -> T:
        """
        Run one database call, converting driver errors.

        An authentication failure refreshes the credentials and retries
        once before it is reported. The failed client goes along with the
        refresh, so concurrent failures on it reconnect only once.
        """
        refreshed = False
        while True:
            client = await self._connect(operation)
            try:
                return await func(client[self.database_name])
            except OperationFailure as e:
                if e.code in AUTH_ERROR_CODES and not refreshed:
                    logger.warning(f"{operation}: authentication failed, refreshing credentials")
                    refreshed = True
                    try:
                        await self._on_auth_failure(client)
                    except OSError as refresh_error:
                        raise TransientDatabaseError(
                            operation,
                            f"could not refresh credentials: {refresh_error}",
                            refresh_error,
                        ) from e
                    continue
                raise classify_error(operation, e) from e
            except (PyMongoError, TypeError, ValueError) as e:
                raise classify_error(operation, e) from e

    async def ping(self) -> None:
        async def ping(database: AsyncIOMotorDatabase) -> None:
            await database.command("ping")

        await self._call("ping", ping)

    async def ensure_database_and_collection(
        self, name: str, spec: CollectionSpec
    ) -> EnsureResult:
        """
        Create the collection with its creation options if it is missing.

        Nothing happens when it already exists, whatever the options say.
        The database itself appears with its first collection.
        """
        async def ensure(database: AsyncIOMotorDatabase) -> EnsureResult:
            if name in await database.list_collection_names():
                return EnsureResult.ALREADY_EXISTS

            options = spec.creation_options()
            if "collation" in options:
                options["collation"] = PyMongoCollation(**options["collation"])

            logger.info(f"Creating collection {name} in database {self.database_name}")
            try:
                await database.create_collection(name, **options)
            except CollectionInvalid:
                # Created concurrently by someone else
                return EnsureResult.ALREADY_EXISTS
            except OperationFailure as e:
                if e.code == NAMESPACE_EXISTS:
                    return EnsureResult.ALREADY_EXISTS
                raise
            return EnsureResult.CREATED

        return await self._call(f"create collection {name}", ensure)

    async def collection_collation(self, name: str) -> Optional[dict[str, Any]]:
        """Default collation of an existing collection, if it has one."""
        async def read(database: AsyncIOMotorDatabase) -> Optional[dict[str, Any]]:
            options = await database[name].options()
            collation = options.get("collation")
            return dict(collation) if collation else None

        return await self._call(f"read options of {name}", read)

    async def list_indexes(self, collection: str) -> list[LiveIndexDescriptor]:
        """All live indexes, the default _id_ index included."""
        async def read(database: AsyncIOMotorDatabase) -> list[LiveIndexDescriptor]:
            information = await database[collection].index_information()
            return [
                LiveIndexDescriptor.from_index_information(name, info)
                for name, info in sorted(information.items())
            ]

        return await self._call(f"list indexes of {collection}", read)

    async def create_index(self, collection: str, index: IndexDeclaration) -> str:
        """Create one index and return the name the store gave it."""
        async def create(database: AsyncIOMotorDatabase) -> str:
            name = await database[collection].create_index(
                index.key_pattern(), **_index_options(index)
            )
            logger.info(f"Created index {name} for collection {collection}")
            return name

        return await self._call(f"create index on {collection}", create)

    async def drop_index(self, collection: str, name: str) -> None:
        """Drop an index by its resolved name. A missing index is not an error."""
        async def drop(database: AsyncIOMotorDatabase) -> None:
            try:
                await database[collection].drop_index(name)
            except OperationFailure as e:
                if e.code in (INDEX_NOT_FOUND, NAMESPACE_NOT_FOUND):
                    logger.info(f"Index {name} of collection {collection} is already gone")
                    return
                raise
            logger.info(f"Dropped index {name} of collection {collection}")

        await self._call(f"drop index {name} of {collection}", drop)
