"""
Reconciler - one reconcile pass for one declared collection.

A pass validates the declaration, makes sure the collection exists,
reads the live indexes, diffs them against the declared ones and applies
the drops and creates. Nothing is carried over between passes: a pass
that fails halfway leaves the store partially updated and the next pass
computes a fresh diff from whatever is there.
"""
import logging
from typing import Optional

from mongo_collections.core.exceptions import DatabaseError, DeclarationError
from mongo_collections.database.client import CollectionClient, EnsureResult
from mongo_collections.models.collection import CollectionDeclaration
from mongo_collections.models.index import IndexDeclaration
from mongo_collections.models.outcome import OutcomeKind, ReconcileOutcome, StatusReport
from mongo_collections.services.index_diff import declared_signature, diff, resolved_name
from mongo_collections.services.status_writer import StatusWriter

logger = logging.getLogger(__name__)


def validate_indexes(indexes: list[IndexDeclaration]) -> None:
    """
    Structural checks the models cannot do on a single index.

    Raises DeclarationError for duplicate names, two indexes with the same
    key pattern, collation and partial filter, or a declaration of the
    default _id index. Partial indexes over the same keys with
    different filters may coexist.
    """
    names: set[str] = set()
    patterns: dict[tuple, str] = {}
    for index in indexes:
        name = resolved_name(index)
        if name in names:
            raise DeclarationError(f"the index name {name} is declared more than once")
        names.add(name)

        if index.key_pattern() == [("_id", 1)] and not index.options.to_document().keys() - {"name"}:
            raise DeclarationError("the default _id index is managed by the database")

        signature = declared_signature(index)
        options = dict(signature.options)
        pattern = (
            signature.keys,
            options.get("collation"),
            options.get("partialFilterExpression"),
        )
        if pattern in patterns:
            raise DeclarationError(
                f"the indexes {patterns[pattern]} and {name} have the same keys, "
                f"collation and partial filter"
            )
        patterns[pattern] = name


class Reconciler:
    """Converges one collection towards its declaration."""

    def __init__(self, client: CollectionClient, status_writer: Optional[StatusWriter] = None):
        self.client = client
        self.status_writer = status_writer

    async def reconcile(self, declaration: CollectionDeclaration) -> ReconcileOutcome:
        """Run one pass. Never raises; every pass yields exactly one outcome."""
        identity = declaration.identity
        logger.debug(f"Reconciling {identity} (generation {declaration.generation})")

        outcome = await self._reconcile(declaration)

        if outcome.is_success:
            logger.info(f"Reconciled {identity}: {outcome.message()}")
        elif outcome.is_transient:
            logger.warning(f"Reconciliation of {identity} will be retried: {outcome.message()}")
        else:
            logger.error(f"Reconciliation of {identity} failed: {outcome.message()}")

        await self._report(declaration, outcome)
        return outcome

    async def _reconcile(self, declaration: CollectionDeclaration) -> ReconcileOutcome:
        try:
            spec = declaration.collection_spec()
            validate_indexes(spec.indexes)
        except DeclarationError as e:
            return ReconcileOutcome(kind=OutcomeKind.PERMANENT_FAILURE, reason=e.message)

        name = declaration.collection_name(spec)
        collection_created = False
        dropped: list[str] = []
        created: list[str] = []

        try:
            result = await self.client.ensure_database_and_collection(name, spec)
            collection_created = result == EnsureResult.CREATED

            default_collation = await self.client.collection_collation(name)
            live = await self.client.list_indexes(name)
            changes = diff(spec.indexes, live, default_collation)

            for operation in changes.operations:
                if operation.kind == "drop":
                    logger.info(f"Dropping index {operation.name} of collection {name}")
                    await self.client.drop_index(name, operation.name)
                    dropped.append(operation.name)
                else:
                    logger.info(f"Creating index {operation.name} for collection {name}")
                    created.append(await self.client.create_index(name, operation.index))

        except DatabaseError as e:
            return ReconcileOutcome(
                kind=OutcomeKind.TRANSIENT_FAILURE if e.transient else OutcomeKind.PERMANENT_FAILURE,
                reason=e.message,
                operations_applied=len(dropped) + len(created),
                collection_created=collection_created,
                dropped=dropped,
                created=created,
            )

        return ReconcileOutcome(
            kind=OutcomeKind.SUCCESS,
            operations_applied=len(dropped) + len(created),
            collection_created=collection_created,
            dropped=dropped,
            created=created,
        )

    async def _report(self, declaration: CollectionDeclaration, outcome: ReconcileOutcome) -> None:
        if self.status_writer is None:
            return
        report = StatusReport(
            namespace=declaration.namespace,
            name=declaration.name,
            generation=declaration.generation,
            outcome=outcome,
            message=outcome.message(),
        )
        try:
            await self.status_writer.write(report)
        except Exception as e:
            logger.warning(f"Could not write the status of {declaration.identity}: {e}")
