"""
Declaration, index and outcome models.
"""
from mongo_collections.models.collation import Collation
from mongo_collections.models.collection import (
    CollectionDeclaration,
    CollectionSpec,
    ResourceIdentity,
    TimeSeries,
)
from mongo_collections.models.index import (
    DEFAULT_INDEX_NAME,
    IndexDeclaration,
    IndexKey,
    IndexOptions,
    IndexType,
    LiveIndexDescriptor,
)
from mongo_collections.models.outcome import OutcomeKind, ReconcileOutcome, StatusReport

__all__ = [
    "Collation",
    "CollectionDeclaration",
    "CollectionSpec",
    "ResourceIdentity",
    "TimeSeries",
    "DEFAULT_INDEX_NAME",
    "IndexDeclaration",
    "IndexKey",
    "IndexOptions",
    "IndexType",
    "LiveIndexDescriptor",
    "OutcomeKind",
    "ReconcileOutcome",
    "StatusReport",
]
