"""
Service layer - index diffing, reconciliation, scheduling and the
Kubernetes adapters.
"""
from mongo_collections.services.reconciler import Reconciler
from mongo_collections.services.scheduler import WorkScheduler
from mongo_collections.services.status_writer import (
    KubernetesStatusWriter,
    LoggingStatusWriter,
    StatusWriter,
)
from mongo_collections.services.watcher import KubernetesWatchSource

__all__ = [
    "Reconciler",
    "WorkScheduler",
    "KubernetesStatusWriter",
    "LoggingStatusWriter",
    "StatusWriter",
    "KubernetesWatchSource",
]
