"""
mongo-collections controller - FastAPI application

The HTTP side only serves the health checks. The lifespan wires the
controller: watch source -> work scheduler -> reconciler -> MongoDB, with
reconcile outcomes written back to the resources.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mongo_collections import __version__
from mongo_collections.config import Settings, get_settings
from mongo_collections.database.client import CollectionClient
from mongo_collections.database.connections import close_connections
from mongo_collections.routers import health
from mongo_collections.services.reconciler import Reconciler
from mongo_collections.services.scheduler import WorkScheduler
from mongo_collections.services.status_writer import (
    KubernetesStatusWriter,
    LoggingStatusWriter,
    StatusWriter,
)
from mongo_collections.services.watcher import KubernetesWatchSource, load_kubernetes_config

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # The Kubernetes client logs every request at debug level
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


def build_status_writer(settings: Settings) -> StatusWriter:
    if not settings.write_status:
        return LoggingStatusWriter()
    return KubernetesStatusWriter(
        settings.crd_group,
        settings.crd_version,
        settings.crd_plural,
        settings.crd_kind,
        settings.controller_name,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Load the Kubernetes configuration
    - Start the reconcile workers
    - Start watching MongoCollection resources

    Shutdown:
    - Stop the watch, drain the running passes
    - Close the MongoDB connection
    """
    settings = get_settings()
    logger.info(f"Starting mongo-collections controller {__version__}...")
    logger.info(f"Database: {settings.mongo_database}")
    logger.info(f"Namespaces: {', '.join(settings.namespaces()) or 'all'}")

    load_kubernetes_config()

    status_writer = build_status_writer(settings)
    collection_client = CollectionClient(settings.mongo_database)
    reconciler = Reconciler(collection_client, status_writer)
    scheduler = WorkScheduler.from_settings(
        settings,
        reconciler.reconcile,
        on_forget=lambda identity: status_writer.forget(identity.namespace, identity.name),
    )
    watcher = KubernetesWatchSource.from_settings(settings, scheduler.notify)

    scheduler.start()
    watcher.start()
    app.state.scheduler = scheduler
    app.state.collection_client = collection_client

    yield

    logger.info("Shutting down mongo-collections controller...")
    await watcher.stop()
    await scheduler.stop()
    await close_connections()
    logger.info("Database connections closed")


app = FastAPI(
    title="mongo-collections",
    description="Keeps MongoDB collections and indexes in sync with MongoCollection resources.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(health.router)
