"""
Watch source - follows MongoCollection resources in Kubernetes.

Each watched namespace (or the whole cluster) gets a daemon thread that
lists the resources and then watches them. Every event becomes an
``(identity, declaration | None)`` notification, handed over to the
event loop with call_soon_threadsafe. When the watch expires or breaks
the thread lists again, so delivery is at least once.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from mongo_collections.config import Settings
from mongo_collections.models.collection import CollectionDeclaration, ResourceIdentity

logger = logging.getLogger(__name__)

NotifyFunc = Callable[[ResourceIdentity, Optional[CollectionDeclaration]], None]

HTTP_GONE = 410


def load_kubernetes_config() -> None:
    """In-cluster configuration, or the local kubeconfig outside a cluster."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying local kubeconfig")
        config.load_kube_config()


class KubernetesWatchSource:
    """List-then-watch of the custom resources, per namespace."""

    def __init__(
        self,
        group: str,
        version: str,
        plural: str,
        namespaces: list[str],
        notify: NotifyFunc,
        timeout_seconds: int = 300,
        retry_delay: float = 5.0,
        api: Optional[client.CustomObjectsApi] = None,
    ):
        self.group = group
        self.version = version
        self.plural = plural
        # None stands for cluster scope
        self.namespaces: list[Optional[str]] = list(namespaces) or [None]
        self.timeout_seconds = timeout_seconds
        self.retry_delay = retry_delay
        self.api = api or client.CustomObjectsApi()
        self._notify = notify
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._watches: list[watch.Watch] = []
        self._known: dict[Optional[str], set[ResourceIdentity]] = {}
        self._generations: dict[ResourceIdentity, Optional[int]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        notify: NotifyFunc,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> "KubernetesWatchSource":
        return cls(
            settings.crd_group,
            settings.crd_version,
            settings.crd_plural,
            settings.namespaces(),
            notify,
            timeout_seconds=settings.watch_timeout_seconds,
            api=api,
        )

    def start(self) -> None:
        """Start one watch thread per scope. Must be called from the event loop."""
        self._loop = asyncio.get_running_loop()
        self._stop.clear()
        for namespace in self.namespaces:
            thread = threading.Thread(
                target=self._run,
                args=(namespace,),
                name=f"watch-{namespace or 'cluster'}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
            logger.info(f"Watching {self.plural}.{self.group} in {namespace or 'all namespaces'}")

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the watch threads, waiting at most ``timeout`` seconds for each."""
        self._stop.set()
        for stream in list(self._watches):
            stream.stop()
        for thread in self._threads:
            await asyncio.to_thread(thread.join, timeout)
            if thread.is_alive():
                logger.warning(f"Watch thread {thread.name} did not stop in time")
        self._threads = []

    def _run(self, namespace: Optional[str]) -> None:
        while not self._stop.is_set():
            try:
                resource_version = self._list(namespace)
                self._watch(namespace, resource_version)
            except ApiException as e:
                if e.status == HTTP_GONE:
                    logger.info(f"Watch of {namespace or 'cluster'} expired, listing again")
                    continue
                logger.warning(
                    f"Kubernetes API error for {namespace or 'cluster'}: {e.status} {e.reason}, "
                    f"retrying in {self.retry_delay}s"
                )
                self._stop.wait(self.retry_delay)
            except Exception:
                logger.exception(f"Watch of {namespace or 'cluster'} failed")
                self._stop.wait(self.retry_delay)

    def _list_args(self, namespace: Optional[str]) -> tuple[Callable[..., Any], tuple]:
        if namespace is None:
            return self.api.list_cluster_custom_object, (self.group, self.version, self.plural)
        return (
            self.api.list_namespaced_custom_object,
            (self.group, self.version, namespace, self.plural),
        )

    def _list(self, namespace: Optional[str]) -> Optional[str]:
        """List the resources, notify all of them and return the list's resourceVersion."""
        func, args = self._list_args(namespace)
        result = func(*args)

        seen: set[ResourceIdentity] = set()
        for obj in result.get("items") or []:
            declaration = self._declaration(obj)
            if declaration is None:
                continue
            seen.add(declaration.identity)
            self._generations[declaration.identity] = declaration.generation
            self._deliver(declaration.identity, declaration)

        # Deleted while the watch was down
        for identity in self._known.get(namespace, set()) - seen:
            self._generations.pop(identity, None)
            self._deliver(identity, None)
        self._known[namespace] = seen

        logger.info(f"Listed {len(seen)} {self.plural} in {namespace or 'all namespaces'}")
        return (result.get("metadata") or {}).get("resourceVersion")

    def _watch(self, namespace: Optional[str], resource_version: Optional[str]) -> None:
        func, args = self._list_args(namespace)
        stream = watch.Watch()
        self._watches.append(stream)
        try:
            for event in stream.stream(
                func,
                *args,
                resource_version=resource_version,
                timeout_seconds=self.timeout_seconds,
            ):
                if self._stop.is_set():
                    return
                if not self._handle(namespace, event):
                    return
        finally:
            stream.stop()
            self._watches.remove(stream)

    def _handle(self, namespace: Optional[str], event: dict[str, Any]) -> bool:
        """Process one watch event. False means the watch has to start over."""
        kind = event.get("type")
        obj = event.get("object") or {}

        if kind == "ERROR":
            logger.info(f"Watch error for {namespace or 'cluster'}: {obj.get('message')}")
            return False
        if kind == "BOOKMARK":
            return True

        declaration = self._declaration(obj)
        if declaration is None:
            return True
        identity = declaration.identity
        known = self._known.setdefault(namespace, set())

        if kind == "DELETED":
            known.discard(identity)
            self._generations.pop(identity, None)
            self._deliver(identity, None)
            return True

        # Status-only updates don't bump the generation
        if (
            kind == "MODIFIED"
            and declaration.generation is not None
            and self._generations.get(identity) == declaration.generation
        ):
            return True

        known.add(identity)
        self._generations[identity] = declaration.generation
        self._deliver(identity, declaration)
        return True

    def _declaration(self, obj: dict[str, Any]) -> Optional[CollectionDeclaration]:
        try:
            return CollectionDeclaration.from_resource(obj)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed {self.plural} object: {e}")
            return None

    def _deliver(
        self,
        identity: ResourceIdentity,
        declaration: Optional[CollectionDeclaration],
    ) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._notify, identity, declaration)
