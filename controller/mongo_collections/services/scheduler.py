"""
Work scheduler - decides when each declared collection is reconciled.

Keeps the working set of declarations, coalesces notifications, runs
passes on a bounded pool of asyncio workers and schedules retries and
periodic resyncs from the outcome of every pass.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from mongo_collections.config import Settings
from mongo_collections.models.collection import CollectionDeclaration, ResourceIdentity
from mongo_collections.models.outcome import OutcomeKind, ReconcileOutcome

logger = logging.getLogger(__name__)

ReconcileFunc = Callable[[CollectionDeclaration], Awaitable[ReconcileOutcome]]


class WorkScheduler:
    """
    Queue of identities waiting for a reconcile pass.

    An identity is queued at most once. A notification for an identity
    whose pass is running marks it dirty; it is queued again as soon as
    that pass ends. Two passes for the same identity never overlap.
    """

    def __init__(
        self,
        reconcile: ReconcileFunc,
        max_concurrent: int = 4,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
        permanent_retry: float = 600.0,
        resync_interval: float = 60.0,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
        on_forget: Optional[Callable[[ResourceIdentity], None]] = None,
    ):
        self._reconcile = reconcile
        self.max_concurrent = max_concurrent
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.permanent_retry = permanent_retry
        self.resync_interval = resync_interval
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._on_forget = on_forget

        self._declarations: dict[ResourceIdentity, CollectionDeclaration] = {}
        self._queue: asyncio.Queue[Optional[ResourceIdentity]] = asyncio.Queue()
        self._queued: set[ResourceIdentity] = set()
        self._active: set[ResourceIdentity] = set()
        self._dirty: set[ResourceIdentity] = set()
        self._timers: dict[ResourceIdentity, asyncio.TimerHandle] = {}
        self._failures: dict[ResourceIdentity, int] = {}
        self._workers: list[asyncio.Task] = []
        self._stopping = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        reconcile: ReconcileFunc,
        on_forget: Optional[Callable[[ResourceIdentity], None]] = None,
    ) -> "WorkScheduler":
        return cls(
            reconcile,
            max_concurrent=settings.max_concurrent_reconciles,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            permanent_retry=settings.permanent_retry_seconds,
            resync_interval=settings.resync_interval_seconds,
            on_forget=on_forget,
        )

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stopping

    def start(self) -> None:
        """Start the worker tasks. Must be called from the event loop."""
        if self._workers:
            return
        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self.max_concurrent)
        ]
        logger.info(f"Started {self.max_concurrent} reconcile workers")

    def notify(
        self,
        identity: ResourceIdentity,
        declaration: Optional[CollectionDeclaration],
    ) -> None:
        """
        Record a new declaration for ``identity``, or its removal when
        ``declaration`` is None, and queue a pass right away.
        """
        if self._stopping:
            return
        if declaration is None:
            self.forget(identity)
            return

        self._declarations[identity] = declaration
        self._cancel_timer(identity)
        self._enqueue(identity)

    def forget(self, identity: ResourceIdentity) -> None:
        """Stop tracking a deleted resource. Its collection is left alone."""
        if self._declarations.pop(identity, None) is None:
            return
        self._cancel_timer(identity)
        self._failures.pop(identity, None)
        self._dirty.discard(identity)
        logger.info(f"Stopped tracking {identity}")
        if self._on_forget is not None:
            self._on_forget(identity)

    def backoff_delay(self, failures: int) -> float:
        """Delay before retry number ``failures`` of a transient failure."""
        delay = self.backoff_base * (2 ** max(failures - 1, 0))
        delay *= 1 + self.jitter * self._rng.random()
        return min(delay, self.backoff_max)

    def _enqueue(self, identity: ResourceIdentity) -> None:
        if identity in self._active:
            self._dirty.add(identity)
            return
        if identity in self._queued:
            return
        self._queued.add(identity)
        self._queue.put_nowait(identity)

    def _cancel_timer(self, identity: ResourceIdentity) -> None:
        timer = self._timers.pop(identity, None)
        if timer is not None:
            timer.cancel()

    def _schedule(self, identity: ResourceIdentity, delay: float) -> None:
        """Queue ``identity`` after ``delay``. The sooner of two timers wins."""
        loop = asyncio.get_running_loop()
        existing = self._timers.get(identity)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[identity] = loop.call_later(delay, self._fire, identity)

    def _fire(self, identity: ResourceIdentity) -> None:
        self._timers.pop(identity, None)
        if self._stopping or identity not in self._declarations:
            return
        self._enqueue(identity)

    async def _worker(self, number: int) -> None:
        while True:
            identity = await self._queue.get()
            try:
                if identity is None:
                    return
                self._queued.discard(identity)
                if self._stopping:
                    continue
                declaration = self._declarations.get(identity)
                if declaration is None:
                    continue

                self._active.add(identity)
                try:
                    outcome = await self._run(declaration)
                finally:
                    self._active.discard(identity)
                self._after(identity, outcome)
            finally:
                self._queue.task_done()

    async def _run(self, declaration: CollectionDeclaration) -> ReconcileOutcome:
        try:
            return await self._reconcile(declaration)
        except Exception as e:
            logger.exception(f"Unexpected error while reconciling {declaration.identity}")
            return ReconcileOutcome(
                kind=OutcomeKind.TRANSIENT_FAILURE,
                reason=f"unexpected error: {e}",
            )

    def _after(self, identity: ResourceIdentity, outcome: ReconcileOutcome) -> None:
        if self._stopping or identity not in self._declarations:
            self._dirty.discard(identity)
            return

        if outcome.is_transient:
            failures = self._failures.get(identity, 0) + 1
            self._failures[identity] = failures
            delay = self.backoff_delay(failures)
        else:
            self._failures.pop(identity, None)
            delay = self.resync_interval if outcome.is_success else self.permanent_retry

        if identity in self._dirty:
            self._dirty.discard(identity)
            self._enqueue(identity)
            return

        if outcome.is_transient:
            logger.info(f"Retrying {identity} in {delay:.1f}s")
        self._schedule(identity, delay)

    async def join(self) -> None:
        """Wait until nothing is queued or running."""
        await self._queue.join()

    async def stop(self) -> None:
        """Stop taking work and wait for the running passes to finish."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("Stopping reconcile workers...")

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        for _ in self._workers:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Reconcile workers stopped")

    def stats(self) -> dict[str, int]:
        return {
            "tracked": len(self._declarations),
            "queued": len(self._queued),
            "active": len(self._active),
            "retrying": len(self._failures),
            "scheduled": len(self._timers),
        }
