"""Asynchronous click ingestion: a bounded queue drained by a fixed worker pool.

The redirect path hands each click to ``ClickIngestor.submit`` and returns
immediately; ``ClickWorkerPool`` tasks pull events off the queue, resolve the
link id and persist a ``ClickRecord`` through the ``ClickStore`` port with
bounded, linearly backed-off retries.

Pipeline Diagram
================
::
    redirect handler ──submit()──▶ ┌──────────────────────┐
    redirect handler ──submit()──▶ │ asyncio.Queue        │   full? drop + WARNING
    redirect handler ──submit()──▶ │ (maxsize = capacity) │
                                   └──────────┬───────────┘
                       ┌──────────────────────┼──────────────────────┐
                       ▼                      ▼                      ▼
                 ┌───────────┐          ┌───────────┐          ┌───────────┐
                 │ worker 0  │          │ worker 1  │          │ worker N  │
                 └─────┬─────┘          └─────┬─────┘          └─────┬─────┘
                       ▼                      ▼                      ▼
                resolve_link_id ──not found──▶ drop + WARNING
                       │
                       ▼
                record_click ──fail──▶ sleep((i+1) x backoff) ──▶ retry
                       │                                  │
                       ▼                          exhausted: drop + ERROR
                     done

Worker Loop
===========
::
    ┌──────────────────────────────┐
    │ wait(next event | stop flag) │◀────────┐
    └──────────────┬───────────────┘         │
          stop?    │                         │
    ┌──────────────┴─────────┐               │
    │ YES                    │ NO            │
    ▼                        ▼               │
  exit                 process event ────────┘

How to Use
===========
**Step 1 — Build and start**::
    processor = ClickProcessor.from_settings(SQLClickStore(async_session), settings)
    processor.start()

**Step 2 — Submit from the redirect handler**::
    processor.submit(ClickEvent(short_code="abc123", ip_address="1.2.3.4"))

**Step 3 — Stop on shutdown**::
    await processor.stop()

Key Behaviours
===============
- ``submit`` never blocks: it enqueues or drops. Only a closed pipeline raises.
- Workers race the next queued event against the stop signal.
- Lookup failures are never retried; persistence failures are retried up to
  ``max_retries`` attempts with ``(i + 1) x retry_backoff`` seconds between them.
- ``stop`` does not drain the queue. Events still queued are discarded; an
  event mid-processing finishes its current attempt and does not start another
  once the stop signal is set.
- A worker checks the stop signal before pulling each event; an event dequeued
  once the signal is raised is put back on the queue.
- ``start`` reopens the ingestor, so a stopped pool can be started again.
- There is no ordering guarantee across workers.
"""

import asyncio
import datetime
import logging
from collections.abc import Callable
from typing import Protocol

from prometheus_client import Counter, Gauge

from shortlink.config import Settings
from shortlink.enums import DropReason, PipelineState
from shortlink.exceptions import PipelineClosedError
from shortlink.schemas import ClickEvent, ClickRecord, PipelineStats

__all__ = [
    "ClickStore",
    "ClickIngestor",
    "ClickWorkerPool",
    "ClickProcessor",
    "DEFAULT_WORKER_COUNT",
    "DEFAULT_QUEUE_CAPACITY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_BACKOFF_SECONDS",
]

DEFAULT_WORKER_COUNT = 3
DEFAULT_QUEUE_CAPACITY = 1000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.1

logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

CLICK_EVENTS_ACCEPTED_TOTAL = Counter(
    "shortlink_click_events_accepted_total",
    "Click events accepted into the ingestion queue",
)
CLICK_EVENTS_DROPPED_TOTAL = Counter(
    "shortlink_click_events_dropped_total",
    "Click events dropped before reaching the click store",
    ["reason"],
)
CLICKS_PERSISTED_TOTAL = Counter(
    "shortlink_clicks_persisted_total",
    "Click records written by ingestion workers",
)
CLICK_PERSIST_RETRIES_TOTAL = Counter(
    "shortlink_click_persist_retries_total",
    "Retried click writes after a transient failure",
)
CLICK_QUEUE_DEPTH = Gauge(
    "shortlink_click_queue_depth",
    "Click events waiting in the ingestion queue",
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ClickStore(Protocol):
    """Persistence port consumed by the worker pool."""

    async def resolve_link_id(self, short_code: str) -> int:
        """Return the link id or raise (``LinkNotFoundError`` when absent)."""
        ...

    async def record_click(self, record: ClickRecord) -> None: ...


# ============================================================================
# INGESTOR
# ============================================================================


class ClickIngestor:
    """Non-blocking front door of the pipeline.

    Wraps a bounded ``asyncio.Queue`` shared by every producer (request
    handlers) and every consumer (workers). Capacity is fixed at construction.
    """

    def __init__(self, capacity: int = DEFAULT_QUEUE_CAPACITY, logger: logging.Logger = logger) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._queue: asyncio.Queue[ClickEvent] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._logger = logger

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def occupancy(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, event: ClickEvent) -> bool:
        """Enqueue ``event`` or drop it when the queue is full.

        Returns:
            bool: True if queued, False if dropped. A drop is not an error for
            the caller; the redirect must go ahead either way.

        Raises:
            PipelineClosedError: The pipeline has been shut down.
        """
        if self._closed:
            raise PipelineClosedError()

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason=DropReason.QUEUE_FULL).inc()
            self._logger.warning(
                f"Click queue full, dropping event for {event.short_code}",
                extra={"short_code": event.short_code, "queue_capacity": self.capacity},
            )
            return False

        CLICK_EVENTS_ACCEPTED_TOTAL.inc()
        CLICK_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def get(self) -> ClickEvent:
        event = await self._queue.get()
        CLICK_QUEUE_DEPTH.set(self._queue.qsize())
        return event

    def requeue(self, event: ClickEvent) -> None:
        """Return an event taken by a worker that is shutting down."""
        self._queue.put_nowait(event)
        CLICK_QUEUE_DEPTH.set(self._queue.qsize())

    def open(self) -> None:
        self._closed = False

    def close(self) -> None:
        self._closed = True


# ============================================================================
# WORKER POOL
# ============================================================================


class ClickWorkerPool:
    """Fixed set of asyncio tasks persisting clicks from a ``ClickIngestor``."""

    def __init__(
        self,
        ingestor: ClickIngestor,
        store: ClickStore,
        *,
        worker_count: int = DEFAULT_WORKER_COUNT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        clock: Callable[[], datetime.datetime] = _utcnow,
        logger: logging.Logger = logger,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if retry_backoff < 0:
            raise ValueError("retry_backoff must be >= 0")

        self._ingestor = ingestor
        self._store = store
        self._worker_count = worker_count
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._clock = clock
        self._logger = logger
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._state = PipelineState.STOPPED

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def state(self) -> PipelineState:
        return self._state

    def start(self) -> None:
        """Spawn every worker. Must be called from a running event loop."""
        self._logger.info(f"Starting {self._worker_count} click workers")
        self._stopping = asyncio.Event()
        self._ingestor.open()
        self._tasks = [
            asyncio.create_task(self._worker(worker_id), name=f"click-worker-{worker_id}")
            for worker_id in range(self._worker_count)
        ]
        self._state = PipelineState.RUNNING

    async def stop(self) -> None:
        """Signal every worker to stop and wait until all of them have exited.

        Queued events are discarded, not drained.
        """
        self._logger.info("Stopping click workers...")
        self._ingestor.close()
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self._tasks = []
        self._state = PipelineState.STOPPED
        self._logger.info(f"Click workers stopped, {self._ingestor.occupancy} queued events discarded")

    async def _worker(self, worker_id: int) -> None:
        self._logger.debug(f"Click worker {worker_id} started", extra={"worker_id": worker_id})
        stop_signal = asyncio.create_task(self._stopping.wait())
        next_event: asyncio.Task[ClickEvent] | None = None
        try:
            while not self._stopping.is_set():
                next_event = asyncio.create_task(self._ingestor.get())
                done, _ = await asyncio.wait({next_event, stop_signal}, return_when=asyncio.FIRST_COMPLETED)
                if next_event not in done:
                    break
                event = next_event.result()
                next_event = None
                if self._stopping.is_set():
                    # Dequeued after the stop signal was raised.
                    self._ingestor.requeue(event)
                    break
                await self._process(event)
        finally:
            if next_event is not None:
                next_event.cancel()
            stop_signal.cancel()
            self._logger.debug(f"Click worker {worker_id} stopped", extra={"worker_id": worker_id})

    async def _process(self, event: ClickEvent) -> None:
        try:
            link_id = await self._store.resolve_link_id(event.short_code)
        except Exception as exc:
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason=DropReason.LINK_NOT_FOUND).inc()
            self._logger.warning(
                f"Could not resolve link for click on {event.short_code}: {exc}",
                extra={"short_code": event.short_code},
            )
            return

        record = ClickRecord.from_event(event, link_id=link_id, clicked_at=self._clock())

        last_error: Exception | None = None
        attempts = 0
        for attempt in range(self._max_retries):
            attempts += 1
            try:
                await self._store.record_click(record)
            except Exception as exc:
                last_error = exc
            else:
                CLICKS_PERSISTED_TOTAL.inc()
                return

            if attempt == self._max_retries - 1 or self._stopping.is_set():
                break

            CLICK_PERSIST_RETRIES_TOTAL.inc()
            self._logger.debug(
                f"Retrying click write for {event.short_code} (attempt {attempt + 1}): {last_error}",
                extra={"short_code": event.short_code, "attempt": attempt + 1},
            )
            await asyncio.sleep((attempt + 1) * self._retry_backoff)

        CLICK_EVENTS_DROPPED_TOTAL.labels(reason=DropReason.PERSISTENCE_FAILED).inc()
        self._logger.error(
            f"Failed to record click for {event.short_code} after {attempts} attempts: {last_error}",
            extra={"short_code": event.short_code, "attempts": attempts},
        )


# ============================================================================
# FACADE
# ============================================================================


class ClickProcessor:
    """Ingestor plus worker pool behind one lifecycle, as used by the app.

    Example:
        >>> processor = ClickProcessor(store, worker_count=3, queue_capacity=1000)
        >>> processor.start()
        >>> processor.submit(ClickEvent(short_code="abc123"))
        >>> await processor.stop()
    """

    def __init__(
        self,
        store: ClickStore,
        *,
        worker_count: int = DEFAULT_WORKER_COUNT,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        clock: Callable[[], datetime.datetime] = _utcnow,
        logger: logging.Logger = logger,
    ) -> None:
        self.ingestor = ClickIngestor(queue_capacity, logger=logger)
        self.pool = ClickWorkerPool(
            self.ingestor,
            store,
            worker_count=worker_count,
            max_retries=max_retries,
            retry_backoff=retry_backoff,
            clock=clock,
            logger=logger,
        )

    @classmethod
    def from_settings(cls, store: ClickStore, settings: Settings, logger: logging.Logger = logger) -> "ClickProcessor":
        return cls(
            store,
            worker_count=settings.CLICK_WORKER_COUNT,
            queue_capacity=settings.CLICK_QUEUE_CAPACITY,
            max_retries=settings.CLICK_MAX_RETRIES,
            retry_backoff=settings.CLICK_RETRY_BACKOFF_SECONDS,
            logger=logger,
        )

    @property
    def state(self) -> PipelineState:
        return self.pool.state

    def start(self) -> None:
        self.pool.start()

    async def stop(self) -> None:
        await self.pool.stop()

    def submit(self, event: ClickEvent) -> bool:
        return self.ingestor.submit(event)

    def stats(self) -> PipelineStats:
        return PipelineStats(
            queue_capacity=self.ingestor.capacity,
            queue_occupancy=self.ingestor.occupancy,
            worker_count=self.pool.worker_count,
        )
