"""Bounded per-exporter delivery queue.

Each exporter attached to a tracing instance gets its own queue. Events are
delivered in FIFO order by a single worker thread running its own event loop,
so for any one span the exporter sees ``span_started`` before updates and the
end event, and the traced code never waits on exporter I/O.

The worker starts when an event is submitted to an idle queue and exits once
the queue is empty. Exporters therefore run on the worker's event loop, not on
the application's.

Backpressure: the queue holds at most ``max_size`` undelivered events. When
full, the oldest queued event is dropped and a warning is logged. Exporters
already tolerate events for spans whose start was never delivered.
"""

import asyncio
import threading
from collections import deque

import structlog

from agent_tracing.exporters.base import SpanExporter
from agent_tracing.types import TracingEvent

logger = structlog.get_logger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000


class ExportQueue:
    """Queues tracing events for one exporter and delivers them in order.

    ``submit`` only enqueues. Delivery happens on a background worker, one at
    a time per queue.

    Attributes:
        exporter: The exporter events are delivered to.
        max_size: Maximum number of undelivered events.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        max_size: int = DEFAULT_MAX_QUEUE_SIZE,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.exporter = exporter
        self.max_size = max_size
        self._events: deque[TracingEvent] = deque()
        self._worker: threading.Thread | None = None
        self._closed = False
        self._dropped = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._logger = logger.bind(component="export_queue", exporter=exporter.name)

    @property
    def pending(self) -> int:
        """Number of events waiting for delivery."""
        with self._lock:
            return len(self._events)

    @property
    def dropped(self) -> int:
        """Number of events dropped because the queue was full."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, event: TracingEvent) -> None:
        """Queue an event for delivery.

        Events submitted after ``close`` are discarded.

        Args:
            event: The event to deliver.
        """
        with self._lock:
            if self._closed:
                self._logger.debug(
                    "export_queue_closed_event_discarded",
                    event_type=event.type.value,
                    span_id=event.span.id,
                )
                return
            if len(self._events) >= self.max_size:
                oldest = self._events.popleft()
                self._dropped += 1
                self._logger.warning(
                    "export_queue_full_event_dropped",
                    event_type=oldest.type.value,
                    span_id=oldest.span.id,
                    dropped_total=self._dropped,
                )
            self._events.append(event)
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run_worker,
                    name=f"agent-tracing-export-{self.exporter.name}",
                    daemon=True,
                )
                self._worker.start()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued event has been delivered.

        Args:
            timeout: Maximum seconds to wait, None to wait indefinitely.

        Returns:
            True if the queue is idle, False if the timeout expired first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._worker is None, timeout)

    async def flush(self, timeout: float | None = None) -> bool:
        """Wait, without blocking the event loop, until delivery is idle."""
        return await asyncio.to_thread(self.wait_idle, timeout)

    async def close(self, timeout: float | None = None) -> bool:
        """Stop accepting events and wait for queued ones to be delivered."""
        with self._lock:
            self._closed = True
        return await self.flush(timeout)

    def _run_worker(self) -> None:
        try:
            asyncio.run(self._drain())
        finally:
            with self._lock:
                if self._worker is threading.current_thread():
                    self._logger.error("export_worker_stopped", pending=len(self._events))
                    self._events.clear()
                    self._worker = None
                    self._idle.notify_all()

    async def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._events:
                    # Cleared under the lock: the next submit starts a new worker
                    self._worker = None
                    self._idle.notify_all()
                    return
                event = self._events.popleft()
            await self._deliver(event)

    async def _deliver(self, event: TracingEvent) -> None:
        try:
            await self.exporter.export_event(event)
        except Exception as e:
            self._logger.warning(
                "exporter_event_failed",
                event_type=event.type.value,
                span_id=event.span.id,
                trace_id=event.span.trace_id,
                error=str(e),
            )
