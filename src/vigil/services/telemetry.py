"""Fire-and-forget delivery of severe security events to an external sink."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Protocol

import httpx
from elasticsearch import AsyncElasticsearch

from vigil.core.models import SecurityEvent
from vigil.core.severity import telemetry_level

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    async def send(self, event: SecurityEvent) -> None: ...


def build_document(event: SecurityEvent) -> Dict[str, Any]:
    """Serialize an event together with the routing fields sinks index on."""
    doc = event.model_dump(mode="json")
    doc["level"] = telemetry_level(event.severity)
    doc["message"] = f"Security Event: {event.type.value}"
    doc["tags"] = {"security_type": event.type.value, "severity": event.severity.value}
    return doc


class ElasticsearchSink:
    """Index each event as a document in a dedicated Elasticsearch index."""

    def __init__(self, es_client: AsyncElasticsearch, index: str) -> None:
        self.client = es_client
        self.index = index

    async def send(self, event: SecurityEvent) -> None:
        await self.client.index(index=self.index, document=build_document(event))


class WebhookSink:
    """POST each event as JSON to an HTTP collector."""

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 5.0) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, event: SecurityEvent) -> None:
        response = await self._client.post(self.url, json=build_document(event))
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TelemetryDispatcher:
    """Bounded queue drained by a single background worker.

    ``submit`` never blocks and never raises. It may be called from the event
    loop or from worker threads; when the queue is full, or the worker is not
    running, the event is dropped and counted.
    """

    def __init__(self, sink: TelemetrySink, max_queue_size: int = 1000, send_timeout: float = 5.0) -> None:
        self._sink = sink
        self._max_queue_size = max_queue_size
        self._send_timeout = send_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None
        self._closing = False
        self._counts = {"sent": 0, "dropped": 0, "failed": 0}
        self._counts_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._closing = False
        self._worker = asyncio.create_task(self._run())
        logger.info("Telemetry dispatcher started (queue size %d).", self._max_queue_size)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop accepting events, deliver what is queued, then cancel the worker."""
        self._closing = True
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Telemetry dispatcher stopped with %d undelivered events.", self._queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._loop = None
        logger.info("Telemetry dispatcher stopped.")

    def submit(self, event: SecurityEvent) -> bool:
        loop = self._loop
        if loop is None or self._closing or loop.is_closed():
            self._count("dropped")
            return False
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            return self._enqueue(event)
        try:
            loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Loop closed between the check above and the hand-off.
            self._count("dropped")
            return False
        return True

    def stats(self) -> Dict[str, int]:
        with self._counts_lock:
            stats = dict(self._counts)
        stats["queued"] = self._queue.qsize() if self._queue is not None else 0
        return stats

    def _enqueue(self, event: SecurityEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._count("dropped")
            logger.warning("Telemetry queue full; dropped %s event.", event.type.value)
            return False
        return True

    def _count(self, key: str) -> None:
        with self._counts_lock:
            self._counts[key] += 1

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await asyncio.wait_for(self._sink.send(event), timeout=self._send_timeout)
                self._count("sent")
            except Exception as exc:  # noqa: BLE001 - a failing sink must never surface to callers
                self._count("failed")
                logger.warning("Telemetry delivery failed for %s event: %r", event.type.value, exc)
            finally:
                self._queue.task_done()
