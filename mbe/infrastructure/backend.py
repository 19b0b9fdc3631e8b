"""Contract between the control plane and the external processing backend.

The backend (transcoder or spatial renderer) is opaque: the orchestrator
submits work by item id and learns what happened only through events pushed
on an ``EventChannel``.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Protocol, Union

from mbe.domain.events import BackendEvent
from mbe.domain.models import ConversionConfig, SpatialConfig

SubmitConfig = Union[ConversionConfig, SpatialConfig]


class ConversionBackend(Protocol):
    async def submit(self, item_id: str, path: str, config: SubmitConfig) -> None:
        """Accept an item for processing; raise on rejection."""
        ...

    async def cancel(self, item_id: str) -> None:
        """Ask the backend to stop an item; best effort, may raise."""
        ...


class EventChannel:
    """Ordered inbound stream of backend events.

    Producers call ``put`` (or ``put_nowait`` from callbacks); a single
    consumer iterates with ``async for``. Iteration ends after ``close``
    once everything queued before it has been delivered.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.logger = logging.getLogger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: BackendEvent) -> None:
        if self._closed:
            self.logger.debug(f"Dropping {type(event).__name__} for {event.item_id}: channel closed")
            return
        await self._queue.put(event)

    def put_nowait(self, event: BackendEvent) -> None:
        if self._closed:
            self.logger.debug(f"Dropping {type(event).__name__} for {event.item_id}: channel closed")
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue needs no marker: get() ends once it is drained
        if not self._queue.full():
            self._queue.put_nowait(self._CLOSED)

    async def get(self) -> Optional[BackendEvent]:
        """Next event, or None once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is self._CLOSED:
            # Leave the marker for any other waiting consumer
            self._queue.put_nowait(self._CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[BackendEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BackendEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
