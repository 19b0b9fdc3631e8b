"""Domain events for the media batch control plane.

Two families flow through the system:

- Backend events (``BackendEvent`` subclasses) arrive from the external
  conversion / spatial backend on an ``EventChannel`` and are dispatched one
  at a time by the orchestrator.
- Notifications (``ItemUpdated``, ``LogAppended``, ...) are published by the
  orchestrator on the ``EventBus`` so a UI can follow state without touching it.

See `infrastructure/event_bus.py` and `infrastructure/backend.py`.
"""

from typing import Optional, Union
from pydantic import BaseModel

from .models import MediaItem


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class BackendEvent(Event):
    """Base class for events emitted by the backend for one item."""

    item_id: str


class Started(BackendEvent):
    """Backend began working on the item."""

    pass


class Progress(BackendEvent):
    """Periodic progress report, 0..100."""

    percent: float
    stage: Optional[str] = None


class Completed(BackendEvent):
    """Backend finished the item successfully."""

    output_path: Optional[str] = None


class Failed(BackendEvent):
    """Backend failed the item (also used to report a cancelled job)."""

    message: str


class LogLine(BackendEvent):
    """One line of backend output for the item's log."""

    line: str


AnyBackendEvent = Union[Started, Progress, Completed, Failed, LogLine]


class ItemUpdated(Event):
    """Emitted after any change to an item; carries a snapshot."""

    item: MediaItem


class LogAppended(Event):
    """Emitted for each line added to an item's log."""

    item_id: str
    line: str


class ProcessingStarted(Event):
    """Emitted when a batch raises the processing flag."""

    queued: int


class ProcessingFinished(Event):
    """Emitted when the processing flag clears (no item left in flight)."""

    completed: int = 0
    failed: int = 0
