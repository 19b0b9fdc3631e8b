"""
Control-plane error types.

All errors inherit from MbeError for easy catching. Per-item failures are
recovered by the orchestrator; none of these is fatal to the process.
"""


class MbeError(Exception):
    """Base exception for all control-plane failures."""
    pass


class ItemNotFoundError(MbeError):
    """Raised when an operation addresses an id that is not in the collection."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Media item not found: {item_id}")


class ItemLockedError(MbeError):
    """Raised when edit parameters change while the item is in flight."""

    def __init__(self, item_id: str, status: str):
        self.item_id = item_id
        self.status = status
        super().__init__(f"Media item {item_id} is locked while {status}")


class InvalidTransitionError(MbeError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, item_id: str, current_state: str, target_state: str):
        self.item_id = item_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid status transition for {item_id}: "
            f"{current_state} -> {target_state}"
        )


class SubmissionError(MbeError):
    """Raised by a backend that rejects or fails to accept an item."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(reason)


class BackendError(MbeError):
    """A failure reported by the backend while processing an item."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(reason)


class CancellationError(MbeError):
    """Raised by a backend that could not cancel an item."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Cancel failed for {item_id}: {reason}")
