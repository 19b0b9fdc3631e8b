"""Job orchestrator for the per-file conversion / spatial lifecycle.

Owns the MediaItem collection, the per-item logs and the global processing
flag. User intent (select, edit, enqueue, cancel) arrives through method
calls; backend progress arrives as typed events on an EventChannel and is
reconciled by a single dispatcher. Every state change is published on the
EventBus as a snapshot, so the UI never holds a mutable reference.

Key responsibilities:
- Keep status changes inside one explicit transition table
- Submit eligible items to the backend sequentially, isolating failures per item
- Apply start / progress / complete / error / log events in arrival order
- Clear the processing flag once no item is queued or converting
- Attach geometry-normalized crop and orientation edits to items
"""

import logging
import math
import uuid
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Optional, Tuple

from mbe.domain.compatibility import normalize_conversion_config
from mbe.domain.crop import (
    ASPECT_OPTIONS,
    ROTATIONS,
    CropRect,
    adjust_rect_to_ratio,
    clamp_rect,
    full_frame,
    get_aspect_value,
    is_side_rotation,
    transform_crop_rect,
)
from mbe.domain.errors import (
    InvalidTransitionError,
    ItemLockedError,
    ItemNotFoundError,
)
from mbe.domain.estimate import OutputEstimate, estimate_output, parse_resolution
from mbe.domain.events import (
    BackendEvent,
    Completed,
    Failed,
    ItemUpdated,
    LogAppended,
    LogLine,
    ProcessingFinished,
    ProcessingStarted,
    Progress,
    Started,
)
from mbe.domain.models import (
    ConversionConfig,
    FileStatus,
    MediaItem,
    Pipeline,
    SourceMetadata,
    SpatialConfig,
    derive_output_name,
)
from mbe.domain.presets import get_preset
from mbe.infrastructure.backend import ConversionBackend, EventChannel, SubmitConfig
from mbe.infrastructure.event_bus import EventBus

_TRANSITIONS: Dict[FileStatus, frozenset] = {
    FileStatus.IDLE: frozenset({FileStatus.SELECTED, FileStatus.QUEUED}),
    FileStatus.SELECTED: frozenset({FileStatus.IDLE, FileStatus.QUEUED}),
    FileStatus.QUEUED: frozenset(
        {FileStatus.CONVERTING, FileStatus.COMPLETED, FileStatus.ERROR, FileStatus.IDLE}
    ),
    FileStatus.CONVERTING: frozenset({FileStatus.COMPLETED, FileStatus.ERROR, FileStatus.IDLE}),
    FileStatus.COMPLETED: frozenset({FileStatus.QUEUED}),
    FileStatus.ERROR: frozenset({FileStatus.QUEUED}),
}

ACTIVE_STATUSES = frozenset({FileStatus.QUEUED, FileStatus.CONVERTING})
# Not eligible for a batch enqueue
_BATCH_EXCLUDED = frozenset({FileStatus.QUEUED, FileStatus.CONVERTING, FileStatus.COMPLETED})
# Targets of a preset applied without explicit ids
_PRESET_TARGETS = frozenset({FileStatus.IDLE, FileStatus.SELECTED})

_PIPELINE_LABELS = {
    Pipeline.CONVERSION: "conversion",
    Pipeline.SPATIAL: "spatial conversion",
}


class JobOrchestrator:
    """Media batch orchestrator.

    Drives every selected item through IDLE/SELECTED → QUEUED → CONVERTING →
    COMPLETED | ERROR against an external backend. The orchestrator is the
    single writer of item state; it runs on one asyncio loop and handles
    backend events one at a time, so no locking is needed.

    Args:
        backend: Backend used to submit and cancel items.
        event_bus: EventBus for publishing item snapshots and batch notifications.
        pipeline: Which config is sent on submission (conversion or spatial).
        conversion_config: Initial conversion settings (defaults if omitted).
        spatial_config: Initial spatial settings (defaults if omitted).
    """

    def __init__(
        self,
        backend: ConversionBackend,
        event_bus: EventBus,
        pipeline: Pipeline = Pipeline.CONVERSION,
        conversion_config: Optional[ConversionConfig] = None,
        spatial_config: Optional[SpatialConfig] = None,
    ):
        self.backend = backend
        self.event_bus = event_bus
        self.pipeline = pipeline
        self.conversion_config = conversion_config or ConversionConfig()
        self.spatial_config = spatial_config or SpatialConfig()
        self.logger = logging.getLogger(__name__)

        self._items: Dict[str, MediaItem] = {}
        self._logs: Dict[str, List[str]] = {}
        self._processing = False

    # ── Read-only views ───────────────────────────────────────────────────────

    @property
    def items(self) -> List[MediaItem]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    @property
    def logs(self) -> Dict[str, List[str]]:
        return {item_id: list(lines) for item_id, lines in self._logs.items()}

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def config(self) -> SubmitConfig:
        """The config of the active pipeline."""
        if self.pipeline == Pipeline.SPATIAL:
            return self.spatial_config
        return self.conversion_config

    def get_item(self, item_id: str) -> Optional[MediaItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    def _require(self, item_id: str) -> MediaItem:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    # ── Collection ────────────────────────────────────────────────────────────

    def add_item(
        self,
        path: str,
        metadata: Optional[SourceMetadata] = None,
        item_id: Optional[str] = None,
        selected: bool = False,
    ) -> MediaItem:
        """Add a file as IDLE, or already SELECTED for the next batch."""
        item_id = item_id or str(uuid.uuid4())
        if item_id in self._items:
            raise ValueError(f"Duplicate media item id: {item_id}")
        item = MediaItem(id=item_id, path=str(path), name=PurePath(str(path)).name, metadata=metadata)
        self._items[item_id] = item
        if metadata is not None:
            self._normalize_for_source(item)
        if selected:
            item.selected = True
            self._transition(item, FileStatus.SELECTED)
        self.logger.info(f"Added {item.name} ({item_id})")
        self._publish_item(item)
        return item.model_copy(deep=True)

    def add_items(self, paths: Iterable[str], selected: bool = False) -> List[MediaItem]:
        return [self.add_item(path, selected=selected) for path in paths]

    def set_metadata(self, item_id: str, metadata: SourceMetadata):
        """Attach probe results and fit the item's encoding settings to the source."""
        item = self._require(item_id)
        item.metadata = metadata
        if item.status not in ACTIVE_STATUSES:
            self._normalize_for_source(item)
        self._publish_item(item)

    def _normalize_for_source(self, item: MediaItem):
        current = self._effective_config(item)
        normalized = normalize_conversion_config(current, item.metadata)
        if normalized != current:
            self.logger.debug(
                f"{item.name}: settings adjusted for source "
                f"({current.container}/{current.audio_codec} -> {normalized.container}/{normalized.audio_codec})"
            )
            item.config = normalized

    async def remove_item(self, item_id: str):
        """Drop an item, cancelling it first if it is still in flight."""
        item = self._require(item_id)
        if item.status in ACTIVE_STATUSES:
            await self.cancel_task(item_id)
        self._items.pop(item_id, None)
        self._logs.pop(item_id, None)
        self.logger.info(f"Removed {item.name} ({item_id})")
        self.check_all_done()

    # ── Selection ─────────────────────────────────────────────────────────────

    def select(self, item_id: str):
        item = self._require(item_id)
        item.selected = True
        if item.status == FileStatus.IDLE:
            self._transition(item, FileStatus.SELECTED)
        self._publish_item(item)

    def deselect(self, item_id: str):
        item = self._require(item_id)
        item.selected = False
        if item.status == FileStatus.SELECTED:
            self._transition(item, FileStatus.IDLE)
        self._publish_item(item)

    def toggle_all(self, selected: bool):
        for item_id in list(self._items):
            if selected:
                self.select(item_id)
            else:
                self.deselect(item_id)

    # ── Edit parameters ───────────────────────────────────────────────────────

    def _require_editable(self, item_id: str) -> MediaItem:
        item = self._require(item_id)
        if item.status in ACTIVE_STATUSES:
            raise ItemLockedError(item_id, item.status.value)
        return item

    def set_crop(self, item_id: str, rect: CropRect, display_space: bool = False) -> CropRect:
        """Store a crop rectangle, normalized; display-space input is mapped back first."""
        item = self._require_editable(item_id)
        if display_space:
            rect = transform_crop_rect(
                rect, item.rotation, item.flip_horizontal, item.flip_vertical, inverse=True
            )
        item.crop_rect = clamp_rect(rect)
        self._publish_item(item)
        return item.crop_rect

    def display_crop(self, item_id: str) -> CropRect:
        """The stored crop as seen in the rotated / flipped preview."""
        item = self._require(item_id)
        return transform_crop_rect(
            item.crop_rect, item.rotation, item.flip_horizontal, item.flip_vertical, inverse=False
        )

    def reset_crop(self, item_id: str):
        item = self._require_editable(item_id)
        item.crop_rect = full_frame()
        item.aspect_ratio = None
        self._publish_item(item)

    def set_orientation(
        self,
        item_id: str,
        rotation: int,
        flip_horizontal: bool = False,
        flip_vertical: bool = False,
    ):
        if rotation not in ROTATIONS:
            raise ValueError(f"Invalid rotation angle {rotation}. Must be 0, 90, 180, or 270.")
        item = self._require_editable(item_id)
        side_changed = is_side_rotation(item.rotation) != is_side_rotation(rotation)
        item.rotation = rotation
        item.flip_horizontal = flip_horizontal
        item.flip_vertical = flip_vertical
        # A locked aspect ratio applies to the display, which just swapped axes
        if side_changed and item.aspect_ratio:
            item.crop_rect = self._fit_aspect(item, item.crop_rect)
        self._publish_item(item)

    def set_aspect_ratio(self, item_id: str, option_id: Optional[str]) -> CropRect:
        if option_id is not None and option_id not in {opt["id"] for opt in ASPECT_OPTIONS}:
            raise ValueError(f"Unknown aspect ratio option: {option_id}")
        item = self._require_editable(item_id)
        item.aspect_ratio = None if option_id == "free" else option_id
        if item.aspect_ratio:
            item.crop_rect = self._fit_aspect(item, item.crop_rect)
        self._publish_item(item)
        return item.crop_rect

    def _fit_aspect(self, item: MediaItem, rect: CropRect) -> CropRect:
        ratio = get_aspect_value(item.aspect_ratio)
        if ratio is None:
            return rect
        width, height = _source_dimensions(item.metadata)
        return adjust_rect_to_ratio(rect, ratio, width, height, is_side_rotation(item.rotation))

    def set_trim(self, item_id: str, start: Optional[str] = None, end: Optional[str] = None):
        item = self._require_editable(item_id)
        item.trim_start = start
        item.trim_end = end
        self._publish_item(item)

    def set_output_name(self, item_id: str, output_name: Optional[str]):
        """Rename the output; an empty name restores the default derived from the source."""
        item = self._require_editable(item_id)
        item.output_name = (output_name or "").strip() or derive_output_name(item.name)
        self._publish_item(item)

    # ── Configuration & estimation ────────────────────────────────────────────

    def update_config(
        self,
        pipeline: Optional[Pipeline] = None,
        item_id: Optional[str] = None,
        **updates: Any,
    ) -> SubmitConfig:
        """Shallow-merge fields into a pipeline config (the active one by default).

        With ``item_id`` the merge lands in that item's own conversion settings
        instead of the shared ones. Conversion settings are normalized against
        the container (and the item's source, when given). Items already
        queued keep the config they were submitted with.
        """
        if item_id is not None:
            item = self._require_editable(item_id)
            merged = self._merge(Pipeline.CONVERSION, self._effective_config(item), updates)
            item.config = normalize_conversion_config(merged, item.metadata)
            self.logger.debug(f"{item.name}: conversion settings updated: {sorted(updates)}")
            self._publish_item(item)
            return item.config

        target = pipeline or self.pipeline
        if target == Pipeline.SPATIAL:
            self.spatial_config = self._merge(target, self.spatial_config, updates)
            merged = self.spatial_config
        else:
            self.conversion_config = normalize_conversion_config(
                self._merge(target, self.conversion_config, updates)
            )
            merged = self.conversion_config
        self.logger.debug(f"{target.value} config updated: {sorted(updates)}")
        return merged

    @staticmethod
    def _merge(target: Pipeline, current: SubmitConfig, updates: Dict[str, Any]) -> SubmitConfig:
        unknown = set(updates) - set(type(current).model_fields)
        if unknown:
            raise ValueError(f"Unknown {target.value} config fields: {sorted(unknown)}")
        return type(current).model_validate({**current.model_dump(), **updates})

    def apply_preset(self, preset_id: str, item_ids: Optional[Iterable[str]] = None) -> List[str]:
        """Give items a built-in preset's settings, fitted to each item's source.

        Without ``item_ids`` every idle or selected item gets the preset. Named
        items must exist and must not be in flight. Returns the ids updated.
        """
        preset = get_preset(preset_id)
        if preset is None:
            raise ValueError(f"Unknown preset: {preset_id}")

        if item_ids is None:
            targets = [item for item in self._items.values() if item.status in _PRESET_TARGETS]
        else:
            targets = [self._require_editable(item_id) for item_id in item_ids]

        for item in targets:
            item.config = normalize_conversion_config(preset.config, item.metadata)
            self._publish_item(item)
        self.logger.info(f"Applied preset '{preset.name}' to {len(targets)} item(s)")
        return [item.id for item in targets]

    def config_for(self, item_id: str) -> ConversionConfig:
        """The conversion settings an item would be submitted with, before its edits."""
        return self._effective_config(self._require(item_id)).model_copy(deep=True)

    def _effective_config(self, item: MediaItem) -> ConversionConfig:
        return item.config if item.config is not None else self.conversion_config

    def estimate_for(self, item_id: str) -> OutputEstimate:
        item = self._require(item_id)
        return estimate_output(self._effective_config(item), item.metadata)

    def _submission_config(self, item: MediaItem) -> SubmitConfig:
        if self.pipeline == Pipeline.SPATIAL:
            return self.spatial_config.model_copy(deep=True)
        base = self._effective_config(item)
        # Item edits win; an unedited item keeps the configured defaults
        crop = base.crop if item.crop_rect == full_frame() else item.crop_rect
        return base.model_copy(
            deep=True,
            update={
                "rotation": item.rotation or base.rotation,
                "flip_horizontal": item.flip_horizontal or base.flip_horizontal,
                "flip_vertical": item.flip_vertical or base.flip_vertical,
                "crop": crop,
                "start_time": item.trim_start if item.trim_start is not None else base.start_time,
                "end_time": item.trim_end if item.trim_end is not None else base.end_time,
                "output_name": item.output_name,
            },
        )

    # ── Enqueue ───────────────────────────────────────────────────────────────

    async def start_conversion(self) -> List[str]:
        """Queue and submit every selected item that is not in flight or done.

        Returns the ids that were queued. Submission is sequential; a failing
        submission marks only that item as ERROR.
        """
        pending = [
            item for item in self._items.values()
            if item.selected and item.status not in _BATCH_EXCLUDED
        ]
        if not pending:
            return []

        self._set_processing(True, queued=len(pending))
        for item in pending:
            self._logs[item.id] = []
            self._enqueue(item)

        label = _PIPELINE_LABELS[self.pipeline]
        self.logger.info(f"Submitting {len(pending)} item(s) for {label}")
        queued_ids = [item.id for item in pending]
        for item_id in queued_ids:
            await self._submit(item_id)

        self.check_all_done()
        return queued_ids

    async def queue_for_file(self, item_id: str) -> bool:
        """Queue and submit a single item. Returns False if it was not submitted."""
        item = self._require(item_id)
        if item.status in ACTIVE_STATUSES:
            self.logger.debug(f"{item.name} already {item.status.value}, not queued again")
            return False

        if not self._processing:
            self._set_processing(True, queued=1)
        self._enqueue(item)
        self._append_log(item_id, f"[QUEUE] Queuing {_PIPELINE_LABELS[self.pipeline]}...")
        return await self._submit(item_id)

    def _enqueue(self, item: MediaItem):
        self._transition(item, FileStatus.QUEUED)
        item.progress = 0.0
        item.error = None
        self._publish_item(item)

    async def _submit(self, item_id: str) -> bool:
        item = self._items.get(item_id)
        if item is None or item.status != FileStatus.QUEUED:
            # Removed or cancelled while earlier submissions were awaited
            self.logger.debug(f"Skipping submission of {item_id}: no longer queued")
            return False

        config = self._submission_config(item)
        try:
            await self.backend.submit(item.id, item.path, config)
        except Exception as e:
            message = str(e) or type(e).__name__
            self._fail_submission(item_id, message)
            return False

        self.logger.debug(f"Submitted {item.name} ({item_id})")
        return True

    def _fail_submission(self, item_id: str, message: str):
        label = _PIPELINE_LABELS[self.pipeline]
        self.logger.error(f"Failed to queue {label} for {item_id}: {message}")
        item = self._items.get(item_id)
        if item is None:
            return
        try:
            self._transition(item, FileStatus.ERROR)
        except InvalidTransitionError as e:
            self.logger.debug(str(e))
        else:
            item.progress = 0.0
            item.error = message
            self._publish_item(item)
        self._append_log(item_id, f"[ERROR] Failed to queue {label}: {message}")
        self.check_all_done()

    # ── Cancellation ──────────────────────────────────────────────────────────

    async def cancel_task(self, item_id: str) -> bool:
        """Ask the backend to stop an item. Never raises on backend failure."""
        try:
            await self.backend.cancel(item_id)
        except Exception as e:
            self.logger.error(f"Failed to cancel task {item_id}: {e}")
            if item_id in self._items:
                self._append_log(item_id, f"[CANCEL] Cancel failed: {e}")
            return False

        item = self._items.get(item_id)
        if item is not None and item.status in ACTIVE_STATUSES:
            self._transition(item, FileStatus.IDLE)
            item.progress = 0.0
            self._append_log(item_id, "[CANCEL] Cancelled")
            self._publish_item(item)
            self.check_all_done()
        return True

    # ── Backend events ────────────────────────────────────────────────────────

    async def run(self, channel: EventChannel):
        """Dispatch backend events in arrival order until the channel closes."""
        async for event in channel:
            self.handle_event(event)

    def handle_event(self, event: BackendEvent):
        item = self._items.get(event.item_id)
        if item is None:
            self.logger.debug(f"Ignoring {type(event).__name__} for unknown item {event.item_id}")
            return

        try:
            if isinstance(event, Started):
                self._on_started(item)
            elif isinstance(event, Progress):
                self._on_progress(item, event.percent)
            elif isinstance(event, Completed):
                self._on_completed(item, event.output_path)
            elif isinstance(event, Failed):
                self._on_failed(item, event.message)
            elif isinstance(event, LogLine):
                self._append_log(item.id, event.line)
            else:
                self.logger.warning(f"Unhandled backend event type: {type(event).__name__}")
        except InvalidTransitionError as e:
            self.logger.debug(f"Ignoring {type(event).__name__}: {e}")

        if isinstance(event, (Completed, Failed)):
            self.check_all_done()

    def _on_started(self, item: MediaItem):
        self._transition(item, FileStatus.CONVERTING)
        item.progress = 0.0
        self._publish_item(item)

    def _on_progress(self, item: MediaItem, percent: float):
        if item.status == FileStatus.QUEUED:
            # Backend began work without an explicit start event
            self._transition(item, FileStatus.CONVERTING)
        elif item.status != FileStatus.CONVERTING:
            raise InvalidTransitionError(item.id, item.status.value, FileStatus.CONVERTING.value)

        if math.isfinite(percent):
            item.progress = max(item.progress, min(max(percent, 0.0), 100.0))
        self._publish_item(item)

    def _on_completed(self, item: MediaItem, output_path: Optional[str]):
        self._transition(item, FileStatus.COMPLETED)
        item.progress = 100.0
        item.error = None
        self.logger.info(f"Completed {item.name}" + (f" -> {output_path}" if output_path else ""))
        self._publish_item(item)

    def _on_failed(self, item: MediaItem, message: str):
        self._transition(item, FileStatus.ERROR)
        item.error = message
        self.logger.error(f"Failed {item.name}: {message}")
        self._append_log(item.id, f"[ERROR] {message}")
        self._publish_item(item)

    # ── Completion ────────────────────────────────────────────────────────────

    def check_all_done(self) -> bool:
        """Clear the processing flag once no item is queued or converting."""
        if not self._processing:
            return False
        if any(item.status in ACTIVE_STATUSES for item in self._items.values()):
            return False
        self._set_processing(False)
        return True

    def _set_processing(self, value: bool, queued: int = 0):
        if value == self._processing:
            return
        self._processing = value
        if value:
            self.event_bus.publish(ProcessingStarted(queued=queued))
            return
        completed = sum(1 for i in self._items.values() if i.status == FileStatus.COMPLETED)
        failed = sum(1 for i in self._items.values() if i.status == FileStatus.ERROR)
        self.logger.info(f"Processing finished: {completed} completed, {failed} failed")
        self.event_bus.publish(ProcessingFinished(completed=completed, failed=failed))

    # ── Internals ─────────────────────────────────────────────────────────────

    def _transition(self, item: MediaItem, target: FileStatus):
        if target not in _TRANSITIONS[item.status]:
            raise InvalidTransitionError(item.id, item.status.value, target.value)
        item.status = target

    def _append_log(self, item_id: str, line: str):
        self._logs.setdefault(item_id, []).append(line)
        self.event_bus.publish(LogAppended(item_id=item_id, line=line))

    def _publish_item(self, item: MediaItem):
        self.event_bus.publish(ItemUpdated(item=item.model_copy(deep=True)))


def _source_dimensions(metadata: Optional[SourceMetadata]) -> Tuple[int, int]:
    if metadata is None:
        return 0, 0
    if metadata.width and metadata.height:
        return metadata.width, metadata.height
    return parse_resolution(metadata.resolution) or (0, 0)
