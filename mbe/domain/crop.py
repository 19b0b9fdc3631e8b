"""Normalized crop rectangle geometry.

Crop selections live in the unit square of the *source* frame, before any
rotation or flip is applied for display. The helpers here map rectangles and
drag deltas between source space and display space, and keep a rectangle
within bounds and at a requested aspect ratio while the user drags one of
the eight resize handles.

All functions are pure and return new values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

DragHandle = Literal["move", "n", "s", "e", "w", "ne", "nw", "se", "sw"]

MIN_CROP = 0.05
ROTATIONS = (0, 90, 180, 270)
SIDE_ROTATIONS = (90, 270)

ASPECT_OPTIONS: List[Dict[str, Any]] = [
    {"id": "free", "display": "Free", "ratio": None},
    {"id": "1:1", "display": "1:1", "ratio": 1.0},
    {"id": "4:5", "display": "4:5", "ratio": 4 / 5},
    {"id": "16:9", "display": "16:9", "ratio": 16 / 9},
    {"id": "9:16", "display": "9:16", "ratio": 9 / 16},
]


@dataclass(frozen=True)
class CropRect:
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0


def full_frame() -> CropRect:
    return CropRect(0.0, 0.0, 1.0, 1.0)


def get_aspect_value(option_id: Optional[str]) -> Optional[float]:
    for option in ASPECT_OPTIONS:
        if option["id"] == option_id:
            return option["ratio"]
    return None


def normalize_rotation(value: Any) -> int:
    """Coerce 0/90/180/270 given as int or numeric string; anything else is 0."""
    try:
        angle = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return angle if angle in ROTATIONS else 0


def is_side_rotation(rotation: Any) -> bool:
    return normalize_rotation(rotation) in SIDE_ROTATIONS


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def _finite(value: float, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def clamp_rect(rect: CropRect) -> CropRect:
    """Force a rectangle into the unit square with at least MIN_CROP extents.

    Size is fixed first, then the origin is pulled back inside, so the result
    is a fixed point of this function.
    """
    width = clamp(_finite(rect.width, 1.0), MIN_CROP, 1.0)
    height = clamp(_finite(rect.height, 1.0), MIN_CROP, 1.0)
    x = clamp(_finite(rect.x, 0.0), 0.0, 1.0 - width)
    y = clamp(_finite(rect.y, 0.0), 0.0, 1.0 - height)
    return CropRect(x=x, y=y, width=width, height=height)


def transform_crop_rect(
    rect: CropRect,
    rotation: Any,
    flip_horizontal: bool,
    flip_vertical: bool,
    inverse: bool = False,
) -> CropRect:
    """Map a rectangle from source space to display space, or back when inverse.

    Forward applies rotate then flip; inverse applies flip then the inverse
    rotation. The two steps do not commute, so the order matters.
    """
    rot = normalize_rotation(rotation)
    cx = rect.x + rect.width / 2 - 0.5
    cy = rect.y + rect.height / 2 - 0.5
    w, h = rect.width, rect.height

    def flip(cx: float, cy: float) -> Tuple[float, float]:
        if flip_horizontal:
            cx = -cx
        if flip_vertical:
            cy = -cy
        return cx, cy

    if inverse:
        cx, cy = flip(cx, cy)
        if rot == 90:
            cx, cy = cy, -cx
        elif rot == 180:
            cx, cy = -cx, -cy
        elif rot == 270:
            cx, cy = -cy, cx
    else:
        if rot == 90:
            cx, cy = -cy, cx
        elif rot == 180:
            cx, cy = -cx, -cy
        elif rot == 270:
            cx, cy = cy, -cx
        cx, cy = flip(cx, cy)

    if rot in SIDE_ROTATIONS:
        w, h = h, w

    return CropRect(x=cx - w / 2 + 0.5, y=cy - h / 2 + 0.5, width=w, height=h)


def get_effective_aspect_ratio(
    target_ratio: float,
    source_width: float,
    source_height: float,
    is_side_rotation: bool,
) -> float:
    """Convert a display-space aspect ratio into normalized source-space units.

    Returns target_ratio unchanged when the source dimensions are unusable.
    """
    if not source_width or not source_height or source_width <= 0 or source_height <= 0:
        return target_ratio
    physical_aspect = source_width / source_height
    if is_side_rotation:
        if not target_ratio:
            return target_ratio
        return 1 / target_ratio / physical_aspect
    return target_ratio / physical_aspect


def _fit_to_ratio(width: float, height: float, ratio: float) -> Tuple[float, float]:
    if not ratio or ratio <= 0 or not math.isfinite(ratio):
        return width, height
    if height > 0 and width / height > ratio:
        return height * ratio, height
    return width, width / ratio


def adjust_rect_to_ratio(
    rect: CropRect,
    ratio: float,
    source_width: float,
    source_height: float,
    is_side_rotation: bool,
) -> CropRect:
    effective = get_effective_aspect_ratio(ratio, source_width, source_height, is_side_rotation)
    width, height = _fit_to_ratio(rect.width, rect.height, effective)
    center_x = rect.x + rect.width / 2
    center_y = rect.y + rect.height / 2
    return clamp_rect(
        CropRect(x=center_x - width / 2, y=center_y - height / 2, width=width, height=height)
    )


def enforce_aspect(
    rect: CropRect,
    handle: str,
    start_rect: CropRect,
    ratio: float,
    source_width: float,
    source_height: float,
    is_side_rotation: bool,
) -> CropRect:
    """Reapply the aspect ratio during a resize drag on one handle.

    The edge or corner opposite the active handle stays where it was in
    start_rect. Edge handles also keep the perpendicular center fixed.
    ``move`` and unknown handles return the rectangle untouched.
    """
    effective = get_effective_aspect_ratio(ratio, source_width, source_height, is_side_rotation)
    width, height = _fit_to_ratio(rect.width, rect.height, effective)

    left = start_rect.x
    top = start_rect.y
    right = start_rect.x + start_rect.width
    bottom = start_rect.y + start_rect.height
    mid_x = start_rect.x + start_rect.width / 2
    mid_y = start_rect.y + start_rect.height / 2

    if handle == "e":
        x, y = left, mid_y - height / 2
    elif handle == "w":
        x, y = right - width, mid_y - height / 2
    elif handle == "n":
        x, y = mid_x - width / 2, bottom - height
    elif handle == "s":
        x, y = mid_x - width / 2, top
    elif handle == "ne":
        x, y = left, bottom - height
    elif handle == "nw":
        x, y = right - width, bottom - height
    elif handle == "se":
        x, y = left, top
    elif handle == "sw":
        x, y = right - width, top
    else:
        return replace(rect)

    return CropRect(x=x, y=y, width=width, height=height)


def remap_drag_deltas(
    dx: float,
    dy: float,
    rotation: Any,
    flip_horizontal: bool,
    flip_vertical: bool,
) -> Tuple[float, float]:
    """Translate a pointer delta seen in display space into source space."""
    rot = normalize_rotation(rotation)
    if rot == 90:
        dx, dy = dy, -dx
    elif rot == 180:
        dx, dy = -dx, -dy
    elif rot == 270:
        dx, dy = -dy, dx

    if flip_horizontal:
        dx = -dx
    if flip_vertical:
        dy = -dy
    return dx, dy


_CURSORS = {
    "n": ("ns-resize", "ew-resize"),
    "s": ("ns-resize", "ew-resize"),
    "e": ("ew-resize", "ns-resize"),
    "w": ("ew-resize", "ns-resize"),
    "nw": ("nwse-resize", "nesw-resize"),
    "se": ("nwse-resize", "nesw-resize"),
    "ne": ("nesw-resize", "nwse-resize"),
    "sw": ("nesw-resize", "nwse-resize"),
}


def get_handle_cursor(handle_id: str, is_side_rotation: bool) -> str:
    cursors = _CURSORS.get(handle_id)
    if cursors is None:
        return "default"
    return cursors[1] if is_side_rotation else cursors[0]
