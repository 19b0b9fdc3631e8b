"""Output bitrate and file size prediction.

The estimator is queried on every configuration edit, so it must stay cheap,
deterministic and free of side effects. Metadata that cannot be parsed
degrades to an absent value instead of failing the whole estimate.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from mbe.domain.models import AUDIO_ONLY_CONTAINERS, ConversionConfig, SourceMetadata

# Raw metadata strings carry no reliable unit. Values above this threshold are
# read as bits per second, anything at or below as kbps. Tunable, not a
# protocol guarantee.
BPS_THRESHOLD = 100_000

MIN_VIDEO_KBPS = 400
MIN_SIZE_MB = 1.0
DEFAULT_TARGET_HEIGHT = 1080
DEFAULT_AUDIO_KBPS = 128
NEUTRAL_CRF = 23

RESOLUTION_HEIGHTS: Dict[str, int] = {
    "480p": 480,
    "720p": 720,
    "1080p": 1080,
}

# Descending by height; lookup picks the nearest entry at or below.
BASE_BITRATES: Tuple[Tuple[int, int], ...] = (
    (2160, 25000),
    (1440, 16000),
    (1080, 8000),
    (720, 5000),
    (480, 2500),
    (360, 1500),
)

AUDIO_BITRATES: Dict[str, int] = {
    "aac": 128,
    "ac3": 192,
    "opus": 96,
    "libopus": 96,
    "mp3": 128,
    "libmp3lame": 128,
}

CODEC_SCALE: Dict[str, float] = {
    "h264": 1.0,
    "libx264": 1.0,
    "h265": 0.65,
    "hevc": 0.65,
    "libx265": 0.65,
    "vp9": 0.7,
    "libvpx-vp9": 0.7,
    "prores": 1.6,
    "prores_ks": 1.6,
}

_DURATION_PATTERN = re.compile(r"(\d{2}):(\d{2}):(\d{2})\.(\d{2})")
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+))")
_RESOLUTION_PATTERN = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")


@dataclass(frozen=True)
class OutputEstimate:
    video_kbps: int
    audio_kbps: int
    total_kbps: int
    size_mb: Optional[float] = None


def _parse_leading_float(raw: Optional[str]) -> Optional[float]:
    """Read the numeric prefix of a string, e.g. "192k" -> 192.0."""
    if raw is None:
        return None
    match = _LEADING_NUMBER.match(str(raw))
    if not match:
        return None
    value = float(match.group(1))
    return value if math.isfinite(value) else None


def parse_duration_to_seconds(duration: Optional[str]) -> Optional[float]:
    """Parse ``HH:MM:SS.cc`` or a bare number of seconds."""
    if not duration:
        return None
    match = _DURATION_PATTERN.search(duration)
    if match:
        hours, minutes, seconds, centis = (int(part) for part in match.groups())
        return hours * 3600 + minutes * 60 + seconds + centis / 100
    return _parse_leading_float(duration)


def parse_resolution(resolution: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse ``"WxH"`` into (width, height); None if absent or degenerate."""
    if not resolution:
        return None
    match = _RESOLUTION_PATTERN.match(resolution)
    if not match:
        return None
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        return None
    return width, height


def parse_resolution_height(resolution: Optional[str]) -> Optional[int]:
    parsed = parse_resolution(resolution)
    return parsed[1] if parsed else None


def parse_source_bitrate_kbps(metadata: Optional[SourceMetadata]) -> Optional[float]:
    if metadata is None or not metadata.bitrate:
        return None
    clean = re.sub(r"[^0-9.]", "", metadata.bitrate)
    try:
        value = float(clean)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    if value > BPS_THRESHOLD:
        return value / 1000
    return value


def infer_target_height(config: ConversionConfig, metadata: Optional[SourceMetadata]) -> int:
    if config.resolution in RESOLUTION_HEIGHTS:
        return RESOLUTION_HEIGHTS[config.resolution]
    if config.resolution == "custom":
        custom = _parse_leading_float(config.custom_height)
        if custom and custom > 0:
            return int(custom)
    source = _source_height(metadata)
    return source or DEFAULT_TARGET_HEIGHT


def _source_height(metadata: Optional[SourceMetadata]) -> Optional[int]:
    if metadata is None:
        return None
    height = parse_resolution_height(metadata.resolution)
    if height:
        return height
    if metadata.height and metadata.height > 0:
        return metadata.height
    return None


def base_video_bitrate(height: int) -> int:
    for table_height, kbps in BASE_BITRATES:
        if height >= table_height:
            return kbps
    return BASE_BITRATES[-1][1]


def codec_scale_factor(codec: Optional[str]) -> float:
    return CODEC_SCALE.get((codec or "").lower(), 1.0)


def crf_scale(crf: float) -> float:
    return math.pow(2, (NEUTRAL_CRF - crf) / 6)


def audio_bitrate_for_codec(codec: Optional[str]) -> int:
    return AUDIO_BITRATES.get((codec or "").lower(), DEFAULT_AUDIO_KBPS)


def _estimate_video_kbps(config: ConversionConfig, metadata: Optional[SourceMetadata]) -> float:
    if config.container.lower() in AUDIO_ONLY_CONTAINERS:
        return 0.0

    if config.video_bitrate_mode == "bitrate":
        return max(0.0, _parse_leading_float(config.video_bitrate) or 0.0)

    target_height = infer_target_height(config, metadata)
    source_height = _source_height(metadata) or target_height
    source_kbps = parse_source_bitrate_kbps(metadata)

    if source_kbps:
        base_kbps = source_kbps * math.pow(target_height / source_height, 1.75)
    else:
        base_kbps = base_video_bitrate(target_height) * codec_scale_factor(config.video_codec)

    return max(MIN_VIDEO_KBPS, base_kbps * crf_scale(config.crf))


def estimate_output(
    config: ConversionConfig, metadata: Optional[SourceMetadata] = None
) -> OutputEstimate:
    """Predict output bitrates and size for a conversion config."""
    video_kbps = _estimate_video_kbps(config, metadata)

    explicit_audio = max(0.0, _parse_leading_float(config.audio_bitrate) or 0.0)
    audio_kbps = explicit_audio if explicit_audio else float(audio_bitrate_for_codec(config.audio_codec))
    total_kbps = video_kbps + audio_kbps

    size_mb: Optional[float] = None
    duration = parse_duration_to_seconds(metadata.duration if metadata else None)
    if duration and duration > 0 and total_kbps > 0:
        size_mb = max(total_kbps * duration / 8 / 1024, MIN_SIZE_MB)

    return OutputEstimate(
        video_kbps=int(round(video_kbps)),
        audio_kbps=int(round(audio_kbps)),
        total_kbps=int(round(total_kbps)),
        size_mb=size_mb,
    )


def format_file_size(size_mb: Optional[float]) -> str:
    if not size_mb:
        return "—"
    if size_mb >= 1024:
        return f"{size_mb / 1024:.1f} GB"
    return f"{size_mb:.1f} MB"
