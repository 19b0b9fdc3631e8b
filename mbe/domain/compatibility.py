"""Container / codec / preset compatibility rules.

``normalize_conversion_config`` repairs a config so that every codec and
encoder preset it names can actually be muxed into its container, and so
that audio-only sources are written to an audio container.
"""

from typing import Dict, FrozenSet, Optional, Sequence

from mbe.domain.models import AUDIO_ONLY_CONTAINERS, ConversionConfig, SourceMetadata

VIDEO_PRESETS = (
    "ultrafast",
    "superfast",
    "veryfast",
    "faster",
    "fast",
    "medium",
    "slow",
    "slower",
    "veryslow",
)

NVENC_ENCODERS = frozenset({"h264_nvenc", "hevc_nvenc", "av1_nvenc"})
NVENC_ALLOWED_PRESETS = frozenset({"fast", "medium", "slow"})
VIDEOTOOLBOX_ENCODERS = frozenset({"h264_videotoolbox", "hevc_videotoolbox"})

_HW_ENCODERS = NVENC_ENCODERS | VIDEOTOOLBOX_ENCODERS

CONTAINER_VIDEO_CODECS: Dict[str, FrozenSet[str]] = {
    "mp4": frozenset({"libx264", "libx265", "vp9", "libsvtav1"} | _HW_ENCODERS),
    "mkv": frozenset({"libx264", "libx265", "vp9", "prores", "libsvtav1"} | _HW_ENCODERS),
    "webm": frozenset({"vp9"}),
    "mov": frozenset({"libx264", "libx265", "prores"} | _HW_ENCODERS - {"av1_nvenc"}),
}

VIDEO_CODEC_FALLBACK_ORDER = ("libx264", "libx265", "vp9", "prores", "libsvtav1")

# None means any audio codec is accepted
CONTAINER_AUDIO_CODECS: Dict[str, Optional[FrozenSet[str]]] = {
    "mp3": frozenset({"mp3"}),
    "wav": frozenset({"pcm_s16le"}),
    "flac": frozenset({"flac"}),
    "m4a": frozenset({"aac", "alac"}),
    "mp4": frozenset({"aac", "ac3", "libopus", "mp3", "alac"}),
    "webm": frozenset({"libopus", "vorbis"}),
    "mov": None,
    "mkv": None,
}

DEFAULT_AUDIO_CODECS = {
    "mp3": "mp3",
    "wav": "pcm_s16le",
    "flac": "flac",
    "m4a": "aac",
    "webm": "libopus",
}


def is_audio_codec_allowed(codec: str, container: str) -> bool:
    allowed = CONTAINER_AUDIO_CODECS.get(container.lower())
    return allowed is None or codec in allowed


def default_audio_codec(container: str) -> str:
    return DEFAULT_AUDIO_CODECS.get(container.lower(), "aac")


def is_video_codec_allowed(container: str, codec: str) -> bool:
    allowed = CONTAINER_VIDEO_CODECS.get(container.lower())
    return allowed is None or codec in allowed


def first_allowed_video_codec(
    container: str, candidates: Sequence[str] = VIDEO_CODEC_FALLBACK_ORDER
) -> str:
    allowed = CONTAINER_VIDEO_CODECS.get(container.lower())
    if not allowed:
        return candidates[0] if candidates else VIDEO_CODEC_FALLBACK_ORDER[0]
    for codec in candidates:
        if codec in allowed:
            return codec
    return sorted(allowed)[0]


def is_video_preset_allowed(codec: str, preset: str) -> bool:
    if codec in VIDEOTOOLBOX_ENCODERS:
        return False
    if codec in NVENC_ENCODERS:
        return preset in NVENC_ALLOWED_PRESETS
    return preset in VIDEO_PRESETS


def first_allowed_preset(codec: str) -> str:
    for preset in VIDEO_PRESETS:
        if is_video_preset_allowed(codec, preset):
            return preset
    return "medium"


def is_audio_only_source(metadata: Optional[SourceMetadata]) -> bool:
    """A probed source without a video stream."""
    return metadata is not None and not metadata.video_codec


def normalize_conversion_config(
    config: ConversionConfig, metadata: Optional[SourceMetadata] = None
) -> ConversionConfig:
    """Return a copy of ``config`` made consistent with its container and the source."""
    container = config.container.lower()
    updates = {}

    if is_audio_only_source(metadata) and container not in AUDIO_ONLY_CONTAINERS:
        container = "mp3"
        updates["container"] = container

    if not is_audio_codec_allowed(config.audio_codec, container):
        updates["audio_codec"] = default_audio_codec(container)

    video_codec = config.video_codec
    if container not in AUDIO_ONLY_CONTAINERS and not is_video_codec_allowed(container, video_codec):
        video_codec = first_allowed_video_codec(container)
        updates["video_codec"] = video_codec

    if not is_video_preset_allowed(video_codec, config.preset):
        updates["preset"] = first_allowed_preset(video_codec)

    return config.model_copy(deep=True, update=updates)
