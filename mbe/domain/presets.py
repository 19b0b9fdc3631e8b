"""Built-in conversion presets."""

from typing import List, Optional

from pydantic import BaseModel

from mbe.domain.models import ConversionConfig


class PresetDefinition(BaseModel):
    id: str
    name: str
    built_in: bool = False
    config: ConversionConfig


DEFAULT_PRESETS: List[PresetDefinition] = [
    PresetDefinition(
        id="balanced-mp4",
        name="Balanced MP4",
        built_in=True,
        config=ConversionConfig(
            container="mp4", video_codec="libx264", audio_codec="aac",
            resolution="original", crf=23, preset="medium",
        ),
    ),
    PresetDefinition(
        id="archive-hq",
        name="Archive H.265",
        built_in=True,
        config=ConversionConfig(
            container="mkv", video_codec="libx265", audio_codec="ac3",
            resolution="original", crf=18, preset="slow",
        ),
    ),
    PresetDefinition(
        id="web-share",
        name="Web Share",
        built_in=True,
        config=ConversionConfig(
            container="webm", video_codec="vp9", audio_codec="libopus",
            resolution="720p", crf=30, preset="medium",
        ),
    ),
    PresetDefinition(
        id="audio-only",
        name="Audio Only",
        built_in=True,
        config=ConversionConfig(
            container="mp3", video_codec="libx264", audio_codec="mp3",
            resolution="original", crf=23, preset="medium",
        ),
    ),
]


def get_preset(preset_id: str) -> Optional[PresetDefinition]:
    for preset in DEFAULT_PRESETS:
        if preset.id == preset_id:
            return preset
    return None


def default_config() -> ConversionConfig:
    """A fresh copy of the first built-in preset's config."""
    return DEFAULT_PRESETS[0].config.model_copy(deep=True)
