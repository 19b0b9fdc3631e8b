import re
from enum import Enum
from pathlib import PurePath
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from mbe.domain.crop import CropRect, ROTATIONS, full_frame

AUDIO_ONLY_CONTAINERS = ("mp3", "m4a", "wav", "flac")


class FileStatus(str, Enum):
    IDLE = "IDLE"
    SELECTED = "SELECTED"
    QUEUED = "QUEUED"
    CONVERTING = "CONVERTING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class Pipeline(str, Enum):
    CONVERSION = "conversion"
    SPATIAL = "spatial"


def derive_output_name(file_name: str) -> str:
    """Default output base name: the source name without its extension, plus ``_converted``."""
    base = re.sub(r"\.[^/.]+$", "", file_name)
    return f"{base}_converted" if base else "output_converted"


def _validate_rotation(value: int) -> int:
    if value not in ROTATIONS:
        raise ValueError(f"Invalid rotation angle {value}. Must be 0, 90, 180, or 270.")
    return value


class SourceMetadata(BaseModel):
    """Probe results supplied from outside; the core only reads them."""
    duration: Optional[str] = None
    bitrate: Optional[str] = None
    resolution: Optional[str] = None  # "WxH"
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None


class ConversionConfig(BaseModel):
    container: str = "mp4"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    video_bitrate_mode: Literal["crf", "bitrate"] = "crf"
    crf: int = Field(default=23, ge=0, le=51)
    video_bitrate: str = "5000"
    audio_bitrate: str = "128"
    resolution: str = "original"
    custom_height: Optional[str] = None
    preset: str = "medium"

    # Edit defaults; an item's own edits take precedence at submission
    rotation: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False
    crop: Optional[CropRect] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    output_name: Optional[str] = None

    @field_validator("rotation")
    @classmethod
    def validate_rotation(cls, v: int) -> int:
        return _validate_rotation(v)

    @property
    def is_audio_only(self) -> bool:
        return self.container.lower() in AUDIO_ONLY_CONTAINERS


class SpatialConfig(BaseModel):
    encoder_size: Literal["s", "b", "l"] = "s"
    max_disparity: int = Field(default=30, ge=0)
    target_depth_size: int = Field(default=518, gt=0)
    use_hardware_acceleration: bool = True  # best effort


class MediaItem(BaseModel):
    id: str
    path: str
    name: str = ""
    status: FileStatus = FileStatus.IDLE
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    error: Optional[str] = None
    selected: bool = False
    crop_rect: CropRect = Field(default_factory=full_frame)
    rotation: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False
    trim_start: Optional[str] = None
    trim_end: Optional[str] = None
    output_name: str = ""
    aspect_ratio: Optional[str] = None
    metadata: Optional[SourceMetadata] = None
    # Per-item encoding settings (preset or item-level update); None follows the shared config
    config: Optional[ConversionConfig] = None

    @field_validator("rotation")
    @classmethod
    def validate_rotation(cls, v: int) -> int:
        return _validate_rotation(v)

    @model_validator(mode="after")
    def default_name(self):
        if not self.name:
            self.name = PurePath(self.path).name or self.path
        if not self.output_name:
            self.output_name = derive_output_name(self.name)
        return self
