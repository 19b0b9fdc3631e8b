from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

from mbe.domain.models import ConversionConfig, Pipeline, SpatialConfig


class GeneralConfig(BaseModel):
    pipeline: Pipeline = Pipeline.CONVERSION
    output_dir: Path = Field(default=Path("mbe_logs"))
    log_path: Optional[Path] = None
    debug: bool = False


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    spatial: SpatialConfig = Field(default_factory=SpatialConfig)
