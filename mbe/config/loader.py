import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Crop may be written as a [x, y, width, height] list
    conversion = data.get("conversion")
    if isinstance(conversion, dict) and isinstance(conversion.get("crop"), (list, tuple)):
        x, y, width, height = conversion["crop"]
        conversion["crop"] = {"x": x, "y": y, "width": width, "height": height}

    return AppConfig(**data)
