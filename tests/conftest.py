import asyncio
import pytest
import yaml
from unittest.mock import AsyncMock
from mbe.config.models import AppConfig
from mbe.domain.models import ConversionConfig, SourceMetadata
from mbe.infrastructure.event_bus import EventBus
from mbe.pipeline.orchestrator import JobOrchestrator

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "pipeline": "conversion",
            "debug": False,
        },
        conversion={
            "container": "mp4",
            "video_codec": "libx264",
            "audio_codec": "aac",
            "video_bitrate_mode": "crf",
            "crf": 23,
            "resolution": "original",
        },
        spatial={
            "encoder_size": "b",
            "max_disparity": 24,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "mbe.yaml"

    content = {
        'general': {
            'pipeline': 'spatial',
            'debug': True,
        },
        'conversion': {
            'container': 'mkv',
            'video_codec': 'libx265',
            'crf': 28,
            'rotation': 90,
            'crop': [0.1, 0.1, 0.5, 0.5],
        },
        'spatial': {
            'encoder_size': 'l',
            'max_disparity': 40,
            'use_hardware_acceleration': False,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

@pytest.fixture
def hd_metadata():
    """Typical source metadata for a 1080p H.264 clip."""
    return SourceMetadata(
        duration="00:01:00.00",
        bitrate="8000000",
        resolution="1920x1080",
        video_codec="h264",
        audio_codec="aac",
        width=1920,
        height=1080,
    )

# ============================================================================
# EventBus / Orchestrator Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def mock_backend():
    """Backend whose submit/cancel succeed unless a test overrides side_effect."""
    backend = AsyncMock()
    backend.submit.return_value = None
    backend.cancel.return_value = None
    return backend

@pytest.fixture
def orchestrator(mock_backend, event_bus):
    return JobOrchestrator(
        backend=mock_backend,
        event_bus=event_bus,
        conversion_config=ConversionConfig(),
    )

@pytest.fixture
def run():
    """Runs a coroutine to completion on a fresh event loop."""
    return asyncio.run


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
