import pytest

from mbe.domain.estimate import (
    BPS_THRESHOLD,
    audio_bitrate_for_codec,
    base_video_bitrate,
    codec_scale_factor,
    estimate_output,
    format_file_size,
    parse_duration_to_seconds,
    parse_resolution,
    parse_source_bitrate_kbps,
)
from mbe.domain.models import ConversionConfig, SourceMetadata


def test_crf_six_points_lower_doubles_video_bitrate(hd_metadata):
    base = estimate_output(ConversionConfig(crf=23), hd_metadata)
    better = estimate_output(ConversionConfig(crf=17), hd_metadata)
    assert abs(better.video_kbps - 2 * base.video_kbps) <= 1


def test_crf_doubling_without_source_bitrate():
    metadata = SourceMetadata(resolution="1920x1080")
    base = estimate_output(ConversionConfig(crf=23), metadata)
    better = estimate_output(ConversionConfig(crf=17), metadata)
    assert base.video_kbps == 8000
    assert better.video_kbps == 16000


@pytest.mark.parametrize("raw", ["2000000", "2000", "2000 kb/s", "2,000,000"])
def test_source_bitrate_unit_heuristic(raw):
    assert parse_source_bitrate_kbps(SourceMetadata(bitrate=raw)) == pytest.approx(2000)


def test_source_bitrate_threshold_boundary():
    assert parse_source_bitrate_kbps(SourceMetadata(bitrate=str(BPS_THRESHOLD))) == BPS_THRESHOLD
    assert parse_source_bitrate_kbps(SourceMetadata(bitrate=str(BPS_THRESHOLD + 1000))) == pytest.approx(101)


@pytest.mark.parametrize("raw", [None, "", "N/A", "0", "1.2.3"])
def test_source_bitrate_unparseable(raw):
    assert parse_source_bitrate_kbps(SourceMetadata(bitrate=raw)) is None


def test_source_bitrate_used_when_downscaling(hd_metadata):
    result = estimate_output(ConversionConfig(resolution="720p"), hd_metadata)
    expected = 8000 * (720 / 1080) ** 1.75
    assert result.video_kbps == round(expected)


def test_same_resolution_keeps_source_bitrate(hd_metadata):
    assert estimate_output(ConversionConfig(), hd_metadata).video_kbps == 8000


def test_base_table_with_codec_scale():
    metadata = SourceMetadata(resolution="3840x2160")
    result = estimate_output(ConversionConfig(video_codec="libx265"), metadata)
    assert result.video_kbps == round(25000 * 0.65)


@pytest.mark.parametrize(
    "height,kbps",
    [(2160, 25000), (1600, 16000), (1080, 8000), (900, 5000), (576, 2500), (360, 1500), (240, 1500)],
)
def test_base_video_bitrate_nearest_lower(height, kbps):
    assert base_video_bitrate(height) == kbps


def test_codec_scale_factor_unknown_is_neutral():
    assert codec_scale_factor("VP9") == 0.7
    assert codec_scale_factor("prores") == 1.6
    assert codec_scale_factor("mystery") == 1.0
    assert codec_scale_factor(None) == 1.0


def test_target_height_falls_back_to_default_without_metadata():
    assert estimate_output(ConversionConfig()).video_kbps == 8000


def test_custom_resolution_height():
    config = ConversionConfig(resolution="custom", custom_height="720")
    assert estimate_output(config).video_kbps == 5000


def test_video_floor_applies():
    metadata = SourceMetadata(resolution="640x360", bitrate="300")
    result = estimate_output(ConversionConfig(crf=40), metadata)
    assert result.video_kbps == 400


def test_explicit_bitrate_mode():
    config = ConversionConfig(video_bitrate_mode="bitrate", video_bitrate="3500k")
    assert estimate_output(config).video_kbps == 3500


def test_explicit_bitrate_unparseable_is_zero():
    config = ConversionConfig(video_bitrate_mode="bitrate", video_bitrate="fast")
    result = estimate_output(config)
    assert result.video_kbps == 0
    assert result.total_kbps == 128


@pytest.mark.parametrize("container", ["mp3", "M4A", "flac"])
def test_audio_only_container_has_no_video(container, hd_metadata):
    result = estimate_output(ConversionConfig(container=container), hd_metadata)
    assert result.video_kbps == 0
    assert result.total_kbps == result.audio_kbps


def test_audio_bitrate_explicit_and_defaults():
    assert estimate_output(ConversionConfig(audio_bitrate="192k")).audio_kbps == 192
    config = ConversionConfig(audio_codec="ac3", audio_bitrate="")
    assert estimate_output(config).audio_kbps == 192
    assert audio_bitrate_for_codec("libopus") == 96
    assert audio_bitrate_for_codec("pcm_s16le") == 128


def test_size_from_duration(hd_metadata):
    result = estimate_output(ConversionConfig(), hd_metadata)
    assert result.total_kbps == 8128
    assert result.size_mb == pytest.approx(8128 * 60 / 8 / 1024)


def test_size_floor_and_unknown_duration():
    short = SourceMetadata(resolution="1280x720", duration="0.5")
    assert estimate_output(ConversionConfig(), short).size_mb == 1.0
    assert estimate_output(ConversionConfig(), SourceMetadata(duration="unknown")).size_mb is None
    assert estimate_output(ConversionConfig()).size_mb is None


@pytest.mark.parametrize(
    "raw,seconds",
    [("01:02:03.50", 3723.5), ("Duration: 00:00:10.25, start", 10.25), ("42.5", 42.5), ("", None), ("abc", None)],
)
def test_parse_duration(raw, seconds):
    assert parse_duration_to_seconds(raw) == seconds


def test_parse_resolution():
    assert parse_resolution("1920x1080") == (1920, 1080)
    assert parse_resolution("1280 X 720") == (1280, 720)
    assert parse_resolution("0x1080") is None
    assert parse_resolution("hd") is None


def test_estimate_is_deterministic(hd_metadata):
    config = ConversionConfig(crf=20, resolution="480p")
    assert estimate_output(config, hd_metadata) == estimate_output(config, hd_metadata)


def test_format_file_size():
    assert format_file_size(None) == "—"
    assert format_file_size(12.345) == "12.3 MB"
    assert format_file_size(2048) == "2.0 GB"


def test_negative_explicit_bitrates_are_clamped():
    config = ConversionConfig(video_bitrate_mode="bitrate", video_bitrate="-500", audio_bitrate="-64")
    result = estimate_output(config)
    assert result.video_kbps == 0
    assert result.audio_kbps == 128
    assert result.total_kbps == 128
