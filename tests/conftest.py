"""Shared fixtures for murmullo tests."""

from murmullo.types import ConfigSnapshot


def make_snapshot(**overrides) -> ConfigSnapshot:
    """A snapshot with short timeouts, suitable for driving the pipeline in tests."""
    values = dict(
        language="es",
        transcription_model="whisper-1",
        openai_api_key="sk-test-openai",
        processing_mode="smart",
        reasoning_provider="anthropic",
        anthropic_model="claude-3-haiku-20240307",
        openai_model="gpt-4o-mini",
        anthropic_api_key="sk-ant-test",
        ffmpeg_path="",
        device_timeout=1.0,
        repair_timeout=1.0,
        request_timeout=1.0,
        paste_timeout=1.0,
        max_attempts=3,
        success_dwell=0.05,
        failure_dwell=0.05,
    )
    values.update(overrides)
    return ConfigSnapshot(**values)


WEBM_HEADER = b"\x1a\x45\xdf\xa3"


def webm_bytes(size: int = 50000) -> bytes:
    return WEBM_HEADER + b"\x00" * (size - len(WEBM_HEADER))


def wav_header_bytes(size: int = 4000) -> bytes:
    return b"RIFF" + (size - 8).to_bytes(4, "little") + b"WAVE" + b"\x00" * (size - 12)
