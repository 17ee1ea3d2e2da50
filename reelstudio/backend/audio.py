"""WAV container synthesis for raw PCM speech output."""

import base64
import io
import wave

SAMPLE_RATE = 24000
CHANNELS = 1
SAMPLE_WIDTH = 2  # 16-bit


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    sample_width: int = SAMPLE_WIDTH
) -> bytes:
    """Wrap raw little-endian PCM samples in a RIFF/WAVE header.

    Args:
        pcm: Raw sample bytes
        sample_rate: Samples per second
        channels: Channel count
        sample_width: Bytes per sample

    Returns:
        Complete WAV file bytes
    """
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def wav_data_url(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> str:
    """``data:audio/wav;base64,...`` URL for raw PCM speech."""
    encoded = base64.b64encode(pcm_to_wav(pcm, sample_rate=sample_rate)).decode("ascii")
    return f"data:audio/wav;base64,{encoded}"
