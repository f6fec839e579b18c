"""
Audio processing for recorded media: format conversions and normalization.
"""
import io
import logging
import wave
from math import gcd

import numpy as np
from scipy.signal import resample_poly

from ...config import SAMPLE_RATE_TARGET, TARGET_RMS
from ...interview.models import MediaBlob

logger = logging.getLogger("media_processing")


def pcm16_to_float(data: bytes, channels: int = 1) -> np.ndarray:
    """Decode interleaved little-endian PCM16 into float32 samples in [-1, 1]."""
    samples = np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        usable = len(samples) - (len(samples) % channels)
        samples = samples[:usable].reshape(-1, channels)
    return samples


def stereo_to_mono(x: np.ndarray) -> np.ndarray:
    """Convert multichannel audio to mono by averaging channels."""
    if x.ndim == 1:
        return x
    return np.mean(x, axis=1)


def remove_dc(x: np.ndarray) -> np.ndarray:
    """Remove DC offset from audio signal."""
    if x.size == 0:
        return x
    return x - np.mean(x)


def resample(mono: np.ndarray, sr_in: int, sr_out: int = SAMPLE_RATE_TARGET) -> np.ndarray:
    """Polyphase resample between arbitrary integer rates."""
    if sr_in == sr_out or mono.size == 0:
        return mono.astype(np.float32)
    g = gcd(sr_in, sr_out)
    return resample_poly(mono, up=sr_out // g, down=sr_in // g).astype(np.float32)


def normalize_audio(audio: np.ndarray, target_rms: float = TARGET_RMS) -> np.ndarray:
    """Normalize audio to target RMS level."""
    if audio.size == 0:
        return audio
    rms = float(np.sqrt(np.mean(audio**2)) + 1e-9)
    gain = min(20.0, target_rms / rms) if rms > 0 else 1.0
    return audio * gain


def float_to_pcm16(audio: np.ndarray) -> bytes:
    return np.clip(audio * 32767, -32768, 32767).astype(np.int16).tobytes()


def to_linear16(blob: MediaBlob, sr_target: int = SAMPLE_RATE_TARGET) -> bytes:
    """
    Convert a raw PCM blob into 16 kHz mono LINEAR16 for speech recognition.

    Raises:
        ValueError: If the blob is not raw PCM or carries no sample rate
    """
    if not blob.is_raw_pcm or not blob.sample_rate:
        raise ValueError(f"Cannot convert {blob.mime_type} to LINEAR16")

    samples = pcm16_to_float(blob.data, blob.channels)
    mono = remove_dc(stereo_to_mono(samples))
    mono = resample(mono, blob.sample_rate, sr_target)
    mono = normalize_audio(mono)
    logger.debug("Converted %d bytes at %d Hz to %d Hz mono", blob.size, blob.sample_rate, sr_target)
    return float_to_pcm16(mono)


def wav_bytes(pcm16: bytes, sr: int, channels: int = 1) -> bytes:
    """Wrap PCM16 data in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sr)
        wf.writeframes(pcm16)
    return buf.getvalue()
