"""Media devices and recorded-audio processing."""

from .devices import PyAudioMediaDevices, pcm_mime_type
from .processing import to_linear16, wav_bytes

__all__ = ["PyAudioMediaDevices", "pcm_mime_type", "to_linear16", "wav_bytes"]
