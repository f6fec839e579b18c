"""Speech-to-text and text-to-speech services."""

from .stt import GoogleSpeechTranscriber
from .tts import GoogleSpeechSynthesizer, SubprocessAudioPlayer

__all__ = ["GoogleSpeechTranscriber", "GoogleSpeechSynthesizer", "SubprocessAudioPlayer"]
