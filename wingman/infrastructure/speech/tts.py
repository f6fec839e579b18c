"""
Text-to-speech using Google Cloud TTS, played through a system audio player.
"""
import logging
import os
import subprocess
import tempfile

from google.cloud import texttospeech

from ...config import LANGUAGE_CODE, TTS_VOICE

logger = logging.getLogger("speech_tts")

TTS_SAMPLE_RATE = 16000


class GoogleSpeechSynthesizer:
    """Synthesizes interviewer lines as LINEAR16 WAV bytes."""

    def __init__(self, voice: str = TTS_VOICE, language_code: str = LANGUAGE_CODE, client=None):
        self.voice = voice
        self.language_code = language_code
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = texttospeech.TextToSpeechClient()
        return self._client

    def synthesize(self, text: str) -> bytes:
        if not text.strip():
            return b""
        response = self.client.synthesize_speech(
            input=texttospeech.SynthesisInput(text=text),
            voice=texttospeech.VoiceSelectionParams(language_code=self.language_code, name=self.voice),
            audio_config=texttospeech.AudioConfig(
                audio_encoding=texttospeech.AudioEncoding.LINEAR16,
                sample_rate_hertz=TTS_SAMPLE_RATE,
            ),
        )
        logger.debug("Synthesized %d bytes for %d characters", len(response.audio_content), len(text))
        return response.audio_content


class SubprocessAudioPlayer:
    """Plays WAV bytes with afplay (macOS) or aplay (Linux)."""

    PLAYERS = (["afplay"], ["aplay", "-q"])

    def play(self, audio: bytes) -> None:
        """
        Raises:
            RuntimeError: No working player was found
        """
        if not audio:
            return
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp_file:
            wav_path = tmp_file.name
            tmp_file.write(audio)
        try:
            for player in self.PLAYERS:
                try:
                    subprocess.run(player + [wav_path], check=True, capture_output=True)
                    return
                except FileNotFoundError:
                    continue
                except subprocess.CalledProcessError as e:
                    logger.warning("%s failed: %s", player[0], e)
                    continue
            raise RuntimeError("No audio player available (tried afplay, aplay)")
        finally:
            try:
                os.unlink(wav_path)
            except OSError:
                pass
