"""
Speech-to-text using Google Cloud Speech, with speaker diarization.
"""
import logging
from typing import Any, Dict, List

from google.cloud import speech

from ...config import LANGUAGE_CODE, SAMPLE_RATE_TARGET
from ...interview.models import MediaBlob
from ..media.processing import to_linear16

logger = logging.getLogger("speech_stt")

# Synchronous recognize() only accepts about a minute of audio
SYNC_LIMIT_SECONDS = 55.0
LONG_RUNNING_TIMEOUT_S = 300
WEBM_SAMPLE_RATE = 48000


class GoogleSpeechTranscriber:
    """Transcribes recorded answers. Raw PCM is resampled to 16 kHz LINEAR16 first."""

    def __init__(self, language_code: str = LANGUAGE_CODE, enable_diarization: bool = True,
                 max_speakers: int = 2, client=None):
        self.language_code = language_code
        self.enable_diarization = enable_diarization
        self.max_speakers = max_speakers
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def _config(self, encoding, sample_rate: int) -> speech.RecognitionConfig:
        kwargs: Dict[str, Any] = dict(
            encoding=encoding,
            sample_rate_hertz=sample_rate,
            language_code=self.language_code,
            enable_automatic_punctuation=True,
            enable_word_time_offsets=self.enable_diarization,
        )
        if self.enable_diarization:
            kwargs["diarization_config"] = speech.SpeakerDiarizationConfig(
                enable_speaker_diarization=True,
                min_speaker_count=1,
                max_speaker_count=self.max_speakers,
            )
        return speech.RecognitionConfig(**kwargs)

    def transcribe(self, blob: MediaBlob, session_id: str) -> Dict[str, Any]:
        """
        Returns:
            ``{"transcript": str, "speakerSegments": [...]}``; an empty
            transcript means no speech was detected.
        """
        if blob.is_raw_pcm:
            content = to_linear16(blob, SAMPLE_RATE_TARGET)
            config = self._config(speech.RecognitionConfig.AudioEncoding.LINEAR16, SAMPLE_RATE_TARGET)
            duration_s = len(content) / (2.0 * SAMPLE_RATE_TARGET)
        else:
            content = blob.data
            config = self._config(speech.RecognitionConfig.AudioEncoding.WEBM_OPUS, WEBM_SAMPLE_RATE)
            duration_s = None

        audio = speech.RecognitionAudio(content=content)
        logger.info("Transcribing %d bytes for session %s", len(content), session_id)

        if duration_s is not None and duration_s > SYNC_LIMIT_SECONDS:
            operation = self.client.long_running_recognize(config=config, audio=audio)
            resp = operation.result(timeout=LONG_RUNNING_TIMEOUT_S)
        else:
            resp = self.client.recognize(config=config, audio=audio)

        texts = [r.alternatives[0].transcript for r in resp.results if r.alternatives]
        transcript = " ".join(t.strip() for t in texts if t.strip()).strip()
        segments = self._speaker_segments(resp) if self.enable_diarization else []
        logger.info("Speech recognition result: %s", transcript or "(empty)")
        return {"transcript": transcript, "speakerSegments": segments}

    @staticmethod
    def _speaker_segments(resp) -> List[Dict[str, Any]]:
        """Group consecutive words by speaker tag. Diarized words live in the last result."""
        if not resp.results or not resp.results[-1].alternatives:
            return []
        words = resp.results[-1].alternatives[0].words
        segments: List[Dict[str, Any]] = []
        for word in words:
            speaker = str(word.speaker_tag)
            start = word.start_time.total_seconds()
            end = word.end_time.total_seconds()
            if segments and segments[-1]["speaker"] == speaker:
                segments[-1]["text"] += " " + word.word
                segments[-1]["endTime"] = end
            else:
                segments.append({"speaker": speaker, "text": word.word, "startTime": start, "endTime": end})
        return segments
