"""
State machines and wire-format adapters for the session engine.

Every collaborator reply passes through exactly one adapter in this module
before the rest of the engine sees it, so shape tolerance stays in one place.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import AnalysisSegmentResult, SpeakerSegment, TranscriptionResult

logger = logging.getLogger("schemas")


class RecordingState(str, Enum):
    """Lifecycle of the single session recording."""
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZED = "finalized"


class TurnState(str, Enum):
    """Turn-taking protocol states."""
    NOT_STARTED = "not_started"
    AWAITING_QUESTION = "awaiting_question"
    INTERVIEWER_SPEAKING = "interviewer_speaking"
    AWAITING_ANSWER = "awaiting_answer"
    CANDIDATE_ANSWERING = "candidate_answering"
    TRANSCRIBING = "transcribing"
    ENDED = "ended"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.ENDED, TurnState.FAILED)


class PollingState(str, Enum):
    """Analysis polling lifecycle."""
    IDLE = "idle"
    POLLING = "polling"
    SATISFIED = "satisfied"
    FORCED_COMPLETE = "forced_complete"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (PollingState.SATISFIED, PollingState.FORCED_COMPLETE, PollingState.TIMED_OUT)

    @property
    def has_results(self) -> bool:
        return self in (PollingState.SATISFIED, PollingState.FORCED_COMPLETE)


# =============================================================================
# Question generator replies
# =============================================================================

class QuestionReply(BaseModel):
    """Reply from the AI question generator."""
    question: str

    @field_validator("question")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip().strip('"').strip()
        if not value:
            raise ValueError("question is empty")
        return value


def parse_question_reply(raw: Any) -> str:
    """
    Extract the question text from a generator reply.

    Accepts a mapping with a ``question`` key or a JSON string encoding one.

    Raises:
        ValueError: If the reply is malformed or the question is empty
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValueError(f"Question reply is not JSON: {raw!r}")

    if not isinstance(raw, dict):
        raise ValueError(f"Question reply must be an object, got {type(raw).__name__}")

    try:
        return QuestionReply.model_validate(raw).question
    except ValidationError as e:
        raise ValueError(f"Invalid question reply: {e}")


# =============================================================================
# Speech transcription replies
# =============================================================================

class _SegmentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    speaker: str = "0"
    text: str = ""
    start_time: float = Field(default=0.0, alias="startTime")
    end_time: float = Field(default=0.0, alias="endTime")

    @field_validator("speaker", mode="before")
    @classmethod
    def _speaker_as_str(cls, value: Any) -> str:
        return str(value)


class TranscriptionPayload(BaseModel):
    """Speech service reply: either a flat transcript or a list of pieces."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transcript: Optional[str] = None
    transcripts: List[Dict[str, Any]] = Field(default_factory=list)
    speaker_segments: List[_SegmentPayload] = Field(default_factory=list, alias="speakerSegments")


def normalize_transcription(payload: Any) -> TranscriptionResult:
    """Convert any supported transcription reply into a TranscriptionResult."""
    if isinstance(payload, TranscriptionResult):
        return payload
    if payload is None:
        return TranscriptionResult()
    if isinstance(payload, str):
        return TranscriptionResult(transcript=payload.strip())

    try:
        parsed = TranscriptionPayload.model_validate(payload)
    except ValidationError as e:
        logger.warning("Unrecognized transcription payload: %s", e)
        return TranscriptionResult()

    if parsed.transcripts:
        pieces = [str(t.get("text") or t.get("transcript") or "") for t in parsed.transcripts]
        text = " ".join(p for p in pieces if p).strip()
    else:
        text = (parsed.transcript or "").strip()

    segments = [
        SpeakerSegment(speaker=s.speaker, text=s.text, start_time=s.start_time, end_time=s.end_time)
        for s in parsed.speaker_segments
    ]
    return TranscriptionResult(transcript=text, segments=segments)


# =============================================================================
# Analysis result records
# =============================================================================

class AnalysisRecordPayload(BaseModel):
    """One row as returned by the results store."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    segment_index: int = Field(default=0, alias="segmentIndex")
    results: Optional[Any] = None
    analysis_data: Optional[Any] = Field(default=None, alias="analysisData")
    annotation_results: List[Any] = Field(default_factory=list, alias="annotationResults")

    @field_validator("segment_index", mode="before")
    @classmethod
    def _default_index(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("annotation_results", mode="before")
    @classmethod
    def _default_annotations(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return None if value is None else str(value)

    def result_payload(self) -> Dict[str, Any]:
        """The analysis body, from ``results`` or the legacy ``analysisData`` field."""
        for candidate in (self.results, self.analysis_data):
            if isinstance(candidate, str):
                try:
                    candidate = json.loads(candidate)
                except json.JSONDecodeError:
                    continue
            if isinstance(candidate, dict) and candidate:
                # Old rows nest the body one level deeper under "results"
                inner = candidate.get("results")
                if isinstance(inner, dict) and inner and len(candidate) == 1:
                    return inner
                return candidate
        return {}


def normalize_segment_record(raw: Any, session_id: str) -> Optional[AnalysisSegmentResult]:
    """
    Convert one results-store row into an AnalysisSegmentResult.

    Returns None for entries that are not objects or fail validation.
    Rows with an empty result body are returned with ``results == {}`` so
    the poller can count them as received but not yet usable.
    """
    if isinstance(raw, AnalysisSegmentResult):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        record = AnalysisRecordPayload.model_validate(raw)
    except ValidationError as e:
        logger.warning("Discarding malformed analysis record: %s", e)
        return None

    return AnalysisSegmentResult(
        session_id=record.session_id or session_id,
        segment_index=record.segment_index,
        results=record.result_payload(),
        record_id=record.id,
        annotation_results=list(record.annotation_results),
    )
