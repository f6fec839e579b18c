"""
Merge per-segment video analyses into one report.

aggregate() is a pure fold: each valid segment is turned into an immutable
partial, partials are combined pairwise, and the result is finalized once.
Segments are folded in ascending segmentIndex order so the transcript reads
in recording order and repeated runs over the same set give identical output.
"""
import logging
import math
from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .errors import AggregationError
from .models import AnalysisSegmentResult
from .schemas import normalize_segment_record

logger = logging.getLogger("aggregation")

EMOTIONS = ("joy", "sorrow", "anger", "surprise")

GRADE_THRESHOLDS = (
    (0.9, "A"),
    (0.8, "B"),
    (0.7, "C"),
    (0.6, "D"),
)


# =============================================================================
# Aggregate value
# =============================================================================

@dataclass(frozen=True)
class EmotionStats:
    average: float = 0.0
    max: float = 0.0
    min: float = 0.0
    std: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"average": self.average, "max": self.max, "min": self.min, "std": self.std}


@dataclass(frozen=True)
class SpeechSummary:
    transcript: str = ""
    total_words: int = 0
    words_per_minute: float = 0.0
    clarity_score: float = 0.0
    filler_count: int = 0
    filler_percentage: float = 0.0
    filler_details: Tuple[Any, ...] = ()
    wpm_timeline: Tuple[Any, ...] = ()
    utterances: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transcript": self.transcript,
            "total_words": self.total_words,
            "words_per_minute": self.words_per_minute,
            "clarity_score": self.clarity_score,
            "filler_words": {
                "count": self.filler_count,
                "percentage": self.filler_percentage,
                "details": list(self.filler_details),
            },
            "pacing_analysis": {"wpm_timeline": list(self.wpm_timeline)},
            "utterances": list(self.utterances),
        }


@dataclass(frozen=True)
class FacialSummary:
    emotion_statistics: Dict[str, EmotionStats] = field(
        default_factory=lambda: {name: EmotionStats() for name in EMOTIONS}
    )
    emotion_timeline: Tuple[Any, ...] = ()
    total_frames_analyzed: int = 0
    average_detection_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emotion_timeline": list(self.emotion_timeline),
            "emotion_statistics": {k: v.to_dict() for k, v in self.emotion_statistics.items()},
            "total_frames_analyzed": self.total_frames_analyzed,
            "average_detection_confidence": self.average_detection_confidence,
        }


@dataclass(frozen=True)
class ConfidenceSummary:
    average_eye_contact_score: float = 0.0
    eye_contact_consistency: float = 0.0
    head_stability_score: float = 0.0
    confidence_score: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "average_eye_contact_score": self.average_eye_contact_score,
            "eye_contact_consistency": self.eye_contact_consistency,
            "head_stability_score": self.head_stability_score,
            "confidence_score": self.confidence_score,
        }


@dataclass(frozen=True)
class OverallScore:
    overall_score: float = 0.0
    grade: str = ""
    component_scores: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "grade": self.grade,
            "component_scores": dict(self.component_scores),
        }


@dataclass(frozen=True)
class AggregatedAnalysis:
    """Merged analysis over every usable segment of one session."""
    speech_analysis: SpeechSummary = field(default_factory=SpeechSummary)
    facial_analysis: FacialSummary = field(default_factory=FacialSummary)
    confidence_analysis: ConfidenceSummary = field(default_factory=ConfidenceSummary)
    overall_score: OverallScore = field(default_factory=OverallScore)
    annotation_results: Tuple[Any, ...] = ()
    duration_sec: float = 0.0
    segment_indices: Tuple[int, ...] = ()
    skipped_segments: int = 0

    @property
    def segment_count(self) -> int:
        return len(self.segment_indices)

    @property
    def is_empty(self) -> bool:
        return self.segment_count == 0

    def to_dict(self) -> Dict[str, Any]:
        """The ``videoAnalysis`` object stored with the session feedback."""
        return {
            "speech_analysis": self.speech_analysis.to_dict(),
            "facial_analysis": self.facial_analysis.to_dict(),
            "confidence_analysis": self.confidence_analysis.to_dict(),
            "overall_score": self.overall_score.to_dict(),
            "annotationResults": list(self.annotation_results),
            "durationSec": self.duration_sec,
        }


def letter_grade(score: float) -> str:
    """Map a 0-1 score to a letter grade."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


# =============================================================================
# Per-segment partials
# =============================================================================

@dataclass(frozen=True)
class _EmotionPartial:
    average_sum: float = 0.0
    max: Optional[float] = None
    min: Optional[float] = None
    # (frame weight, mean, std) per reporting segment, for the pooled std
    moments: Tuple[Tuple[float, float, float], ...] = ()


@dataclass(frozen=True)
class _Partial:
    indices: Tuple[int, ...] = ()
    transcripts: Tuple[str, ...] = ()
    total_words: int = 0
    wpm_sum: float = 0.0
    clarity_sum: float = 0.0
    filler_count: int = 0
    filler_details: Tuple[Any, ...] = ()
    wpm_timeline: Tuple[Any, ...] = ()
    utterances: Tuple[Any, ...] = ()
    frames: int = 0
    detection_confidence_sum: float = 0.0
    emotion_timeline: Tuple[Any, ...] = ()
    emotions: Tuple[Tuple[str, _EmotionPartial], ...] = ()
    eye_contact_sum: float = 0.0
    consistency_sum: float = 0.0
    head_stability_sum: float = 0.0
    confidence_sum: float = 0.0
    speech_segments: int = 0
    facial_segments: int = 0
    confidence_segments: int = 0
    segment_overall: Tuple[float, ...] = ()
    annotations: Tuple[Any, ...] = ()
    duration: float = 0.0


def _num(value: Any) -> float:
    """Numeric field value; missing and null count as zero."""
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AggregationError(f"expected a number, got {value!r}")
    if math.isnan(value) or math.isinf(value):
        raise AggregationError(f"non-finite value {value!r}")
    return float(value)


def _section(analysis: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = analysis.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise AggregationError(f"{key} must be an object, got {type(value).__name__}")
    return value


def _items(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise AggregationError(f"expected a list, got {type(value).__name__}")
    return tuple(value)


def _emotion_partial(stats: Dict[str, Any], frames: int) -> _EmotionPartial:
    average = _num(stats.get("average"))
    high = _num(stats["max"]) if stats.get("max") is not None else average
    low = _num(stats["min"]) if stats.get("min") is not None else average
    std = _num(stats.get("std"))
    weight = float(frames) if frames > 0 else 1.0
    return _EmotionPartial(average_sum=average, max=high, min=low, moments=((weight, average, std),))


def _segment_partial(segment: AnalysisSegmentResult) -> _Partial:
    """Extract one segment's contribution. Raises AggregationError on bad data."""
    analysis = segment.results
    fields: Dict[str, Any] = {
        "indices": (segment.segment_index,),
        "duration": _num(analysis.get("durationSec")),
        "annotations": tuple(segment.annotation_results),
    }

    speech = _section(analysis, "speech_analysis")
    if speech is not None:
        fillers = speech.get("filler_words") or {}
        pacing = speech.get("pacing_analysis") or {}
        if not isinstance(fillers, dict) or not isinstance(pacing, dict):
            raise AggregationError("malformed filler_words or pacing_analysis")
        transcript = speech.get("transcript") or ""
        if not isinstance(transcript, str):
            raise AggregationError("transcript must be a string")
        fields.update(
            transcripts=(transcript.strip(),) if transcript.strip() else (),
            total_words=int(_num(speech.get("total_words"))),
            wpm_sum=_num(speech.get("words_per_minute")),
            clarity_sum=_num(speech.get("clarity_score")),
            filler_count=int(_num(fillers.get("count"))),
            filler_details=_items(fillers.get("details")),
            wpm_timeline=_items(pacing.get("wpm_timeline")),
            utterances=_items(speech.get("utterances")),
            speech_segments=1,
        )

    facial = _section(analysis, "facial_analysis")
    if facial is not None:
        frames = int(_num(facial.get("total_frames_analyzed")))
        statistics = facial.get("emotion_statistics") or {}
        if not isinstance(statistics, dict):
            raise AggregationError("emotion_statistics must be an object")
        emotions = []
        for name in EMOTIONS:
            stats = statistics.get(name)
            if isinstance(stats, dict):
                emotions.append((name, _emotion_partial(stats, frames)))
        fields.update(
            frames=frames,
            detection_confidence_sum=_num(facial.get("average_detection_confidence")),
            emotion_timeline=_items(facial.get("emotion_timeline")),
            emotions=tuple(emotions),
            facial_segments=1,
        )

    confidence = _section(analysis, "confidence_analysis")
    if confidence is not None:
        fields.update(
            eye_contact_sum=_num(confidence.get("average_eye_contact_score")),
            consistency_sum=_num(confidence.get("eye_contact_consistency")),
            head_stability_sum=_num(confidence.get("head_stability_score")),
            confidence_sum=_num(confidence.get("confidence_score")),
            confidence_segments=1,
        )

    overall = analysis.get("overall_score")
    if isinstance(overall, dict) and overall.get("overall_score") is not None:
        fields["segment_overall"] = (_num(overall.get("overall_score")),)

    return _Partial(**fields)


def _merge_extreme(a: Optional[float], b: Optional[float], pick) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return pick(a, b)


def _combine_emotions(a: Tuple[Tuple[str, _EmotionPartial], ...],
                      b: Tuple[Tuple[str, _EmotionPartial], ...]) -> Tuple[Tuple[str, _EmotionPartial], ...]:
    left, right = dict(a), dict(b)
    combined = []
    for name in EMOTIONS:
        if name not in left and name not in right:
            continue
        x = left.get(name, _EmotionPartial())
        y = right.get(name, _EmotionPartial())
        combined.append((name, _EmotionPartial(
            average_sum=x.average_sum + y.average_sum,
            max=_merge_extreme(x.max, y.max, max),
            min=_merge_extreme(x.min, y.min, min),
            moments=x.moments + y.moments,
        )))
    return tuple(combined)


def _combine(a: _Partial, b: _Partial) -> _Partial:
    return _Partial(
        indices=a.indices + b.indices,
        transcripts=a.transcripts + b.transcripts,
        total_words=a.total_words + b.total_words,
        wpm_sum=a.wpm_sum + b.wpm_sum,
        clarity_sum=a.clarity_sum + b.clarity_sum,
        filler_count=a.filler_count + b.filler_count,
        filler_details=a.filler_details + b.filler_details,
        wpm_timeline=a.wpm_timeline + b.wpm_timeline,
        utterances=a.utterances + b.utterances,
        frames=a.frames + b.frames,
        detection_confidence_sum=a.detection_confidence_sum + b.detection_confidence_sum,
        emotion_timeline=a.emotion_timeline + b.emotion_timeline,
        emotions=_combine_emotions(a.emotions, b.emotions),
        eye_contact_sum=a.eye_contact_sum + b.eye_contact_sum,
        consistency_sum=a.consistency_sum + b.consistency_sum,
        head_stability_sum=a.head_stability_sum + b.head_stability_sum,
        confidence_sum=a.confidence_sum + b.confidence_sum,
        speech_segments=a.speech_segments + b.speech_segments,
        facial_segments=a.facial_segments + b.facial_segments,
        confidence_segments=a.confidence_segments + b.confidence_segments,
        segment_overall=a.segment_overall + b.segment_overall,
        annotations=a.annotations + b.annotations,
        duration=a.duration + b.duration,
    )


# =============================================================================
# Finalization
# =============================================================================

def _pooled_std(moments: Tuple[Tuple[float, float, float], ...]) -> float:
    if not moments:
        return 0.0
    data = np.array(moments, dtype=float)
    weights, means, stds = data[:, 0], data[:, 1], data[:, 2]
    total = weights.sum()
    grand_mean = float((weights * means).sum() / total)
    variance = float((weights * (stds ** 2 + means ** 2)).sum() / total) - grand_mean ** 2
    return math.sqrt(max(variance, 0.0))


def _finalize(acc: _Partial, skipped: int) -> AggregatedAnalysis:
    count = len(acc.indices)
    weight = 1.0 / count

    filler_percentage = (acc.filler_count / acc.total_words) * 100 if acc.total_words > 0 else 0.0
    speech = SpeechSummary(
        transcript=" ".join(acc.transcripts).strip(),
        total_words=acc.total_words,
        words_per_minute=acc.wpm_sum * weight,
        clarity_score=acc.clarity_sum * weight,
        filler_count=acc.filler_count,
        filler_percentage=filler_percentage,
        filler_details=acc.filler_details,
        wpm_timeline=acc.wpm_timeline,
        utterances=acc.utterances,
    )

    reported = dict(acc.emotions)
    statistics = {}
    for name in EMOTIONS:
        partial = reported.get(name)
        if partial is None:
            statistics[name] = EmotionStats()
            continue
        statistics[name] = EmotionStats(
            average=partial.average_sum * weight,
            max=partial.max if partial.max is not None else 0.0,
            min=partial.min if partial.min is not None else 0.0,
            std=_pooled_std(partial.moments),
        )
    facial = FacialSummary(
        emotion_statistics=statistics,
        emotion_timeline=acc.emotion_timeline,
        total_frames_analyzed=acc.frames,
        average_detection_confidence=acc.detection_confidence_sum * weight,
    )

    confidence = ConfidenceSummary(
        average_eye_contact_score=acc.eye_contact_sum * weight,
        eye_contact_consistency=acc.consistency_sum * weight,
        head_stability_score=acc.head_stability_sum * weight,
        confidence_score=acc.confidence_sum * weight,
    )

    components: Dict[str, float] = {}
    if acc.speech_segments:
        components["speech_clarity"] = speech.clarity_score
    if "joy" in reported:
        components["positivity"] = statistics["joy"].average
    if acc.confidence_segments:
        components["confidence"] = confidence.confidence_score

    if components:
        score = sum(components.values()) / len(components)
    elif acc.segment_overall:
        score = sum(acc.segment_overall) / len(acc.segment_overall)
    else:
        score = None

    overall = OverallScore() if score is None else OverallScore(
        overall_score=score, grade=letter_grade(score), component_scores=components,
    )

    return AggregatedAnalysis(
        speech_analysis=speech,
        facial_analysis=facial,
        confidence_analysis=confidence,
        overall_score=overall,
        annotation_results=acc.annotations,
        duration_sec=acc.duration,
        segment_indices=acc.indices,
        skipped_segments=skipped,
    )


def aggregate(segments: Iterable[Any], session_id: str = "") -> AggregatedAnalysis:
    """
    Fold any number of segment analyses into one AggregatedAnalysis.

    Args:
        segments: AnalysisSegmentResult objects or raw results-store rows
        session_id: Used only when normalizing raw rows

    Returns:
        The merged analysis. An empty or fully invalid input yields the
        default aggregate; this function never raises for bad segment data.
    """
    valid: List[AnalysisSegmentResult] = []
    rejected = 0
    for raw in segments or []:
        record = normalize_segment_record(raw, session_id)
        if record is None or not record.has_results:
            logger.error("Invalid analysis segment skipped: %r", raw)
            rejected += 1
            continue
        valid.append(record)

    if not valid:
        logger.warning("No analysis results to aggregate")
        return AggregatedAnalysis(skipped_segments=rejected)

    valid.sort(key=lambda r: (r.segment_index, r.record_id or ""))
    logger.info("Aggregating %d analysis segments", len(valid))

    partials = []
    for record in valid:
        try:
            partials.append(_segment_partial(record))
        except (AggregationError, TypeError, ValueError, KeyError) as e:
            logger.error("Error processing segment %d (%s): %s",
                         record.segment_index, record.record_id or "unknown", e)
            rejected += 1

    if not partials:
        return AggregatedAnalysis(skipped_segments=rejected)

    result = _finalize(reduce(_combine, partials), rejected)
    logger.info("Analysis aggregation completed: %d segments, %d skipped",
                result.segment_count, rejected)
    return result
