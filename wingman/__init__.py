"""
Wingman: interview session engine for recorded mock interviews.

Runs a timed interview with an AI interviewer, records the whole session,
ships the recording for video analysis and merges the analysed segments
into one report for feedback.
"""

__version__ = "1.0.0"

# Main entry points
from .interview.orchestrator import SessionController
from .interview.models import InterviewSession, SessionOutcome, SessionStatus

__all__ = ["SessionController", "InterviewSession", "SessionOutcome", "SessionStatus"]
