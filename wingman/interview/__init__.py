"""Interview session engine.

Business logic for one recorded mock-interview session: media capture,
the turn-taking conversation, upload and analysis dispatch, result polling
and aggregation. Production collaborators live in ``wingman.infrastructure``.
"""

# Session controller
from .orchestrator import SessionController

# Data models
from .models import (
    ConversationTurn, InterviewSession, MediaBlob, Question, Role,
    SessionOutcome, SessionStatus,
)

# State machines
from .schemas import PollingState, RecordingState, TurnState

# Collaborator contracts
from .services import Collaborators

# Components
from .aggregation import AggregatedAnalysis, aggregate
from .capture import MediaCaptureController
from .conversation import ConversationEngine, SessionTimer
from .dispatch import AnalysisDispatcher
from .polling import AnalysisPoller, PollingOutcome

# Event system
from .events import (
    SessionEventBus, EventLogger, SessionMetrics, EventType, SessionEvent,
)

# Errors
from .errors import (
    WingmanError, DeviceAccessError, RecordingStartError, AlreadyFinalizedError,
    UploadError, ResultsNotReady, TurnInProgressError, PollingInProgressError,
)

__all__ = [
    "SessionController",
    "ConversationTurn", "InterviewSession", "MediaBlob", "Question", "Role",
    "SessionOutcome", "SessionStatus",
    "PollingState", "RecordingState", "TurnState",
    "Collaborators",
    "AggregatedAnalysis", "aggregate", "MediaCaptureController",
    "ConversationEngine", "SessionTimer", "AnalysisDispatcher",
    "AnalysisPoller", "PollingOutcome",
    "SessionEventBus", "EventLogger", "SessionMetrics", "EventType", "SessionEvent",
    "WingmanError", "DeviceAccessError", "RecordingStartError", "AlreadyFinalizedError",
    "UploadError", "ResultsNotReady", "TurnInProgressError", "PollingInProgressError",
]
