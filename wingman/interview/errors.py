"""
Exception hierarchy for the session engine.
"""


class WingmanError(Exception):
    """Base class for all session engine errors."""


class DeviceError(WingmanError):
    """Camera or microphone problem."""


class DeviceAccessError(DeviceError):
    """Permission denied or devices unavailable. Fatal to starting a session."""


class RecordingError(WingmanError):
    """Recording lifecycle violation."""


class RecordingStartError(RecordingError):
    """No active media handle, or a recording is already in progress."""


class AlreadyFinalizedError(RecordingError):
    """The session recording was already finalized."""


class CollaboratorError(WingmanError):
    """An external AI, speech or storage call failed."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class UploadError(CollaboratorError):
    """Storage rejected the finalized recording."""

    def __init__(self, message: str, status_code=None):
        super().__init__("storage", message)
        self.status_code = status_code


class ResultsNotReady(CollaboratorError):
    """The results store has nothing for this session yet (HTTP 404)."""

    def __init__(self, session_id: str):
        super().__init__("results_store", f"no analysis found for session {session_id}")
        self.session_id = session_id


class PollingTimeout(WingmanError):
    """The hard polling ceiling elapsed without a usable segment."""


class AggregationError(WingmanError):
    """One analysis segment could not be folded into the aggregate."""


class TurnInProgressError(WingmanError):
    """end_answer() was called while another answer is still being processed."""


class PollingInProgressError(WingmanError):
    """A polling loop is already running for this session."""
