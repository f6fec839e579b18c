"""
Wingman Configuration System
============================

This file contains ALL configuration for the Wingman session engine.
- User settings at the top (things users might want to change)
- Internal constants at the bottom (technical defaults)
"""
import os
from dataclasses import dataclass, field
from typing import Optional


# =============================================================================
# USER SETTINGS - Edit these to customize a practice session
# =============================================================================

# REQUIRED: Set your Google Cloud project
GOOGLE_CLOUD_PROJECT = "your-project-id"  # Change this!
GOOGLE_APPLICATION_CREDENTIALS = None  # Optional: path to credentials JSON

# Web application the engine reports to
API_BASE_URL = "http://localhost:3000"
API_KEY = None  # Sent as x-api-key when set
STORAGE_BUCKET = None  # GCS bucket for finalized recordings

# Interview settings
INTERVIEW_TYPE = "behavioral"
DIFFICULTY = "medium"
DURATION_MINUTES = 45
JOB_ROLE = "Software Engineer"
COMPANY = "FAANG"
IS_CONVERSATIONAL = True
SEGMENT_PER_ANSWER = False  # Upload and analyze each answer as its own segment

# Speech settings
ENABLE_TTS = True
TTS_VOICE = "en-US-Wavenet-A"
LANGUAGE_CODE = "en-US"
ENABLE_DIARIZATION = True

# Analysis polling policy (seconds)
POLL_INTERVAL_S = 10.0
GRACE_WINDOW_S = 30.0
HARD_TIMEOUT_S = 600.0

# Live frame analysis
ENABLE_FRAME_ANALYSIS = True
CAMERA_INDEX = 0

# Logging
WORKDIR = "./_sessions"
LOG_FILE = "./_sessions/session.log"
LOG_LEVEL = "INFO"


# =============================================================================
# INTERNAL CONSTANTS - Don't change these unless you know what you're doing
# =============================================================================

# Media capture
RECORDER_TIMESLICE_MS = 1000
SAMPLE_RATE_CAPTURE = 48000
SAMPLE_RATE_TARGET = 16000
CHANNELS = 1
TARGET_RMS = 0.06

# Conversation
MAX_CONSECUTIVE_TURN_FAILURES = 3
SUPPORTED_INTERVIEW_TYPES = ("behavioral", "technical", "system-design", "product")

# Analysis dispatch
ANALYSIS_MAX_ATTEMPTS = 3
ANALYSIS_RETRY_BASE_DELAY_S = 2.0
ANALYSIS_RETRY_MAX_DELAY_S = 30.0
CONTINUOUS_SEGMENT_INDEX = 0

# Live frame analysis
FRAME_SAMPLE_INTERVAL_S = 5.0
FRAME_JPEG_QUALITY = 80

# LLM
VERTEX_LOCATION = "us-central1"
MODEL_NAME = "gemini-2.5-flash"
LLM_TIMEOUT = 60
MAX_OUTPUT_TOKENS = 800
LLM_TEMPERATURE = 0.5
LLM_TOP_P = 0.8
LLM_TOP_K = 30

# HTTP
API_TIMEOUT = 30


# =============================================================================
# MAIN CONFIG OBJECT
# =============================================================================

@dataclass
class PollingPolicy:
    """Thresholds for the analysis polling loop."""
    interval_s: float = POLL_INTERVAL_S
    grace_window_s: float = GRACE_WINDOW_S
    hard_timeout_s: float = HARD_TIMEOUT_S

    def __post_init__(self):
        if self.interval_s <= 0:
            raise ValueError("interval_s must be positive")
        if self.grace_window_s < 0 or self.hard_timeout_s <= 0:
            raise ValueError("grace_window_s and hard_timeout_s must be non-negative")


@dataclass
class Config:
    """Main configuration object."""
    google_cloud_project: str
    google_application_credentials: Optional[str] = None
    api_base_url: str = API_BASE_URL
    api_key: Optional[str] = API_KEY
    storage_bucket: Optional[str] = STORAGE_BUCKET
    interview_type: str = INTERVIEW_TYPE
    difficulty: str = DIFFICULTY
    duration_minutes: float = DURATION_MINUTES
    job_role: str = JOB_ROLE
    company: str = COMPANY
    is_conversational: bool = IS_CONVERSATIONAL
    segment_per_answer: bool = SEGMENT_PER_ANSWER
    enable_tts: bool = ENABLE_TTS
    tts_voice: str = TTS_VOICE
    language_code: str = LANGUAGE_CODE
    enable_diarization: bool = ENABLE_DIARIZATION
    analysis_max_attempts: int = ANALYSIS_MAX_ATTEMPTS
    max_consecutive_turn_failures: int = MAX_CONSECUTIVE_TURN_FAILURES
    polling: PollingPolicy = field(default_factory=PollingPolicy)
    enable_frame_analysis: bool = ENABLE_FRAME_ANALYSIS
    camera_index: int = CAMERA_INDEX
    frame_interval_s: float = FRAME_SAMPLE_INTERVAL_S
    vertex_location: str = VERTEX_LOCATION
    model_name: str = MODEL_NAME
    workdir: str = WORKDIR
    log_file: str = LOG_FILE
    log_level: str = LOG_LEVEL

    @property
    def duration_seconds(self) -> float:
        return float(self.duration_minutes) * 60.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def get_config() -> Config:
    """Load configuration."""
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or GOOGLE_APPLICATION_CREDENTIALS

    if project == "your-project-id":
        raise ValueError("Please set GOOGLE_CLOUD_PROJECT in config.py or as environment variable")

    polling = PollingPolicy(
        interval_s=_env_float("WINGMAN_POLL_INTERVAL_S", POLL_INTERVAL_S),
        grace_window_s=_env_float("WINGMAN_GRACE_WINDOW_S", GRACE_WINDOW_S),
        hard_timeout_s=_env_float("WINGMAN_HARD_TIMEOUT_S", HARD_TIMEOUT_S),
    )

    return Config(
        google_cloud_project=project,
        google_application_credentials=credentials,
        api_base_url=os.getenv("WINGMAN_API_BASE_URL") or API_BASE_URL,
        api_key=os.getenv("WINGMAN_API_KEY") or API_KEY,
        storage_bucket=os.getenv("GOOGLE_CLOUD_BUCKET_NAME") or STORAGE_BUCKET,
        polling=polling,
    )
