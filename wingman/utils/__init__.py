"""Utility modules for imports and logging."""

from .imports import with_suppressed_audio_warnings
from .logging import setup_logging

__all__ = ["with_suppressed_audio_warnings", "setup_logging"]
