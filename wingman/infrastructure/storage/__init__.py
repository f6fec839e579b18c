"""Object storage for session recordings."""

from .gcs import GcsObjectStorage

__all__ = ["GcsObjectStorage"]
