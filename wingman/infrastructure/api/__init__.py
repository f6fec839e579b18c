"""Client for the interview web application's REST API."""

from .client import WingmanApiClient

__all__ = ["WingmanApiClient"]
