"""Gemini access over the Vertex AI REST API."""

from .client import VertexRestClient, EmptyResponseError

__all__ = ["VertexRestClient", "EmptyResponseError"]
