"""
REST client for the interview web application.

Covers the endpoints the session engine talks to: analysis trigger and
results, live frame analysis, feedback generation and session status.
"""
import base64
import logging
from typing import Any, Dict, List, Optional

import requests

from ...config import API_TIMEOUT
from ...interview.errors import CollaboratorError, ResultsNotReady

logger = logging.getLogger("api_client")

ANALYSIS_TYPE = "comprehensive"


class WingmanApiClient:
    """Thin requests-based client. Authenticates with the ``x-api-key`` header when a key is set."""

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 timeout: int = API_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _request(self, method: str, path: str, collaborator: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise CollaboratorError(collaborator, f"{method} {path} failed: {e}") from e
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response, collaborator: str) -> None:
        if resp.status_code >= 400:
            raise CollaboratorError(collaborator, f"HTTP {resp.status_code}: {resp.text[:500]}")

    def analyze(self, video_uri: str, session_id: str, segment_index: int = 0) -> Dict[str, Any]:
        """Ask the analysis service to process one uploaded recording."""
        payload = {
            "videoUri": video_uri,
            "sessionId": session_id,
            "segmentIndex": segment_index,
            "analysisType": ANALYSIS_TYPE,
        }
        resp = self._request("POST", "/api/video-analysis", "analysis_trigger", json=payload)
        self._raise_for_status(resp, "analysis_trigger")
        logger.info("Analysis requested for %s segment %d", session_id, segment_index)
        return resp.json() if resp.content else {}

    def list_results(self, session_id: str) -> List[Any]:
        """
        Fetch stored analysis rows for a session.

        Raises:
            ResultsNotReady: The service has nothing for this session yet (404)
            CollaboratorError: Any other HTTP or transport failure
        """
        resp = self._request("GET", "/api/video-analysis", "results_store", params={"sessionId": session_id})
        if resp.status_code == 404:
            raise ResultsNotReady(session_id)
        self._raise_for_status(resp, "results_store")

        try:
            body = resp.json()
        except ValueError as e:
            raise CollaboratorError("results_store", f"invalid JSON: {e}") from e

        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            rows = body.get("results")
            if isinstance(rows, list):
                return rows
            return [body]
        return []

    def submit_feedback(self, session_id: str, history: List[Dict[str, str]],
                        analysis: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {
            "sessionId": session_id,
            "conversationHistory": history,
            "videoAnalysis": analysis,
        }
        resp = self._request("POST", "/api/ai/feedback", "feedback", json=payload)
        self._raise_for_status(resp, "feedback")
        logger.info("Feedback submitted for %s (%d turns)", session_id, len(history))
        return resp.json() if resp.content else {}

    def update_session_status(self, session_id: str, status: str) -> None:
        resp = self._request("PATCH", f"/api/ai/session/{session_id}", "session_status", json={"status": status})
        self._raise_for_status(resp, "session_status")
        logger.info("Session %s marked %s", session_id, status)

    def analyze_frame(self, session_id: str, image: bytes) -> Dict[str, Any]:
        """Send one JPEG still for live vision analysis."""
        payload = {
            "image": "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii"),
            "sessionId": session_id,
        }
        resp = self._request("POST", "/api/vision/analyze-frame", "frame_analysis", json=payload)
        self._raise_for_status(resp, "frame_analysis")
        return resp.json() if resp.content else {}

    def save_frames(self, session_id: str, frames: List[Dict[str, Any]]) -> None:
        resp = self._request("POST", "/api/vision/save-frames", "frame_analysis",
                             json={"sessionId": session_id, "frames": frames})
        self._raise_for_status(resp, "frame_analysis")
        logger.info("Saved %d vision frames for %s", len(frames), session_id)
