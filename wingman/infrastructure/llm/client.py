"""
Vertex AI REST client for Gemini text generation.
"""
import logging
from typing import Optional, Dict, Any, List

import requests
import google.auth
import google.auth.transport.requests
from google.oauth2 import service_account

from ...config import (
    VERTEX_LOCATION, MODEL_NAME, LLM_TIMEOUT, MAX_OUTPUT_TOKENS,
    LLM_TEMPERATURE, LLM_TOP_P, LLM_TOP_K,
)

logger = logging.getLogger("llm_client")

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class EmptyResponseError(ValueError):
    """Gemini returned no usable text (typically a safety-filtered reply)."""


class VertexRestClient:
    """REST-based client for Vertex AI Gemini models."""

    def __init__(self,
                 project: str,
                 location: str = VERTEX_LOCATION,
                 model: str = MODEL_NAME,
                 credentials_json: Optional[str] = None,
                 timeout: int = LLM_TIMEOUT):
        self.project = project
        self.location = location
        self.model = model
        self.credentials_json = credentials_json
        self.base_url = f"https://{self.location}-aiplatform.googleapis.com/v1"
        self.model_resource = f"projects/{self.project}/locations/{self.location}/publishers/google/models/{self.model}"
        self._token = None
        self.timeout = timeout

    def _refresh_token(self):
        """Refresh the OAuth token for API calls."""
        if self.credentials_json:
            creds = service_account.Credentials.from_service_account_file(
                self.credentials_json, scopes=SCOPES,
            )
        else:
            creds, _ = google.auth.default(scopes=SCOPES)

        auth_req = google.auth.transport.requests.Request()
        creds.refresh(auth_req)
        self._token = creds.token

    def _ensure_token(self):
        if not self._token:
            self._refresh_token()

    def generate_content(
        self,
        prompt_text: str,
        temperature: float = LLM_TEMPERATURE,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
        top_k: Optional[int] = LLM_TOP_K,
        top_p: Optional[float] = LLM_TOP_P,
        stop_sequences: Optional[List[str]] = None,
    ) -> str:
        """
        Generate text for a single-turn prompt.

        Raises:
            RuntimeError: On an HTTP error from Vertex
            EmptyResponseError: When the reply carries no text
        """
        self._ensure_token()
        url = f"{self.base_url}/{self.model_resource}:generateContent"

        body: Dict[str, Any] = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": prompt_text}],
                }
            ],
            "generationConfig": {
                "temperature": float(temperature),
                "maxOutputTokens": int(max_output_tokens),
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
                for category in SAFETY_CATEGORIES
            ],
        }

        if top_k is not None:
            body["generationConfig"]["topK"] = int(top_k)
        if top_p is not None:
            body["generationConfig"]["topP"] = float(top_p)
        if stop_sequences:
            body["generationConfig"]["stopSequences"] = list(stop_sequences)

        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        resp = requests.post(url, headers=headers, json=body, timeout=self.timeout)
        if resp.status_code == 401:
            # Token expired; refresh once and retry
            self._refresh_token()
            headers["Authorization"] = f"Bearer {self._token}"
            resp = requests.post(url, headers=headers, json=body, timeout=self.timeout)
        if resp.status_code >= 400:
            raise RuntimeError(f"Vertex REST error {resp.status_code}: {resp.text}")

        return self._parse_response_text(resp.json())

    def _parse_response_text(self, resp_json: Dict[str, Any]) -> str:
        """
        Extract the reply text: candidates[0].content.parts[*].text.

        Raises:
            EmptyResponseError: When no candidate part carries text
        """
        cands = resp_json.get("candidates") or []
        if cands and isinstance(cands[0], dict):
            first = cands[0]
            content = first.get("content") or {}
            for part in content.get("parts") or []:
                if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
                    return part["text"]
            logger.warning("Gemini candidate had no text (finishReason=%s)", first.get("finishReason"))

        if isinstance(resp_json.get("text"), str) and resp_json["text"].strip():
            return resp_json["text"]

        raise EmptyResponseError("Gemini returned no text")
