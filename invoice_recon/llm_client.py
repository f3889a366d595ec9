"""
HTTP client for the Generative Language (Gemini) REST API.

The client is constructed once at process start and injected wherever the
external extraction service is needed. Failures are raised as
`ServiceError` with a structured `ErrorKind` derived from the HTTP status,
so callers never inspect error message text.
"""

import base64
import threading
from enum import Enum
from typing import Any, Dict, List, Optional

import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_TIMEOUT = 60.0


class ErrorKind(Enum):
    MODEL_NOT_FOUND = "model_not_found"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    TRANSPORT = "transport"
    INVALID_RESPONSE = "invalid_response"

    @property
    def retryable(self) -> bool:
        """Only a missing model moves on to the next candidate."""
        return self is ErrorKind.MODEL_NOT_FOUND


class ServiceError(Exception):
    """A failed call to the extraction service."""

    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status


def classify_status(status: int) -> ErrorKind:
    if status == 404:
        return ErrorKind.MODEL_NOT_FOUND
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.BAD_REQUEST


class GeminiClient:
    """
    Minimal generateContent client.

    Args:
        api_key: API key sent in the `x-goog-api-key` header.
        base_url: Service root; the API revision is appended per call.
        timeout: Default per-request timeout in seconds.
        session: Optional `requests.Session` shared by every call. Without
            one, each thread lazily creates and reuses its own session.
    """

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key or ''
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def endpoint(self, model: str, api_version: str) -> str:
        return f"{self.base_url}/{api_version}/models/{model}:generateContent"

    def generate_content(self, model: str, prompt: str, data: Optional[bytes] = None,
                         mime_type: Optional[str] = None, api_version: str = "v1",
                         timeout: Optional[float] = None, temperature: float = 0.2) -> str:
        """
        Run one generateContent call.

        Args:
            model: Model identifier, e.g. "gemini-1.5-flash".
            prompt: Instruction text.
            data: Optional binary payload sent inline (base64).
            mime_type: Media type of `data`.
            api_version: API revision path prefix ("v1", "v1beta").
            timeout: Per-call timeout override in seconds.
            temperature: Sampling temperature.

        Returns:
            Text of the first candidate part.

        Raises:
            ServiceError: On transport failures, non-2xx responses or an
                unreadable response body.
        """
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        if data is not None:
            parts.append({
                "inlineData": {
                    "mimeType": mime_type or "application/octet-stream",
                    "data": base64.b64encode(data).decode("ascii"),
                }
            })
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": temperature},
        }

        try:
            resp = self.session.post(
                self.endpoint(model, api_version),
                json=body,
                headers={"x-goog-api-key": self.api_key},
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            raise ServiceError(ErrorKind.TRANSPORT, f"{type(e).__name__}: {e}") from e

        if not resp.ok:
            raise ServiceError(classify_status(resp.status_code), f"HTTP {resp.status_code}: {resp.text[:400]}",
                               status=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise ServiceError(ErrorKind.INVALID_RESPONSE, "Response body is not JSON",
                               status=resp.status_code) from e

        try:
            return payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.debug(f"Unexpected response envelope from {model}; using the raw body")
            return resp.text
