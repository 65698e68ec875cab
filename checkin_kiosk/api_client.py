"""
REST API Client for the Check-in Kiosk

Thin wrapper over ``httpx.Client`` that adds the bearer token, turns
error responses into kiosk exceptions carrying the backend's message,
and retries idempotent reads with exponential backoff.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from .exceptions import (
    ApiRequestException,
    ApiTimeoutException,
    AuthenticationRequiredException
)

logger = logging.getLogger('api_client')

DEFAULT_BASE_URL = "http://localhost:3005/api"


def extract_error_message(body: Any, response: httpx.Response) -> str:
    """
    Extract a human-readable message from an error response

    Looks at ``error.message`` first, then ``message``, and falls back
    to the status line.

    Args:
        body: Parsed response body (dict, string or None)
        response: The HTTP response

    Returns:
        Message to show the operator
    """
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"


def _extract_error_code(body: Any) -> str:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code") or "UNKNOWN_ERROR"
    return "UNKNOWN_ERROR"


class ApiClient:
    """
    HTTP client for the registration backend

    Only GET requests are retried, and only on connection errors and 5xx
    responses. POST requests are sent once so a check-in can never be
    submitted twice by the client.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, access_token: Optional[str] = None,
                 timeout: float = 30.0, retries: int = 3, backoff: float = 1.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize API client

        Args:
            base_url: Backend base URL, e.g. ``http://localhost:3005/api``
            access_token: Bearer token sent with every request
            timeout: Per-request timeout in seconds
            retries: Maximum attempts for GET requests
            backoff: Base delay in seconds between GET attempts
            transport: Optional transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport
        )

    @classmethod
    def from_config(cls, config: Dict, transport: Optional[httpx.BaseTransport] = None) -> 'ApiClient':
        return cls(
            base_url=config.get('API_BASE_URL', DEFAULT_BASE_URL),
            access_token=config.get('API_ACCESS_TOKEN'),
            timeout=config.get('API_TIMEOUT_SECONDS', 30.0),
            retries=config.get('API_RETRIES', 3),
            backoff=config.get('API_RETRY_BACKOFF_SECONDS', 1.0),
            transport=transport
        )

    def _headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _send_once(self, method: str, path: str, params: Optional[Dict] = None,
                   json: Optional[Dict] = None) -> Any:
        try:
            response = self._client.request(
                method, path, params=params, json=json, headers=self._headers()
            )
        except httpx.TimeoutException:
            raise ApiTimeoutException(method, path)
        except httpx.HTTPError as e:
            raise ApiRequestException(f"Unable to reach the server: {e}")

        body = self._parse_body(response)
        if response.is_success:
            return body

        message = extract_error_message(body, response)
        if response.status_code == 401:
            raise AuthenticationRequiredException(message, response=body)
        raise ApiRequestException(
            message,
            status_code=response.status_code,
            error_code=_extract_error_code(body),
            response=body
        )

    def request(self, method: str, path: str, params: Optional[Dict] = None,
                json: Optional[Dict] = None) -> Any:
        """
        Send a request and return the parsed body

        Args:
            method: HTTP method
            path: Path relative to the base URL
            params: Query parameters; None values are dropped
            json: JSON body

        Returns:
            Parsed JSON body, or the text body for non-JSON responses

        Raises:
            ApiTimeoutException: If the request timed out
            AuthenticationRequiredException: On a 401 response
            ApiRequestException: On any other failure
        """
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        attempts = self.retries if method.upper() == "GET" else 1

        for attempt in range(attempts):
            try:
                return self._send_once(method, path, params=params, json=json)
            except ApiTimeoutException:
                raise
            except ApiRequestException as e:
                client_error = e.status_code is not None and 400 <= e.status_code < 500
                if client_error or attempt == attempts - 1:
                    raise
                delay = self.backoff * (2 ** attempt)
                logger.warning(
                    f"{method} {path} failed ({e.message}); retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                if delay:
                    time.sleep(delay)

    def get(self, path: str, params: Optional[Dict] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, data: Optional[Dict] = None) -> Any:
        return self.request("POST", path, json=data)

    def close(self) -> None:
        self._client.close()
