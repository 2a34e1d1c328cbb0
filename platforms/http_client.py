"""HTTP client shared by the platform adapters."""
import json
import logging
import time
from typing import Any, Dict, Optional

import requests

from platforms.errors import TransientApiError, UpstreamLogicError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# 403 reasons the YouTube Data API uses for quota and rate limiting
QUOTA_REASONS = {
    'quotaExceeded',
    'userRateLimitExceeded',
    'rateLimitExceeded',
    'dailyLimitExceeded',
}


class PlatformHttpClient:
    """JSON-over-HTTP client with a wall-clock budget per call and bounded retries."""

    CHUNK_SIZE = 8192

    def __init__(
        self,
        timeout: float = 10.0,
        max_attempts: int = 2,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the HTTP client.

        Args:
            timeout: Wall-clock budget for a single call in seconds
            max_attempts: Total attempts for calls failing with a transient error
            base_delay: First backoff delay in seconds, doubled per attempt
            session: Optional requests session to reuse
        """
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.session = session or requests.Session()

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Perform a GET request and decode the JSON object it returns.

        Args:
            url: Endpoint URL
            params: Query string parameters
            headers: Extra request headers
            allow_not_found: Return None on 404 instead of raising

        Returns:
            Decoded JSON object, or None for an allowed 404

        Raises:
            TransientApiError: Network failure, timeout, 429/5xx or quota exhaustion
            UpstreamLogicError: Any other error status or a non-object payload
        """
        return self.request_json(
            'GET', url, params=params, headers=headers,
            allow_not_found=allow_not_found
        )

    def post_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Optional[Dict[str, Any]]:
        """Perform a POST request and decode the JSON object it returns."""
        return self.request_json('POST', url, params=params, headers=headers)

    def request_json(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Send a request, retrying transient failures with exponential backoff.

        Args:
            method: HTTP method
            url: Endpoint URL
            params: Query string parameters
            headers: Extra request headers
            allow_not_found: Return None on 404 instead of raising

        Returns:
            Decoded JSON object, or None for an allowed 404
        """
        for attempt in range(self.max_attempts):
            try:
                return self._send_once(method, url, params, headers, allow_not_found)

            except TransientApiError as e:
                if attempt < self.max_attempts - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request to {url} failed (attempt {attempt + 1}/"
                        f"{self.max_attempts}): {e}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_attempts} attempts to {url} failed. "
                        f"Last error: {e}"
                    )
                    raise

    def _send_once(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        allow_not_found: bool
    ) -> Optional[Dict[str, Any]]:
        deadline = time.monotonic() + self.timeout
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
                stream=True
            )
            try:
                body = self._read_body(response, deadline)
            finally:
                response.close()
        except requests.Timeout as e:
            raise TransientApiError(f"Timed out after {self.timeout}s: {e}") from e
        except requests.RequestException as e:
            raise TransientApiError(f"Network error: {e}") from e

        status = response.status_code
        if status == 404 and allow_not_found:
            return None

        payload = self._decode(body)

        if status in RETRYABLE_STATUS:
            raise TransientApiError(f"HTTP {status} from {url}")

        if status >= 400:
            reason = self._error_reason(payload)
            if status == 403 and reason in QUOTA_REASONS:
                raise TransientApiError(f"HTTP 403 ({reason}) from {url}")
            raise UpstreamLogicError(
                f"HTTP {status} from {url}" + (f" ({reason})" if reason else '')
            )

        if not isinstance(payload, dict):
            raise UpstreamLogicError(f"Expected a JSON object from {url}")

        return payload

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """Read the response body, giving up once the call's deadline has passed."""
        chunks = []
        for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise requests.Timeout(
                    f"response body not received within {self.timeout}s"
                )
            chunks.append(chunk)
        return b''.join(chunks)

    @staticmethod
    def _decode(body: bytes) -> Any:
        if not body:
            return None
        try:
            return json.loads(body.decode('utf-8', errors='replace'))
        except ValueError:
            return None

    @staticmethod
    def _error_reason(payload: Any) -> Optional[str]:
        """Best-effort extraction of the first API error reason."""
        if not isinstance(payload, dict):
            return None
        error = payload.get('error')
        if not isinstance(error, dict):
            return None
        errors = error.get('errors')
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            reason = errors[0].get('reason')
            return str(reason) if reason else None
        return None
