"""
Groq chat-completions client used by the analysis pipeline.
Wraps the raw HTTP call and the bounded retry/backoff policy.
"""
import logging
import math
import re
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import Retrying, retry_if_result, stop_after_attempt

from consentlens.config import Settings
from consentlens.models import ProviderResponse, ResponseKind

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 4
DEFAULT_RATE_LIMIT_DELAY_MS = 5_000
SERVER_ERROR_BASE_DELAY_MS = 2_000

# Groq puts the wait in the error message: "Please try again in 20.219s."
_RETRY_HINT_PATTERN = re.compile(r'try again in\s+([\d.]+)s', re.IGNORECASE)


class ProviderNetworkError(RuntimeError):
    """Raised when the provider call itself fails (DNS, connection, timeout)."""
    pass


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """
    Convert a Retry-After header (seconds) to milliseconds.

    Args:
        value: Raw header value.

    Returns:
        Delay in milliseconds, or None if the header is absent or not numeric.
    """
    if not value:
        return None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    seconds = int(parsed)
    if seconds < 0:
        return None
    return seconds * 1_000


def parse_retry_hint(body: Optional[str]) -> Optional[int]:
    """Extract "try again in <n>s" from a response body, rounded up to whole ms."""
    if not body:
        return None
    match = _RETRY_HINT_PATTERN.search(body)
    if not match:
        return None
    try:
        return math.ceil(float(match.group(1)) * 1_000)
    except (ValueError, OverflowError):
        return None


def classify(response: requests.Response) -> ProviderResponse:
    """
    Tag a raw HTTP response with its retry-relevant outcome.

    Args:
        response: Response returned by requests.

    Returns:
        ProviderResponse carrying status, body text and, for 429, the retry hint.
    """
    status = response.status_code
    body = response.text or ''

    if 200 <= status < 300:
        return ProviderResponse(ResponseKind.SUCCESS, status, body)
    if status == 404:
        return ProviderResponse(ResponseKind.NOT_FOUND, status, body)
    if status == 429:
        delay = parse_retry_after(response.headers.get('Retry-After'))
        if delay is None:
            delay = parse_retry_hint(body)
        return ProviderResponse(ResponseKind.RATE_LIMITED, status, body, retry_after_ms=delay)
    if status >= 500:
        return ProviderResponse(ResponseKind.SERVER_ERROR, status, body)
    return ProviderResponse(ResponseKind.CLIENT_ERROR, status, body)


def retry_delay_ms(response: ProviderResponse, attempt_index: int) -> int:
    """
    Delay before the next attempt.

    429 uses the provider's hint (header, then body) or a fixed default;
    5xx backs off exponentially from 2s.
    """
    if response.kind is ResponseKind.RATE_LIMITED:
        if response.retry_after_ms is not None:
            return response.retry_after_ms
        return DEFAULT_RATE_LIMIT_DELAY_MS
    if response.kind is ResponseKind.SERVER_ERROR:
        return SERVER_ERROR_BASE_DELAY_MS * 2 ** attempt_index
    return 0


def _is_transient(response: ProviderResponse) -> bool:
    return response.kind in (ResponseKind.RATE_LIMITED, ResponseKind.SERVER_ERROR)


def _last_response(retry_state) -> ProviderResponse:
    # Attempts exhausted: hand back the last response instead of raising RetryError
    return retry_state.outcome.result()


class GroqClient:
    """Client for the Groq OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.settings = settings
        # Module-level requests calls get a fresh session each time, so nothing
        # is shared between worker threads
        self.session = session if session is not None else requests
        self.max_attempts = max_attempts
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {self.settings.groq_api_key}',
        }

    def build_payload(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.25,
        max_tokens: int = 1600,
    ) -> Dict[str, Any]:
        return {
            'model': model,
            'messages': messages,
            'temperature': temperature,
            'max_tokens': max_tokens,
        }

    def complete(self, model: str, messages: List[Dict[str, str]]) -> ProviderResponse:
        """
        Make a single chat-completions call.

        Args:
            model: Model name to request.
            messages: Chat messages ({role, content}).

        Returns:
            Tagged provider response (any HTTP status).

        Raises:
            ProviderNetworkError: If the request could not be completed at all.
        """
        try:
            response = self.session.post(
                self.settings.groq_url,
                headers=self._headers(),
                json=self.build_payload(model, messages),
                timeout=self.settings.groq_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Groq request failed: model={model}, error={type(e).__name__} - {e}")
            raise ProviderNetworkError(f"{type(e).__name__} - {e}") from e

        result = classify(response)
        logger.debug(f"Groq response: model={model}, status={result.status_code}, kind={result.kind.value}")
        return result

    def _wait(self, retry_state) -> float:
        response = retry_state.outcome.result()
        return retry_delay_ms(response, retry_state.attempt_number - 1) / 1_000

    def _log_retry(self, retry_state) -> None:
        response = retry_state.outcome.result()
        delay_ms = int(retry_state.next_action.sleep * 1_000)
        logger.warning(
            f"Groq {response.status_code}: waiting {delay_ms} ms before retry "
            f"({retry_state.attempt_number}/{self.max_attempts})"
        )

    def complete_with_retries(self, model: str, messages: List[Dict[str, str]]) -> ProviderResponse:
        """
        Call the provider, retrying rate limits and server errors.

        Stops immediately on 2xx, 404 and other 4xx. After the last attempt the
        final response is returned whatever its status.

        Raises:
            ProviderNetworkError: On the first network-level failure (never retried).
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_result(_is_transient),
            retry_error_callback=_last_response,
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        return retrying(self.complete, model, messages)
