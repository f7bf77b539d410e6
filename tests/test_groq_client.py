"""
Unit tests for the Groq client: response classification, retry hints and
the bounded retry loop. HTTP is simulated with a mocked requests.Session.
"""
import json

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from unittest.mock import MagicMock, patch

from consentlens.config import Settings
from consentlens.models import ProviderResponse, ResponseKind
from consentlens.services.groq_client import (
    GroqClient,
    ProviderNetworkError,
    classify,
    parse_retry_after,
    parse_retry_hint,
    retry_delay_ms,
)


def make_response(status: int, body=None, headers: dict = None) -> requests.Response:
    """Build a real requests.Response with the given status, body and headers."""
    response = requests.Response()
    response.status_code = status
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    response._content = (body or '').encode('utf-8')
    response.encoding = 'utf-8'
    response.headers = CaseInsensitiveDict(headers or {})
    return response


@pytest.fixture
def settings():
    return Settings(groq_api_key='test-key', groq_model='primary-model', groq_url='https://groq.test/v1/chat/completions')


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(settings, session, sleeps):
    return GroqClient(settings, session=session, sleep=sleeps.append)


MESSAGES = [{'role': 'user', 'content': 'Analyze this.'}]


class TestRetryHints:
    """Tests for Retry-After header and body hint parsing."""

    def test_retry_after_seconds_to_ms(self):
        assert parse_retry_after('2') == 2000

    def test_retry_after_fraction_truncates_like_parse_int(self):
        assert parse_retry_after('2.9') == 2000

    def test_retry_after_missing_or_invalid(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after('') is None
        assert parse_retry_after('Wed, 21 Oct 2026 07:28:00 GMT') is None
        assert parse_retry_after('-1') is None
        assert parse_retry_after('inf') is None
        assert parse_retry_after('1e999') is None
        assert parse_retry_after('nan') is None

    def test_body_hint_too_large(self):
        assert parse_retry_hint('try again in ' + '9' * 400 + 's') is None

    def test_body_hint_rounds_up(self):
        body = '{"error": {"message": "Rate limit reached. Please try again in 20.2191s."}}'
        assert parse_retry_hint(body) == 20220

    def test_body_hint_case_insensitive(self):
        assert parse_retry_hint('TRY AGAIN IN 3s') == 3000

    def test_body_without_hint(self):
        assert parse_retry_hint('slow down') is None
        assert parse_retry_hint(None) is None


class TestClassify:
    """Tests for tagging raw responses."""

    @pytest.mark.parametrize('status,kind', [
        (200, ResponseKind.SUCCESS),
        (201, ResponseKind.SUCCESS),
        (404, ResponseKind.NOT_FOUND),
        (429, ResponseKind.RATE_LIMITED),
        (500, ResponseKind.SERVER_ERROR),
        (503, ResponseKind.SERVER_ERROR),
        (400, ResponseKind.CLIENT_ERROR),
        (401, ResponseKind.CLIENT_ERROR),
        (403, ResponseKind.CLIENT_ERROR),
    ])
    def test_status_to_kind(self, status, kind):
        assert classify(make_response(status, 'x')).kind is kind

    def test_rate_limit_prefers_header_over_body(self):
        response = make_response(429, 'Please try again in 9s.', {'Retry-After': '2'})
        assert classify(response).retry_after_ms == 2000

    def test_rate_limit_falls_back_to_body_hint(self):
        response = make_response(429, 'Please try again in 1.5s.')
        assert classify(response).retry_after_ms == 1500

    def test_rate_limit_without_any_hint(self):
        assert classify(make_response(429, 'busy')).retry_after_ms is None


class TestRetryDelay:
    def test_server_error_backoff_doubles(self):
        response = ProviderResponse(ResponseKind.SERVER_ERROR, 500)
        assert [retry_delay_ms(response, i) for i in range(4)] == [2000, 4000, 8000, 16000]

    def test_rate_limit_uses_hint_or_default(self):
        assert retry_delay_ms(ProviderResponse(ResponseKind.RATE_LIMITED, 429, retry_after_ms=1234), 0) == 1234
        assert retry_delay_ms(ProviderResponse(ResponseKind.RATE_LIMITED, 429), 3) == 5000


class TestComplete:
    """Tests for the single provider call."""

    def test_sends_bearer_token_and_payload(self, client, session, settings):
        session.post.return_value = make_response(200, {'choices': []})

        result = client.complete('primary-model', MESSAGES)

        assert result.ok
        args, kwargs = session.post.call_args
        assert args[0] == settings.groq_url
        assert kwargs['headers']['Authorization'] == 'Bearer test-key'
        assert kwargs['json']['model'] == 'primary-model'
        assert kwargs['json']['messages'] == MESSAGES
        assert kwargs['json']['temperature'] == 0.25
        assert kwargs['json']['max_tokens'] == 1600

    def test_default_client_posts_without_shared_session(self, settings):
        client = GroqClient(settings)

        with patch('requests.post', return_value=make_response(200, {'choices': []})) as mock_post:
            result = client.complete('primary-model', MESSAGES)

        assert result.ok
        mock_post.assert_called_once()
        assert not isinstance(client.session, requests.Session)

    def test_network_error_raises_provider_network_error(self, client, session):
        session.post.side_effect = requests.ConnectionError('connection refused')

        with pytest.raises(ProviderNetworkError):
            client.complete('primary-model', MESSAGES)


class TestCompleteWithRetries:
    """Tests for the retry/backoff state machine."""

    def test_success_first_try_does_not_sleep(self, client, session, sleeps):
        session.post.return_value = make_response(200, {'choices': []})

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.status_code == 200
        assert session.post.call_count == 1
        assert sleeps == []

    def test_rate_limit_waits_retry_after_then_succeeds(self, client, session, sleeps):
        session.post.side_effect = [
            make_response(429, 'slow down', {'Retry-After': '2'}),
            make_response(200, {'choices': []}),
        ]

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.ok
        assert session.post.call_count == 2
        assert sleeps == [2.0]

    def test_infinite_retry_after_falls_back_to_body_hint(self, client, session, sleeps):
        session.post.side_effect = [
            make_response(429, 'Please try again in 1.5s.', {'Retry-After': 'inf'}),
            make_response(429, 'busy', {'Retry-After': '1e999'}),
            make_response(200, {'choices': []}),
        ]

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.ok
        assert session.post.call_count == 3
        assert sleeps == [1.5, 5.0]

    def test_rate_limit_without_hint_uses_default_delay(self, client, session, sleeps):
        session.post.side_effect = [
            make_response(429, 'busy'),
            make_response(200, {'choices': []}),
        ]

        client.complete_with_retries('primary-model', MESSAGES)

        assert sleeps == [5.0]

    def test_server_errors_exhaust_four_attempts(self, client, session, sleeps):
        session.post.side_effect = [make_response(500, 'upstream exploded') for _ in range(4)]

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert session.post.call_count == 4
        assert sleeps == [2.0, 4.0, 8.0]
        assert result.kind is ResponseKind.SERVER_ERROR
        assert result.body == 'upstream exploded'

    def test_not_found_stops_immediately(self, client, session, sleeps):
        session.post.return_value = make_response(404, 'model not found')

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.kind is ResponseKind.NOT_FOUND
        assert session.post.call_count == 1
        assert sleeps == []

    @pytest.mark.parametrize('status', [400, 401, 403, 422])
    def test_other_client_errors_are_not_retried(self, client, session, sleeps, status):
        session.post.return_value = make_response(status, 'bad request')

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.status_code == status
        assert session.post.call_count == 1
        assert sleeps == []

    def test_network_error_is_not_retried(self, client, session, sleeps):
        session.post.side_effect = requests.Timeout('read timed out')

        with pytest.raises(ProviderNetworkError):
            client.complete_with_retries('primary-model', MESSAGES)

        assert session.post.call_count == 1
        assert sleeps == []

    def test_network_error_after_transient_failure_propagates(self, client, session, sleeps):
        session.post.side_effect = [
            make_response(503, 'unavailable'),
            requests.ConnectionError('reset by peer'),
        ]

        with pytest.raises(ProviderNetworkError):
            client.complete_with_retries('primary-model', MESSAGES)

        assert session.post.call_count == 2
        assert sleeps == [2.0]

    def test_mixed_rate_limit_and_server_error_delays(self, client, session, sleeps):
        session.post.side_effect = [
            make_response(500, 'oops'),
            make_response(429, 'Please try again in 0.5s.'),
            make_response(502, 'bad gateway'),
            make_response(200, {'choices': []}),
        ]

        result = client.complete_with_retries('primary-model', MESSAGES)

        assert result.ok
        # attempt index drives the 5xx backoff: attempt 0 -> 2s, attempt 2 -> 8s
        assert sleeps == [2.0, 0.5, 8.0]
