"""
Tests for the /api/analyze, /api/chat and /api/extract-text endpoints.
Flask's test client drives the app; the provider and data store are mocked.
"""
import io
import json

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from unittest.mock import MagicMock

from main import create_app
from consentlens.config import Settings
from consentlens.models import FALLBACK_RESULT
from consentlens.services.chat_service import ChatOutcome
from consentlens.services.groq_client import GroqClient


ANALYSIS = {
    'complianceScore': 64,
    'riskLevel': 'medium',
    'keyPoints': ['Location data is shared with advertisers.'],
    'recommendations': [
        {'title': 'Add opt-out', 'description': 'Offer a do-not-sell link.', 'severity': 'high', 'category': 'rights'},
    ],
}


def make_response(status: int, body=None, headers: dict = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    response._content = (body or '').encode('utf-8')
    response.encoding = 'utf-8'
    response.headers = CaseInsensitiveDict(headers or {})
    return response


def completion(content: str) -> dict:
    return {'choices': [{'message': {'role': 'assistant', 'content': content}}]}


@pytest.fixture
def settings():
    return Settings(groq_api_key='test-key', groq_model='primary-model', groq_fallback_model='backup-model')


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def store():
    return MagicMock()


@pytest.fixture
def chat_service():
    return MagicMock()


@pytest.fixture
def app(settings, http, store, chat_service):
    groq = GroqClient(settings, session=http, sleep=lambda seconds: None)
    app = create_app(settings, store=store, groq_client=groq, chat_service=chat_service)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


class TestAnalyzeEndpoint:
    def test_missing_fields_return_400(self, client, http):
        response = client.post('/api/analyze', json={'content': 'Some policy'})

        assert response.status_code == 400
        assert response.get_json() == {'error': 'Missing content or lawRegion'}
        http.post.assert_not_called()

    def test_non_json_body_returns_400(self, client):
        response = client.post('/api/analyze', data='not json', content_type='text/plain')

        assert response.status_code == 400

    def test_successful_analysis(self, client, http, store):
        http.post.return_value = make_response(200, completion(json.dumps(ANALYSIS)))

        response = client.post('/api/analyze', json={
            'content': 'We share your location with partners.',
            'lawRegion': 'ccpa',
            'documentId': 'doc-9',
        })

        assert response.status_code == 200
        assert response.get_json() == ANALYSIS
        store.insert.assert_called_once()
        assert store.insert.call_args[0][1]['document_id'] == 'doc-9'

    def test_unconfigured_provider_returns_fallback(self, store, chat_service):
        app = create_app(Settings(groq_api_key=None), store=store, chat_service=chat_service)

        response = app.test_client().post('/api/analyze', json={'content': 'text', 'lawRegion': 'gdpr'})

        assert response.status_code == 200
        assert response.get_json() == FALLBACK_RESULT.to_dict()

    def test_provider_failure_in_strict_mode_returns_502(self, http, store, chat_service):
        settings = Settings(groq_api_key='test-key', groq_model='primary-model', use_fallback=False)
        groq = GroqClient(settings, session=http, sleep=lambda seconds: None)
        app = create_app(settings, store=store, groq_client=groq, chat_service=chat_service)
        http.post.return_value = make_response(401, 'invalid key')

        response = app.test_client().post('/api/analyze', json={'content': 'text', 'lawRegion': 'gdpr'})

        assert response.status_code == 502
        assert response.get_json() == {'error': 'Groq API failed', 'status': 401, 'details': 'invalid key'}

    def test_unexpected_error_returns_500(self, app, client):
        pipeline = MagicMock()
        pipeline.analyze.side_effect = KeyError('boom')
        app.extensions['analysis_pipeline'] = pipeline

        response = client.post('/api/analyze', json={'content': 'text', 'lawRegion': 'gdpr'})

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Internal error'


class TestChatEndpoint:
    def test_forwards_fields_to_chat_service(self, client, chat_service):
        chat_service.answer.return_value = ChatOutcome(200, {'content': 'Yes, deletion is allowed.'})
        history = [{'role': 'user', 'content': 'Hi'}]

        response = client.post('/api/chat', json={
            'documentContent': 'Policy text',
            'question': 'Can I delete my data?',
            'lawRegion': 'EU',
            'chatHistory': history,
        })

        assert response.status_code == 200
        assert response.get_json() == {'content': 'Yes, deletion is allowed.'}
        chat_service.answer.assert_called_once_with(
            document_content='Policy text',
            question='Can I delete my data?',
            law_region='EU',
            chat_history=history,
        )

    def test_status_from_outcome(self, client, chat_service):
        chat_service.answer.return_value = ChatOutcome(400, {'error': 'Missing documentContent or question'})

        response = client.post('/api/chat', json={})

        assert response.status_code == 400

    def test_unexpected_error_returns_500(self, client, chat_service):
        chat_service.answer.side_effect = RuntimeError('kaboom')

        response = client.post('/api/chat', json={'documentContent': 'x', 'question': 'y'})

        assert response.status_code == 500
        assert response.get_json() == {'error': 'Internal server error'}


class TestExtractTextEndpoint:
    def test_no_file_returns_400(self, client):
        response = client.post('/api/extract-text', data={}, content_type='multipart/form-data')

        assert response.status_code == 400
        assert response.get_json() == {'error': 'No file uploaded'}

    def test_text_file_is_extracted(self, client):
        data = {'file': (io.BytesIO(b'Privacy Policy\r\n\r\n\r\n\r\nWe   collect email.'), 'policy.txt')}

        response = client.post('/api/extract-text', data=data, content_type='multipart/form-data')

        assert response.status_code == 200
        assert response.get_json() == {
            'title': 'policy.txt',
            'fileType': 'text/plain',
            'content': 'Privacy Policy\n\nWe collect email.',
        }

    def test_unsupported_file_returns_400(self, client):
        data = {'file': (io.BytesIO(b'\x89PNG'), 'scan.png')}

        response = client.post('/api/extract-text', data=data, content_type='multipart/form-data')

        assert response.status_code == 400
        assert 'Unsupported file format' in response.get_json()['error']


class TestHealth:
    def test_health_reports_configuration(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['provider_configured'] is True
