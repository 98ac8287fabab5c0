"""Tests for leadchat.services.llm_client — backend dispatch, retries, breakers."""
import time
from unittest.mock import patch, MagicMock

import pytest

from leadchat.services.circuit_breaker import CircuitOpenError, get_breaker
from leadchat.services.llm_client import (
    complete, LLMError, LLMConfigError, LLMUnavailableError,
)


def _openai_mock(text='hello'):
    client = MagicMock()
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    client.chat.completions.create.return_value = response
    return client


class TestDispatch:
    """Backend selection."""

    def test_unknown_backend(self):
        with pytest.raises(LLMConfigError):
            complete('hi', backend='gpt-banana')

    def test_openai(self):
        client = _openai_mock('  Hi there  ')
        with patch('leadchat.extensions.openai_client', client):
            assert complete('hi', backend='openai', max_tokens=50, timeout=3) == 'Hi there'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs['messages'] == [{'role': 'user', 'content': 'hi'}]
        assert kwargs['max_tokens'] == 50
        assert kwargs['timeout'] == 3

    def test_openai_not_configured(self):
        with patch('leadchat.extensions.openai_client', None):
            with pytest.raises(LLMUnavailableError):
                complete('hi', backend='openai')

    def test_anthropic_joins_text_blocks(self):
        client = MagicMock()
        first, tool, second = MagicMock(), MagicMock(), MagicMock()
        first.type, first.text = 'text', 'Hello '
        tool.type, tool.text = 'tool_use', 'IGNORED'
        second.type, second.text = 'text', 'world'
        client.messages.create.return_value.content = [first, tool, second]
        with patch('leadchat.extensions.anthropic_client', client):
            assert complete('hi', backend='anthropic') == 'Hello world'

    def test_ollama(self):
        resp = MagicMock()
        resp.json.return_value = {'message': {'content': 'local reply'}}
        with patch('leadchat.services.llm_client.requests.post', return_value=resp) as post:
            assert complete('hi', backend='OLLAMA', timeout=7) == 'local reply'
        assert post.call_args.kwargs['timeout'] == 7
        assert post.call_args.kwargs['json']['stream'] is False
        resp.raise_for_status.assert_called_once()


class TestRetries:
    """Rate limits retried, everything else wrapped once."""

    def test_rate_limit_retried_then_succeeds(self):
        client = _openai_mock('ok')
        ok = client.chat.completions.create.return_value
        client.chat.completions.create.side_effect = [Exception('Error 429: rate limit'), ok]
        with patch('leadchat.extensions.openai_client', client), \
             patch('leadchat.services.llm_client.time.sleep') as sleep:
            assert complete('hi') == 'ok'
        sleep.assert_called_once_with(2)

    def test_rate_limit_exhausts_retries(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = Exception('rate_limit_exceeded')
        with patch('leadchat.extensions.openai_client', client), \
             patch('leadchat.services.llm_client.time.sleep'):
            with pytest.raises(LLMError):
                complete('hi', max_retries=2)
        assert client.chat.completions.create.call_count == 3

    def test_other_error_not_retried(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = ValueError('bad request')
        with patch('leadchat.extensions.openai_client', client):
            with pytest.raises(LLMError) as exc_info:
                complete('hi')
        assert client.chat.completions.create.call_count == 1
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_open_breaker_fails_fast(self):
        client = _openai_mock()
        cb = get_breaker('openai')
        for _ in range(cb.failure_threshold):
            with pytest.raises(RuntimeError):
                cb.call(MagicMock(side_effect=RuntimeError('down')))
        with patch('leadchat.extensions.openai_client', client):
            with pytest.raises(LLMError) as exc_info:
                complete('hi')
        assert isinstance(exc_info.value.__cause__, CircuitOpenError)
        client.chat.completions.create.assert_not_called()

    def test_no_retry_when_backoff_would_pass_deadline(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = Exception('Error 429: rate limit')
        with patch('leadchat.extensions.openai_client', client), \
             patch('leadchat.services.llm_client.time.sleep') as sleep:
            with pytest.raises(LLMError):
                complete('hi', max_retries=2, deadline=time.monotonic() + 1)
        assert client.chat.completions.create.call_count == 1
        sleep.assert_not_called()

    def test_passed_deadline_makes_no_call(self):
        client = _openai_mock('ok')
        with patch('leadchat.extensions.openai_client', client):
            with pytest.raises(LLMError):
                complete('hi', deadline=time.monotonic() - 1)
        client.chat.completions.create.assert_not_called()

    def test_attempt_timeout_capped_to_time_left(self):
        client = _openai_mock('ok')
        with patch('leadchat.extensions.openai_client', client):
            assert complete('hi', timeout=20, deadline=time.monotonic() + 5) == 'ok'
        assert client.chat.completions.create.call_args.kwargs['timeout'] <= 5
