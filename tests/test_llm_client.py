"""Tests for timemachine.llm.client: retries and error mapping around the Anthropic API."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

from timemachine.exceptions import GenerationError
from timemachine.llm.client import MAX_RETRIES, AnthropicGenerator

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _rate_limit_error() -> anthropic.RateLimitError:
    return anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=_REQUEST), body=None
    )


def _response(*texts: str) -> MagicMock:
    response = MagicMock()
    response.content = [MagicMock(text=text) for text in texts]
    return response


class TestAnthropicGenerator:
    def test_returns_joined_text(self):
        client = MagicMock()
        client.messages.create.return_value = _response("  {\"answer\": ", "\"ok\"}  ")
        generator = AnthropicGenerator(client, model="claude-test")

        assert generator.generate("prompt", 1500) == '{"answer": "ok"}'
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 1500
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_empty_content(self):
        client = MagicMock()
        client.messages.create.return_value = _response()
        assert AnthropicGenerator(client).generate("prompt", 10) == ""

    @patch("timemachine.llm.client.time.sleep")
    def test_retries_rate_limit(self, mock_sleep):
        client = MagicMock()
        client.messages.create.side_effect = [_rate_limit_error(), _response("done")]

        assert AnthropicGenerator(client).generate("prompt", 10) == "done"
        assert client.messages.create.call_count == 2
        mock_sleep.assert_called_once_with(2.0)

    @patch("timemachine.llm.client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        client = MagicMock()
        client.messages.create.side_effect = [_rate_limit_error() for _ in range(MAX_RETRIES)]

        with pytest.raises(GenerationError, match="Rate limited"):
            AnthropicGenerator(client).generate("prompt", 10)
        assert client.messages.create.call_count == MAX_RETRIES
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0]

    def test_connection_error_becomes_generation_error(self):
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(request=_REQUEST)

        with pytest.raises(GenerationError, match="Text generation failed"):
            AnthropicGenerator(client).generate("prompt", 10)
        assert client.messages.create.call_count == 1
