"""Tests for content generation (OpenAI SDK mocked)."""

from unittest.mock import MagicMock

import httpx
import openai
import pytest

from cardsync.errors import (
    GenerationAuthError,
    GenerationError,
    GenerationNetworkError,
    RateLimitedError,
)
from cardsync.generator import ContentGenerator, build_prompt
from cardsync.types import Category

URL = "https://api.openai.com/v1/chat/completions"


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", URL))


def _completion(content):
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    completion = MagicMock()
    completion.choices = [choice]
    return completion


@pytest.fixture
def client():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("  Definition: brief  ")
    return client


class TestBuildPrompt:
    def test_vocabulary_asks_for_examples(self):
        prompt = build_prompt(Category.VOCABULARY, "ephemeral")

        assert '"ephemeral"' in prompt
        assert "Example 2" in prompt

    def test_questions_include_context(self):
        prompt = build_prompt("questions", "Why?", "philosophy")

        assert "philosophy" in prompt

    def test_business_defaults_context(self):
        prompt = build_prompt("business", "Net 30")

        assert "various business contexts" in prompt

    @pytest.mark.parametrize("category", list(Category))
    def test_every_category_has_prompt(self, category):
        assert "sample" in build_prompt(category, "sample")

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            build_prompt("poetry", "x")


class TestGenerate:
    def test_returns_stripped_content(self, client):
        generator = ContentGenerator(client=client, model="test-model")

        text = generator.generate("vocabulary", "ephemeral")

        assert text == "Definition: brief"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 300
        assert kwargs["messages"][0]["role"] == "user"

    def test_empty_response(self, client):
        client.chat.completions.create.return_value = _completion("")
        generator = ContentGenerator(client=client)

        with pytest.raises(GenerationError, match="empty response"):
            generator.generate("other", "fact")

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(GenerationAuthError):
            ContentGenerator()

    def test_builds_sdk_client_from_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        generator = ContentGenerator("sk-test")

        assert isinstance(generator._client, openai.OpenAI)


class TestErrorClassification:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (
                openai.RateLimitError("slow down", response=_response(429), body=None),
                RateLimitedError,
            ),
            (
                openai.AuthenticationError("bad key", response=_response(401), body=None),
                GenerationAuthError,
            ),
            (
                openai.PermissionDeniedError("nope", response=_response(403), body=None),
                GenerationAuthError,
            ),
            (
                openai.APITimeoutError(request=httpx.Request("POST", URL)),
                GenerationNetworkError,
            ),
            (
                openai.APIConnectionError(request=httpx.Request("POST", URL)),
                GenerationNetworkError,
            ),
            (
                openai.InternalServerError("oops", response=_response(500), body=None),
                GenerationError,
            ),
        ],
        ids=["rate_limit", "auth", "permission", "timeout", "connection", "server"],
    )
    def test_sdk_errors_map(self, client, exc, expected):
        client.chat.completions.create.side_effect = exc
        generator = ContentGenerator(client=client)

        with pytest.raises(expected) as excinfo:
            generator.generate("vocabulary", "ephemeral")

        assert excinfo.value.__cause__ is exc
        assert str(excinfo.value).startswith("Failed to generate content")

    def test_server_error_is_plain_generation_error(self, client):
        client.chat.completions.create.side_effect = openai.InternalServerError(
            "oops", response=_response(500), body=None
        )
        generator = ContentGenerator(client=client)

        with pytest.raises(GenerationError) as excinfo:
            generator.generate("vocabulary", "ephemeral")

        assert type(excinfo.value) is GenerationError
        assert "500" in str(excinfo.value)
