"""Tests for LLM service."""

import json
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from mealcart.ai.llm_service import LLMService
from mealcart.config import settings


@pytest.fixture
def clean_settings(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "")
    monkeypatch.setattr(settings, "ollama_base_url", "")
    monkeypatch.setattr(settings, "groq_api_key", "")
    monkeypatch.setattr(settings, "openai_api_key", "")
    monkeypatch.setattr(settings, "llm_cache_enabled", False)
    return settings


def test_provider_defaults_to_groq(clean_settings):
    assert LLMService().provider == "groq"


def test_provider_prefers_ollama_when_configured(clean_settings, monkeypatch):
    monkeypatch.setattr(settings, "ollama_base_url", "http://127.0.0.1:11434")
    monkeypatch.setattr(settings, "groq_api_key", "gsk-test")

    service = LLMService()
    assert service.provider == "ollama"
    assert service.model == settings.ollama_match_model


def test_provider_falls_back_to_openai_key(clean_settings, monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")

    assert LLMService().provider == "openai"


def test_explicit_provider_wins(clean_settings, monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "OpenAI")
    monkeypatch.setattr(settings, "ollama_base_url", "http://127.0.0.1:11434")

    assert LLMService().provider == "openai"
    assert LLMService(provider="groq").provider == "groq"


@pytest.mark.asyncio
async def test_ollama_completion(clean_settings, monkeypatch):
    monkeypatch.setattr(settings, "ollama_base_url", "http://ollama.test")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "Toor Dal"}})

    service = LLMService()
    service._http = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))

    result = await service.complete("pick one", system_prompt="be brief")

    assert result == "Toor Dal"
    assert seen["path"] == "/api/chat"
    assert seen["body"]["stream"] is False
    assert seen["body"]["messages"][0] == {"role": "system", "content": "be brief"}
    assert service.get_stats()["call_count"] == 1
    await service.close()


@pytest.mark.asyncio
async def test_openai_compatible_completion(clean_settings):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="null"))])
    )
    service = LLMService(provider="groq")
    service._client = client

    result = await service.complete("pick one", temperature=0.2, max_tokens=10)

    assert result == "null"
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == settings.llm_match_model
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 10


@pytest.mark.asyncio
async def test_failed_call_is_counted_and_raised(clean_settings):
    service = LLMService(provider="groq")

    with pytest.raises(ValueError):
        await service.complete("pick one")

    stats = service.get_stats()
    assert stats["error_count"] == 1
    assert stats["call_count"] == 0


def test_get_stats(clean_settings):
    stats = LLMService().get_stats()

    assert stats == {
        "provider": "groq",
        "model": settings.llm_match_model,
        "call_count": 0,
        "error_count": 0,
        "cache_enabled": False,
    }


@pytest.mark.asyncio
async def test_live_groq_completion():
    """Basic completion against Groq (requires API key)."""
    if not os.getenv("GROQ_API_KEY"):
        pytest.skip("Groq API key not configured")

    service = LLMService(provider="groq")
    try:
        response = await service.complete("What is 2+2? Respond with only the number.", use_cache=False)
    finally:
        await service.close()

    assert response.strip()
