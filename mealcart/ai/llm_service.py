"""LLM service for text completions across interchangeable providers."""

import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx
import redis.asyncio as redis
from openai import AsyncOpenAI

from mealcart import metrics
from mealcart.config import settings

logger = logging.getLogger(__name__)

PROVIDER_GROQ = "groq"
PROVIDER_OPENAI = "openai"
PROVIDER_OLLAMA = "ollama"


class LLMService:
    """
    Service for short text completions.

    Features:
    - Groq and OpenAI through the OpenAI-compatible client
    - Ollama through its HTTP chat endpoint
    - Provider auto-detection from configuration
    - Optional Redis response cache
    - Per-call timeout
    """

    def __init__(self, provider: Optional[str] = None):
        self._provider_override = provider
        self._client: Optional[AsyncOpenAI] = None
        self._http: Optional[httpx.AsyncClient] = None
        self._redis: Optional[redis.Redis] = None
        self._call_count: int = 0
        self._error_count: int = 0

    @property
    def provider(self) -> str:
        """Configured provider, else Ollama when a base URL is set, else Groq."""
        if self._provider_override:
            return self._provider_override.lower()
        if settings.llm_provider:
            return settings.llm_provider.lower()
        if settings.ollama_base_url:
            return PROVIDER_OLLAMA
        if not settings.groq_api_key and settings.openai_api_key:
            return PROVIDER_OPENAI
        return PROVIDER_GROQ

    @property
    def model(self) -> str:
        if self.provider == PROVIDER_OLLAMA:
            return settings.ollama_match_model
        return settings.llm_match_model

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the OpenAI-compatible client."""
        if self._client is None:
            if self.provider == PROVIDER_GROQ:
                if not settings.groq_api_key:
                    raise ValueError("Groq API key not configured and Ollama not configured")
                self._client = AsyncOpenAI(
                    api_key=settings.groq_api_key,
                    base_url=settings.groq_base_url,
                )
            else:
                if not settings.openai_api_key:
                    raise ValueError("OpenAI API key not configured")
                self._client = AsyncOpenAI(
                    api_key=settings.openai_api_key,
                    base_url=settings.openai_base_url or None,
                )
        return self._client

    async def _get_http(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for Ollama."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=settings.ollama_base_url or "http://127.0.0.1:11434",
                timeout=settings.llm_timeout_seconds,
            )
        return self._http

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get or create Redis connection for caching."""
        if not settings.llm_cache_enabled:
            return None

        if self._redis is None:
            try:
                self._redis = await redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Failed to connect to Redis for LLM cache: {e}")
                return None
        return self._redis

    def _get_cache_key(self, prompt: str, system_prompt: str, model: str) -> str:
        """Generate cache key for prompt."""
        combined = f"{system_prompt}:{prompt}:{model}"
        key_hash = hashlib.sha256(combined.encode('utf-8')).hexdigest()
        return f"llm_cache:{key_hash}"

    async def _call_openai_compatible(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        client = await self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=settings.llm_timeout_seconds,
        )
        return response.choices[0].message.content or ""

    async def _call_ollama(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        http = await self._get_http()
        response = await http.post(
            "/api/chat",
            json={
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
        )
        response.raise_for_status()
        data = response.json()
        return (data.get("message") or {}).get("content") or ""

    async def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        use_cache: bool = True,
    ) -> str:
        """
        Complete a prompt and return the response text.

        Args:
            prompt: User prompt
            system_prompt: System prompt/instructions
            temperature: Temperature (defaults to settings.llm_temperature)
            max_tokens: Response budget (defaults to settings.llm_max_tokens)
            use_cache: Whether to use the Redis cache

        Returns:
            Response text (may be empty)
        """
        temperature = temperature if temperature is not None else settings.llm_temperature
        max_tokens = max_tokens or settings.llm_max_tokens
        provider = self.provider

        redis_client = await self._get_redis() if use_cache else None
        if redis_client:
            cache_key = self._get_cache_key(prompt, system_prompt, self.model)
            cached = await redis_client.get(cache_key)
            if cached:
                logger.debug(f"LLM cache hit for prompt: {prompt[:50]}...")
                return cached

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            if provider == PROVIDER_OLLAMA:
                result = await self._call_ollama(messages, temperature, max_tokens)
            else:
                result = await self._call_openai_compatible(messages, temperature, max_tokens)
        except Exception as e:
            self._error_count += 1
            metrics.record_llm_call(provider, success=False)
            logger.error(f"LLM call via {provider} failed: {e}")
            raise

        self._call_count += 1
        metrics.record_llm_call(provider, success=True)

        if redis_client and result:
            await redis_client.setex(
                self._get_cache_key(prompt, system_prompt, self.model),
                settings.llm_cache_ttl_seconds,
                result,
            )

        return result

    def get_stats(self) -> Dict[str, Any]:
        """
        Get LLM service statistics.

        Returns:
            Dictionary with provider, model and call counts
        """
        return {
            "provider": self.provider,
            "model": self.model,
            "call_count": self._call_count,
            "error_count": self._error_count,
            "cache_enabled": settings.llm_cache_enabled,
        }

    async def close(self):
        """Close connections."""
        if self._redis:
            await self._redis.close()
            self._redis = None
        if self._client:
            await self._client.close()
            self._client = None
        if self._http:
            await self._http.aclose()
            self._http = None


# Global LLM service instance
llm_service = LLMService()
