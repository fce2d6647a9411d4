"""LLM chat-completion service.

Calls an OpenAI-compatible router (OpenRouter by default) through the OpenAI
client. Retries with capped exponential backoff and jitter are handled by the
client itself, bounded by ``max_retries`` and a per-attempt ``timeout``.
"""

import hashlib
import logging
from typing import Dict, List, Optional

import openai
from openai import OpenAI

from autotune.config import OpenRouterConfig

logger = logging.getLogger(__name__)

# Key: (base_url, key_hash, timeout, max_retries) -> OpenAI client
_client_cache = {}


def _get_token_hash(token: str) -> str:
    """Get a hash of the key for cache lookups (don't store the key itself)."""
    return hashlib.sha256(token.encode()).hexdigest()[:16]


class LLMCallError(RuntimeError):
    """Raised when a chat completion fails after all retries."""


class LLMService:
    """Thin wrapper exposing a single ``invoke`` capability."""

    def __init__(self, config: OpenRouterConfig, client: Optional[OpenAI] = None):
        """Initialize the LLM service.

        Args:
            config: Router connection settings
            client: Pre-built client, mainly for tests
        """
        if client is not None:
            self.client = client
            return

        if not config.api_key:
            raise ValueError("OPENROUTER_API_KEY is missing")

        headers = {}
        if config.site_url:
            headers["HTTP-Referer"] = config.site_url
        if config.site_name:
            headers["X-Title"] = config.site_name

        cache_key = (config.base_url, _get_token_hash(config.api_key), config.timeout_seconds, config.max_retries)
        if cache_key in _client_cache:
            self.client = _client_cache[cache_key]
            logger.debug(f"Reusing cached OpenAI client for {config.base_url}")
        else:
            self.client = OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_seconds,
                max_retries=config.max_retries,
                default_headers=headers or None,
            )
            _client_cache[cache_key] = self.client
            logger.info(f"Initialized OpenAI client for {config.base_url}")

    def invoke(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        """Run one chat completion and return the first choice's text.

        Args:
            model: Model identifier understood by the router
            messages: Chat messages with role system, user or assistant
            temperature: Sampling temperature
            max_output_tokens: Optional completion token cap

        Returns:
            The reply text, or an empty string when the model returned none.
        """
        params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_output_tokens is not None:
            params["max_tokens"] = max_output_tokens

        try:
            response = self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            logger.error(f"Chat completion failed for model {model}: {e}")
            raise LLMCallError(f"Chat completion failed for model {model}: {e}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
