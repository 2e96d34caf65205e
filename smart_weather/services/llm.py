"""
LLM Provider Abstraction Layer

The AI parsing capability talks to any OpenAI-compatible chat-completion
endpoint (OpenRouter by default). Providers return the raw response dict;
callers pull the text out with extract_content().
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import httpx
import logging

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """Base class for all LLM providers"""

    def __init__(self, model: str = ""):
        self.model = model

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Generate completion from LLM

        Args:
            prompt: User prompt
            system_prompt: System instructions
            temperature: Randomness (0.0-1.0)
            max_tokens: Maximum response length
            response_format: JSON schema for response
            **kwargs: Provider-specific options

        Returns:
            Dict with 'choices' containing completions
        """
        pass


class OpenAICompatibleProvider(BaseLLMProvider):
    """Chat-completion provider for OpenRouter and other OpenAI-compatible APIs"""

    def __init__(
        self,
        api_key: str,
        model: str = "google/gemini-2.5-flash-lite",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 10.0,
    ):
        super().__init__(model)
        if not api_key:
            raise ValueError("LLM API key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "smart-weather-router",
        }

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Generate completion using the chat/completions endpoint"""

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.1 if temperature is None else temperature,
            "max_tokens": max_tokens or 512,
            **kwargs
        }
        if response_format:
            payload["response_format"] = response_format

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=payload
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPError as e:
            # Exception text can echo request headers; log the type only
            logger.error("LLM API error: %s", type(e).__name__)
            raise


def extract_content(result: Dict[str, Any]) -> str:
    """Pull the first completion's text out of a chat-completion response."""
    choices = result.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


def create_llm_provider(settings: Optional[Settings] = None) -> Optional[BaseLLMProvider]:
    """
    Build the configured provider, or None when AI parsing is unavailable.

    A missing key or the disable flag degrades to rules-only parsing.
    """
    settings = settings or get_settings()
    if not settings.ai_enabled:
        reason = "disabled" if settings.disable_ai_parsing else "no LLM_API_KEY"
        logger.info("AI parsing unavailable (%s); using rules only", reason)
        return None

    logger.info("AI parsing via %s (model %s)", settings.llm_base_url, settings.llm_model)
    return OpenAICompatibleProvider(
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout=settings.ai_parse_timeout,
    )
