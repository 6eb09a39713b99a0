"""
Provider-agnostic generation client.

Backs query expansion, key-point extraction and summarization with
Anthropic, OpenAI or Google Gemini behind one ``complete`` call.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

from .config import LLMConfig

logger = logging.getLogger("contextfusion.common.llm_client")

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google")


def resolve_provider(config: LLMConfig) -> str:
    """Resolve ``"auto"`` to the first provider that has an API key."""
    provider = (config.provider or "anthropic").lower()
    if provider != "auto":
        return provider
    for candidate, key in (
        ("anthropic", config.anthropic_api_key),
        ("openai", config.openai_api_key),
        ("google", config.google_api_key),
    ):
        if key:
            return candidate
    return "anthropic"


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        system_prompt: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.provider = (provider or "anthropic").lower()
        self.model = model
        self.system_prompt = system_prompt
        self.timeout = timeout
        self._client = None
        self._google_models = {}

        if self.provider == "auto":
            raise ValueError(
                '"auto" provider must be resolved before creating LLMClient. '
                "Use LLMClient.from_config() or resolve_provider()."
            )

        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        try:
            if self.provider == "anthropic":
                import anthropic

                self._client = anthropic.Anthropic(api_key=api_key)
            elif self.provider == "openai":
                from openai import OpenAI

                self._client = OpenAI(api_key=api_key)
            else:
                import google.generativeai as genai

                genai.configure(api_key=api_key)
                self._client = genai  # Store the module, not a model instance
        except ImportError:
            logger.warning("%s client package not installed", self.provider)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @classmethod
    def from_config(cls, config: LLMConfig, **kwargs) -> "LLMClient":
        provider = resolve_provider(config)
        return cls(
            provider=provider,
            model=config.model_for(provider),
            anthropic_api_key=config.anthropic_api_key,
            openai_api_key=config.openai_api_key,
            google_api_key=config.google_api_key,
            **kwargs,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def complete(self, prompt: str, max_tokens: int = 512) -> str:
        """GenerationProvider contract used by the engine."""
        return self.generate(
            prompt,
            system=self.system_prompt,
            max_tokens=max_tokens,
            timeout=self.timeout,
        )

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        if not self.is_available:
            raise RuntimeError("LLM client is not available")

        if self.provider == "anthropic":
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
                **kwargs,
            )
            return response.content[0].text.strip()

        if self.provider == "openai":
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        if self.provider == "google":
            cache_key = hashlib.md5((system or "").encode()).hexdigest()
            if cache_key not in self._google_models:
                kwargs = {"model_name": self.model}
                if system:
                    kwargs["system_instruction"] = system
                self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
            model = self._google_models[cache_key]
            response = model.generate_content(
                prompt,
                generation_config={"max_output_tokens": max_tokens, "temperature": 0.3},
                request_options={"timeout": timeout},
            )
            return response.text.strip()

        raise RuntimeError(f"Unsupported LLM provider: {self.provider}")
