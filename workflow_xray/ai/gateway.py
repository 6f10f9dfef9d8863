"""
Workflow X-Ray
LLM Gateway.

Provider-agnostic router that returns raw completion text plus token counts.
The decomposition pipeline never talks to a provider directly.

    - Anthropic Claude provider (lazy client)
    - Local stub provider for dev/testing (no API key required)
    - Auto-retry with exponential backoff (1s, 2s, capped at 4s)
    - Token usage logging

Usage:
    from workflow_xray.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "..."}], model="claude-sonnet-4-20250514")
    result["content"], result["prompt_tokens"], result["completion_tokens"]
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod

import anthropic

from workflow_xray.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

LOCAL_STUB_MODEL = "local-stub"
MAX_BACKOFF_SECONDS = 4


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    name = "abstract"

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "anthropic"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-sonnet-4-20250514", **kwargs) -> dict:
        client = self._get_client()

        # Separate system message
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 8192),
            "temperature": kwargs.get("temperature", 0.2),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

        return {
            "content": text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── Local Stub Provider ───────────────────────────────────────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns a deterministic fenced-JSON decomposition.
    No API key required.
    """

    name = "local"

    def chat(self, messages: list, model: str = LOCAL_STUB_MODEL, **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg)

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": LOCAL_STUB_MODEL,
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        decomposition = {
            "title": "Content Review Workflow",
            "steps": [
                {
                    "id": "step_1", "name": "Draft content",
                    "description": "Writer prepares the first draft.",
                    "owner": "Writer", "layer": "human",
                    "inputs": ["brief"], "outputs": ["draft"], "tools": ["Google Docs"],
                    "automationScore": 20, "dependencies": [],
                },
                {
                    "id": "step_2", "name": "Review draft",
                    "description": "Editor reviews the draft and requests changes.",
                    "owner": "Editor", "layer": "human",
                    "inputs": ["draft"], "outputs": ["review notes"], "tools": ["Google Docs"],
                    "automationScore": 35, "dependencies": ["step_1"],
                },
                {
                    "id": "step_3", "name": "Publish",
                    "description": "Approved content is pushed to the CMS.",
                    "owner": "Editor", "layer": "integration",
                    "inputs": ["approved draft"], "outputs": ["published page"], "tools": ["CMS"],
                    "automationScore": 80, "dependencies": ["step_2"],
                },
            ],
            "gaps": [
                {
                    "type": "bottleneck", "severity": "medium", "stepIds": ["step_2"],
                    "description": "Every draft waits on a single editor for review.",
                    "suggestion": "Add a second reviewer or a review checklist.",
                    "confidence": "high",
                },
            ],
        }
        return "```json\n" + json.dumps(decomposition, indent=2) + "\n```"


# ── Gateway ───────────────────────────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all model calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Token usage logging

    Usage:
        gw = LLMGateway(app=flask_app)
        result = gw.chat(messages, model="claude-sonnet-4-20250514")
    """

    def __init__(self, app=None, providers: dict | None = None):
        self._app = app
        self._providers = dict(providers) if providers is not None else {}
        self.log_token_usage = bool(app.config.get("LOG_TOKEN_USAGE")) if app else False
        if providers is None:
            self._init_providers()

    def _init_providers(self):
        """Initialize available providers based on environment."""
        self._providers["local"] = LocalStubProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider()

    @staticmethod
    def provider_for_model(model: str) -> str:
        if model.startswith("claude"):
            return "anthropic"
        return "local"

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.provider_for_model(model)
        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        if "local" not in self._providers:
            raise GatewayError(f"No provider configured for model '{model}'",
                               provider=provider_name, model=model)

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(self, messages: list, model: str, *, max_retries: int = 3, **kwargs) -> dict:
        """
        Send a chat completion request with retry.

        Args:
            messages: Chat messages.
            model: Model identifier.
            max_retries: Number of attempts before giving up.
            **kwargs: temperature, max_tokens passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, provider, latency_ms}

        Raises:
            GatewayError: when every attempt failed.
        """
        provider, provider_name = self._get_provider(model)
        last_error = None

        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt < max_retries:
                    time.sleep(min(2 ** (attempt - 1), MAX_BACKOFF_SECONDS))
                continue

            result["latency_ms"] = int((time.time() - start_time) * 1000)
            result["provider"] = provider_name
            if self.log_token_usage:
                logger.info(
                    "LLM usage: model=%s provider=%s prompt_tokens=%d completion_tokens=%d latency_ms=%d",
                    result.get("model", model), provider_name,
                    result["prompt_tokens"], result["completion_tokens"], result["latency_ms"],
                )
            return result

        raise GatewayError(
            f"LLM call failed after {max_retries} retries: {last_error}",
            provider=provider_name,
            model=model,
        )
