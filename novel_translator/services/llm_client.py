"""
Completion client for the supported chat providers.

Each provider is served by an adapter that knows how to build the HTTP
request and parse the response. Most providers speak the OpenAI chat
completions format and differ only in headers or payload tweaks;
Anthropic has its own message format.

HTTP is done with requests in a worker thread so the async pipeline can
keep many calls in flight.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..errors import ConfigError, LLMFatalError, LLMRetryableError
from .providers import PROVIDERS, ModelConfig, find_model_config

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT = (10, 300)  # (connect, read) seconds

# Which parts of each interaction are written to the log
LOG_LLM = {
    "system": False,
    "user": True,
    "reasoning": False,
    "assistant": True,
}

GOOGLE_THINKING_BUDGET = {
    "minimal": 0,
    "low": 128,
    "medium": 2048,
    "high": 8192,
}


@dataclass
class RequestDetails:
    """A fully built HTTP request."""
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]


class OpenAIAdapter:
    """OpenAI-style chat completions; base for most providers."""

    temperature = 0.6
    top_p = 0.95

    def build_request(
        self,
        endpoint: str,
        model_id: str,
        messages: List[Dict[str, str]],
        model_config: ModelConfig,
        api_key: str,
    ) -> RequestDetails:
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": model_config.tokens or DEFAULT_MAX_TOKENS,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        payload = self.modify_payload(payload, model_config)

        headers = self.modify_headers({"Content-Type": "application/json"})
        headers["Authorization"] = f"Bearer {api_key}"
        return RequestDetails(url=endpoint, headers=headers, payload=payload)

    def modify_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        return headers

    def modify_payload(self, payload: Dict[str, Any], model_config: ModelConfig) -> Dict[str, Any]:
        return payload

    def parse_response(self, response: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        """
        Extract the completion and optional reasoning text.

        Raises:
            LLMRetryableError: If the body carries an error or has no choices
        """
        if response.get("error"):
            error = response["error"]
            message = error.get("message") if isinstance(error, dict) else None
            raise LLMRetryableError(f"API Error: {message or error}")
        choices = response.get("choices")
        if not choices:
            raise LLMRetryableError("Invalid response: missing choices.")
        message = choices[0].get("message") or {}
        return message.get("content") or "", message.get("reasoning")


class OpenRouterAdapter(OpenAIAdapter):
    """Pins upstream providers and passes the reasoning setting through."""

    REFERER = "https://github.com/novel-translator/novel-translator"
    TITLE = "Novel Translator"

    def modify_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        return {**headers, "HTTP-Referer": self.REFERER, "X-Title": self.TITLE}

    def modify_payload(self, payload: Dict[str, Any], model_config: ModelConfig) -> Dict[str, Any]:
        if model_config.providers:
            payload["provider"] = {
                "order": model_config.providers,
                "allow_fallbacks": False,
            }

        reasoning = model_config.reasoning
        if reasoning is None or reasoning is False:
            return payload
        if isinstance(reasoning, bool):
            payload["reasoning"] = {"enabled": True}
        elif isinstance(reasoning, int):
            payload["reasoning"] = {"max_tokens": reasoning}
        else:
            payload["reasoning"] = {"effort": reasoning}
        return payload


class XAIAdapter(OpenAIAdapter):
    def modify_payload(self, payload: Dict[str, Any], model_config: ModelConfig) -> Dict[str, Any]:
        payload["max_completion_tokens"] = payload.pop("max_tokens")
        if model_config.reasoning:
            payload["reasoning_mode"] = model_config.reasoning
        return payload


class GoogleAdapter(OpenAIAdapter):
    """Gemini through its OpenAI-compatible endpoint; effort maps to a thinking budget."""

    def modify_payload(self, payload: Dict[str, Any], model_config: ModelConfig) -> Dict[str, Any]:
        budget = GOOGLE_THINKING_BUDGET.get(model_config.reasoning) if isinstance(model_config.reasoning, str) else None
        if budget is not None:
            payload["extra_body"] = {
                "google": {
                    "thinking_config": {
                        "thinking_budget": budget,
                        "include_thoughts": True,
                    },
                },
            }
        return payload


class AnthropicAdapter:
    """Anthropic messages API."""

    VERSION = "2023-06-01"

    def build_request(
        self,
        endpoint: str,
        model_id: str,
        messages: List[Dict[str, str]],
        model_config: ModelConfig,
        api_key: str,
    ) -> RequestDetails:
        system = next((m["content"] for m in messages if m["role"] == "system"), "")
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": self.VERSION,
        }
        payload = {
            "model": model_id,
            "messages": [m for m in messages if m["role"] != "system"],
            "system": system,
            "max_tokens": 8192,
            "temperature": 0.5,
        }
        return RequestDetails(url=endpoint, headers=headers, payload=payload)

    def parse_response(self, response: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        if response.get("type") == "error":
            error = response.get("error") or {}
            raise LLMRetryableError(f"Anthropic API Error: {error.get('message')}")
        try:
            text = response["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text:
            raise LLMRetryableError("Invalid Anthropic response.")
        return text, None


ADAPTERS: Dict[str, Any] = {
    "openai": OpenAIAdapter(),
    "deepseek": OpenAIAdapter(),
    "nanogpt": OpenAIAdapter(),
    "openrouter": OpenRouterAdapter(),
    "xai": XAIAdapter(),
    "google": GoogleAdapter(),
    "anthropic": AnthropicAdapter(),
}


def classify_http_error(status_code: int, response_text: str) -> LLMRetryableError | LLMFatalError:
    """Map an HTTP error status to a retryable or fatal error."""
    message = f"HTTP {status_code}: {response_text[:200]}"
    if status_code == 429 or 500 <= status_code < 600:
        return LLMRetryableError(message, status_code)
    if status_code in (400, 401, 402, 403, 404):
        return LLMFatalError(message, status_code)
    return LLMRetryableError(message, status_code)


class LLMClient:
    """
    One model from one provider.

    Usage:
        client = LLMClient.for_model("1-4", api_keys)
        text = await client.completion(system_prompt, user_prompt)
    """

    def __init__(
        self,
        provider_key: str,
        model_config: ModelConfig,
        api_key: str,
        endpoint: str,
        adapters: Optional[Dict[str, Any]] = None,
        timeout: Tuple[int, int] = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            provider_key: Catalog provider key, e.g. "openrouter"
            model_config: Catalog entry of the model
            api_key: Provider API key
            endpoint: Chat completions URL
            adapters: Adapter registry (defaults to ADAPTERS)
            timeout: (connect_timeout, read_timeout) in seconds
            session: requests session to post with

        Raises:
            ValueError: If no adapter is registered for the provider
        """
        registry = adapters if adapters is not None else ADAPTERS
        if provider_key not in registry:
            raise ValueError(f"No adapter found for provider: {provider_key}")

        self.provider = provider_key
        self.model_id = model_config.model
        self.model_config = model_config
        self._api_key = api_key
        self._endpoint = endpoint
        self._adapter = registry[provider_key]
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def for_model(cls, model_id: str, api_keys: Dict[str, str], **kwargs: Any) -> LLMClient:
        """
        Build a client for a catalog model id.

        Raises:
            ConfigError: If the model is unknown or its provider has no API key
        """
        provider_key, model_config = find_model_config(model_id)
        api_key = api_keys.get(provider_key)
        if not api_key:
            raise ConfigError(f"API key missing for provider: {provider_key}")
        return cls(provider_key, model_config, api_key, PROVIDERS[provider_key].endpoint, **kwargs)

    async def completion(self, system: str, user: str) -> str:
        """
        Send one completion request.

        Raises:
            LLMRetryableError: Network errors, rate limits, 5xx, malformed payloads
            LLMFatalError: Auth and bad request errors
        """
        messages = self.build_messages(system, user)
        details = self._adapter.build_request(
            self._endpoint, self.model_id, messages, self.model_config, self._api_key
        )
        try:
            response = await asyncio.to_thread(self._post, details)
            completion, reasoning = self._adapter.parse_response(response)
        except Exception as e:
            logger.error("LLMClient error for %s/%s: %s", self.provider, self.model_id, e)
            raise

        self._log_interaction(messages, reasoning, completion)
        return completion

    @staticmethod
    def build_messages(system: str, user: str) -> List[Dict[str, str]]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        return messages

    def _post(self, details: RequestDetails) -> Dict[str, Any]:
        try:
            response = self._session.post(
                details.url,
                headers=details.headers,
                json=details.payload,
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as e:
            raise LLMRetryableError(f"Request timeout: {e}")
        except requests.exceptions.RequestException as e:
            raise LLMRetryableError(f"Network error: {e}")

        if not response.ok:
            raise classify_http_error(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise LLMRetryableError(f"Invalid JSON response: {e}", response.status_code)
        if not isinstance(data, dict):
            raise LLMRetryableError("Invalid response: expected a JSON object", response.status_code)
        return data

    def _log_interaction(
        self, messages: List[Dict[str, str]], reasoning: Optional[str], completion: str
    ) -> None:
        system = next((m["content"] for m in messages if m["role"] == "system"), "")
        user = next((m["content"] for m in messages if m["role"] == "user"), "")

        sections = []
        if system and LOG_LLM["system"]:
            sections.append(("[System]", system))
        if user and LOG_LLM["user"]:
            sections.append(("[User]", user))
        if reasoning and LOG_LLM["reasoning"]:
            sections.append(("[Reasoning]", reasoning))
        if completion and LOG_LLM["assistant"]:
            sections.append(("[Assistant]", completion))
        if not sections:
            return

        body = ("\n" + "-" * 80 + "\n").join(f"{title}:\n{content}" for title, content in sections)
        logger.debug("%s\n%s", "=" * 80, body)
