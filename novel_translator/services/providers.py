"""
Model catalog for the supported completion providers.

Each provider lists its endpoint, the environment variable holding its API
key, its models and which models may be used for each pipeline stage.
Model ids ("1-4", "3-3", ...) are unique across all providers and are what
the configuration refers to.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from ..errors import ConfigError

STAGES = ("stage1", "stage2", "stage3a", "stage3b")

ReasoningSetting = Union[bool, int, str]


class ModelConfig(BaseModel):
    """One selectable model."""
    id: str = Field(..., description="Catalog id, unique across providers")
    model: str = Field(..., description="Model name sent to the provider")
    label: str = Field(..., description="Human readable name")
    providers: Optional[List[str]] = Field(
        None, description="Upstream provider order (OpenRouter only)"
    )
    reasoning: Optional[ReasoningSetting] = Field(
        None, description="Reasoning toggle, token budget or effort level"
    )
    tokens: Optional[int] = Field(None, description="Max output tokens override")


class ProviderConfig(BaseModel):
    """Endpoint, models and per-stage limits for one provider."""
    endpoint: str
    api_key_env: str
    models: List[ModelConfig]
    limits: Dict[str, Union[str, List[str]]] = Field(
        default_factory=dict, description="'all' or a list of model ids per stage"
    )

    def allows(self, stage: str, model_id: str) -> bool:
        allowed = self.limits.get(stage, "all")
        if allowed == "all":
            return True
        return model_id in allowed


def _models(*rows: dict) -> List[ModelConfig]:
    return [ModelConfig(**row) for row in rows]


PROVIDERS: Dict[str, ProviderConfig] = {
    "openrouter": ProviderConfig(
        endpoint="https://openrouter.ai/api/v1/chat/completions",
        api_key_env="OPENROUTER_API_KEY",
        models=_models(
            {"id": "1-1", "model": "moonshotai/kimi-k2-0905", "label": "Kimi K2 0905", "providers": ["DeepInfra", "Chutes"]},
            {"id": "1-2", "model": "google/gemini-2.5-pro-preview", "label": "Gemini Pro 2.5", "providers": ["Google AI Studio", "Google"]},
            {"id": "1-3", "model": "google/gemini-2.5-flash", "label": "Gemini Flash 2.5", "providers": ["Google AI Studio", "Google"]},
            {"id": "1-4", "model": "google/gemini-2.5-flash-lite-preview-06-17", "label": "Gemini Flash-Lite 2.5", "providers": ["Google AI Studio", "Google"]},
            {"id": "1-5", "model": "z-ai/glm-4-32b", "label": "GLM 4 32b", "providers": ["z-ai"], "tokens": 8192},
            {"id": "1-6", "model": "deepseek/deepseek-v3.2-exp", "label": "DeepSeek V3.2 (R)", "providers": ["DeepInfra", "DeepSeek", "Novita"], "reasoning": True, "tokens": 8192},
            {"id": "1-7", "model": "x-ai/grok-4-fast", "label": "Grok 4 Fast (R)", "providers": ["xAI"], "reasoning": True, "tokens": 8192},
            {"id": "1-8", "model": "x-ai/grok-4-fast", "label": "Grok 4 Fast", "providers": ["xAI"], "reasoning": False},
            {"id": "1-9", "model": "z-ai/glm-4.6", "label": "GLM 4.6", "providers": ["z-ai"], "tokens": 8192},
            {"id": "1-10", "model": "anthropic/claude-sonnet-4.5", "label": "Sonnet 4.5"},
        ),
        limits={
            "stage1": "all",
            "stage2": ["1-4", "1-5", "1-8"],
            "stage3a": ["1-1", "1-3", "1-6", "1-7", "1-8"],
            "stage3b": "all",
        },
    ),
    "openai": ProviderConfig(
        endpoint="https://api.openai.com/v1/chat/completions",
        api_key_env="OPENAI_API_KEY",
        models=_models(
            {"id": "3-1", "model": "gpt-5", "label": "GPT-5 (R: Low)", "reasoning": "low"},
            {"id": "3-2", "model": "gpt-5", "label": "GPT-5 (R: High)", "reasoning": "high", "tokens": 8192},
            {"id": "3-3", "model": "gpt-5-mini", "label": "GPT-5 Mini (R: Off)", "reasoning": "minimal"},
            {"id": "3-4", "model": "gpt-5-nano", "label": "GPT-5 Nano (R: Off)", "reasoning": "minimal"},
        ),
        limits={"stage1": "all", "stage2": ["3-4"], "stage3a": ["3-3", "3-4"], "stage3b": "all"},
    ),
    "anthropic": ProviderConfig(
        endpoint="https://api.anthropic.com/v1/messages",
        api_key_env="ANTHROPIC_API_KEY",
        models=_models(
            {"id": "2-1", "model": "claude-sonnet-4-5", "label": "Sonnet 4.5"},
            {"id": "2-2", "model": "claude-haiku-4-5", "label": "Haiku 4.5"},
        ),
        limits={"stage1": "all", "stage2": ["2-2"], "stage3a": ["2-2"], "stage3b": "all"},
    ),
    "deepseek": ProviderConfig(
        endpoint="https://api.deepseek.com/v1/chat/completions",
        api_key_env="DEEPSEEK_API_KEY",
        models=_models(
            {"id": "4-1", "model": "deepseek-chat", "label": "DeepSeek V3.2 Exp (R: Off)", "reasoning": False},
            {"id": "4-3", "model": "deepseek-reasoner", "label": "DeepSeek V3.2 Exp (R: On)", "reasoning": True, "tokens": 8192},
        ),
        limits={"stage1": "all", "stage2": ["4-1"], "stage3a": ["4-1"], "stage3b": "all"},
    ),
    "xai": ProviderConfig(
        endpoint="https://api.x.ai/v1/chat/completions",
        api_key_env="XAI_API_KEY",
        models=_models(
            {"id": "5-1", "model": "grok-4-fast-reasoning", "label": "Grok 4 Fast (R)", "tokens": 8192},
            {"id": "5-2", "model": "grok-4-fast-non-reasoning", "label": "Grok 4 Fast"},
            {"id": "5-3", "model": "grok-4", "label": "Grok 4", "tokens": 8192},
        ),
        limits={"stage1": "all", "stage2": ["5-2"], "stage3a": ["5-1", "5-2"], "stage3b": ["5-1", "5-2"]},
    ),
    "google": ProviderConfig(
        endpoint="https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
        api_key_env="GEMINI_API_KEY",
        models=_models(
            {"id": "6-1", "model": "gemini-2.5-pro", "label": "Gemini Pro 2.5 (R: Med)", "reasoning": "medium", "tokens": 8192},
            {"id": "6-2", "model": "gemini-2.5-pro", "label": "Gemini Pro 2.5 (R: Low)", "reasoning": "low"},
            {"id": "6-3", "model": "gemini-2.5-flash-lite-preview-09-2025", "label": "Gemini Flash-Lite 2.5 (R: Med)", "reasoning": "medium", "tokens": 8192},
            {"id": "6-4", "model": "gemini-2.5-flash-lite-preview-09-2025", "label": "Gemini Flash-Lite 2.5 (R: Off)", "reasoning": "minimal"},
            {"id": "6-5", "model": "gemini-2.5-flash-preview-09-2025", "label": "Gemini Flash 2.5 (R: Med)", "reasoning": "medium", "tokens": 8192},
            {"id": "6-6", "model": "gemini-2.5-flash-preview-09-2025", "label": "Gemini Flash 2.5 (R: Off)", "reasoning": "minimal"},
        ),
        limits={"stage1": "all", "stage2": ["6-4", "6-6"], "stage3a": ["6-3", "6-4", "6-5", "6-6"], "stage3b": "all"},
    ),
    "nanogpt": ProviderConfig(
        endpoint="https://nano-gpt.com/api/v1/chat/completions",
        api_key_env="NANOGPT_API_KEY",
        models=_models(
            {"id": "7-1", "model": "deepseek-ai/deepseek-v3.2-exp", "label": "[NG] DeepSeek V3.2 (R: Off)"},
            {"id": "7-2", "model": "deepseek-ai/deepseek-v3.2-exp-thinking", "label": "[NG] DeepSeek V3.2 (R: On)", "tokens": 8192},
            {"id": "7-3", "model": "moonshotai/Kimi-K2-Instruct-0905", "label": "[NG] Kimi K2 0905"},
            {"id": "7-4", "model": "z-ai/glm-4.6", "label": "[NG] GLM 4.6"},
        ),
        limits={"stage1": "all", "stage2": ["7-1", "7-3"], "stage3a": ["7-1", "7-3", "7-4"], "stage3b": "all"},
    ),
}


def find_model_config(model_id: str) -> Tuple[str, ModelConfig]:
    """
    Look up a model by catalog id.

    Returns:
        Tuple of (provider_key, model_config)

    Raises:
        ConfigError: If no provider lists the id
    """
    for provider_key, provider in PROVIDERS.items():
        for model in provider.models:
            if model.id == model_id:
                return provider_key, model
    raise ConfigError(f"No model found with ID: {model_id}")


def available_models(api_keys: Dict[str, str], stage: Optional[str] = None) -> List[Tuple[str, ModelConfig]]:
    """Models whose provider has an API key, optionally filtered by stage."""
    out = []
    for provider_key, provider in PROVIDERS.items():
        if not api_keys.get(provider_key):
            continue
        for model in provider.models:
            if stage is None or provider.allows(stage, model.id):
                out.append((provider_key, model))
    return out
