"""
Configuration for the translator.

Settings come from an optional YAML file layered over defaults. Each field
is validated on its own: an invalid value is logged and replaced by the
default so one bad setting does not abort a run. Rules spanning several
fields are checked afterwards by ``validate_config`` and raise ConfigError.

API keys are read from the environment (a ``.env`` file is loaded first).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .services.providers import PROVIDERS, STAGES, find_model_config

logger = logging.getLogger(__name__)


class QueueSettings(BaseModel):
    """Request queue limits shared by every pipeline stage."""
    model_config = ConfigDict(validate_assignment=True)

    max_concurrency: int = Field(10, ge=1, description="Maximum calls in flight")
    max_calls_per_sec: int = Field(10, ge=1, description="Call starts per refill window")
    max_retries: int = Field(3, ge=1, description="Attempts per task, all failure kinds")
    base_retry_delay: float = Field(1.0, ge=0, description="Backoff base in seconds")
    retry_jitter: float = Field(0.1, ge=0, description="Upper bound of random jitter in seconds")
    refill_interval: float = Field(1.0, gt=0, description="Seconds between token refills")


class TranslatorConfig(BaseModel):
    """Options for one translation run."""
    model_config = ConfigDict(validate_assignment=True)

    # Translation behaviour
    translation_method: Literal["chunk", "single", "entire"] = Field(
        "chunk", description="How paragraphs are grouped into translation requests"
    )
    context_lines: int = Field(3, ge=1, le=10, description="Preceding lines sent as context")
    narrative: Literal["first", "third", "auto"] = Field("auto", description="Narrative voice")
    honorifics: Literal["preserve", "nil"] = Field("nil", description="Keep or drop honorifics")
    name_order: Literal["en", "jp"] = Field("jp", description="Order of given and family names")
    custom_instruction: Optional[str] = Field(None, description="Extra notes for the translator")

    # Model selection by catalog id; stage1/stage2 unset skips glossary generation
    stage1: Optional[str] = Field(None, description="Glossary generation model")
    stage2: Optional[str] = Field(None, description="Glossary merge model")
    stage3a: Optional[str] = Field(None, description="Chunking model")
    stage3b: Optional[str] = Field(None, description="Translation model")

    # Batching
    glossary_chunk_size: int = Field(4000, ge=1, description="Max characters per glossary generation call")
    batch_char_limit: int = Field(1500, ge=1, description="Max characters per chunking batch")
    overlap_paragraphs: int = Field(5, ge=0, description="Paragraphs shared by consecutive chunking batches")

    data_dir: str = Field("data/glossaries", description="Directory for stored glossaries")
    queue: QueueSettings = Field(default_factory=QueueSettings)

    @field_validator("stage1", "stage2", "stage3a", "stage3b", "custom_instruction", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return data or {}


def _apply_fields(model: BaseModel, data: Dict[str, Any], prefix: str = "") -> None:
    """Assign each value onto ``model``, keeping the default for invalid ones."""
    for key, value in data.items():
        name = f"{prefix}{key}"
        if key not in type(model).model_fields:
            logger.warning("Unknown config option '%s' ignored", name)
            continue

        current = getattr(model, key)
        if isinstance(current, BaseModel) and isinstance(value, dict):
            _apply_fields(current, value, prefix=f"{name}.")
            continue

        try:
            setattr(model, key, value)
        except ValidationError as e:
            reason = e.errors()[0]["msg"] if e.errors() else str(e)
            logger.warning(
                "Invalid value for '%s': %r. %s. Using default: %r", name, value, reason, current
            )


def load_config(path: Optional[Union[str, Path]] = None, overrides: Optional[Dict[str, Any]] = None) -> TranslatorConfig:
    """
    Build a TranslatorConfig from an optional YAML file and overrides.

    Args:
        path: YAML file; missing or None means defaults only
        overrides: Values applied after the file (e.g. from the command line)
    """
    config = TranslatorConfig()

    if path is not None:
        p = Path(path)
        if p.exists():
            data = load_yaml(p)
            if not isinstance(data, dict):
                raise ConfigError(f"Config file {p} must contain a mapping")
            _apply_fields(config, data)
        else:
            logger.warning("Config file %s not found, using defaults", p)

    if overrides:
        _apply_fields(config, {k: v for k, v in overrides.items() if v is not None})

    return config


def load_api_keys(env_file: Optional[Union[str, Path]] = None) -> Dict[str, str]:
    """
    Read provider API keys from the environment.

    A ``.env`` file is loaded first without overriding variables that are
    already set. Empty values are ignored.

    Returns:
        Mapping of provider key to API key, only for providers with a key
    """
    load_dotenv(env_file)
    keys: Dict[str, str] = {}
    for provider_key, provider in PROVIDERS.items():
        value = (os.environ.get(provider.api_key_env) or "").strip()
        if value:
            keys[provider_key] = value
    return keys


def validate_config(config: TranslatorConfig, api_keys: Dict[str, str], check_keys: bool = True) -> None:
    """
    Check rules that involve several fields or the model catalog.

    Args:
        config: Field-validated configuration
        api_keys: Provider keys from load_api_keys()
        check_keys: Require an API key for every selected model (off for dry runs)

    Raises:
        ConfigError: On the first violated rule
    """
    if (config.stage1 is None) != (config.stage2 is None):
        raise ConfigError("stage1 and stage2 must both be set, or both be unset")

    if config.translation_method == "chunk" and config.stage3a is None:
        raise ConfigError('stage3a must be set when translation_method is "chunk"')

    if config.stage3b is None:
        raise ConfigError("stage3b (translation model) must be set")

    for stage in STAGES:
        model_id = getattr(config, stage)
        if model_id is None:
            continue

        provider_key, model = find_model_config(model_id)
        if check_keys and not api_keys.get(provider_key):
            raise ConfigError(
                f"Selected model '{model_id}' for '{stage}' is not available: no API key for {provider_key}"
            )
        if not PROVIDERS[provider_key].allows(stage, model_id):
            raise ConfigError(f"Model '{model.label}' ({model_id}) is not allowed for '{stage}'")
