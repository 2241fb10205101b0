"""
Model configuration lookup.

The conversation pipeline asks a `ModelConfigProvider` for the model to use
instead of reading a process-wide cache, so tests can substitute a fixed
provider and the cache lifetime stays owned by one object.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from toolchat.errors import ModelConfigError
from toolchat.logging_config import logger
from toolchat.models import ModelConfig
from toolchat.settings import Settings, settings as default_settings

DEFAULT_MODEL_REF = "default"


class ModelConfigProvider(Protocol):
    def get_default(self) -> ModelConfig: ...

    def get(self, ref: Optional[str]) -> ModelConfig: ...


class SettingsModelConfigProvider:
    """
    Serve the default model from settings, caching the resolved config for
    `MODEL_CONFIG_CACHE_TTL_SECONDS`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or default_settings
        self._ttl = (
            ttl_seconds if ttl_seconds is not None else self._settings.llm_config_cache_ttl_seconds
        )
        self._clock = clock
        self._cached: Optional[ModelConfig] = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    def _load(self) -> ModelConfig:
        cfg = self._settings
        if not cfg.llm_base_url:
            raise ModelConfigError("No default model is configured (LLM_BASE_URL is empty)")
        if not cfg.llm_api_key:
            raise ModelConfigError("No API key is configured for the default model (LLM_API_KEY)")
        if not cfg.llm_model:
            raise ModelConfigError("No model name is configured (LLM_MODEL)")
        return ModelConfig(
            ref=DEFAULT_MODEL_REF,
            model=cfg.llm_model,
            base_url=cfg.llm_base_url,
            api_key=cfg.llm_api_key,
            temperature=cfg.llm_temperature,
            max_tokens=cfg.llm_max_tokens,
        )

    def get_default(self) -> ModelConfig:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self._ttl:
            return self._cached
        config = self._load()
        self._cached = config
        self._cached_at = now
        logger.debug("model_config: loaded default model %s", config.model)
        return config

    def get(self, ref: Optional[str]) -> ModelConfig:
        # Only the settings-backed default exists here; unknown refs left over
        # in older session records fall back to it.
        if ref and ref != DEFAULT_MODEL_REF:
            logger.info("model_config: unknown model ref %r; using default", ref)
        return self.get_default()


class StaticModelConfigProvider:
    """
    Provider returning a fixed config; used by tests and embedding callers.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config

    def get_default(self) -> ModelConfig:
        return self._config

    def get(self, ref: Optional[str]) -> ModelConfig:
        return self._config


__all__ = [
    "DEFAULT_MODEL_REF",
    "ModelConfigProvider",
    "SettingsModelConfigProvider",
    "StaticModelConfigProvider",
]
