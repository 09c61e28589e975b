"""Routing helpers for selecting the generative-text provider.

The router does not build SDK clients itself; it picks a provider
configuration the AI gateway uses to instantiate its upstream client. This
keeps the selection policy unit-testable without network access.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle a task."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url: str
    requires_api_key: bool = True

    def api_key(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        source = env if env is not None else os.environ
        return source.get(self.api_key_env) if self.api_key_env else None


class ModelRouter:
    """Policy-based provider selection for the writing assistant."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "gemini": {
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.0-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
        },
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
        },
        "xai": {
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.1",
            "default_base_url": "http://127.0.0.1:11434/v1",
            "requires_api_key": False,
        },
    }

    ROUTING_POLICY: Dict[str, tuple[str, ...]] = {
        "writing": ("gemini", "openai", "xai", "local"),
    }

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("COAUTHOR_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred if preferred in self.PROVIDER_CONFIG else None

    def provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if provider == "local":
            if (self._env.get("COAUTHOR_ENABLE_LOCAL_PROVIDER") or "").strip() != "1":
                return False
            return bool(self._env.get(str(cfg["base_url_env"])))
        api_key_env = cfg.get("api_key_env")
        return bool(api_key_env and self._env.get(str(api_key_env)))

    def resolve(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        model = self._env.get(str(cfg.get("model_env") or ""), "") or str(cfg.get("default_model") or "")
        base_url = self._env.get(str(cfg.get("base_url_env") or ""), "") or str(cfg.get("default_base_url") or "")
        return ProviderSelection(
            name=provider,
            model=model,
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url=base_url,
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    def select_provider(self, purpose: str = "writing") -> ProviderSelection:
        """Return the provider selected for ``purpose``.

        Raises
        ------
        RuntimeError
            If no provider configured for the purpose is available.
        """

        priority = list(self.ROUTING_POLICY.get(purpose, self.ROUTING_POLICY["writing"]))
        if self._preferred_provider:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            if self.provider_available(provider):
                return self.resolve(provider)
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, purpose: str = "writing") -> Optional[ProviderSelection]:
        """Like :meth:`select_provider` but returns ``None`` on failure."""

        try:
            return self.select_provider(purpose)
        except RuntimeError:
            return None
