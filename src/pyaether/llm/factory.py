from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import ConfigError
from .openai_compat import OpenAICompatProvider


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")

KEY_BASE_URL = "PYAETHER_BASE_URL"
KEY_MODEL = "PYAETHER_MODEL"
KEY_API_KEY = "PYAETHER_API_KEY"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ConfigError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str | None) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            # a single configured provider needs no --provider
            if len(self._items) == 1:
                return next(iter(self._items.values()))
            raise ConfigError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())

    def __len__(self) -> int:
        return len(self._items)


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ConfigError(f"API key placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def provider_registry_from_obj(providers: Any) -> ProviderRegistry:
    """Build the registry from the ``providers:`` mapping of pyaether.yaml."""
    reg = ProviderRegistry()
    if providers is None:
        return reg
    if not isinstance(providers, dict):
        raise ConfigError("'providers:' must be a mapping.")

    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ConfigError(f"providers.{name} must be a mapping/dict.")

        base_url = cfg.get(KEY_BASE_URL)
        model = cfg.get(KEY_MODEL)
        api_key = cfg.get(KEY_API_KEY)

        missing = [k for k, v in {
            KEY_BASE_URL: base_url,
            KEY_MODEL: model,
            KEY_API_KEY: api_key,
        }.items() if not v]
        if missing:
            raise ConfigError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        api_key = _expand_env_placeholders(str(api_key).strip())
        reg.add(ProviderConfig(name=str(name), base_url=str(base_url).strip(), model=str(model).strip(), api_key=api_key))

    return reg


def resolve_provider(
    registry: ProviderRegistry,
    provider: Optional[str],
    model: Optional[str] = None,
    timeout: float = 120.0,
) -> OpenAICompatProvider:
    """Pick a provider by name; CLI ``--model`` overrides the configured model."""
    cfg = registry.get(provider)
    return OpenAICompatProvider(
        model=model or cfg.model,
        base_url=cfg.base_url,
        api_key=cfg.api_key,
        provider_name=cfg.name,
        timeout=timeout,
    )
