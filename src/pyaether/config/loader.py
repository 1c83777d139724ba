from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConfigError
from ..llm.factory import ProviderRegistry, provider_registry_from_obj
from ..mcp.models import ToolServerConfig

DEFAULT_CONFIG = Path("pyaether.yaml")
DEFAULT_PERMISSIONS = Path("permissions.json")


@dataclass
class AppConfig:
    providers: ProviderRegistry = field(default_factory=ProviderRegistry)
    tool_server: ToolServerConfig | None = None
    permissions_path: Path = DEFAULT_PERMISSIONS
    loaded_from: Path | None = None


def load_app_config(path: str | Path = DEFAULT_CONFIG, *, required: bool = True) -> AppConfig:
    """Load pyaether.yaml.

    Sections: ``providers`` (name -> PYAETHER_* keys), ``tool_server``
    (command/env/cwd) and ``permissions`` (path to the policy JSON, relative
    to the YAML file). With ``required=False`` a missing file yields defaults.
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        if required:
            raise ConfigError(f"Config YAML not found: {p}")
        return AppConfig()

    try:
        data: Any = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{p} must contain a mapping at the top level.")

    cfg = AppConfig(loaded_from=p)
    cfg.providers = provider_registry_from_obj(data.get("providers"))

    ts = data.get("tool_server")
    if ts is not None:
        cfg.tool_server = ToolServerConfig.from_obj(ts)
        if cfg.tool_server.cwd:
            cfg.tool_server.cwd = str((p.parent / cfg.tool_server.cwd).resolve())

    perms = data.get("permissions")
    if perms is not None:
        if not isinstance(perms, str) or not perms.strip():
            raise ConfigError("'permissions:' must be a path string.")
        cfg.permissions_path = (p.parent / perms).expanduser()

    return cfg
