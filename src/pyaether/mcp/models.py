from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Any

from ..errors import ConfigError


@dataclass
class ToolServerConfig:
    command: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    @staticmethod
    def from_obj(obj: Any) -> "ToolServerConfig":
        if not isinstance(obj, dict):
            raise ConfigError("tool_server must be a mapping with a 'command' list.")
        cmd = obj.get("command")
        if isinstance(cmd, str):
            cmd = shlex.split(cmd)
        if not isinstance(cmd, list) or not cmd or not all(isinstance(x, str) for x in cmd):
            raise ConfigError("tool_server.command must be a non-empty list of strings.")
        env = obj.get("env") or {}
        if not isinstance(env, dict):
            raise ConfigError("tool_server.env must be a mapping.")
        cwd = obj.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            raise ConfigError("tool_server.cwd must be a string.")
        return ToolServerConfig(
            command=list(cmd),
            env={str(k): str(v) for k, v in env.items()},
            cwd=cwd,
        )
