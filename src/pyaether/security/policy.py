from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping

from ..errors import PolicyLoadError

Decision = Literal["allow", "deny"]

_DECISIONS = {"allow", "deny"}


@dataclass(frozen=True)
class SecurityPolicy:
    """Per-tool allow/deny rules with a global fallback.

    Loaded once at startup from permissions.json and never mutated afterwards.
    """

    global_policy: Decision = "deny"
    rules: Mapping[str, Decision] = field(default_factory=dict)
    version: str = "1"

    def __post_init__(self):
        # freeze the mapping so the policy can be shared without copies
        object.__setattr__(self, "rules", MappingProxyType(dict(self.rules)))

    def decide(self, tool_name: str) -> Decision:
        rule = self.rules.get(tool_name)
        if rule is not None:
            return rule
        return self.global_policy

    def check(self, tool_name: str) -> bool:
        return self.decide(tool_name) == "allow"

    @staticmethod
    def from_obj(obj: Any) -> "SecurityPolicy":
        if not isinstance(obj, dict):
            raise PolicyLoadError("Permissions document must be a JSON object.")

        gp = obj.get("global_policy")
        if gp not in _DECISIONS:
            raise PolicyLoadError(f"global_policy must be 'allow' or 'deny', got {gp!r}.")

        version = obj.get("version", "1")
        if not isinstance(version, str):
            raise PolicyLoadError("version must be a string.")

        rules = obj.get("rules", {})
        if not isinstance(rules, dict):
            raise PolicyLoadError("rules must be a mapping of tool name to 'allow'/'deny'.")
        bad = {k: v for k, v in rules.items() if v not in _DECISIONS}
        if bad:
            raise PolicyLoadError(f"Invalid rule decision(s): {bad}")

        return SecurityPolicy(global_policy=gp, rules={str(k): v for k, v in rules.items()}, version=version)

    def to_obj(self) -> dict[str, Any]:
        return {"version": self.version, "global_policy": self.global_policy, "rules": dict(self.rules)}


def load_policy(path: str | Path) -> SecurityPolicy:
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise PolicyLoadError(f"Permissions file not found: {p}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise PolicyLoadError(f"Failed to read permissions file {p}: {e}") from e
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise PolicyLoadError(f"Failed to parse permissions file {p}: {e}") from e
    return SecurityPolicy.from_obj(obj)


class PermissionGate:
    """Read-only gate consulted before every tool invocation."""

    def __init__(self, policy: SecurityPolicy):
        self.policy = policy

    def decide(self, tool_name: str) -> Decision:
        return self.policy.decide(tool_name)

    def allows(self, tool_name: str) -> bool:
        return self.policy.check(tool_name)
