from __future__ import annotations

from typing import Any


class AetherError(RuntimeError):
    """Base class for every error raised by pyaether."""


# ---- transport ----

class TransportError(AetherError):
    pass


class TransportIOError(TransportError):
    """Spawning the tool process, or writing/reading its pipes, failed."""


class TransportClosed(TransportError):
    """The tool process closed its output before producing a full line."""


class TransportTimeout(TransportError):
    pass


# ---- protocol ----

class ProtocolError(AetherError):
    """The tool process answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{message} (code: {code})")
        self.code = code
        self.message = message
        self.data = data


class DecodeError(AetherError):
    pass


class EmptyResultError(AetherError):
    """Neither result nor error present in a response."""


class PermissionDenied(AetherError):
    def __init__(self, tool_name: str):
        super().__init__(f"Permission denied: tool '{tool_name}' is blocked by the security policy")
        self.tool_name = tool_name


class ToolExecutionError(AetherError):
    def __init__(self, message: str, code: int | None = None):
        super().__init__(f"Tool execution error: {message}")
        self.message = message
        self.code = code


# ---- everything else ----

class CompletionServiceError(AetherError):
    pass


class ConfigError(AetherError):
    pass


class PolicyLoadError(ConfigError):
    pass


class TranscriptError(AetherError):
    pass
