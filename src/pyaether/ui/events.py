from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UiKind(str, Enum):
    USER = "user"
    AI = "ai"
    LOG = "log"
    ERROR = "error"


@dataclass(frozen=True)
class UiMessage:
    kind: UiKind
    text: str

    @staticmethod
    def user(text: str) -> "UiMessage":
        return UiMessage(UiKind.USER, text)

    @staticmethod
    def ai(text: str) -> "UiMessage":
        return UiMessage(UiKind.AI, text)

    @staticmethod
    def log(text: str) -> "UiMessage":
        return UiMessage(UiKind.LOG, text)

    @staticmethod
    def error(text: str) -> "UiMessage":
        return UiMessage(UiKind.ERROR, text)
