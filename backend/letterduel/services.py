from __future__ import annotations

from dataclasses import dataclass

from flask import Flask

from .game.judge import JudgeClient
from .game.session import SessionSettings
from .game.validation import ValidationService
from .store.memory import MemoryStore
from .store.rooms import RoomStore

EXTENSION_KEY = "letterduel"


@dataclass
class Services:
    """Process-wide singletons, kept on ``app.extensions``."""

    store: MemoryStore
    rooms: RoomStore
    validation: ValidationService
    judge: JudgeClient | None
    settings: SessionSettings


def get_services(app: Flask) -> Services:
    return app.extensions[EXTENSION_KEY]
