from __future__ import annotations


class GameError(Exception):
    """Expected user-facing failure. ``code`` is what clients switch on."""

    code = "game_error"
    message = "حدث خطأ"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class RoomNotFoundError(GameError):
    code = "room_not_found"
    message = "الغرفة غير موجودة"


class RoomFullError(GameError):
    code = "room_full"
    message = "الغرفة ممتلئة"


class RoomAlreadyStartedError(GameError):
    code = "room_already_started"
    message = "اللعبة بدأت بالفعل"


class NotInRoomError(GameError):
    code = "not_in_room"
    message = "لست في غرفة"


class InvalidPayloadError(GameError):
    code = "invalid_payload"
    message = "بيانات غير صالحة"


class ConfigurationError(RuntimeError):
    """A defect in static configuration; never recovered from."""


class UnknownModeError(ConfigurationError):
    def __init__(self, mode: object) -> None:
        super().__init__(f"no configuration for mode {mode!r}")
        self.mode = mode


class MissingAnswerContractError(ConfigurationError):
    pass


class JudgeUnavailableError(RuntimeError):
    """The remote judge could not be reached or answered with garbage."""


class JudgeQuotaExceededError(RuntimeError):
    """The remote judge refuses further work for this game."""
