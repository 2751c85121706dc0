from __future__ import annotations

import logging
from typing import Any, Callable

from ..game.models import Player, Room
from .memory import ABORT, SERVER_TIMESTAMP, MemoryStore, OnDisconnect, TransactionResult, join_path

logger = logging.getLogger(__name__)

ROOMS_ROOT = "rooms"


def room_path(code: str, *parts: str) -> str:
    return join_path(ROOMS_ROOT, code, *parts)


def _decode(code: str, value: Any) -> Room | None:
    if not isinstance(value, dict):
        return None
    return Room.from_doc(code, value)


class RoomStore:
    """Typed access to ``rooms/{code}`` in the shared document."""

    server_timestamp = SERVER_TIMESTAMP

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def server_now_ms(self) -> int:
        return self.store.server_now_ms()

    def server_time_offset_ms(self, local_now_ms: int) -> int:
        return self.store.server_time_offset_ms(local_now_ms)

    def get_room(self, code: str) -> Room | None:
        if not code:
            return None
        return _decode(code, self.store.get(room_path(code)))

    def room_exists(self, code: str) -> bool:
        return self.store.get(room_path(code, "code")) is not None

    def list_rooms(self) -> list[Room]:
        raw = self.store.get(ROOMS_ROOT) or {}
        return [r for r in (_decode(code, v) for code, v in raw.items()) if r is not None]

    def update_room(self, code: str, fields: dict[str, Any]) -> None:
        self.store.update(room_path(code), fields)

    def set_player_answers(self, code: str, player_id: str, answers: dict, submitted: bool | None = None) -> None:
        fields: dict[str, Any] = {f"players/{player_id}/answers": answers}
        if submitted is not None:
            fields[f"players/{player_id}/submitted"] = submitted
        self.store.update(room_path(code), fields)

    def transact_room(self, code: str, fn: Callable[[Room | None], Any]) -> TransactionResult:
        """Compare-and-swap on the whole room.

        ``fn`` gets a decoded ``Room`` (or None) and returns a ``Room`` to
        write, ``None`` to delete the room, or ``ABORT``.
        """

        def _apply(current: Any) -> Any:
            result = fn(_decode(code, current))
            if result is ABORT or result is None:
                return result
            return result.to_doc()

        outcome = self.store.transaction(room_path(code), _apply)
        if not outcome.committed:
            logger.debug("room=%s transaction aborted", code)
        return outcome

    def subscribe_room(self, code: str, callback: Callable[[Room | None], None]) -> Callable[[], None]:
        return self.store.subscribe(room_path(code), lambda value: callback(_decode(code, value)))

    def register_presence(self, connection_id: str, code: str, player_id: str) -> OnDisconnect:
        """Removes the player when the connection drops; the last one out deletes the room."""

        def _cleanup(current: Any) -> Any:
            room = _decode(code, current)
            if room is None or player_id not in room.players:
                return ABORT
            was_host = room.players[player_id].is_host
            del room.players[player_id]
            if not room.players:
                return None
            if was_host:
                room.players[room.ordered_player_ids()[0]].is_host = True
            return room.to_doc()

        handle = self.store.on_disconnect(connection_id)
        handle.transaction(room_path(code), _cleanup)
        return handle


def new_player(player_id: str, name: str, is_host: bool, joined_at: int) -> Player:
    return Player(id=player_id, name=name, is_host=is_host, joined_at=joined_at)
