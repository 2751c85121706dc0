from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from ..game.sync import remaining_seconds, room_public_state
from ..services import get_services
from ..store.memory import now_ms

bp = Blueprint("rooms", __name__)


@bp.get("/rooms/<code>")
def get_room(code: str):
    room = get_services(current_app).rooms.get_room(code.strip().upper())
    if not room:
        return jsonify({"error": "room_not_found"}), 404
    # Anonymous view: no player's answers are visible mid-round.
    return jsonify(room_public_state(room, None, remaining_seconds(room, now_ms())))
