from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from ..services import get_services

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    services = get_services(current_app)
    if services.judge is None:
        judge = "disabled"
    else:
        judge = "ok" if services.judge.health_check() else "unavailable"
    return jsonify({"ok": True, "rooms": len(services.rooms.list_rooms()), "judge": judge})
