from __future__ import annotations

import functools
import logging
from threading import Lock
from typing import Any, Callable

from flask import request
from flask_socketio import SocketIO, emit

from ..game.errors import GameError, UnknownModeError
from ..game.session import SessionController, SessionSettings
from ..game.sync import Notice
from ..game.validation import ValidationService
from ..store.memory import now_ms
from ..store.rooms import RoomStore
from . import events

logger = logging.getLogger(__name__)


def register_socketio_handlers(
    socketio: SocketIO,
    rooms: RoomStore,
    validation: ValidationService,
    settings: SessionSettings,
    tick_interval_sec: float = 1.0,
) -> None:
    sessions: dict[str, SessionController] = {}
    tickers: set[str] = set()
    lock = Lock()

    def _emit_state(sid: str, state: dict | None) -> None:
        if state is None:
            socketio.emit(events.ROOM_LEFT, {}, to=sid)
        else:
            socketio.emit(events.ROOM_STATE, state, to=sid)

    def _emit_notice(sid: str, notice: Notice) -> None:
        socketio.emit(events.ROOM_NOTICE, notice.to_payload(), to=sid)

    def _session(sid: str) -> SessionController:
        with lock:
            ctrl = sessions.get(sid)
            if ctrl is None:
                ctrl = SessionController(
                    rooms,
                    validation,
                    connection_id=sid,
                    settings=settings,
                    spawn=socketio.start_background_task,
                    sleep=socketio.sleep,
                    on_state=functools.partial(_emit_state, sid),
                    on_notice=functools.partial(_emit_notice, sid),
                )
                sessions[sid] = ctrl
            return ctrl

    def _ensure_ticker(sid: str) -> None:
        with lock:
            if sid in tickers:
                return
            tickers.add(sid)

        def _runner() -> None:
            try:
                while True:
                    with lock:
                        ctrl = sessions.get(sid)
                    if ctrl is None or not ctrl.ctx.in_room:
                        break
                    remaining = ctrl.tick()
                    socketio.emit(
                        events.GAME_TICK,
                        {"roomCode": ctrl.ctx.room_code, "remainingSec": remaining, "nowMs": now_ms()},
                        to=sid,
                    )
                    socketio.sleep(tick_interval_sec)
            finally:
                with lock:
                    tickers.discard(sid)

        socketio.start_background_task(_runner)

    def _guarded(fn: Callable[[SessionController, dict], Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(data: Any = None) -> Any:
            payload = data if isinstance(data, dict) else {}
            try:
                return fn(_session(request.sid), payload)
            except GameError as exc:
                emit(events.ROOM_ERROR, exc.to_payload())
                return exc.to_payload()

        return wrapper

    @socketio.on(events.ROOM_CREATE)
    @_guarded
    def room_create(ctrl: SessionController, payload: dict):
        name = str(payload.get("name", "")).strip()
        mode = str(payload.get("mode", "")).strip()
        try:
            code = ctrl.create_room(name, mode, payload.get("totalRounds"))
        except UnknownModeError as exc:
            logger.error("Rejected room with unknown mode %r", exc.mode)
            emit(events.ROOM_ERROR, {"ok": False, "error": "unknown_mode"})
            return {"ok": False, "error": "unknown_mode"}
        _ensure_ticker(request.sid)
        return {"ok": True, "roomCode": code, "playerId": ctrl.player_id}

    @socketio.on(events.ROOM_JOIN)
    @_guarded
    def room_join(ctrl: SessionController, payload: dict):
        code = str(payload.get("roomCode", "")).strip()
        name = str(payload.get("name", "")).strip()
        ctrl.join_room(code, name)
        _ensure_ticker(request.sid)
        return {"ok": True, "roomCode": ctrl.ctx.room_code, "playerId": ctrl.player_id}

    @socketio.on(events.ROOM_LEAVE)
    @_guarded
    def room_leave(ctrl: SessionController, payload: dict):
        ctrl.leave_room()
        return {"ok": True}

    @socketio.on(events.GAME_START)
    @_guarded
    def game_start(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.start_game()}

    @socketio.on(events.GAME_STOP)
    @_guarded
    def game_stop(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.request_stop()}

    @socketio.on(events.ANSWERS_UPDATE)
    @_guarded
    def answers_update(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.update_answers(payload.get("answers"))}

    @socketio.on(events.ANSWERS_SUBMIT)
    @_guarded
    def answers_submit(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.submit_answers(payload.get("answers"))}

    @socketio.on(events.PLAY_AGAIN_REQUEST)
    @_guarded
    def play_again_request(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.play_again()}

    @socketio.on(events.PLAY_AGAIN_ACCEPT)
    @_guarded
    def play_again_accept(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.accept_play_again()}

    @socketio.on(events.PLAY_AGAIN_DECLINE)
    @_guarded
    def play_again_decline(ctrl: SessionController, payload: dict):
        return {"ok": ctrl.decline_play_again()}

    @socketio.on("disconnect")
    def on_disconnect(*args):
        sid = request.sid
        with lock:
            ctrl = sessions.pop(sid, None)
        if ctrl is not None:
            ctrl.close()
        rooms.store.disconnect(sid)
        logger.info("Connection %s closed", sid)
