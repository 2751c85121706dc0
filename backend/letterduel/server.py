from __future__ import annotations

import logging
import os
import sys
from typing import Any

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .game.judge import JudgeClient
from .game.session import SessionSettings
from .game.validation import ValidationService
from .realtime.handlers import register_socketio_handlers
from .routes.health import bp as health_bp
from .routes.modes import bp as modes_bp
from .routes.rooms import bp as rooms_bp
from .services import EXTENSION_KEY, Services
from .store.memory import MemoryStore
from .store.rooms import RoomStore

logger = logging.getLogger(__name__)


def _async_mode(app: Flask) -> str:
    configured = (app.config.get("SOCKETIO_ASYNC_MODE") or os.environ.get("SOCKETIO_ASYNC_MODE", "")).strip()
    if configured:
        return configured
    # Default choice:
    # - Windows: threading (eventlet has known compatibility issues on newer Python)
    # - Python >= 3.13: threading (safer default)
    # - Otherwise: eventlet
    if sys.platform.startswith("win") or sys.version_info >= (3, 13):
        return "threading"
    return "eventlet"


def create_app(overrides: dict[str, Any] | None = None) -> tuple[Flask, SocketIO]:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    if app.config.get("TRUST_PROXY_HEADERS", False):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    socketio = SocketIO(
        app,
        cors_allowed_origins=cors_origins,
        async_mode=_async_mode(app),
    )

    judge_url = (app.config.get("JUDGE_URL") or "").strip()
    judge = JudgeClient(judge_url, timeout=float(app.config.get("JUDGE_TIMEOUT_SEC", 5))) if judge_url else None
    if judge is None:
        logger.info("No JUDGE_URL configured; words are judged locally")

    store = MemoryStore()
    services = Services(
        store=store,
        rooms=RoomStore(store),
        validation=ValidationService(judge, max_workers=int(app.config.get("JUDGE_MAX_WORKERS", 9))),
        judge=judge,
        settings=SessionSettings.from_mapping(app.config),
    )
    app.extensions[EXTENSION_KEY] = services

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(rooms_bp, url_prefix="/api")
    app.register_blueprint(modes_bp, url_prefix="/api")

    register_socketio_handlers(
        socketio,
        services.rooms,
        services.validation,
        services.settings,
        tick_interval_sec=float(app.config.get("TICK_INTERVAL_SEC", 1.0)),
    )

    return app, socketio
