from __future__ import annotations

from flask import Blueprint, jsonify

from ..game.modes import PHASE_CONFIG, list_modes
from ..game.words import CATEGORIES

bp = Blueprint("modes", __name__)


@bp.get("/modes")
def get_modes():
    return jsonify(
        {
            "modes": [m.to_public() for m in list_modes()],
            "phases": {name: cfg.to_public() for name, cfg in PHASE_CONFIG.items()},
            "categories": [{"id": c.id, "label": c.label, "prompt": c.prompt} for c in CATEGORIES],
        }
    )
