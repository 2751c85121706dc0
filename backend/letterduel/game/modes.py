from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .errors import UnknownModeError
from .models import Room


class Mode(str, Enum):
    CLASSIC = "classic"
    MULTIPHASE = "multiphase"
    SURVIVAL = "survival"
    MEMORY = "memory"
    BLUFF = "bluff"
    OBJECTIVE = "objective"


class ValidatorRole(str, Enum):
    VALIDATOR = "validator"
    INSTANT_JUDGE = "instant-judge"
    STRING_COMPARE = "string-compare"
    WORD_EXISTS_ONLY = "word-exists-only"
    CONSTRAINT_VALIDATOR = "constraint-validator"


@dataclass(frozen=True)
class ModeConfig:
    id: Mode
    name: str
    icon: str
    description: str
    phases: tuple[str, ...]
    durations: Mapping[str, int]
    # Either one flag for the whole round or a per-phase map.
    stop_enabled: bool | Mapping[str, bool]
    validator_role: ValidatorRole
    ui_contract: str
    elimination_mode: bool = False

    def duration_for(self, phase: str) -> int:
        return int(self.durations.get(phase, 60))

    def to_public(self) -> dict:
        stop = self.stop_enabled if isinstance(self.stop_enabled, bool) else dict(self.stop_enabled)
        return {
            "id": self.id.value,
            "name": self.name,
            "icon": self.icon,
            "description": self.description,
            "phases": list(self.phases),
            "durations": dict(self.durations),
            "stopEnabled": stop,
            "validatorRole": self.validator_role.value,
            "uiContract": self.ui_contract,
            "eliminationMode": self.elimination_mode,
        }


@dataclass(frozen=True)
class PhaseConfig:
    """Presentation metadata only; behaviour lives in ModeConfig."""

    name: str
    icon: str
    color: str
    allow_editing: bool = True
    show_validation: bool = False
    stop_enabled: bool = False

    def to_public(self) -> dict:
        return {
            "name": self.name,
            "icon": self.icon,
            "color": self.color,
            "allowEditing": self.allow_editing,
            "showValidation": self.show_validation,
            "stopEnabled": self.stop_enabled,
        }


def _frozen(d: dict) -> Mapping:
    return MappingProxyType(dict(d))


GAME_MODES: Mapping[Mode, ModeConfig] = _frozen({
    Mode.CLASSIC: ModeConfig(
        id=Mode.CLASSIC,
        name="كلاسيكي",
        icon="🎯",
        description="60 ثانية للإجابة",
        phases=("accuracy",),
        durations=_frozen({"accuracy": 60}),
        stop_enabled=True,
        validator_role=ValidatorRole.VALIDATOR,
        ui_contract="grid",
    ),
    Mode.MULTIPHASE: ModeConfig(
        id=Mode.MULTIPHASE,
        name="متعدد المراحل",
        icon="⚡",
        description="سرعة + دقة + تحدي",
        phases=("speed", "accuracy", "challenge"),
        durations=_frozen({"speed": 20, "accuracy": 30, "challenge": 10}),
        stop_enabled=_frozen({"speed": False, "accuracy": True, "challenge": False}),
        validator_role=ValidatorRole.VALIDATOR,
        ui_contract="phased-grid",
    ),
    Mode.SURVIVAL: ModeConfig(
        id=Mode.SURVIVAL,
        name="البقاء",
        icon="💀",
        description="خطأ واحد = خروج",
        phases=("survival",),
        durations=_frozen({"survival": 7}),
        stop_enabled=False,
        validator_role=ValidatorRole.INSTANT_JUDGE,
        ui_contract="single-input",
        elimination_mode=True,
    ),
    Mode.MEMORY: ModeConfig(
        id=Mode.MEMORY,
        name="الذاكرة",
        icon="🧠",
        description="احفظ ثم أجب",
        phases=("show", "recall"),
        durations=_frozen({"show": 5, "recall": 15}),
        stop_enabled=False,
        validator_role=ValidatorRole.STRING_COMPARE,
        ui_contract="card-memory",
    ),
    Mode.BLUFF: ModeConfig(
        id=Mode.BLUFF,
        name="الخداع",
        icon="🎭",
        description="من الكاذب؟",
        phases=("answer", "vote", "reveal"),
        durations=_frozen({"answer": 30, "vote": 15, "reveal": 5}),
        stop_enabled=False,
        validator_role=ValidatorRole.WORD_EXISTS_ONLY,
        ui_contract="voting",
    ),
    Mode.OBJECTIVE: ModeConfig(
        id=Mode.OBJECTIVE,
        name="الهدف",
        icon="🧩",
        description="حل اللغز",
        phases=("solve",),
        durations=_frozen({"solve": 45}),
        stop_enabled=False,
        validator_role=ValidatorRole.CONSTRAINT_VALIDATOR,
        ui_contract="puzzle",
    ),
})


PHASE_CONFIG: Mapping[str, PhaseConfig] = _frozen({
    "speed": PhaseConfig("السرعة", "⚡", "#4361ee"),
    "accuracy": PhaseConfig("الدقة", "🎯", "#06d6a0", show_validation=True, stop_enabled=True),
    "challenge": PhaseConfig("التحدي", "🔥", "#f72585", allow_editing=False),
    "survival": PhaseConfig("البقاء", "💀", "#ef233c"),
    "show": PhaseConfig("المشاهدة", "👁️", "#ffd60a", allow_editing=False),
    "recall": PhaseConfig("التذكر", "🧠", "#7209b7"),
    "answer": PhaseConfig("الإجابة", "✍️", "#00b4d8"),
    # Votes are the only input accepted here.
    "vote": PhaseConfig("التصويت", "🗳️", "#fb8500", allow_editing=False),
    "reveal": PhaseConfig("الكشف", "🎭", "#f72585", allow_editing=False, show_validation=True),
    "solve": PhaseConfig("الحل", "🧩", "#84cc16"),
})


def get_mode_config(mode_id: Any) -> ModeConfig:
    """Looks up a mode. Unknown or missing ids raise; there is no default mode."""
    if not mode_id:
        raise UnknownModeError(mode_id)
    try:
        mode = Mode(mode_id)
    except ValueError:
        raise UnknownModeError(mode_id) from None
    config = GAME_MODES.get(mode)
    if config is None:
        raise UnknownModeError(mode_id)
    return config


def get_phase_config(phase_name: str | None) -> PhaseConfig | None:
    if not phase_name:
        return None
    return PHASE_CONFIG.get(phase_name)


def is_stop_allowed(room: Room | None) -> bool:
    if room is None or not room.mode:
        return False
    config = get_mode_config(room.mode)
    if isinstance(config.stop_enabled, bool):
        return config.stop_enabled
    return config.stop_enabled.get(room.phase or "", False) is True


def list_modes() -> list[ModeConfig]:
    return list(GAME_MODES.values())
