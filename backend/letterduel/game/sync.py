"""Client-side projection of room snapshots.

Every client runs the same reducer over the snapshots it receives. "New
round" and "phase changed" come from comparing ``roundId``/``phaseIndex``/
``status`` with the last values seen, so replaying a snapshot is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from .models import Room
from .modes import get_phase_config

NoticeLevel = Literal["info", "error"]


@dataclass
class Notice:
    code: str
    message: str
    level: NoticeLevel = "info"

    def to_payload(self) -> dict:
        return {"code": self.code, "message": self.message, "level": self.level}


@dataclass
class SyncDelta:
    new_round: bool = False
    phase_changed: bool = False
    status_changed: bool = False
    became_host: bool = False
    room_deleted: bool = False
    left_room: bool = False
    play_again_prompt: bool = False
    notices: list[Notice] = field(default_factory=list)

    @property
    def restart_timer(self) -> bool:
        return self.new_round or self.phase_changed or self.status_changed


class ClientSync:
    def __init__(self, player_id: str) -> None:
        self.player_id = player_id
        self.round_id = 0
        self.phase_index: int | None = None
        self.phase: str | None = None
        self.status: str | None = None
        self.is_host = False
        self.seen_room = False

    def reset(self) -> None:
        self.__init__(self.player_id)

    def reduce(self, room: Room | None) -> SyncDelta:
        delta = SyncDelta()

        if room is None:
            if self.seen_room:
                delta.room_deleted = True
                delta.notices.append(Notice("room_deleted", "تم حذف الغرفة", "error"))
            self.seen_room = False
            return delta

        me = room.players.get(self.player_id)
        if me is None:
            if self.seen_room:
                delta.left_room = True
            return delta
        self.seen_room = True

        if me.is_host and not self.is_host:
            delta.became_host = True
            if self.status is not None:
                delta.notices.append(Notice("new_host", "أصبحت المضيف الجديد! 👑"))
        self.is_host = me.is_host

        if room.round_id > self.round_id:
            delta.new_round = True
            self.round_id = room.round_id

        if room.status == "playing":
            if room.phase_index != self.phase_index or room.phase != self.phase:
                delta.phase_changed = True
            self.phase_index = room.phase_index
            self.phase = room.phase

        if room.status != self.status:
            delta.status_changed = True
            self.status = room.status

        req = room.play_again_request
        if req is not None and req.status == "pending" and req.requested_by != self.player_id:
            delta.play_again_prompt = True
        if req is not None and req.status == "declined" and req.requested_by == self.player_id:
            delta.notices.append(Notice("play_again_declined", "اللاعب رفض اللعب مرة أخرى", "error"))

        return delta


def remaining_seconds(room: Room, local_now_ms: int, server_offset_ms: int = 0) -> int | None:
    """Seconds left in the current phase, from durable fields only."""
    if room.status != "playing" or not isinstance(room.phase_start_at, int):
        return None
    now = local_now_ms + server_offset_ms
    elapsed = (now - room.phase_start_at) // 1000
    return max(0, int(room.phase_duration) - int(elapsed))


def elapsed_seconds(room: Room, local_now_ms: int, server_offset_ms: int = 0) -> float:
    if not isinstance(room.phase_start_at, int):
        return 0.0
    return max(0.0, (local_now_ms + server_offset_ms - room.phase_start_at) / 1000.0)


def room_public_state(room: Room, viewer_id: str | None = None, remaining_sec: int | None = None) -> dict:
    """Client payload. Hides the bluff liar and answer order until reveal."""
    doc = room.to_doc()
    doc.pop("createdAt", None)

    ctx = dict(doc.get("modeContext") or {})
    if "liar" in ctx and room.phase != "reveal" and room.status == "playing":
        if ctx.get("liar") != viewer_id:
            ctx.pop("liar", None)
        ctx.pop("answerOrder", None)
    doc["modeContext"] = ctx

    # Opponent answers stay private while the round is running.
    if room.status == "playing":
        for pid, p in doc["players"].items():
            if pid != viewer_id:
                p["answers"] = {}

    phase_cfg = get_phase_config(room.phase)
    doc["phaseConfig"] = phase_cfg.to_public() if phase_cfg else None
    doc["hostId"] = room.host_id
    doc["playerCount"] = len(room.players)
    doc["remainingSec"] = remaining_sec
    doc["viewerId"] = viewer_id
    return doc
