from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


RoomStatus = Literal["waiting", "playing", "calculating", "results", "finished_game"]
PlayAgainStatus = Literal["pending", "accepted", "declined"]

ROOM_STATUSES: tuple[str, ...] = ("waiting", "playing", "calculating", "results", "finished_game")

# Every status edge a room may take. Anything else is refused.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "waiting": frozenset({"playing"}),
    "playing": frozenset({"calculating"}),
    "calculating": frozenset({"results", "finished_game"}),
    "results": frozenset({"playing"}),
    "finished_game": frozenset({"playing"}),
}

MAX_PLAYERS = 2


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _int_map(raw: Any) -> dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): _int(v) for k, v in raw.items()}


# ---- answers -------------------------------------------------------------


@dataclass
class CategoryAnswers:
    """Grid answers: one word per category."""

    words: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: Any) -> "CategoryAnswers":
        if not isinstance(raw, dict):
            return cls()
        source = raw.get("words") if isinstance(raw.get("words"), dict) else raw
        words = {str(k): str(v).strip() for k, v in source.items() if isinstance(v, str)}
        return cls(words=words)

    def to_payload(self) -> dict:
        return {"words": dict(self.words)}


@dataclass
class SingleAnswer:
    answer: str = ""

    @classmethod
    def from_payload(cls, raw: Any) -> "SingleAnswer":
        if isinstance(raw, str):
            return cls(answer=raw.strip())
        if not isinstance(raw, dict) or not isinstance(raw.get("answer"), str):
            return cls()
        return cls(answer=raw["answer"].strip())

    def to_payload(self) -> dict:
        return {"answer": self.answer}


@dataclass
class MemoryAnswers:
    words: list[str] = field(default_factory=list)
    risk: bool = False

    @classmethod
    def from_payload(cls, raw: Any) -> "MemoryAnswers":
        if not isinstance(raw, dict):
            return cls()
        words = raw.get("words")
        if not isinstance(words, list):
            words = []
        return cls(
            words=[w.strip() for w in words if isinstance(w, str) and w.strip()],
            risk=raw.get("risk") is True,
        )

    def to_payload(self) -> dict:
        return {"words": list(self.words), "risk": self.risk}


@dataclass
class BluffAnswers:
    answer: str = ""
    vote: int | None = None

    @classmethod
    def from_payload(cls, raw: Any) -> "BluffAnswers":
        if not isinstance(raw, dict):
            return cls()
        answer = raw.get("answer")
        vote = raw.get("vote")
        if isinstance(vote, bool) or not isinstance(vote, int):
            vote = None
        return cls(answer=answer.strip() if isinstance(answer, str) else "", vote=vote)

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"answer": self.answer}
        if self.vote is not None:
            payload["vote"] = self.vote
        return payload


Answers = CategoryAnswers | SingleAnswer | MemoryAnswers | BluffAnswers


# ---- room ----------------------------------------------------------------


@dataclass
class Player:
    id: str
    name: str
    is_host: bool = False
    joined_at: int = 0
    answers: dict = field(default_factory=dict)
    submitted: bool = False
    score: int = 0
    cumulative_score: int = 0
    streak: int = 0
    eliminated: bool = False
    status: str = "online"

    def to_doc(self) -> dict:
        return {
            "name": self.name,
            "isHost": self.is_host,
            "joinedAt": self.joined_at,
            "answers": dict(self.answers),
            "submitted": self.submitted,
            "score": self.score,
            "cumulativeScore": self.cumulative_score,
            "streak": self.streak,
            "eliminated": self.eliminated,
            "status": self.status,
        }

    @classmethod
    def from_doc(cls, player_id: str, doc: dict) -> "Player":
        return cls(
            id=player_id,
            name=str(doc.get("name", "")),
            is_host=doc.get("isHost") is True,
            joined_at=_int(doc.get("joinedAt")),
            answers=doc.get("answers") if isinstance(doc.get("answers"), dict) else {},
            submitted=doc.get("submitted") is True,
            score=_int(doc.get("score")),
            cumulative_score=_int(doc.get("cumulativeScore")),
            streak=_int(doc.get("streak")),
            eliminated=doc.get("eliminated") is True,
            status=str(doc.get("status", "online")),
        )


@dataclass
class PlayAgainRequest:
    requested_by: str
    status: PlayAgainStatus = "pending"
    timestamp: Any = None

    def to_doc(self) -> dict:
        return {"requestedBy": self.requested_by, "status": self.status, "timestamp": self.timestamp}

    @classmethod
    def from_doc(cls, doc: Any) -> "PlayAgainRequest | None":
        if not isinstance(doc, dict) or not doc.get("requestedBy"):
            return None
        status = doc.get("status")
        if status not in ("pending", "accepted", "declined"):
            status = "pending"
        return cls(requested_by=str(doc["requestedBy"]), status=status, timestamp=doc.get("timestamp"))


@dataclass
class RoundResult:
    name: str
    score: int = 0
    cumulative_score: int = 0
    # Mode-shaped verdicts, e.g. {category: {answer, valid, points}}.
    details: dict = field(default_factory=dict)

    def to_doc(self) -> dict:
        return {
            "name": self.name,
            "score": self.score,
            "cumulativeScore": self.cumulative_score,
            "details": self.details,
        }

    @classmethod
    def from_doc(cls, doc: Any) -> "RoundResult":
        doc = doc if isinstance(doc, dict) else {}
        return cls(
            name=str(doc.get("name", "")),
            score=_int(doc.get("score")),
            cumulative_score=_int(doc.get("cumulativeScore")),
            details=doc.get("details") if isinstance(doc.get("details"), dict) else {},
        )


@dataclass
class Room:
    code: str
    mode: str | None = None
    status: RoomStatus = "waiting"
    created_at: int = 0
    letter: str = ""
    round_id: int = 0
    phases: list[str] = field(default_factory=list)
    phase_index: int = 0
    phase: str | None = None
    # Holds the server timestamp placeholder until the write commits.
    phase_start_at: Any = None
    phase_duration: int = 60
    current_round_number: int = 0
    total_rounds: int = 5
    stopped_by: str = ""
    stop_lock: bool = False
    calculation_lock: bool = False
    # Player holding calculationLock; a lock held by a departed player is stale.
    calculation_lock_by: str = ""
    round_results: dict[str, RoundResult] = field(default_factory=dict)
    round_winner: str | None = None
    game_winner: str | None = None
    ranking: list[str] = field(default_factory=list)
    total_scores: dict[str, int] = field(default_factory=dict)
    rounds_won: dict[str, int] = field(default_factory=dict)
    mode_context: dict = field(default_factory=dict)
    play_again_request: PlayAgainRequest | None = None
    players: dict[str, Player] = field(default_factory=dict)

    @property
    def host_id(self) -> str | None:
        for pid, p in self.players.items():
            if p.is_host:
                return pid
        return None

    def calculation_lock_held(self) -> bool:
        return self.calculation_lock and self.calculation_lock_by in self.players

    def ordered_player_ids(self) -> list[str]:
        return [p.id for p in sorted(self.players.values(), key=lambda p: (p.joined_at, p.id))]

    def to_doc(self) -> dict:
        return {
            "code": self.code,
            "mode": self.mode,
            "status": self.status,
            "createdAt": self.created_at,
            "letter": self.letter,
            "roundId": self.round_id,
            "phases": list(self.phases),
            "phaseIndex": self.phase_index,
            "phase": self.phase,
            "phaseStartAt": self.phase_start_at,
            "phaseDuration": self.phase_duration,
            "currentRoundNumber": self.current_round_number,
            "totalRounds": self.total_rounds,
            "stoppedBy": self.stopped_by,
            "stopLock": self.stop_lock,
            "calculationLock": self.calculation_lock,
            "calculationLockBy": self.calculation_lock_by,
            "roundResults": {pid: r.to_doc() for pid, r in self.round_results.items()},
            "roundWinner": self.round_winner,
            "gameWinner": self.game_winner,
            "ranking": list(self.ranking),
            "totalScores": dict(self.total_scores),
            "roundsWon": dict(self.rounds_won),
            "modeContext": self.mode_context,
            "playAgainRequest": self.play_again_request.to_doc() if self.play_again_request else None,
            "players": {pid: p.to_doc() for pid, p in self.players.items()},
        }

    @classmethod
    def from_doc(cls, code: str, doc: dict) -> "Room":
        status = doc.get("status")
        if status not in ROOM_STATUSES:
            status = "waiting"
        players_raw = doc.get("players") if isinstance(doc.get("players"), dict) else {}
        results_raw = doc.get("roundResults") if isinstance(doc.get("roundResults"), dict) else {}
        phases = doc.get("phases") if isinstance(doc.get("phases"), list) else []
        ranking = doc.get("ranking") if isinstance(doc.get("ranking"), list) else []
        return cls(
            code=str(doc.get("code") or code),
            mode=doc.get("mode"),
            status=status,
            created_at=_int(doc.get("createdAt")),
            letter=str(doc.get("letter") or ""),
            round_id=_int(doc.get("roundId")),
            phases=[str(p) for p in phases],
            phase_index=_int(doc.get("phaseIndex")),
            phase=doc.get("phase"),
            phase_start_at=doc.get("phaseStartAt"),
            phase_duration=_int(doc.get("phaseDuration"), 60),
            current_round_number=_int(doc.get("currentRoundNumber")),
            total_rounds=_int(doc.get("totalRounds"), 5),
            stopped_by=str(doc.get("stoppedBy") or ""),
            stop_lock=doc.get("stopLock") is True,
            calculation_lock=doc.get("calculationLock") is True,
            calculation_lock_by=str(doc.get("calculationLockBy") or ""),
            round_results={pid: RoundResult.from_doc(r) for pid, r in results_raw.items()},
            round_winner=doc.get("roundWinner"),
            game_winner=doc.get("gameWinner"),
            ranking=[str(p) for p in ranking],
            total_scores=_int_map(doc.get("totalScores")),
            rounds_won=_int_map(doc.get("roundsWon")),
            mode_context=doc.get("modeContext") if isinstance(doc.get("modeContext"), dict) else {},
            play_again_request=PlayAgainRequest.from_doc(doc.get("playAgainRequest")),
            players={pid: Player.from_doc(pid, p) for pid, p in players_raw.items() if isinstance(p, dict)},
        )


def validate_room_state(room: Room | None) -> list[str]:
    """Returns the list of structural problems; empty means consistent."""
    if room is None:
        return ["room data is missing"]

    errors: list[str] = []
    if not room.mode:
        errors.append("room.mode is missing")

    if room.status == "playing":
        if not room.phases:
            errors.append("room.phases is missing or empty")
        if not room.phase:
            errors.append("room.phase is missing")
        elif not (0 <= room.phase_index < len(room.phases)) or room.phases[room.phase_index] != room.phase:
            errors.append("room.phaseIndex does not match room.phase")
        if room.round_id <= 0:
            errors.append("room.roundId is missing")

    return errors
