"""Room session state machine.

One ``SessionController`` per room membership. Every client subscribes to its
room and runs the same reducer; only the client whose player is flagged host
drives control-plane transitions:

    waiting -> playing -> calculating -> results | finished_game
    results | finished_game -> playing   (accepted play-again only)

Control-plane writes go through compare-and-swap transactions conditioned on
``status``/``roundId``/``phaseIndex`` and the two locks, so duplicate triggers
(two timeouts, a stop racing a timeout) take effect at most once. Losing
transactions abort quietly.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping

from ..store.memory import ABORT, now_ms
from ..store.rooms import RoomStore, new_player
from .errors import (
    ConfigurationError,
    GameError,
    InvalidPayloadError,
    JudgeQuotaExceededError,
    NotInRoomError,
    RoomAlreadyStartedError,
    RoomFullError,
    RoomNotFoundError,
)
from .handlers import get_handler
from .models import MAX_PLAYERS, PlayAgainRequest, Room, RoundResult, can_transition, validate_room_state
from .modes import get_mode_config, is_stop_allowed
from .scoring import ResultAggregator, determine_game_result
from .sync import ClientSync, Notice, elapsed_seconds, remaining_seconds, room_public_state
from .validation import ValidationService
from .words import random_letter

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class SessionSettings:
    stop_min_elapsed_sec: int = 10
    answer_debounce_ms: int = 300
    default_total_rounds: int = 5
    max_total_rounds: int = 20
    memory_word_count: int = 5
    room_code_length: int = 6

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "SessionSettings":
        return cls(
            stop_min_elapsed_sec=int(cfg.get("STOP_MIN_ELAPSED_SEC", 10)),
            answer_debounce_ms=int(cfg.get("ANSWER_DEBOUNCE_MS", 300)),
            default_total_rounds=int(cfg.get("DEFAULT_TOTAL_ROUNDS", 5)),
            max_total_rounds=int(cfg.get("MAX_TOTAL_ROUNDS", 20)),
            memory_word_count=int(cfg.get("MEMORY_WORD_COUNT", 5)),
            room_code_length=int(cfg.get("ROOM_CODE_LENGTH", 6)),
        )


@dataclass
class SessionContext:
    """Who this client is and which room it belongs to."""

    connection_id: str
    player_id: str
    player_name: str = ""
    room_code: str | None = None
    is_host: bool = False
    server_time_offset_ms: int = 0
    awaiting_play_again: bool = False

    @property
    def in_room(self) -> bool:
        return self.room_code is not None

    def leave(self) -> None:
        self.room_code = None
        self.is_host = False
        self.awaiting_play_again = False


def validate_name(name: str) -> bool:
    n = (name or "").strip()
    if not n or len(n) > 16:
        return False
    if "<" in n or ">" in n:
        return False
    return all(ord(ch) >= 32 for ch in n)


def generate_room_code(rng: random.Random, length: int = 6) -> str:
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(length))


def generate_player_id(rng: random.Random) -> str:
    return "p_" + "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(8))


def _run_inline(fn: Callable[..., Any], *args: Any) -> Any:
    return fn(*args)


class Debouncer:
    """Coalesces rapid pushes; only the last value is written.

    Each push schedules a delayed fire through ``spawn``/``sleep`` (the
    server passes ``socketio.start_background_task``/``socketio.sleep``); a
    fire that has been overtaken by a later push, flush or cancel does nothing.
    """

    def __init__(
        self,
        delay_sec: float,
        fn: Callable[[Any], None],
        *,
        spawn: Callable[..., Any] = _run_inline,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.delay_sec = delay_sec
        self._fn = fn
        self._spawn = spawn
        self._sleep = sleep
        self._lock = Lock()
        self._generation = 0
        self._pending: Any = None

    def push(self, value: Any) -> None:
        with self._lock:
            self._pending = value
            self._generation += 1
            generation = self._generation
        if self.delay_sec <= 0:
            self.flush()
            return
        self._spawn(self._fire, generation)

    def _fire(self, generation: int) -> None:
        self._sleep(self.delay_sec)
        with self._lock:
            if generation != self._generation:
                return
        self.flush()

    def flush(self) -> None:
        with self._lock:
            value, self._pending = self._pending, None
            self._generation += 1
        if value is not None:
            self._fn(value)

    def cancel(self) -> None:
        with self._lock:
            self._pending = None
            self._generation += 1


class SessionController:
    def __init__(
        self,
        rooms: RoomStore,
        validation: ValidationService,
        *,
        connection_id: str,
        player_id: str | None = None,
        settings: SessionSettings | None = None,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
        spawn: Callable[..., Any] | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        on_state: Callable[[dict | None], None] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
    ) -> None:
        self.rooms = rooms
        self.validation = validation
        self.settings = settings or SessionSettings()
        self.aggregator = ResultAggregator()
        self._clock = clock
        self._rng = rng or random.Random()
        self._spawn = spawn or _run_inline
        self._on_state = on_state
        self._on_notice = on_notice

        self.ctx = SessionContext(
            connection_id=connection_id,
            player_id=player_id or generate_player_id(self._rng),
        )
        self.sync = ClientSync(self.ctx.player_id)
        self.room: Room | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._presence = None
        self._drafts = Debouncer(
            self.settings.answer_debounce_ms / 1000.0, self._write_draft, spawn=self._spawn, sleep=sleep
        )

    @property
    def player_id(self) -> str:
        return self.ctx.player_id

    # ---- membership ------------------------------------------------------

    def create_room(self, name: str, mode: str, total_rounds: int | None = None) -> str:
        if not validate_name(name):
            raise InvalidPayloadError("اسم غير صالح")
        config = get_mode_config(mode)
        rounds = self._clamp_rounds(total_rounds)

        if self.ctx.in_room:
            self.leave_room()

        me = self.ctx.player_id
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_room_code(self._rng, self.settings.room_code_length)
            now = self.rooms.server_now_ms()
            room = Room(
                code=code,
                mode=config.id.value,
                status="waiting",
                created_at=now,
                phases=list(config.phases),
                phase_duration=config.duration_for(config.phases[0]),
                total_rounds=rounds,
                players={me: new_player(me, name.strip(), is_host=True, joined_at=now)},
            )
            presence = self.rooms.register_presence(self.ctx.connection_id, code, me)

            def _create(current: Room | None, room: Room = room) -> Any:
                return ABORT if current is not None else room

            if self.rooms.transact_room(code, _create).committed:
                self._presence = presence
                self.ctx.player_name = name.strip()
                logger.info("room=%s created mode=%s rounds=%s host=%s", code, config.id.value, rounds, me)
                self._enter(code)
                return code
            presence.cancel()

        raise GameError("تعذر إنشاء غرفة")

    def join_room(self, code: str, name: str) -> None:
        code = (code or "").strip().upper()
        if not code or not validate_name(name):
            raise InvalidPayloadError()
        if not self.rooms.room_exists(code):
            raise RoomNotFoundError()

        if self.ctx.in_room and self.ctx.room_code != code:
            self.leave_room()

        me = self.ctx.player_id
        failure: list[GameError] = []

        def _join(room: Room | None) -> Any:
            failure.clear()
            if room is None:
                failure.append(RoomNotFoundError())
                return ABORT
            if me in room.players:
                room.players[me].name = name.strip()
                return room
            if room.status != "waiting":
                failure.append(RoomAlreadyStartedError())
                return ABORT
            if len(room.players) >= MAX_PLAYERS:
                failure.append(RoomFullError())
                return ABORT
            room.players[me] = new_player(me, name.strip(), is_host=not room.players, joined_at=self.rooms.server_now_ms())
            return room

        presence = self.rooms.register_presence(self.ctx.connection_id, code, me)
        if not self.rooms.transact_room(code, _join).committed:
            presence.cancel()
            raise failure[0] if failure else RoomNotFoundError()

        self._presence = presence
        self.ctx.player_name = name.strip()
        logger.info("room=%s joined by %s", code, me)
        self._enter(code)

    def leave_room(self) -> None:
        code = self.ctx.room_code
        if not code:
            self._teardown()
            return

        self._drafts.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._presence is not None:
            self._presence.cancel()
            self._presence = None

        me = self.ctx.player_id

        def _leave(room: Room | None) -> Any:
            if room is None or me not in room.players:
                return ABORT
            was_host = room.players[me].is_host
            del room.players[me]
            if not room.players:
                return None
            if was_host:
                room.players[room.ordered_player_ids()[0]].is_host = True
            req = room.play_again_request
            if req is not None and req.requested_by == me:
                room.play_again_request = None
            return room

        self.rooms.transact_room(code, _leave)
        logger.info("room=%s left by %s", code, me)
        self._teardown()

    def close(self) -> None:
        """Drops local state without writing; presence cleanup does the rest."""
        self._teardown()

    def _enter(self, code: str) -> None:
        self.ctx.room_code = code
        self.ctx.server_time_offset_ms = self.rooms.server_time_offset_ms(self._clock())
        self.sync.reset()
        self._unsubscribe = self.rooms.subscribe_room(code, self._on_snapshot)

    def _teardown(self) -> None:
        self._drafts.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._presence = None
        self.ctx.leave()
        self.sync.reset()
        self.room = None

    def _clamp_rounds(self, total_rounds: Any) -> int:
        try:
            rounds = int(total_rounds)
        except (TypeError, ValueError):
            return self.settings.default_total_rounds
        if rounds < 1:
            return self.settings.default_total_rounds
        return min(rounds, self.settings.max_total_rounds)

    def _require_room(self) -> str:
        if not self.ctx.room_code:
            raise NotInRoomError()
        return self.ctx.room_code

    # ---- round lifecycle -------------------------------------------------

    def start_game(self) -> bool:
        """Host only: waiting -> playing. Also used for a manual force start."""
        if not self.ctx.in_room or not self.ctx.is_host:
            return False
        me = self.ctx.player_id

        def _start(room: Room | None) -> Any:
            if room is None or room.status != "waiting" or not room.players:
                return ABORT
            if room.host_id != me:
                return ABORT
            return self._begin_round(room, fresh=True)

        return self._commit(_start, "start_game")

    def _begin_round(self, room: Room, fresh: bool) -> Any:
        if not can_transition(room.status, "playing"):
            return ABORT
        config = get_mode_config(room.mode)
        handler = get_handler(room.mode)
        letter = random_letter(self._rng)

        room.status = "playing"
        room.letter = letter
        room.round_id += 1
        room.current_round_number = 1 if fresh else room.current_round_number + 1
        room.phases = list(config.phases)
        room.phase_index = 0
        room.phase = room.phases[0]
        room.phase_start_at = self.rooms.server_timestamp
        room.phase_duration = config.duration_for(room.phase)
        room.stopped_by = ""
        room.stop_lock = False
        room.calculation_lock = False
        room.calculation_lock_by = ""
        room.round_results = {}
        room.round_winner = None
        room.game_winner = None
        room.ranking = []
        room.play_again_request = None
        if fresh:
            room.total_scores = {pid: 0 for pid in room.players}
            room.rounds_won = {pid: 0 for pid in room.players}

        for p in room.players.values():
            p.answers = {}
            p.submitted = False
            p.score = 0
            p.eliminated = False
            if fresh:
                p.cumulative_score = 0
                p.streak = 0

        room.mode_context = handler.build_context(room, letter, self._rng, self.settings.memory_word_count)
        logger.info("room=%s round=%s (#%s) letter=%s", room.code, room.round_id, room.current_round_number, letter)
        return room

    def advance_phase(self, round_id: int, phase_index: int) -> bool:
        """Moves past phase ``phase_index`` of round ``round_id``, at most once."""
        if not self.ctx.is_host:
            return False

        def _advance(room: Room | None) -> Any:
            if room is None or room.status != "playing":
                return ABORT
            if room.round_id != round_id or room.phase_index != phase_index:
                return ABORT
            nxt = phase_index + 1
            if nxt < len(room.phases):
                config = get_mode_config(room.mode)
                room.phase_index = nxt
                room.phase = room.phases[nxt]
                room.phase_start_at = self.rooms.server_timestamp
                room.phase_duration = config.duration_for(room.phase)
                ctx = get_handler(room.mode).on_phase_enter(room, room.phase, self._rng)
                if ctx is not None:
                    room.mode_context = ctx
            else:
                room.status = "calculating"
            room.stop_lock = False
            return room

        return self._commit(_advance, "advance_phase")

    def end_round_early(self, round_id: int) -> bool:
        if not self.ctx.is_host:
            return False

        def _end(room: Room | None) -> Any:
            if room is None or room.status != "playing" or room.round_id != round_id:
                return ABORT
            room.status = "calculating"
            room.stop_lock = False
            return room

        return self._commit(_end, "end_round_early")

    def request_stop(self) -> bool:
        if not self.ctx.in_room:
            return False
        if not self.ctx.is_host:
            logger.debug("stop ignored: %s is not host", self.ctx.player_id)
            return False

        room = self.rooms.get_room(self.ctx.room_code)
        if room is None or room.status != "playing" or not is_stop_allowed(room):
            return False
        elapsed = elapsed_seconds(room, self._clock(), self.ctx.server_time_offset_ms)
        if elapsed < self.settings.stop_min_elapsed_sec:
            logger.debug("stop ignored: only %.1fs into phase", elapsed)
            return False

        self._drafts.flush()
        me = self.ctx.player_id
        round_id, phase_index = room.round_id, room.phase_index

        def _lock(current: Room | None) -> Any:
            if current is None or current.status != "playing" or current.stop_lock:
                return ABORT
            if current.round_id != round_id or current.phase_index != phase_index:
                return ABORT
            if not is_stop_allowed(current):
                return ABORT
            current.stop_lock = True
            current.stopped_by = me
            return current

        if not self._commit(_lock, "stop"):
            return False
        return self.advance_phase(round_id, phase_index)

    def tick(self) -> int | None:
        """Once per second. Returns the projected seconds left in the phase."""
        room = self.room
        if room is None or not self.ctx.in_room:
            return None
        remaining = remaining_seconds(room, self._clock(), self.ctx.server_time_offset_ms)
        if self.ctx.is_host and room.status == "playing" and remaining is not None and remaining <= 0:
            logger.info("room=%s time up round=%s phase=%s", room.code, room.round_id, room.phase)
            self.advance_phase(room.round_id, room.phase_index)
        return remaining

    # ---- answers ---------------------------------------------------------

    def submit_answers(self, payload: Any) -> bool:
        code = self._require_room()
        room = self.rooms.get_room(code)
        me = self.ctx.player_id
        if room is None or room.status != "playing" or me not in room.players:
            return False
        normalized = get_handler(room.mode).accept_submission(room, room.players[me], payload)
        if normalized is None:
            return False
        self._drafts.cancel()
        self.rooms.set_player_answers(code, me, normalized, submitted=True)
        return True

    def update_answers(self, payload: Any) -> bool:
        """Draft answers from continuous input, written after a short quiet period."""
        code = self._require_room()
        room = self.room
        me = self.ctx.player_id
        if room is None or room.status != "playing" or me not in room.players:
            return False
        normalized = get_handler(room.mode).accept_submission(room, room.players[me], payload)
        if normalized is None:
            return False
        self._drafts.push((code, room.round_id, normalized))
        return True

    def flush_answers(self) -> None:
        self._drafts.flush()

    def _write_draft(self, item: tuple[str, int, dict]) -> None:
        code, round_id, answers = item
        room = self.room
        if room is None or room.code != code or room.round_id != round_id or room.status != "playing":
            return
        self.rooms.set_player_answers(code, self.ctx.player_id, answers)

    # ---- calculation -----------------------------------------------------

    def run_calculation(self, round_id: int) -> bool:
        """Scores round ``round_id``. Guarded by ``calculationLock``."""
        code = self.ctx.room_code
        if not code or not self.ctx.is_host:
            return False
        me = self.ctx.player_id

        def _acquire(room: Room | None) -> Any:
            if room is None or room.status != "calculating" or room.round_id != round_id:
                return ABORT
            if room.calculation_lock_held() or room.round_results:
                return ABORT
            if room.calculation_lock:
                logger.warning("room=%s taking over calculation lock from %s", code, room.calculation_lock_by)
            room.calculation_lock = True
            room.calculation_lock_by = me
            return room

        acquired = self.rooms.transact_room(code, _acquire)
        if not acquired.committed:
            logger.debug("room=%s calculation for round %s already taken", code, round_id)
            return False

        room = Room.from_doc(code, acquired.value)
        handler = get_handler(room.mode)
        partial: dict[str, RoundResult] = {}
        force_finish = False
        try:
            handler.evaluate(room, self.validation, partial)
        except JudgeQuotaExceededError:
            logger.warning("room=%s judge quota exceeded, finishing game", code)
            force_finish = True
            self._notify(Notice("quota_exceeded", "تم تجاوز حد التحقق، انتهت اللعبة", "error"))
        except Exception:
            logger.exception("room=%s calculation failed for round %s", code, round_id)
            self._notify(Notice("calculation_error", "حدث خطأ في الحساب، تم الانتقال للنتائج", "error"))

        return self._commit_results(code, round_id, partial, force_finish)

    def _commit_results(self, code: str, round_id: int, partial: dict[str, RoundResult], force_finish: bool) -> bool:
        def _finish(room: Room | None) -> Any:
            if room is None or room.status != "calculating" or room.round_id != round_id:
                return ABORT
            handler = get_handler(room.mode)
            outcome = self.aggregator.aggregate(room, partial)
            for pid, player in room.players.items():
                result = outcome.results[pid]
                handler.apply_result(player, result)
                player.cumulative_score = result.cumulative_score
            room.round_results = outcome.results
            room.total_scores = outcome.total_scores
            room.rounds_won = outcome.rounds_won
            room.round_winner = outcome.winner_id
            final = force_finish or room.current_round_number >= room.total_rounds
            if final:
                game = determine_game_result(room.total_scores, room.rounds_won)
                room.game_winner = game.winner_id
                room.ranking = game.ranking
            room.status = "finished_game" if final else "results"
            room.calculation_lock = False
            room.calculation_lock_by = ""
            return room

        # The session may have left the room while judging.
        committed = self.rooms.transact_room(code, _finish).committed
        if not committed:
            logger.debug("room=%s commit_results lost the race", code)
        return committed

    # ---- play again ------------------------------------------------------

    def play_again(self) -> bool:
        code = self._require_room()
        me = self.ctx.player_id

        def _request(room: Room | None) -> Any:
            if room is None or me not in room.players:
                return ABORT
            if room.status not in ("results", "finished_game"):
                return ABORT
            req = room.play_again_request
            if req is not None and req.status in ("pending", "accepted"):
                return ABORT
            room.play_again_request = PlayAgainRequest(
                requested_by=me, status="pending", timestamp=self.rooms.server_timestamp
            )
            return room

        ok = self.rooms.transact_room(code, _request).committed
        if ok:
            self.ctx.awaiting_play_again = True
        return ok

    def accept_play_again(self) -> bool:
        return self._answer_play_again("accepted")

    def decline_play_again(self) -> bool:
        return self._answer_play_again("declined")

    def _answer_play_again(self, status: str) -> bool:
        code = self._require_room()
        me = self.ctx.player_id

        def _answer(room: Room | None) -> Any:
            if room is None or me not in room.players:
                return ABORT
            req = room.play_again_request
            if req is None or req.status != "pending" or req.requested_by == me:
                return ABORT
            req.status = status
            return room

        return self.rooms.transact_room(code, _answer).committed

    def _start_next_round(self) -> bool:
        def _restart(room: Room | None) -> Any:
            if room is None or room.status not in ("results", "finished_game"):
                return ABORT
            req = room.play_again_request
            if req is None or req.status != "accepted":
                return ABORT
            return self._begin_round(room, fresh=room.status == "finished_game")

        return self._commit(_restart, "play_again")

    def _clear_declined(self) -> None:
        me = self.ctx.player_id

        def _clear(room: Room | None) -> Any:
            if room is None:
                return ABORT
            req = room.play_again_request
            if req is None or req.status != "declined" or req.requested_by != me:
                return ABORT
            room.play_again_request = None
            return room

        if self.ctx.room_code:
            self.rooms.transact_room(self.ctx.room_code, _clear)

    # ---- reducer ---------------------------------------------------------

    def _on_snapshot(self, room: Room | None) -> None:
        delta = self.sync.reduce(room)
        for notice in delta.notices:
            self._notify(notice)

        if delta.room_deleted or delta.left_room or room is None or self.ctx.player_id not in room.players:
            if delta.room_deleted or delta.left_room:
                self._teardown()
                self._publish(None)
            return

        self.room = room
        me = room.players[self.ctx.player_id]
        if me.is_host != self.ctx.is_host:
            logger.info("room=%s %s host=%s", room.code, self.ctx.player_id, me.is_host)
            self.ctx.is_host = me.is_host

        self._publish(room)

        req = room.play_again_request
        if req is not None and req.requested_by == self.ctx.player_id and req.status == "declined":
            self.ctx.awaiting_play_again = False
            self._clear_declined()
            return
        if req is None or req.requested_by != self.ctx.player_id:
            self.ctx.awaiting_play_again = False

        if room.host_id is None:
            self._claim_host(room)
            return

        if self.ctx.is_host:
            self._host_react(room)

    def _host_react(self, room: Room) -> None:
        if room.status == "waiting":
            if len(room.players) >= MAX_PLAYERS:
                self.start_game()
            return

        if room.status == "playing":
            errors = validate_room_state(room)
            if errors:
                raise ConfigurationError(f"room {room.code} is inconsistent: {'; '.join(errors)}")
            handler = get_handler(room.mode)
            updates = handler.reconcile(room, self.validation)
            if updates:
                self.rooms.update_room(room.code, updates)
                return
            if handler.round_over(room, self.validation):
                self.end_round_early(room.round_id)
            return

        if room.status == "calculating":
            if not room.round_results and not room.calculation_lock_held():
                self._spawn(self.run_calculation, room.round_id)
            return

        req = room.play_again_request
        if req is not None and req.status == "accepted":
            self._start_next_round()

    def _claim_host(self, room: Room) -> None:
        """No one is flagged host: the earliest remaining player takes over."""
        order = room.ordered_player_ids()
        if not order or order[0] != self.ctx.player_id:
            return
        me = self.ctx.player_id

        def _claim(current: Room | None) -> Any:
            if current is None or me not in current.players or current.host_id is not None:
                return ABORT
            current.players[me].is_host = True
            return current

        self._commit(_claim, "claim_host")

    # ---- plumbing --------------------------------------------------------

    def _commit(self, fn: Callable[[Room | None], Any], action: str) -> bool:
        code = self.ctx.room_code
        if not code:
            return False
        committed = self.rooms.transact_room(code, fn).committed
        if not committed:
            logger.debug("room=%s %s lost the race", code, action)
        return committed

    def public_state(self) -> dict | None:
        if self.room is None:
            return None
        remaining = remaining_seconds(self.room, self._clock(), self.ctx.server_time_offset_ms)
        return room_public_state(self.room, self.ctx.player_id, remaining)

    def _publish(self, room: Room | None) -> None:
        if self._on_state is None:
            return
        self._on_state(self.public_state() if room is not None else None)

    def _notify(self, notice: Notice) -> None:
        if self._on_notice is not None:
            self._on_notice(notice)
