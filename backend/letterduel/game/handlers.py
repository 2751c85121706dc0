"""Per-mode round behaviour.

Each mode gets one ``ModeHandler``; the session controller picks it from
``MODE_HANDLERS`` by ``Mode`` and never branches on the mode itself.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Mapping

from .errors import MissingAnswerContractError
from .models import (
    Answers,
    BluffAnswers,
    CategoryAnswers,
    MemoryAnswers,
    Player,
    Room,
    RoundResult,
    SingleAnswer,
)
from .modes import Mode, ModeConfig, get_mode_config, get_phase_config
from .scoring import bluff_points, memory_points, objective_points, survival_points
from .validation import ValidationService
from .words import CATEGORY_IDS, MEMORY_WORDS, build_constraints, pick_words, random_category

logger = logging.getLogger(__name__)


ANSWER_CONTRACTS: Mapping[str, type] = MappingProxyType({
    "grid": CategoryAnswers,
    "phased-grid": CategoryAnswers,
    "single-input": SingleAnswer,
    "puzzle": SingleAnswer,
    "card-memory": MemoryAnswers,
    "voting": BluffAnswers,
})


def answer_type_for(config: ModeConfig) -> type:
    answer_type = ANSWER_CONTRACTS.get(config.ui_contract)
    if answer_type is None:
        raise MissingAnswerContractError(
            f"mode {config.id.value!r} declares unknown ui contract {config.ui_contract!r}"
        )
    return answer_type


class ModeHandler(ABC):
    mode: Mode

    @property
    def config(self) -> ModeConfig:
        return get_mode_config(self.mode)

    def parse(self, raw: Any) -> Answers:
        return answer_type_for(self.config).from_payload(raw)

    def build_context(self, room: Room, letter: str, rng: random.Random, word_count: int) -> dict:
        return {}

    def on_phase_enter(self, room: Room, phase: str, rng: random.Random) -> dict | None:
        """Mode context changes to commit together with the phase switch."""
        return None

    def accept_submission(self, room: Room, player: Player, raw: Any) -> dict | None:
        """Normalized answers to store, or None to ignore the submission."""
        phase_cfg = get_phase_config(room.phase)
        if phase_cfg is None or not phase_cfg.allow_editing:
            return None
        return self.parse(raw).to_payload()

    def reconcile(self, room: Room, validation: ValidationService) -> dict[str, Any]:
        """Host-side path updates derived from submitted answers."""
        return {}

    def round_over(self, room: Room, validation: ValidationService) -> bool:
        """Mode-specific early termination of the current round."""
        return False

    @abstractmethod
    def evaluate(self, room: Room, validation: ValidationService, into: dict[str, RoundResult]) -> None:
        """Scores the round, filling ``into`` as results become available."""

    def apply_result(self, player: Player, result: RoundResult) -> None:
        player.score = result.score


class CategoryHandler(ModeHandler):
    def build_context(self, room, letter, rng, word_count):
        return {"categories": list(CATEGORY_IDS)}

    def evaluate(self, room, validation, into):
        answers = {
            pid: self.parse(p.answers).words
            for pid, p in room.players.items()
        }
        verdicts = validation.validate_round(room.round_id, room.letter, self.mode.value, answers)
        for pid, player in room.players.items():
            v = verdicts.get(pid)
            if v is None:
                continue
            into[pid] = RoundResult(
                name=player.name,
                score=v.score,
                details={cat: verdict.to_doc() for cat, verdict in v.results.items()},
            )


class ClassicHandler(CategoryHandler):
    mode = Mode.CLASSIC


class MultiphaseHandler(CategoryHandler):
    mode = Mode.MULTIPHASE


class SurvivalHandler(ModeHandler):
    mode = Mode.SURVIVAL

    def build_context(self, room, letter, rng, word_count):
        cat = random_category(rng)
        return {
            "currentCategory": {"id": cat.id, "label": cat.label, "prompt": cat.prompt},
            "roundNumber": room.current_round_number,
        }

    def accept_submission(self, room, player, raw):
        # One shot per turn.
        if player.submitted or player.eliminated:
            return None
        return super().accept_submission(room, player, raw)

    def reconcile(self, room, validation):
        updates: dict[str, Any] = {}
        for pid, p in room.players.items():
            if not p.submitted or p.eliminated:
                continue
            answer = self.parse(p.answers).answer
            if not validation.instant_judge(answer, room.letter):
                updates[f"players/{pid}/eliminated"] = True
        return updates

    def round_over(self, room, validation):
        players = list(room.players.values())
        if not players:
            return False
        eliminated = sum(1 for p in players if p.eliminated)
        if len(players) >= 2 and eliminated >= len(players) - 1:
            return True
        return all(p.submitted for p in players)

    def evaluate(self, room, validation, into):
        for pid, p in room.players.items():
            answer = self.parse(p.answers).answer if p.submitted else ""
            valid = validation.instant_judge(answer, room.letter)
            points, streak = survival_points(valid, p.streak)
            into[pid] = RoundResult(
                name=p.name,
                score=points,
                details={"answer": answer, "valid": valid, "streak": streak},
            )

    def apply_result(self, player, result):
        player.score = result.score
        player.streak = int(result.details.get("streak", 0))
        player.eliminated = not result.details.get("valid", False)


class MemoryHandler(ModeHandler):
    mode = Mode.MEMORY

    def build_context(self, room, letter, rng, word_count):
        config = self.config
        return {
            "words": pick_words(MEMORY_WORDS, word_count, rng),
            "showDuration": config.duration_for("show"),
            "recallDuration": config.duration_for("recall"),
        }

    def evaluate(self, room, validation, into):
        shown = room.mode_context.get("words") or []
        for pid, p in room.players.items():
            answers = self.parse(p.answers)
            comparison = validation.string_compare(answers.words, shown)
            into[pid] = RoundResult(
                name=p.name,
                score=memory_points(comparison, answers.risk, room.current_round_number),
                details={
                    "recalled": answers.words,
                    "matched": comparison.matched,
                    "correct": comparison.correct,
                    "total": comparison.total,
                    "risk": answers.risk,
                },
            )


class BluffHandler(ModeHandler):
    mode = Mode.BLUFF

    def build_context(self, room, letter, rng, word_count):
        cat = random_category(rng)
        player_ids = room.ordered_player_ids()
        return {
            "category": {"id": cat.id, "label": cat.label, "prompt": cat.prompt},
            "liar": rng.choice(player_ids) if player_ids else None,
            "answerOrder": [],
            "anonymousAnswers": [],
            "reveals": [],
        }

    def accept_submission(self, room, player, raw):
        current = self.parse(player.answers)
        incoming = self.parse(raw)
        if room.phase == "answer":
            return BluffAnswers(answer=incoming.answer, vote=current.vote).to_payload()
        if room.phase == "vote":
            options = room.mode_context.get("anonymousAnswers") or []
            if incoming.vote is None or not (0 <= incoming.vote < len(options)):
                return None
            return BluffAnswers(answer=current.answer, vote=incoming.vote).to_payload()
        return None

    def on_phase_enter(self, room, phase, rng):
        ctx = dict(room.mode_context)
        if phase == "vote":
            order = [pid for pid in room.ordered_player_ids() if self.parse(room.players[pid].answers).answer]
            rng.shuffle(order)
            ctx["answerOrder"] = order
            ctx["anonymousAnswers"] = [self.parse(room.players[pid].answers).answer for pid in order]
            return ctx
        if phase == "reveal":
            liar = ctx.get("liar")
            ctx["reveals"] = [
                {
                    "playerId": pid,
                    "name": p.name,
                    "answer": self.parse(p.answers).answer,
                    "isLiar": pid == liar,
                    "vote": self.parse(p.answers).vote,
                }
                for pid, p in room.players.items()
            ]
            return ctx
        return None

    def evaluate(self, room, validation, into):
        ctx = room.mode_context
        liar = ctx.get("liar")
        order = ctx.get("answerOrder") or []
        liar_index = order.index(liar) if liar in order else None

        caught: dict[str, bool] = {}
        for pid, p in room.players.items():
            if pid == liar:
                continue
            vote = self.parse(p.answers).vote
            caught[pid] = liar_index is not None and vote == liar_index
        fooled = sum(1 for c in caught.values() if not c)

        for pid, p in room.players.items():
            answers = self.parse(p.answers)
            well_formed = validation.word_exists_only(answers.answer)
            is_liar = pid == liar
            into[pid] = RoundResult(
                name=p.name,
                score=bluff_points(
                    well_formed=well_formed,
                    is_liar=is_liar,
                    caught=caught.get(pid, False),
                    fooled=fooled,
                    round_number=room.current_round_number,
                ),
                details={
                    "answer": answers.answer,
                    "wellFormed": well_formed,
                    "vote": answers.vote,
                    "isLiar": is_liar,
                },
            )


class ObjectiveHandler(ModeHandler):
    mode = Mode.OBJECTIVE

    def build_context(self, room, letter, rng, word_count):
        return {"constraints": build_constraints(letter, rng)}

    def round_over(self, room, validation):
        # Failed attempts may be resubmitted; only a solve ends the round early.
        constraints = room.mode_context.get("constraints") or []
        return any(
            p.submitted and validation.constraint_validator(self.parse(p.answers).answer, constraints).passed
            for p in room.players.values()
        )

    def evaluate(self, room, validation, into):
        constraints = room.mode_context.get("constraints") or []
        for pid, p in room.players.items():
            answer = self.parse(p.answers).answer
            check = validation.constraint_validator(answer, constraints)
            into[pid] = RoundResult(
                name=p.name,
                score=objective_points(check.passed),
                details={"answer": answer, "passed": check.passed, "results": check.results},
            )


MODE_HANDLERS: Mapping[Mode, ModeHandler] = MappingProxyType({
    Mode.CLASSIC: ClassicHandler(),
    Mode.MULTIPHASE: MultiphaseHandler(),
    Mode.SURVIVAL: SurvivalHandler(),
    Mode.MEMORY: MemoryHandler(),
    Mode.BLUFF: BluffHandler(),
    Mode.OBJECTIVE: ObjectiveHandler(),
})


def get_handler(mode: Any) -> ModeHandler:
    config = get_mode_config(mode)
    # Fail here rather than on the first submission.
    answer_type_for(config)
    return MODE_HANDLERS[config.id]


def build_mode_context(
    mode: Any,
    config: ModeConfig | None = None,
    *,
    room: Room | None = None,
    letter: str = "",
    rng: random.Random | None = None,
    word_count: int = 5,
) -> dict:
    handler = get_handler(config.id if config is not None else mode)
    return handler.build_context(room or Room(code=""), letter, rng or random.Random(), word_count)
