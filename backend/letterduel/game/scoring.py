"""Round scores, cumulative totals and winners.

A tie never produces a winner, neither for a round nor for the game.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from .models import Room, RoundResult
from .validation import POINTS_PER_VALID, MemoryComparison

OBJECTIVE_SOLVE_POINTS = 20
MEMORY_RISK_FROM_ROUND = 3


def determine_round_winner(scores: Mapping[str, int]) -> str | None:
    if not scores:
        return None
    best = max(scores.values())
    leaders = [pid for pid, s in scores.items() if s == best]
    if len(leaders) != 1:
        return None
    return leaders[0]


@dataclass
class GameResult:
    winner_id: str | None
    # Player ids, best first: total score, then rounds won.
    ranking: list[str] = field(default_factory=list)

    @property
    def is_draw(self) -> bool:
        return self.winner_id is None and len(self.ranking) > 1


def determine_game_result(total_scores: Mapping[str, int], rounds_won: Mapping[str, int]) -> GameResult:
    pids = set(total_scores) | set(rounds_won)
    if not pids:
        return GameResult(winner_id=None)

    def key(pid: str) -> tuple[int, int]:
        return (total_scores.get(pid, 0), rounds_won.get(pid, 0))

    ranking = sorted(pids, key=lambda pid: (-key(pid)[0], -key(pid)[1], pid))
    top = key(ranking[0])
    if len(ranking) > 1 and key(ranking[1]) == top:
        return GameResult(winner_id=None, ranking=ranking)
    return GameResult(winner_id=ranking[0], ranking=ranking)


# ---- per-mode formulas -----------------------------------------------------


def survival_points(valid: bool, streak_before: int) -> tuple[int, int]:
    """Returns (points, new_streak). A miss resets the streak."""
    if not valid:
        return 0, 0
    streak = streak_before + 1
    return POINTS_PER_VALID * streak, streak


def memory_points(comparison: MemoryComparison, risk: bool, round_number: int) -> int:
    base = comparison.score
    if not risk or round_number < MEMORY_RISK_FROM_ROUND:
        return base
    if comparison.total > 0 and comparison.correct == comparison.total:
        return base * 2
    return 0


def bluff_multiplier(round_number: int) -> float:
    if round_number <= 1:
        return 1.0
    if round_number == 2:
        return 1.5
    return float(round_number - 1)


def bluff_points(well_formed: bool, is_liar: bool, caught: bool, fooled: int, round_number: int) -> int:
    """``caught``: a truth-teller voted for the liar's answer.
    ``fooled``: how many truth-tellers missed the liar's answer."""
    points = POINTS_PER_VALID if well_formed else 0
    if is_liar:
        points += POINTS_PER_VALID * fooled
    elif caught:
        points += POINTS_PER_VALID
    return int(round(points * bluff_multiplier(round_number)))


def objective_points(passed: bool) -> int:
    return OBJECTIVE_SOLVE_POINTS if passed else 0


# ---- aggregation -----------------------------------------------------------


@dataclass
class RoundOutcome:
    results: dict[str, RoundResult]
    total_scores: dict[str, int]
    rounds_won: dict[str, int]
    winner_id: str | None


class ResultAggregator:
    def aggregate(self, room: Room, scored: Mapping[str, RoundResult]) -> RoundOutcome:
        """Folds one round's scores into the room's running totals.

        Players without a result score zero for the round. Players who left
        keep their totals.
        """
        totals = dict(room.total_scores)
        won = dict(room.rounds_won)
        results: dict[str, RoundResult] = {}

        for pid, player in room.players.items():
            res = scored.get(pid) or RoundResult(name=player.name)
            cumulative = totals.get(pid, 0) + res.score
            totals[pid] = cumulative
            won.setdefault(pid, 0)
            results[pid] = RoundResult(
                name=res.name or player.name,
                score=res.score,
                cumulative_score=cumulative,
                details=res.details,
            )

        winner = determine_round_winner({pid: r.score for pid, r in results.items()})
        if winner is not None:
            won[winner] = won.get(winner, 0) + 1

        return RoundOutcome(results=results, total_scores=totals, rounds_won=won, winner_id=winner)
