"""Answer judging, one strategy per validator role.

Remote judging is preferred where a mode allows it; any transport failure
falls back to the local heuristics below. Malformed or empty answers are
simply invalid.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .errors import ConfigurationError, JudgeUnavailableError
from .judge import JudgeClient, JudgeEntry

logger = logging.getLogger(__name__)

POINTS_PER_VALID = 10

ARABIC_RE = re.compile(r"[\u0600-\u06FF]")
ARABIC_ONLY_RE = re.compile(r"^[\u0600-\u06FF\s]+$")

_LETTER_VARIANTS = {"أ": "ا", "إ": "ا", "آ": "ا", "ة": "ه", "ى": "ي"}

# Modes judged locally even when a remote judge is configured.
LOCAL_ONLY_MODES = frozenset({"survival", "memory"})


def normalize_letter(letter: str | None) -> str:
    if not letter:
        return ""
    return _LETTER_VARIANTS.get(letter, letter)


def normalize_word(word: str) -> str:
    """Unifies alef/hamza variants and strips a trailing taa marbuta."""
    w = (word or "").strip()
    w = re.sub("[إأآ]", "ا", w)
    return re.sub("ة$", "ه", w)


def first_letter(word: str | None) -> str:
    w = (word or "").strip()
    if not w or not ARABIC_RE.search(w):
        return ""
    if w.startswith("ال") and len(w) > 2:
        w = w[2:]
    return normalize_letter(w[0])


def validate_local(answer: str | None, letter: str) -> bool:
    w = (answer or "").strip()
    if len(w) < 2:
        return False
    if not ARABIC_RE.search(w):
        return False
    return first_letter(w) == normalize_letter(letter)


@dataclass
class WordVerdict:
    valid: bool
    source: str


@dataclass
class CategoryVerdict:
    answer: str
    valid: bool
    points: int
    source: str = "local"

    def to_doc(self) -> dict:
        return {"answer": self.answer, "valid": self.valid, "points": self.points}


@dataclass
class CategoryValidation:
    results: dict[str, CategoryVerdict] = field(default_factory=dict)

    @property
    def score(self) -> int:
        return sum(v.points for v in self.results.values())


@dataclass
class MemoryComparison:
    correct: int
    total: int
    matched: list[str] = field(default_factory=list)

    @property
    def score(self) -> int:
        return self.correct * POINTS_PER_VALID


@dataclass
class ConstraintCheck:
    passed: bool
    results: dict[str, bool] = field(default_factory=dict)


class ValidationService:
    def __init__(self, judge: JudgeClient | None = None, max_workers: int = 9) -> None:
        self.judge = judge
        self.max_workers = max(1, max_workers)

    # ---- validator (classic / multiphase) ---------------------------------

    def judge_word(self, word: str, letter: str, mode: str) -> WordVerdict:
        w = (word or "").strip()
        if len(w) < 2:
            return WordVerdict(valid=False, source="local-short")

        if mode in LOCAL_ONLY_MODES:
            return WordVerdict(valid=validate_local(w, letter), source="local-forced")

        if self.judge is not None:
            try:
                return WordVerdict(valid=self.judge.judge_word(w, letter, mode), source="judge")
            except JudgeUnavailableError:
                logger.warning("Judge unavailable for %r, using local check", w)

        return WordVerdict(valid=validate_local(w, letter), source="local-fallback")

    def validate_categories(self, answers: Mapping[str, str], letter: str, mode: str) -> CategoryValidation:
        """Judges every category independently and in parallel."""
        entries = [(cat, (word or "").strip()) for cat, word in answers.items()]
        if not entries:
            return CategoryValidation()

        workers = min(self.max_workers, len(entries))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(cat, word, pool.submit(self.judge_word, word, letter, mode)) for cat, word in entries]
            # .result() re-raises JudgeQuotaExceededError for the caller.
            verdicts = [(cat, word, f.result()) for cat, word, f in futures]

        validation = CategoryValidation()
        for cat, word, verdict in verdicts:
            validation.results[cat] = CategoryVerdict(
                answer=word,
                valid=verdict.valid,
                points=POINTS_PER_VALID if verdict.valid else 0,
                source=verdict.source,
            )
        return validation

    def validate_round(
        self,
        round_id: int,
        letter: str,
        mode: str,
        answers_by_player: Mapping[str, Mapping[str, str]],
    ) -> dict[str, CategoryValidation]:
        """One batch request for the whole round, per-category otherwise."""
        if self.judge is not None and mode not in LOCAL_ONLY_MODES:
            entries = [
                JudgeEntry(player_id=pid, category=cat, word=(word or "").strip())
                for pid, answers in answers_by_player.items()
                for cat, word in answers.items()
                if len((word or "").strip()) >= 2
            ]
            try:
                verdicts = self.judge.judge_batch(round_id, letter, mode, entries) if entries else {}
            except JudgeUnavailableError:
                logger.warning("Batch judging failed for round %s, judging per category", round_id)
            else:
                out: dict[str, CategoryValidation] = {}
                for pid, answers in answers_by_player.items():
                    validation = CategoryValidation()
                    for cat, word in answers.items():
                        w = (word or "").strip()
                        ok = verdicts.get((pid, cat), False) if len(w) >= 2 else False
                        validation.results[cat] = CategoryVerdict(
                            answer=w, valid=ok, points=POINTS_PER_VALID if ok else 0, source="judge"
                        )
                    out[pid] = validation
                return out

        return {
            pid: self.validate_categories(answers, letter, mode)
            for pid, answers in answers_by_player.items()
        }

    # ---- instant-judge (survival) ----------------------------------------

    @staticmethod
    def instant_judge(answer: str | None, letter: str) -> bool:
        """Strict local check; never touches the network."""
        w = (answer or "").strip()
        if not w or not ARABIC_ONLY_RE.match(w):
            return False
        return first_letter(w) == normalize_letter(letter)

    # ---- string-compare (memory) -----------------------------------------

    @staticmethod
    def string_compare(recalled: Iterable[str], shown: Iterable[str]) -> MemoryComparison:
        shown_list = [w for w in shown if isinstance(w, str)]
        reference = {normalize_word(w) for w in shown_list}
        seen: set[str] = set()
        matched: list[str] = []
        for word in recalled:
            n = normalize_word(word)
            if n and n in reference and n not in seen:
                seen.add(n)
                matched.append(word)
        return MemoryComparison(correct=len(matched), total=len(shown_list), matched=matched)

    # ---- word-exists-only (bluff) ----------------------------------------

    @staticmethod
    def word_exists_only(answer: str | None) -> bool:
        """Well-formedness only. Says nothing about who is bluffing."""
        w = (answer or "").strip()
        return len(w) >= 2 and bool(ARABIC_RE.search(w))

    # ---- constraint-validator (objective) --------------------------------

    @staticmethod
    def constraint_validator(answer: str | None, constraints: list[dict]) -> ConstraintCheck:
        word = (answer or "").strip()
        if not word:
            return ConstraintCheck(passed=False)

        norm = "".join(normalize_letter(ch) for ch in word)
        results: dict[str, bool] = {}
        for c in constraints:
            kind = c.get("type")
            value = c.get("value")
            if kind == "startsWith":
                results[kind] = first_letter(word) == normalize_letter(str(value))
            elif kind == "contains":
                results[kind] = normalize_letter(str(value)) in norm
            elif kind == "notContains":
                results[kind] = normalize_letter(str(value)) not in norm
            elif kind == "length":
                results[kind] = len(word) == int(value)
            elif kind == "minLength":
                results[kind] = len(word) >= int(value)
            elif kind == "endsWith":
                results[kind] = word.endswith(str(value))
            else:
                raise ConfigurationError(f"unknown constraint type {kind!r}")

        return ConstraintCheck(passed=bool(results) and all(results.values()), results=results)
