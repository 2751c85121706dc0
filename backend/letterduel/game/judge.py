"""HTTP client for the remote word judge."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any

import httpx

from .errors import JudgeQuotaExceededError, JudgeUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JudgeEntry:
    player_id: str
    category: str
    word: str


class JudgeClient:
    """Stateless request/response judge.

    ``/validate`` judges one word, ``/validate/batch`` a whole round. A
    response carrying ``quotaExceeded`` raises ``JudgeQuotaExceededError``;
    transport problems raise ``JudgeUnavailableError`` so callers can fall
    back to local checks.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.BaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None
        self._lock = Lock()

    def _ensure_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                logger.info("Connecting to word judge at %s", self._base_url)
                self._client = httpx.Client(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict:
        client = self._ensure_client()
        try:
            response = client.post(endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Judge request %s failed: %s", endpoint, exc)
            raise JudgeUnavailableError(str(exc)) from exc
        except ValueError as exc:
            logger.warning("Judge request %s returned invalid JSON", endpoint)
            raise JudgeUnavailableError("invalid judge response") from exc

        if not isinstance(data, dict):
            raise JudgeUnavailableError("invalid judge response")
        if data.get("quotaExceeded"):
            logger.warning("Judge quota exceeded on %s", endpoint)
            raise JudgeQuotaExceededError("judge quota exceeded")
        return data

    def judge_word(self, word: str, letter: str, mode: str) -> bool:
        data = self._post("/validate", {"word": word, "letter": letter, "mode": mode})
        return bool(data.get("valid", False))

    def judge_batch(self, round_id: int, letter: str, mode: str, entries: list[JudgeEntry]) -> dict[tuple[str, str], bool]:
        """Returns ``{(player_id, category): valid}`` for every entry."""
        payload = {
            "roundId": round_id,
            "letter": letter,
            "mode": mode,
            "entries": [{"playerId": e.player_id, "category": e.category, "word": e.word} for e in entries],
        }
        data = self._post("/validate/batch", payload)
        results = data.get("results")
        if not isinstance(results, list):
            raise JudgeUnavailableError("batch response without results")

        verdicts: dict[tuple[str, str], bool] = {}
        for item in results:
            if not isinstance(item, dict):
                continue
            key = (str(item.get("playerId", "")), str(item.get("category", "")))
            verdicts[key] = bool(item.get("valid", False))

        missing = [e for e in entries if (e.player_id, e.category) not in verdicts]
        if missing:
            raise JudgeUnavailableError(f"batch response missing {len(missing)} entries")
        return verdicts

    def health_check(self) -> bool:
        client = self._ensure_client()
        try:
            response = client.get("/healthz")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Judge health check failed: %s", exc)
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("status") == "ok"
