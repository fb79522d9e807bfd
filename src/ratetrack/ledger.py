from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ._util import _now_iso
from .storage import KeyValueStore, MemoryStore
from .windows import PERIODS, _check_period

logger = logging.getLogger(__name__)


class SentLedger:
    """
    Which (period, period_id) pairs already produced a report.

    Persisted document:
      {"weekly": {"2024-01-01_2024-01-07": "<iso>"}, "monthly": {...}, "yearly": {...}}

    Presence of an entry is the only thing that matters. Entries are never
    pruned; `release` exists only to roll back a claim whose delivery failed.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def _sent(self, period: str) -> dict[str, Any]:
        raw = self.kv.get(period, {})
        return raw if isinstance(raw, dict) else {}

    def is_sent(self, period: str, period_id: str) -> bool:
        _check_period(period)
        return period_id in self._sent(period)

    def sent_at(self, period: str, period_id: str) -> str | None:
        _check_period(period)
        ts = self._sent(period).get(period_id)
        return str(ts) if ts is not None else None

    def entries(self) -> dict[str, dict[str, str]]:
        return {p: {k: str(v) for k, v in self._sent(p).items()} for p in PERIODS}

    def snapshot(self) -> SentLedger:
        return SentLedger(MemoryStore(self.entries()))

    def mark_sent(self, period: str, period_id: str, now: datetime | None = None) -> str:
        """Record a period as sent. Re-marking only refreshes the timestamp."""
        _check_period(period)
        stamp = _now_iso(now)

        def apply(sent: Any) -> dict[str, Any]:
            sent = dict(sent) if isinstance(sent, dict) else {}
            sent[period_id] = stamp
            return sent

        self.kv.update(period, apply)
        return stamp

    def claim(self, period: str, period_id: str, now: datetime | None = None) -> str | None:
        """
        Atomic check-not-sent-then-mark.
        Returns the stored timestamp (the claim token) if this call made the
        entry, or None if it was already there.

        Claim stamps carry microseconds and `mark_sent` stamps don't, so a
        token never matches a mark written by someone else.
        """
        _check_period(period)
        stamp = _now_iso(now, timespec="microseconds")
        won = False

        def apply(sent: Any) -> dict[str, Any]:
            nonlocal won
            sent = dict(sent) if isinstance(sent, dict) else {}
            if period_id in sent:
                return sent
            sent[period_id] = stamp
            won = True
            return sent

        self.kv.update(period, apply)
        if won:
            logger.info("claimed %s %s", period, period_id)
            return stamp
        logger.info("%s %s already sent, skipping", period, period_id)
        return None

    def release(self, period: str, period_id: str, token: str) -> bool:
        """Undo a claim, but only if the entry still holds our token."""
        _check_period(period)
        released = False

        def apply(sent: Any) -> dict[str, Any]:
            nonlocal released
            sent = dict(sent) if isinstance(sent, dict) else {}
            if sent.get(period_id) == token:
                del sent[period_id]
                released = True
            return sent

        self.kv.update(period, apply)
        if released:
            logger.info("released claim on %s %s", period, period_id)
        return released
