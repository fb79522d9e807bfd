from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from ._util import _date_from_key, _now_iso
from .config import Category
from .storage import KeyValueStore, MemoryStore
from .windows import iter_dates

logger = logging.getLogger(__name__)

ENTRIES_KEY = "entries"
UPDATED_AT = "_updatedAt"
LEGACY_SAVED_AT = "savedAt"

MIN_SCORE = 1
MAX_SCORE = 5


def valid_score(value: Any) -> bool:
    # bool is an int subclass; True is not a rating. 3.0 is a 3.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and not value.is_integer():
        return False
    return MIN_SCORE <= value <= MAX_SCORE


@dataclass(frozen=True)
class DayRow:
    date: date
    values: dict[str, int] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.date.isoformat()


class RatingStore:
    """
    Daily ratings keyed by local date ("YYYY-MM-DD").

    Persisted document:
      {"entries": {"2024-01-02": {"consistency": 4, ..., "_updatedAt": "<iso>"}}}

    Reads validate at the boundary: a non-object `entries`, non-date keys, or
    non-object days are skipped. Invalid scores stay on disk untouched but never
    reach `read_range`.
    """

    def __init__(self, kv: KeyValueStore, categories: Iterable[Category]) -> None:
        self.kv = kv
        self.categories = tuple(categories)
        if not self.categories:
            raise ValueError("at least one category is required")
        self._keys = {c.key for c in self.categories}

    # ---- reads ----

    def _entries(self) -> dict[str, dict[str, Any]]:
        raw = self.kv.get(ENTRIES_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("ratings: 'entries' is %s, treating store as empty", type(raw).__name__)
            return {}
        return {k: v for k, v in raw.items() if _date_from_key(k) and isinstance(v, dict)}

    def _clean(self, day: dict[str, Any]) -> dict[str, int]:
        return {c.key: int(day[c.key]) for c in self.categories if valid_score(day.get(c.key))}

    def raw(self) -> dict[str, Any]:
        return {ENTRIES_KEY: self._entries()}

    def days(self) -> list[str]:
        return sorted(self._entries())

    def get(self, day: date) -> dict[str, int]:
        return self._clean(self._entries().get(day.isoformat(), {}))

    def updated_at(self, day: date) -> str | None:
        rec = self._entries().get(day.isoformat(), {})
        ts = rec.get(UPDATED_AT) or rec.get(LEGACY_SAVED_AT)
        return str(ts) if ts else None

    def read_range(self, start: date, end: date) -> list[DayRow]:
        """Every date in [start, end], ascending; missing days have empty values."""
        entries = self._entries()
        return [DayRow(d, self._clean(entries.get(d.isoformat(), {}))) for d in iter_dates(start, end)]

    def snapshot(self) -> RatingStore:
        return RatingStore(MemoryStore(self.raw()), self.categories)

    # ---- writes ----

    def _check(self, category: str, score: Any) -> None:
        if category not in self._keys:
            raise ValueError(f"unknown category {category!r} (expected one of {', '.join(sorted(self._keys))})")
        if not valid_score(score):
            raise ValueError(f"{category}: score must be an integer {MIN_SCORE}-{MAX_SCORE} (got {score!r})")

    def save(self, day: date, category: str, score: int, now: datetime | None = None) -> dict[str, int]:
        return self.save_many(day, {category: score}, now=now)

    def save_many(self, day: date, scores: Mapping[str, int], now: datetime | None = None) -> dict[str, int]:
        """Upsert several category scores for one day in one write. Returns the day's valid scores."""
        if not scores:
            raise ValueError("no scores given")
        for category, score in scores.items():
            self._check(category, score)

        key = day.isoformat()
        stamp = _now_iso(now)

        def apply(entries: Any) -> dict[str, Any]:
            if not isinstance(entries, dict):
                entries = {}
            rec = entries.get(key)
            if not isinstance(rec, dict):
                rec = {}
            rec.update({k: int(v) for k, v in scores.items()})
            rec[UPDATED_AT] = stamp
            entries[key] = rec
            return entries

        entries = self.kv.update(ENTRIES_KEY, apply)
        return self._clean(entries[key])

    def clear(self) -> int:
        """Drop every stored day. Returns how many were removed."""
        removed = len(self._entries())
        self.kv.set(ENTRIES_KEY, {})
        return removed
