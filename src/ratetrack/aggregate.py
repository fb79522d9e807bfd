"""
Averages over a run of DayRows.

Two policies, on purpose:
  - averages():        each category averaged over the days *it* was rated
  - strict_averages(): only complete days (every category rated) count at all

They disagree whenever a day is partially rated. Period reports use the first;
the daily digest's integrated summary table uses the second.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .config import Category
from .ratings import DayRow, valid_score


@dataclass(frozen=True)
class Summary:
    per_category: dict[str, float | None]
    counts: dict[str, int]
    overall: float | None
    days_recorded: int
    days_total: int


def _mean(xs: Sequence[float]) -> float | None:
    if not xs:
        return None
    return sum(xs) / len(xs)


def is_complete(values: Mapping[str, object], categories: Iterable[Category]) -> bool:
    return all(valid_score(values.get(c.key)) for c in categories)


def averages(rows: Iterable[DayRow], categories: Sequence[Category]) -> dict[str, float | None]:
    by_cat: dict[str, list[int]] = {c.key: [] for c in categories}
    for row in rows:
        for c in categories:
            v = row.values.get(c.key)
            if valid_score(v):
                by_cat[c.key].append(v)
    return {k: _mean(vs) for k, vs in by_cat.items()}


def strict_averages(rows: Iterable[DayRow], categories: Sequence[Category]) -> dict[str, float | None]:
    complete = [row for row in rows if is_complete(row.values, categories)]
    return averages(complete, categories)


def overall(per_category: Mapping[str, float | None]) -> float | None:
    return _mean([v for v in per_category.values() if v is not None])


def rated_counts(rows: Iterable[DayRow], categories: Sequence[Category]) -> dict[str, int]:
    counts = {c.key: 0 for c in categories}
    for row in rows:
        for c in categories:
            if valid_score(row.values.get(c.key)):
                counts[c.key] += 1
    return counts


def complete_days(rows: Iterable[DayRow], categories: Sequence[Category]) -> int:
    return sum(1 for row in rows if is_complete(row.values, categories))


def daily_average(values: Mapping[str, object], categories: Sequence[Category]) -> float | None:
    return _mean([values[c.key] for c in categories if valid_score(values.get(c.key))])


def summarize(rows: Sequence[DayRow], categories: Sequence[Category], strict: bool = False) -> Summary:
    per_cat = strict_averages(rows, categories) if strict else averages(rows, categories)
    if strict:
        complete = [r for r in rows if is_complete(r.values, categories)]
        counts = rated_counts(complete, categories)
    else:
        counts = rated_counts(rows, categories)
    return Summary(
        per_category=per_cat,
        counts=counts,
        overall=overall(per_cat),
        days_recorded=complete_days(rows, categories),
        days_total=len(rows),
    )
