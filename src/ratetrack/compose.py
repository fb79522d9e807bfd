"""
Plain-text report bodies.

Output is a pure function of its inputs: no clock reads, no dict-order
surprises (categories are always walked in configured order).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence

from .aggregate import daily_average, summarize
from .config import Category
from .ratings import DayRow, RatingStore
from .windows import MONTHLY, PERIODS, WEEKLY, YEARLY, PeriodWindow, is_period_boundary, window_for

NO_DATA = "N/A"
COL_WIDTH = 13
FOOTER = "Generated from your daily ratings log."

_TITLES = {
    WEEKLY: "Weekly",
    MONTHLY: "Monthly",
    YEARLY: "Yearly",
}


@dataclass(frozen=True)
class Report:
    type: str
    period_id: str
    subject: str
    body: str


def fmt_avg(value: float | None, missing: str = NO_DATA) -> str:
    return missing if value is None else f"{value:.2f}"


def subject_for(window: PeriodWindow, prefix: str = "Work Ratings") -> str:
    title = _TITLES[window.type]
    if window.type == WEEKLY:
        return f"{title} {prefix} ({window.start.isoformat()} to {window.end.isoformat()})"
    return f"{title} {prefix} ({window.period_id})"


def _daily_table(rows: Sequence[DayRow], categories: Sequence[Category]) -> list[str]:
    lines = [
        "Date       | " + " | ".join(c.label.ljust(COL_WIDTH) for c in categories),
        "-----------|-" + "-|-".join("-" * COL_WIDTH for _ in categories),
    ]
    for row in rows:
        cells = [str(row.values[c.key]) if c.key in row.values else "-" for c in categories]
        lines.append(row.key + " | " + " | ".join(cell.ljust(COL_WIDTH) for cell in cells))
    return lines


def build_report(
    window: PeriodWindow,
    rows: Sequence[DayRow],
    categories: Sequence[Category],
    include_table: bool = True,
    prefix: str = "Work Ratings",
) -> Report:
    """Period report using the per-category (lenient) averaging policy."""
    summary = summarize(rows, categories)

    lines = [
        f"{_TITLES[window.type].upper()} {prefix.upper()} REPORT",
        f"Period: {window.start.isoformat()} to {window.end.isoformat()}",
        "",
        "Averages (1-5):",
    ]
    for c in categories:
        lines.append(
            f"- {c.label}: {fmt_avg(summary.per_category[c.key])} (days rated: {summary.counts[c.key]})"
        )
    lines.append(f"Overall: {fmt_avg(summary.overall)}")
    lines.append(f"Days recorded (all categories): {summary.days_recorded}/{window.days}")

    if include_table:
        lines.append("")
        lines.append("Daily entries:")
        lines.extend(_daily_table(rows, categories))

    lines.append("")
    lines.append(FOOTER)

    return Report(
        type=window.type,
        period_id=window.period_id,
        subject=subject_for(window, prefix),
        body="\n".join(lines),
    )


def build_daily_digest(
    day: date,
    store: RatingStore,
    categories: Sequence[Category],
    prefix: str = "Work Ratings",
) -> Report | None:
    """
    Today's scores plus a summary block for every period ending on `day`.
    Summary blocks use the strict policy (only complete days count).
    Returns None when nothing is stored for `day`.
    """
    today = store.get(day)
    if not today:
        return None

    iso = day.isoformat()
    lines = [f"Daily {prefix} ({iso})", ""]
    for c in categories:
        lines.append(f"{c.label}: {today[c.key]}/5" if c.key in today else f"{c.label}: -/5")
    lines.append(f"Daily Average: {fmt_avg(daily_average(today, categories), '-')}/5")

    for period in PERIODS:
        if not is_period_boundary(day, period):
            continue
        window = window_for(day, period)
        rows = store.read_range(window.start, window.end)
        summary = summarize(rows, categories, strict=True)
        title = _TITLES[period]

        lines.append("")
        lines.append(f"{title} Summary ({window.start.isoformat()} to {window.end.isoformat()})")
        lines.append(f"Days Recorded: {summary.days_recorded}/{window.days}")
        for c in categories:
            lines.append(f"Average {c.label}: {fmt_avg(summary.per_category[c.key], '-')}/5")
        lines.append(f"Overall {title} Average: {fmt_avg(summary.overall, '-')}/5")

    lines.append("")
    lines.append(FOOTER)

    return Report(
        type="daily",
        period_id=iso,
        subject=f"Daily {prefix} - {iso}",
        body="\n".join(lines),
    )
