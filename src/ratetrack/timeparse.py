from __future__ import annotations

import re
from datetime import date, datetime, timedelta

from ._util import _today

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_day(value: str | None, today: date | None = None) -> date:
    """
    Parse a flexible user date into a local calendar date.
    Accepts:
      - None / blank -> today
      - ISO date "2026-02-25", or an ISO datetime (date part is used)
      - "2026/02/25"
      - keywords: "today", "yesterday", "tomorrow"
      - relative: "3 days ago", "1 day ago", "2 weeks ago"
      - weekday names: "sunday", "last sunday" (most recent one on/before today,
        "last" means strictly before today)
    Raises SystemExit with a hint on anything else.
    """
    today = today or _today()
    if not value or not value.strip():
        return today

    s = value.strip().lower()

    # --- 1) ISO date / datetime ---
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        pass

    # --- 2) Slash date ---
    try:
        return datetime.strptime(value.strip(), "%Y/%m/%d").date()
    except ValueError:
        pass

    # --- 3) Keywords ---
    if s == "today":
        return today
    if s == "yesterday":
        return today - timedelta(days=1)
    if s == "tomorrow":
        return today + timedelta(days=1)

    # --- 4) Relative like "3 days ago", "2 weeks ago" ---
    m = re.fullmatch(r"(\d+)\s*(day|days|week|weeks)\s*ago", s)
    if m:
        n = int(m.group(1))
        if "week" in m.group(2):
            n *= 7
        return today - timedelta(days=n)

    # --- 5) Weekday names ---
    m = re.fullmatch(r"(last\s+)?(" + "|".join(_WEEKDAYS) + r")", s)
    if m:
        target = _WEEKDAYS.index(m.group(2))
        back = (today.weekday() - target) % 7
        if back == 0 and m.group(1):
            back = 7
        return today - timedelta(days=back)

    raise SystemExit(
        f"Could not parse date {value!r}. Try ISO like '2026-02-25' "
        f"or 'yesterday' or '3 days ago' or 'last sunday'."
    )
