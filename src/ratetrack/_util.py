"""Shared low-level helpers used by the core modules and cli.py."""

from __future__ import annotations

import re
from datetime import date, datetime

_DAY_KEY = re.compile(r"\d{4}-\d{2}-\d{2}")


def _now_local() -> datetime:
    return datetime.now().astimezone()


def _now_iso(now: datetime | None = None, timespec: str = "seconds") -> str:
    return (now or _now_local()).isoformat(timespec=timespec)


def _today() -> date:
    return _now_local().date()


def _date_from_key(key: str) -> date | None:
    # strict YYYY-MM-DD; anything else is not a day key
    if not isinstance(key, str) or not _DAY_KEY.fullmatch(key):
        return None
    try:
        return date.fromisoformat(key)
    except ValueError:
        return None
