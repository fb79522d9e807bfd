from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence

from .compose import Report, build_report
from .config import Category
from .ledger import SentLedger
from .ratings import RatingStore
from .transport import DeliveryResult, OutgoingMessage, Transport
from .windows import PERIODS, is_period_boundary, window_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    report: Report
    delivered: bool
    marked: bool
    detail: str = ""


def due_reports(
    now: date,
    store: RatingStore,
    ledger: SentLedger,
    categories: Sequence[Category],
    include_table: bool = True,
    prefix: str = "Work Ratings",
) -> list[Report]:
    """
    Reports whose period ends on `now` and that are not in the ledger yet,
    in weekly, monthly, yearly order.

    Reads one snapshot of the store and one of the ledger and writes nothing,
    so calling it on every trigger (page load, `rt rate`, cron) is harmless.
    """
    ratings = store.snapshot()
    sent = ledger.snapshot()

    due: list[Report] = []
    for period in PERIODS:
        if not is_period_boundary(now, period):
            continue
        window = window_for(now, period)
        if sent.is_sent(period, window.period_id):
            continue
        rows = ratings.read_range(window.start, window.end)
        due.append(build_report(window, rows, categories, include_table=include_table, prefix=prefix))
    return due


def dispatch(
    reports: Iterable[Report],
    transport: Transport,
    ledger: SentLedger,
    recipients: list[str],
    now: datetime | None = None,
) -> list[DispatchOutcome]:
    """
    Send each report and record it in the ledger.

    Every report is claimed first (atomic not-sent -> sent), so two processes
    racing on the same day cannot both send it. Then:
      - confirmable transport: the claim stands only on a 2xx answer; any
        failure releases it so a later run retries.
      - compose transport: the claim stands as soon as the draft is opened
        (only a draft that could not be opened is released). A dismissed
        draft still counts as sent. Known and accepted.
    """
    outcomes: list[DispatchOutcome] = []
    for report in reports:
        token = ledger.claim(report.type, report.period_id, now=now)
        if token is None:
            outcomes.append(DispatchOutcome(report, False, False, "already sent"))
            continue

        message = OutgoingMessage(list(recipients), report.subject, report.body)
        try:
            result = transport.deliver(message)
        except Exception as e:
            # released below like any other failed delivery
            logger.exception("%s %s: transport raised", report.type, report.period_id)
            result = DeliveryResult(False, False, f"transport error: {e}")

        if result.ok:
            outcomes.append(DispatchOutcome(report, True, True, result.detail))
            continue

        # nothing left the machine: undo the claim so it can be retried
        ledger.release(report.type, report.period_id, token)
        logger.warning("%s %s not sent: %s", report.type, report.period_id, result.detail)
        outcomes.append(DispatchOutcome(report, False, False, result.detail))
    return outcomes
