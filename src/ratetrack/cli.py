from __future__ import annotations

import argparse
import csv
import logging
import os
import stat
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from ._util import _today
from .aggregate import daily_average, is_complete, summarize
from .compose import build_daily_digest, build_report, fmt_avg
from .config import Category, ConfigError, load_settings
from .ledger import SentLedger
from .paths import LEDGER_FILE, RATINGS_FILE, resolve_config_path, resolve_data_dir
from .ratings import MAX_SCORE, MIN_SCORE, RatingStore
from .safety import assert_safe_data_dir
from .scheduler import dispatch, due_reports
from .storage import JsonFileStore, LockTimeout, save_json
from .timeparse import parse_day
from .transport import OutgoingMessage, build_transport
from .windows import MONTHLY, PERIODS, WEEKLY, YEARLY, window_for

# -------------------------
# Setup helpers
# -------------------------

def _setup_logging(verbose: int) -> None:
    level = os.environ.get("RATETRACK_LOG_LEVEL", "WARNING").upper()
    if verbose == 1:
        level = "INFO"
    elif verbose > 1:
        level = "DEBUG"
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _day(args: argparse.Namespace) -> date:
    return parse_day(getattr(args, "date", None))


# -------------------------
# Parsing / formatting helpers
# -------------------------

def _parse_scores(pairs: list[str], categories: tuple[Category, ...]) -> dict[str, int]:
    """
    Accepts "key=score" pairs (keys case-insensitive, a unique prefix is enough):
      consistency=4 disc=3
    Raises SystemExit on unknown keys or scores outside 1..5.
    """
    keys = [c.key for c in categories]
    out: dict[str, int] = {}
    for raw in pairs:
        if "=" not in raw:
            raise SystemExit(f"expected key=score, got {raw!r}")
        name, _, value = raw.partition("=")
        name = name.strip().lower()
        if not name:
            raise SystemExit(f"missing category name in {raw!r}")

        matches = [k for k in keys if k.lower() == name] or [k for k in keys if k.lower().startswith(name)]
        if len(matches) != 1:
            hint = "ambiguous" if len(matches) > 1 else "unknown"
            raise SystemExit(f"{hint} category {name!r} (expected one of {', '.join(keys)})")

        value = value.strip()
        if not value.isdigit() or not (MIN_SCORE <= int(value) <= MAX_SCORE):
            raise SystemExit(f"{matches[0]}: score must be {MIN_SCORE}-{MAX_SCORE} (got {value!r})")
        out[matches[0]] = int(value)
    if not out:
        raise SystemExit("nothing to save: pass at least one key=score")
    return out


def _sparkline(values: list[float], vmin: float = float(MIN_SCORE), vmax: float = float(MAX_SCORE)) -> str:
    if not values:
        return ""
    blocks = "▁▂▃▄▅▆▇█"
    span = max(1e-9, vmax - vmin)
    out = []
    for v in values:
        x = (v - vmin) / span
        idx = int(round(x * (len(blocks) - 1)))
        idx = max(0, min(len(blocks) - 1, idx))
        out.append(blocks[idx])
    return "".join(out)


def _window_start(window: str, today: date) -> date | None:
    if window in ("7", "30"):
        return today - timedelta(days=int(window) - 1)
    return None


def _print_day_block(day: date, values: dict[str, int], categories: tuple[Category, ...]) -> None:
    print("```")
    print(f"📒 Ratings {day.isoformat()} ({day.strftime('%a')})")
    for c in categories:
        v = values.get(c.key)
        print(f"- {c.label}: {v if v is not None else '—'}/5")
    print(f"- Daily average: {fmt_avg(daily_average(values, categories), '—')}/5")
    print("```")


# -------------------------
# CSV helpers
# -------------------------

def _write_csv(out_path: Path, fieldnames: list[str], rows: list[dict[str, Any]]) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames, quoting=csv.QUOTE_MINIMAL)
        w.writeheader()
        if rows:
            w.writerows(rows)


# -------------------------
# Rating commands
# -------------------------

def cmd_rate(args: argparse.Namespace) -> None:
    categories = args.settings.categories
    day = _day(args)
    scores = _parse_scores(args.scores, categories)

    saved = args.store.save_many(day, scores)
    missing = [c.label for c in categories if c.key not in saved]

    pretty = ", ".join(f"{k}={v}" for k, v in scores.items())
    print(f"✅ Saved {day.isoformat()}: {pretty}")
    if missing:
        print(f"↳ still unrated today: {', '.join(missing)}")

    if day != _today():
        return
    due = due_reports(day, args.store, args.ledger, categories, prefix=args.settings.subject_prefix)
    if due:
        print(f"📬 {len(due)} report(s) due: {', '.join(r.type for r in due)} (run `rt send`)")


def cmd_show(args: argparse.Namespace) -> None:
    day = _day(args)
    values = args.store.get(day)
    if not values:
        print(f"No ratings stored for {day.isoformat()}.")
        return
    _print_day_block(day, values, args.settings.categories)


def cmd_history(args: argparse.Namespace) -> None:
    categories = args.settings.categories
    days = args.store.days()
    if not days:
        print("No ratings yet. Run `rt rate consistency=4 ...` to start tracking.")
        return

    today = _today()
    start = _window_start(args.window, today)
    label = f"last {args.window} days" if start else "all time"
    first = start or date.fromisoformat(days[0])
    rows = args.store.read_range(first, max(today, date.fromisoformat(days[-1])))

    complete = [r for r in rows if is_complete(r.values, categories)]
    if not complete:
        print(f"No complete ratings found for {label}.")
        return

    print(f"=== Ratings History ({label}, newest first) ===")
    print("Date       | " + " | ".join(c.label[:5].ljust(5) for c in categories) + " | Avg")
    for r in reversed(complete):
        cells = " | ".join(str(r.values[c.key]).ljust(5) for c in categories)
        marker = "  ← today" if r.date == today else ""
        print(f"{r.key} | {cells} | {fmt_avg(daily_average(r.values, categories))}{marker}")

    avgs = [daily_average(r.values, categories) for r in complete]
    print(f"\n- sparkline: {_sparkline(avgs)}")


def cmd_summary(args: argparse.Namespace) -> None:
    categories = args.settings.categories
    day = _day(args)
    snapshot = args.store.snapshot()

    print("=================")
    print("Ratings Summary")
    print("=================\n")
    print(f"- total days stored: {len(snapshot.days())}")

    for period, title in ((WEEKLY, "This week"), (MONTHLY, "This month"), (YEARLY, "This year")):
        window = window_for(day, period)
        s = summarize(snapshot.read_range(window.start, window.end), categories, strict=True)
        print(f"- {title} ({window.start.isoformat()} to {window.end.isoformat()}): "
              f"{fmt_avg(s.overall, '-')}/5 ({s.days_recorded}/{s.days_total} days)")


def cmd_reset(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to delete all ratings without --yes")
    removed = args.store.clear()
    print(f"🧹 Cleared {removed} day(s) of ratings (sent-report ledger kept).")


# -------------------------
# Report commands
# -------------------------

def cmd_report(args: argparse.Namespace) -> None:
    categories = args.settings.categories
    window = window_for(_day(args), args.period)
    rows = args.store.read_range(window.start, window.end)
    report = build_report(window, rows, categories, include_table=not args.no_table,
                          prefix=args.settings.subject_prefix)
    print(f"Subject: {report.subject}\n")
    print(report.body)


def cmd_due(args: argparse.Namespace) -> None:
    day = _day(args)
    due = due_reports(day, args.store, args.ledger, args.settings.categories,
                      prefix=args.settings.subject_prefix)
    if not due:
        print(f"No reports due on {day.isoformat()}.")
        return

    print(f"=== Reports due on {day.isoformat()} ===")
    for r in due:
        print(f"- {r.type}: {r.subject}")
        if args.body:
            print()
            print(r.body)
            print()


def cmd_send(args: argparse.Namespace) -> None:
    settings = args.settings
    day = _day(args)

    due = due_reports(day, args.store, args.ledger, settings.categories, prefix=settings.subject_prefix)
    if not due:
        print(f"No reports due on {day.isoformat()}.")
        return
    if not settings.recipients:
        raise SystemExit("No recipients configured (set recipients in config.json or RATETRACK_RECIPIENTS)")

    try:
        transport = build_transport(settings, args.mode)
    except ValueError as e:
        raise SystemExit(str(e)) from e

    outcomes = dispatch(due, transport, args.ledger, settings.recipients)

    failed = 0
    for o in outcomes:
        if o.delivered:
            note = "" if transport.confirmable else " (draft opened; counted as sent)"
            print(f"📨 {o.report.type} {o.report.period_id}: {o.detail}{note}")
        elif o.detail == "already sent":
            print(f"⏭️ {o.report.type} {o.report.period_id}: already sent")
        else:
            failed += 1
            print(f"⚠️ {o.report.type} {o.report.period_id}: NOT sent ({o.detail}); will retry next run")

    if failed:
        raise SystemExit(1)


def cmd_daily(args: argparse.Namespace) -> None:
    settings = args.settings
    day = _day(args)
    digest = build_daily_digest(day, args.store.snapshot(), settings.categories, prefix=settings.subject_prefix)
    if digest is None:
        print(f"No ratings stored for {day.isoformat()}.")
        return

    print(f"Subject: {digest.subject}\n")
    print(digest.body)

    if not args.send:
        return
    if not settings.recipients:
        raise SystemExit("No recipients configured (set recipients in config.json or RATETRACK_RECIPIENTS)")
    try:
        transport = build_transport(settings, args.mode)
    except ValueError as e:
        raise SystemExit(str(e)) from e

    result = transport.deliver(OutgoingMessage(list(settings.recipients), digest.subject, digest.body))
    if not result.ok:
        raise SystemExit(f"⚠️ Daily digest not sent: {result.detail}")
    print(f"\n📨 {result.detail}")


def cmd_ledger(args: argparse.Namespace) -> None:
    entries = args.ledger.entries()
    if not any(entries.values()):
        print("No reports recorded as sent yet.")
        return
    print("=== Sent reports ===")
    for period in PERIODS:
        for pid, ts in sorted(entries[period].items()):
            print(f"- {period} {pid} @ {ts}")


# -------------------------
# Export commands
# -------------------------

def cmd_export_csv(args: argparse.Namespace) -> None:
    categories = args.settings.categories
    rows: list[dict[str, Any]] = []
    for key in args.store.days():
        values = args.store.get(date.fromisoformat(key))
        if not is_complete(values, categories):
            continue
        row: dict[str, Any] = {"date": key}
        row.update({c.key: values[c.key] for c in categories})
        row["daily_avg"] = fmt_avg(daily_average(values, categories), "")
        rows.append(row)

    out_path = Path(args.out).expanduser().resolve()
    _write_csv(out_path, ["date", *(c.key for c in categories), "daily_avg"], rows)

    if rows:
        print(f"📄 Exported {len(rows)} complete days → {out_path}")
    else:
        print(f"📄 Exported header-only CSV (no complete days) → {out_path}")


def cmd_export_json(args: argparse.Namespace) -> None:
    out_path = Path(args.out).expanduser().resolve()
    save_json(out_path, args.store.raw())
    print(f"📄 Exported {len(args.store.days())} days → {out_path}")


# -------------------------
# Core commands
# -------------------------

def cmd_init(args: argparse.Namespace) -> None:
    args.store.kv.update("entries", lambda e: e if isinstance(e, dict) else {})
    args.ledger.kv.ensure()
    if not args.config_path.exists():
        save_json(args.config_path, args.settings.to_dict())
    print(f"✅ Initialized data dir: {args.data_dir}")


def cmd_where(args: argparse.Namespace) -> None:
    env = os.environ.get("RATETRACK_HOME")
    if args.data_arg:
        reason = "because you passed --data"
    elif env:
        reason = "because RATETRACK_HOME is set"
    elif args.profile:
        reason = f"because you used --profile {args.profile!r}"
    else:
        reason = "default XDG config location"

    print(args.data_dir)
    print(f"↳ using {reason}")
    print(f"↳ config: {args.config_path}")


def cmd_doctor(args: argparse.Namespace) -> None:
    print("=== Ratetrack Doctor ===")

    assert_safe_data_dir(args.data_dir, args.allow_repo_data_path)
    print("✅ Data path safety guard: OK")

    for name in (RATINGS_FILE, LEDGER_FILE):
        path = args.data_dir / name
        if not path.exists():
            print(f"⚠️ {name} missing (run `rt init`)")
            continue
        JsonFileStore(path).ensure()
        print(f"✅ {name} readable: OK")
        perms = stat.S_IMODE(path.stat().st_mode)
        print(f"🔐 {name} permissions: {oct(perms)} (target 0o600)")

    cats = ", ".join(c.key for c in args.settings.categories)
    print(f"✅ Config: {len(args.settings.categories)} categories ({cats}), mail mode {args.settings.mail_mode}")
    if not args.settings.recipients:
        print("⚠️ No recipients configured; `rt send` will refuse to run")

    print("=== Done ===")


def main(argv=None) -> None:
    p = argparse.ArgumentParser(prog="rt", description="Daily self-ratings with weekly/monthly/yearly reports")
    p.add_argument("--data", default=None, help="Data directory (overrides env/default)")
    p.add_argument("--profile", default=None, help="Profile name (e.g. dev/test)")
    p.add_argument("--config", default=None, help="Config JSON (default: <data dir>/config.json)")
    p.add_argument("--allow-repo-data-path", action="store_true", help="Override safety guard (not recommended)")
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v info logs, -vv debug logs")

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("init", help="Initialize data dir safely").set_defaults(func=cmd_init)
    sub.add_parser("where", help="Show which data dir is active and why").set_defaults(func=cmd_where)
    sub.add_parser("doctor", help="Run safety + health checks").set_defaults(func=cmd_doctor)
    sub.add_parser("ledger", help="List reports already recorded as sent").set_defaults(func=cmd_ledger)

    rate = sub.add_parser("rate", help="Save scores (1–5), e.g. `rt rate consistency=4 discipline=3`")
    rate.add_argument("scores", nargs="+", help="key=score pairs")
    rate.add_argument("--date", default=None, help="ISO, 'yesterday', '3 days ago', ... (default today)")
    rate.set_defaults(func=cmd_rate)

    show = sub.add_parser("show", help="Show one day's ratings")
    show.add_argument("--date", default=None)
    show.set_defaults(func=cmd_show)

    history = sub.add_parser("history", help="List complete days, newest first")
    history.add_argument("--window", choices=["7", "30", "all"], default="30")
    history.set_defaults(func=cmd_history)

    summary = sub.add_parser("summary", help="This week/month/year averages")
    summary.add_argument("--date", default=None)
    summary.set_defaults(func=cmd_summary)

    report = sub.add_parser("report", help="Print the report for the period containing --date")
    report.add_argument("--period", choices=list(PERIODS), default=WEEKLY)
    report.add_argument("--date", default=None)
    report.add_argument("--no-table", action="store_true", help="Skip the daily entries table")
    report.set_defaults(func=cmd_report)

    due = sub.add_parser("due", help="List reports due and not yet sent")
    due.add_argument("--date", default=None)
    due.add_argument("--body", action="store_true", help="Print report bodies too")
    due.set_defaults(func=cmd_due)

    send = sub.add_parser("send", help="Send due reports and record them")
    send.add_argument("--date", default=None)
    send.add_argument("--mode", choices=["mailto", "gmail", "api"], default=None,
                      help="Override configured mail mode")
    send.set_defaults(func=cmd_send)

    daily = sub.add_parser("daily", help="Print (or send) the daily digest")
    daily.add_argument("--date", default=None)
    daily.add_argument("--send", action="store_true")
    daily.add_argument("--mode", choices=["mailto", "gmail", "api"], default=None)
    daily.set_defaults(func=cmd_daily)

    export = sub.add_parser("export", help="Export ratings")
    export_sub = export.add_subparsers(dest="export_cmd", required=True)
    export_csv = export_sub.add_parser("csv", help="Complete days as CSV (with daily average)")
    export_csv.add_argument("--out", required=True, help="Output CSV path (e.g. ~/ratings.csv)")
    export_csv.set_defaults(func=cmd_export_csv)
    export_json = export_sub.add_parser("json", help="Raw ratings document as JSON")
    export_json.add_argument("--out", required=True, help="Output JSON path")
    export_json.set_defaults(func=cmd_export_json)

    reset = sub.add_parser("reset", help="Delete ALL ratings (requires --yes)")
    reset.add_argument("--yes", action="store_true", help="Confirm destructive reset")
    reset.set_defaults(func=cmd_reset)

    args = p.parse_args(argv)
    _setup_logging(args.verbose)

    args.data_arg = args.data
    args.data_dir = resolve_data_dir(args.data, args.profile)
    args.config_path = resolve_config_path(args.config, args.data_dir)

    assert_safe_data_dir(args.data_dir, args.allow_repo_data_path)

    try:
        args.settings = load_settings(args.config_path)
    except ConfigError as e:
        raise SystemExit(f"Config error: {e}") from e

    args.store = RatingStore(JsonFileStore(args.data_dir / RATINGS_FILE), args.settings.categories)
    args.ledger = SentLedger(JsonFileStore(args.data_dir / LEDGER_FILE))

    try:
        args.func(args)
    except LockTimeout as e:
        raise SystemExit(f"⚠️ {e} (is another `rt` running?)") from e
