"""Startup configuration: rating categories, report recipients and delivery mode."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

MAIL_MODES = ("mailto", "gmail", "api")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Category:
    key: str
    label: str


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category("consistency", "Consistency"),
    Category("discipline", "Discipline"),
    Category("determination", "Determination"),
    Category("interest", "Interest"),
)


@dataclass
class Settings:
    categories: tuple[Category, ...] = DEFAULT_CATEGORIES
    recipients: list[str] = field(default_factory=list)
    mail_mode: str = "mailto"
    api_endpoint: str = ""
    subject_prefix: str = "Work Ratings"

    def category_keys(self) -> list[str]:
        return [c.key for c in self.categories]

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": [{"key": c.key, "label": c.label} for c in self.categories],
            "recipients": list(self.recipients),
            "mail_mode": self.mail_mode,
            "api_endpoint": self.api_endpoint,
            "subject_prefix": self.subject_prefix,
        }


def parse_categories(raw: Any) -> tuple[Category, ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("categories must be a non-empty list of {key, label} objects")

    out: list[Category] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError(f"bad category entry {item!r}")
        key = str(item.get("key", "")).strip()
        if not key or key.startswith("_"):
            raise ConfigError(f"category key must be non-empty and not start with '_' (got {key!r})")
        if key in seen:
            raise ConfigError(f"duplicate category key {key!r}")
        seen.add(key)
        label = str(item.get("label") or key.replace("_", " ").title())
        out.append(Category(key, label))
    return tuple(out)


def _split_list(raw: str) -> list[str]:
    return [r.strip() for r in raw.split(",") if r.strip()]


def load_settings(config_path: Path | None, env: dict[str, str] | None = None) -> Settings:
    """
    Build Settings from (lowest to highest precedence):
      - built-in defaults
      - config.json (if it exists)
      - RATETRACK_RECIPIENTS / RATETRACK_MAIL_MODE / RATETRACK_API_ENDPOINT
    A missing config file is fine; an unreadable one is a ConfigError.
    """
    env = os.environ if env is None else env
    settings = Settings()

    if config_path is not None and Path(config_path).exists():
        txt = Path(config_path).read_text(encoding="utf-8").strip()
        raw: Any = {}
        if txt:
            try:
                raw = json.loads(txt)
            except json.JSONDecodeError as e:
                raise ConfigError(f"{config_path}: invalid JSON ({e})") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path}: expected a JSON object")

        if "categories" in raw:
            settings.categories = parse_categories(raw["categories"])
        recipients = raw.get("recipients", [])
        if isinstance(recipients, str):
            recipients = _split_list(recipients)
        settings.recipients = [str(r).strip() for r in recipients if str(r).strip()]
        settings.mail_mode = str(raw.get("mail_mode", settings.mail_mode))
        settings.api_endpoint = str(raw.get("api_endpoint", settings.api_endpoint))
        settings.subject_prefix = str(raw.get("subject_prefix", settings.subject_prefix))

    if env.get("RATETRACK_RECIPIENTS"):
        settings.recipients = _split_list(env["RATETRACK_RECIPIENTS"])
    if env.get("RATETRACK_MAIL_MODE"):
        settings.mail_mode = env["RATETRACK_MAIL_MODE"].strip().lower()
    if env.get("RATETRACK_API_ENDPOINT"):
        settings.api_endpoint = env["RATETRACK_API_ENDPOINT"].strip()

    if settings.mail_mode not in MAIL_MODES:
        raise ConfigError(f"mail_mode must be one of {', '.join(MAIL_MODES)} (got {settings.mail_mode!r})")
    if settings.mail_mode == "api" and not settings.api_endpoint:
        raise ConfigError("mail_mode 'api' needs api_endpoint (or RATETRACK_API_ENDPOINT)")

    return settings
