from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .ledger_codec import DATE_CELL_MODES
from .recency import DEFAULT_SOURCE_TZ, RecencyPolicy, resolve_tz
from .utils import slugify, truthy

DEFAULT_CONFIG_DIR = "/app/local/config"
DEFAULT_STATE_DIR = "/app/local/state"


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/sources file cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for one 'listing_watch' run.

    The category URL list, cutoff policy, and date-cell representation come
    from a per-profile sources file:
        $LISTING_WATCH_CONFIG_DIR/listing_watch_sources.<profile>.json
    (or an explicit `sources_path`). Run kwargs override the file.
    """

    profile: str = ""
    sources_path: str | None = None

    title: str = "Listing Watch Report"
    urls: list[str] = field(default_factory=list)
    recency: RecencyPolicy = field(default_factory=RecencyPolicy)
    date_cell: str = "datetime"
    ledger_path: str = ""
    source_tz: str = DEFAULT_SOURCE_TZ

    # Runtime behavior
    delay_seconds: float = 0.0
    user_agent: str | None = None
    skip_network: bool = False

    # Notification behavior
    notify_when_empty: bool = True
    ingest_only_no_email: bool = False

    @property
    def label(self) -> str:
        return self.profile or os.path.splitext(os.path.basename(self.sources_path or ""))[0]

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            profile: str            # e.g. "lands"; selects the sources file
            sources_path: str       # explicit sources file (profile then optional)

            ledger_path: str        # overrides the file's ledger_path
            date_cell: "datetime" | "text"
            source_tz: str = "Europe/Riga"
            delay_seconds: float = 0
            user_agent: str
            skip_network: bool = false
            notify_when_empty: bool = true
            ingest_only_no_email: bool = false
        """
        kw = dict(kwargs or {})

        profile = str(kw.get("profile") or "").strip()
        sources_path = str(kw.get("sources_path") or "").strip() or None
        if not sources_path:
            if not profile:
                raise ConfigError("Missing 'profile' (e.g. 'lands') or explicit 'sources_path'.")
            config_dir = os.getenv("LISTING_WATCH_CONFIG_DIR", DEFAULT_CONFIG_DIR)
            sources_path = os.path.join(config_dir, f"listing_watch_sources.{slugify(profile)}.json")

        data = _load_sources_file(sources_path)

        try:
            recency = RecencyPolicy.from_dict(kw.get("cutoff") or data.get("cutoff"))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid cutoff in {sources_path}: {e}") from e

        urls = kw.get("urls") or data.get("urls") or []
        if not isinstance(urls, list):
            raise ConfigError(f"'urls' must be a list in {sources_path}.")

        name = profile or slugify(os.path.splitext(os.path.basename(sources_path))[0])
        ledger_path = str(
            kw.get("ledger_path") or data.get("ledger_path") or os.path.join(DEFAULT_STATE_DIR, f"{name}-scraped.xlsx")
        )

        try:
            delay_seconds = float(kw.get("delay_seconds", data.get("delay_seconds", 0.0)) or 0.0)
        except (TypeError, ValueError) as e:
            raise ConfigError("'delay_seconds' must be a number.") from e

        settings = cls(
            profile=profile,
            sources_path=sources_path,
            title=str(kw.get("title") or data.get("title") or "Listing Watch Report"),
            urls=[str(u).strip() for u in urls if str(u).strip()],
            recency=recency,
            date_cell=str(kw.get("date_cell") or data.get("date_cell") or "datetime").strip().lower(),
            ledger_path=ledger_path,
            source_tz=str(kw.get("source_tz") or data.get("source_tz") or DEFAULT_SOURCE_TZ),
            delay_seconds=delay_seconds,
            user_agent=(str(kw["user_agent"]) if kw.get("user_agent") else None),
            skip_network=truthy(kw.get("skip_network")),
            notify_when_empty=truthy(kw.get("notify_when_empty"), default=True),
            ingest_only_no_email=truthy(kw.get("ingest_only_no_email")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _load_sources_file(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"listing_watch sources file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"listing_watch sources file is invalid JSON: {path}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"listing_watch sources file must hold an object: {path}")
    return data


def _validate_settings(s: Settings) -> None:
    if not s.urls:
        raise ConfigError(f"No source URLs configured ({s.sources_path}).")
    if s.date_cell not in DATE_CELL_MODES:
        raise ConfigError(f"'date_cell' must be one of {DATE_CELL_MODES} (got {s.date_cell!r}).")
    if not s.ledger_path.strip():
        raise ConfigError("'ledger_path' cannot be empty.")
    if s.delay_seconds < 0:
        raise ConfigError("'delay_seconds' must be >= 0.")
    try:
        resolve_tz(s.source_tz)
    except ValueError as e:
        raise ConfigError(str(e)) from e
