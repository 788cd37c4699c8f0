from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> tuple[str, dict] | None:
    """
    Entry point for the 'listing_watch' module.

    Accepts kwargs (from scheduler/runner), including:
      profile: str = "lands"            # selects listing_watch_sources.<profile>.json
      sources_path: Optional[str]       # explicit sources file instead of profile
      ledger_path: Optional[str]        # overrides the sources file
      date_cell: "datetime" | "text"
      delay_seconds: float = 0
      skip_network: bool = False

      # Special-run flags:
      notify_when_empty: bool = True
      ingest_only_no_email: bool = False

    Returns:
      - None (no email should be sent), or
      - (html: str, meta: dict); meta["attachments"] lists the ledger file.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "listing_watch.main",
        "op": "start",
        "profile": settings.label,
        "urls": len(settings.urls),
        "ledger_path": settings.ledger_path,
        "flags": {
            "notify_when_empty": settings.notify_when_empty,
            "ingest_only_no_email": settings.ingest_only_no_email,
            "skip_network": settings.skip_network,
        },
    })

    return _run_engine(settings)
