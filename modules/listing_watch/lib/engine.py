"""
One listing_watch run: traverse sources, merge into the ledger, render the report.

Features:
  - Calendar-aware cutoff computed fresh for every run
  - Sequential traversal over one browsing context (`browser_factory` is
    injectable for tests)
  - Single load/rotate/filter/commit pass over the XLSX ledger
  - Report built only from the rows admitted into "New" by this run
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from . import ledger, logging_bridge, render
from .browser import Browser
from .config import Settings
from .http_client import HttpClient
from .ledger_codec import LedgerCodec
from .models import HarvestResult
from .recency import format_timestamp, resolve_tz
from .traversal import TraversalController


# =============================================================================
# DEFAULT BROWSING CONTEXT (PRODUCTION)
# =============================================================================
def _default_browser(settings: Settings) -> Browser:
    client = HttpClient(user_agent=settings.user_agent) if settings.user_agent else HttpClient()
    return Browser(client)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    browser_factory: Callable[[Settings], Any] | None = None,
    now: datetime | None = None,
) -> tuple[str, dict] | None:
    """
    Run one complete harvest + ledger update.

    Args:
        settings: Validated run configuration.
        browser_factory: Optional override building the browsing context.
        now: Optional clock override (aware datetime).

    Returns:
        (html, meta) when a report should be sent, else None.

    Raises:
        LedgerWriteError if the ledger cannot be committed, or whatever the
        browser factory raises when no browsing context can be created.
    """
    start_ns = time.perf_counter_ns()
    tz = resolve_tz(settings.source_tz)
    now = (now or datetime.now(tz)).astimezone(tz)
    day_of_week = now.weekday()
    window_hours = settings.recency.window_hours(day_of_week)
    cutoff = settings.recency.cutoff_instant(now, day_of_week)

    logging_bridge.activity({
        "component": "listing_watch.engine",
        "op": "cutoff",
        "profile": settings.label,
        "now": now.isoformat(),
        "cutoff": cutoff.isoformat(),
        "window_hours": window_hours,
        "url_count": len(settings.urls),
    })

    if settings.skip_network:
        logging_bridge.activity({
            "component": "listing_watch.engine",
            "op": "skipped",
            "profile": settings.label,
            "reason": "skip_network",
        })
        return None

    # -------------------------------------------------------------------------
    # TRAVERSE (sequential; one shared browsing context)
    # -------------------------------------------------------------------------
    browser = (browser_factory or _default_browser)(settings)
    try:
        controller = TraversalController(
            browser,
            cutoff,
            source_tz=tz,
            delay_seconds=settings.delay_seconds,
        )
        harvest: HarvestResult = controller.harvest(settings.urls)
    finally:
        browser.close()
    traverse_us = int((time.perf_counter_ns() - start_ns) // 1000)

    # -------------------------------------------------------------------------
    # MERGE into the ledger (load -> rotate -> filter -> commit)
    # -------------------------------------------------------------------------
    codec = LedgerCodec(date_cell=settings.date_cell, source_tz=tz)
    result = ledger.update_ledger(settings.ledger_path, harvest.items, codec)
    total_us = int((time.perf_counter_ns() - start_ns) // 1000)

    failed_urls = [r.url for r in harvest.reports if r.error]
    logging_bridge.activity({
        "component": "listing_watch.engine",
        "op": "summary",
        "profile": settings.label,
        "found": len(harvest.items),
        "added": result.added_count,
        "stop_reasons": {r.url: r.stop_reason for r in harvest.reports},
        "failed_urls": failed_urls,
        "traverse_us": traverse_us,
        "total_us": total_us,
    })

    if settings.ingest_only_no_email:
        return None
    if not result.added and not settings.notify_when_empty:
        logging_bridge.activity({
            "component": "listing_watch.engine",
            "op": "no_new",
            "profile": settings.label,
        })
        return None

    # -------------------------------------------------------------------------
    # RENDER (only what the merge admitted)
    # -------------------------------------------------------------------------
    attachment_name = os.path.basename(settings.ledger_path)
    html = render.build_report(
        result.added,
        title=settings.title,
        window_hours=window_hours,
        widened=settings.recency.is_widened(day_of_week),
        completed_at=datetime.now(tz),
        attachment_name=attachment_name,
    )
    subject = f"{settings.title} - {format_timestamp(now, tz)[:10]} ({result.added_count} new items)"
    message = f"{result.added_count} new listings in the past {window_hours} hours"

    meta = {
        "message": message,
        "subject": subject,
        "profile": settings.label,
        "new_total": result.added_count,
        "found_total": len(harvest.items),
        "window_hours": window_hours,
        "cutoff": cutoff.isoformat(),
        "ledger_path": settings.ledger_path,
        "attachments": [settings.ledger_path],
        "failed_urls": failed_urls,
        "durations_us": {"traverse": traverse_us, "_total_us": total_us},
    }
    return html, meta
