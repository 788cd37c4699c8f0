"""
Traversal of the category result lists with early stop.

Per source URL the controller walks result pages in document order, opens each
entry, and keeps it while it is not older than the cutoff. It stops a URL as
soon as either:
  - an entry is older than the cutoff (results are assumed newest-first), or
  - an entry resolves to a link already visited for this URL (the catalog's
    "next" control wraps around to page one after the last page).

Unparsable dates skip a single entry; they never stop the URL.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any

from . import logging_bridge
from .browser import NavigationError
from .extractor import DEFAULT_LABELS, ExtractorLabels, current_identity, read_fields
from .models import HarvestResult, ListingRecord, UrlReport
from .recency import TimestampError, parse_timestamp, resolve_tz

log = logging.getLogger(__name__)

STOP_OLDER_THAN_CUTOFF = "older_than_cutoff"
STOP_REPEATED_LINK = "repeated_link"
STOP_LAST_PAGE = "last_page"
STOP_PAGINATION_FAILED = "pagination_failed"


@dataclass
class TraversalCursor:
    """State of one URL's traversal; created per URL and dropped afterwards."""

    url: str
    page: int = 0
    visited: set[str] = field(default_factory=set)
    stopped: bool = False
    stop_reason: str | None = None

    def stop(self, reason: str) -> None:
        self.stopped = True
        self.stop_reason = reason


class TraversalController:
    """
    Drives one shared browsing context across the configured source URLs.

    `browser` must provide goto/open/back, current_url, page, listing_hrefs()
    and next_page_href() (see browser.Browser).
    """

    def __init__(
        self,
        browser: Any,
        cutoff: datetime,
        *,
        source_tz: tzinfo | None = None,
        labels: ExtractorLabels = DEFAULT_LABELS,
        delay_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.browser = browser
        self.cutoff = cutoff
        self.source_tz = source_tz or resolve_tz(None)
        self.labels = labels
        self.delay_seconds = float(delay_seconds)
        self._sleep = sleep

    def harvest(self, urls: Iterable[str]) -> HarvestResult:
        result = HarvestResult()
        for url in urls:
            items, report = self.traverse_url(url)
            result.items.extend(items)
            result.reports.append(report)
        return result

    def traverse_url(self, url: str) -> tuple[list[ListingRecord], UrlReport]:
        cursor = TraversalCursor(url=url)
        report = UrlReport(url=url)
        items: list[ListingRecord] = []

        try:
            self.browser.goto(url)
        except NavigationError as e:
            report.error = str(e)
            logging_bridge.error({
                "component": "listing_watch.traversal",
                "op": "open_url",
                "url": url,
                "error": repr(e),
            })
            return items, report

        log.info("Started processing URL: %s", url)
        while not cursor.stopped:
            cursor.page += 1
            hrefs = self.browser.listing_hrefs()
            log.info("Processing page %d of %s (%d entries)", cursor.page, url, len(hrefs))

            for href in hrefs:
                record = self._visit(href, cursor, report)
                if cursor.stopped:
                    break
                if record is not None:
                    items.append(record)

            if cursor.stopped:
                break
            self._advance(cursor)

        report.pages = cursor.page
        report.accepted = len(items)
        report.stop_reason = cursor.stop_reason
        logging_bridge.activity({
            "component": "listing_watch.traversal",
            "op": "url_done",
            "url": url,
            "pages": report.pages,
            "accepted": report.accepted,
            "skipped": report.skipped,
            "stop_reason": report.stop_reason,
        })
        return items, report

    # ---- internals ----

    def _advance(self, cursor: TraversalCursor) -> None:
        next_href = self.browser.next_page_href()
        if not next_href or next_href == self.browser.current_url:
            cursor.stop(STOP_LAST_PAGE)
            return
        try:
            self.browser.goto(next_href)
        except NavigationError as e:
            log.info("No more pages or failed to open next page of %s: %s", cursor.url, e)
            cursor.stop(STOP_PAGINATION_FAILED)

    def _visit(self, href: str, cursor: TraversalCursor, report: UrlReport) -> ListingRecord | None:
        if self.delay_seconds > 0:
            self._sleep(self.delay_seconds)
        try:
            self.browser.open(href)
        except NavigationError as e:
            log.info("Could not open entry %s: %s", href, e)
            report.skipped += 1
            return None

        try:
            link = current_identity(self.browser)
            if link in cursor.visited:
                log.info("Already scraped in this run: %s. Stopping this URL.", link)
                cursor.stop(STOP_REPEATED_LINK)
                return None
            cursor.visited.add(link)

            fields = read_fields(self.browser.page, self.labels)
            raw = fields["posted_at_raw"]
            try:
                posted_at = parse_timestamp(raw, self.source_tz)
            except TimestampError as e:
                log.info("No usable date for %s (%s), skipping item.", link, e)
                report.skipped += 1
                return None

            if posted_at < self.cutoff:
                log.info("Found ad older than cutoff (%s). Stopping this URL.", raw)
                cursor.stop(STOP_OLDER_THAN_CUTOFF)
                return None

            log.info("Scraped item dated: %s | %s", raw, link)
            return ListingRecord(link=link, posted_at=posted_at, **fields)
        finally:
            self.browser.back()
