from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ListingRecord:
    """
    One scraped classified ad.

    `link` is the resolved detail URL and the only dedupe key; every other
    field is free text that may repeat or be empty. Rows carried over from a
    ledger file may have an empty `link`; they are kept but never deduped.
    `extra` holds (header, value) pairs of columns this module does not own.
    """

    link: str
    price: str = ""
    district_text: str = ""
    area_text: str = ""
    cadastre_text: str = ""
    posted_at: datetime | None = None  # None when only the raw text is known
    posted_at_raw: str = ""
    description: str = ""
    extra: tuple[tuple[str, str | datetime | None], ...] = ()


@dataclass
class UrlReport:
    """Per-URL outcome of one traversal (counts only; items live in HarvestResult)."""

    url: str
    pages: int = 0
    accepted: int = 0
    skipped: int = 0
    stop_reason: str | None = None
    error: str | None = None


@dataclass
class HarvestResult:
    """
    Everything the traversal produced for one run.
    - items: accepted records across all URLs, in traversal order (NOT deduped
      against the ledger).
    - reports: one UrlReport per source URL.
    """

    items: list[ListingRecord] = field(default_factory=list)
    reports: list[UrlReport] = field(default_factory=list)


@dataclass
class Ledger:
    """
    The persisted two-partition store.
    - new: records discovered by the most recent run only
    - previously_added: every record that was in `new` at the end of an
      earlier run, in order of first addition
    """

    new: list[ListingRecord] = field(default_factory=list)
    previously_added: list[ListingRecord] = field(default_factory=list)

    def links(self) -> list[str]:
        return [r.link for r in (*self.previously_added, *self.new) if r.link]
