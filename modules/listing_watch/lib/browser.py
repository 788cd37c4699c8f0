"""
A minimal navigable browsing context over HttpClient + BeautifulSoup.

The traversal reads a listing's identity from where the context *lands* after
following the entry's link, so the context keeps a current location and a
back-stack, like a browser tab. One instance is used sequentially.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .http_client import HttpClient

log = logging.getLogger(__name__)


class NavigationError(Exception):
    """Raised when a page cannot be loaded."""


@dataclass(frozen=True)
class PageSelectors:
    """CSS hooks for the catalog's result pages."""

    listing: str = "td.msg2"
    next_page_text: str = "Nākamie"


@dataclass
class _Location:
    url: str
    page: BeautifulSoup


class Browser:
    """
    Sequential browsing context.

    - goto(url): replace the current location (clears history)
    - open(href): follow a link from the current page, pushing history
    - back(): return to the previous location without refetching
    """

    def __init__(self, client: HttpClient, selectors: PageSelectors | None = None) -> None:
        self._client = client
        self.selectors = selectors or PageSelectors()
        self._current: _Location | None = None
        self._history: list[_Location] = []

    # ---- navigation ----
    def goto(self, url: str) -> None:
        self._current = self._load(url)
        self._history.clear()

    def open(self, href: str) -> None:
        target = urljoin(self.current_url, href) if self._current else href
        loc = self._load(target)
        if self._current is not None:
            self._history.append(self._current)
        self._current = loc

    def back(self) -> None:
        if self._history:
            self._current = self._history.pop()

    def close(self) -> None:
        self._history.clear()
        self._current = None
        self._client.close()

    # ---- current location ----
    @property
    def current_url(self) -> str:
        return self._current.url if self._current else ""

    @property
    def page(self) -> BeautifulSoup:
        if self._current is None:
            raise NavigationError("No page loaded.")
        return self._current.page

    # ---- result-page helpers ----
    def listing_hrefs(self) -> list[str]:
        """Absolute detail links of the entries on the current page, in document order."""
        out: list[str] = []
        for cell in self.page.select(self.selectors.listing):
            a = cell if cell.name == "a" else cell.find("a", href=True)
            href = (a.get("href") or "").strip() if a else ""
            if href:
                out.append(urljoin(self.current_url, href))
        return out

    def next_page_href(self) -> str | None:
        """Absolute URL behind the "next page" control, or None when there is none."""
        wanted = self.selectors.next_page_text.strip().lower()
        for a in self.page.find_all("a", href=True):
            if wanted in a.get_text(" ", strip=True).lower():
                return urljoin(self.current_url, a["href"].strip())
        return None

    # ---- internals ----
    def _load(self, url: str) -> _Location:
        try:
            fetched = self._client.fetch(url)
        except Exception as e:
            raise NavigationError(f"Failed to open {url}: {e!r}") from e
        log.debug("Loaded %s (resolved %s, %d bytes)", url, fetched.url, len(fetched.text))
        return _Location(url=fetched.url, page=BeautifulSoup(fetched.text, "html.parser"))
