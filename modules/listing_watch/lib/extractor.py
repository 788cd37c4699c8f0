from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from bs4 import BeautifulSoup

from .browser import Browser

log = logging.getLogger(__name__)

_MAP_SUFFIX_RE = re.compile(r"\s*\[\s*karte\s*\]", re.I)
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ExtractorLabels:
    """Row labels / selectors on a listing's detail view (ss.com, Latvian UI)."""

    district: str = "Pilsēta, rajons:"
    area: str = "Platība:"
    cadastre: str = "Kadastra numurs:"
    option_name: str = "td.ads_opt_name"
    price: str = ".ads_price"
    footer: str = "td.msg_footer"
    timestamp_prefix: str = "Datums:"
    description: str = "#msg_div_msg"


DEFAULT_LABELS = ExtractorLabels()


def extract_field(page: BeautifulSoup, label: str, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    """
    Value cell next to the option row whose name contains `label`.
    Map-link suffixes are dropped and a lone "-" means empty.
    """
    for name_cell in page.select(labels.option_name):
        if label not in name_cell.get_text(" ", strip=True):
            continue
        value_cell = name_cell.find_next_sibling("td")
        if value_cell is None:
            return ""
        text = _MAP_SUFFIX_RE.sub("", value_cell.get_text(" ", strip=True)).strip()
        return "" if text == "-" else text
    return ""


def current_identity(browser: Browser) -> str:
    return browser.current_url


def current_price(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    el = page.select_one(labels.price)
    return el.get_text(" ", strip=True) if el else ""


def current_district(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    return extract_field(page, labels.district, labels)


def current_area(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    return extract_field(page, labels.area, labels)


def current_cadastre(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    return extract_field(page, labels.cadastre, labels)


def current_timestamp(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    """Raw posting time string (without the 'Datums:' prefix); "" if not shown."""
    for cell in page.select(labels.footer):
        text = cell.get_text(" ", strip=True)
        if labels.timestamp_prefix in text:
            return text.split(labels.timestamp_prefix, 1)[1].strip()
    return ""


def current_description(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> str:
    """Free-text body of the ad, ignoring the option tables embedded in it."""
    el = page.select_one(labels.description)
    if el is None:
        return ""
    body = copy.copy(el)
    for table in body.find_all("table"):
        table.decompose()
    return _WS_RE.sub(" ", body.get_text(" ")).strip()


def read_fields(page: BeautifulSoup, labels: ExtractorLabels = DEFAULT_LABELS) -> dict[str, str]:
    """
    All displayable fields of the current detail view. Each one is read
    independently; a failure in one leaves it "" and does not affect the rest.
    """
    readers: dict[str, Callable[[BeautifulSoup, ExtractorLabels], str]] = {
        "price": current_price,
        "district_text": current_district,
        "area_text": current_area,
        "cadastre_text": current_cadastre,
        "posted_at_raw": current_timestamp,
        "description": current_description,
    }
    out: dict[str, str] = {}
    for key, reader in readers.items():
        try:
            out[key] = reader(page, labels) or ""
        except Exception as e:
            log.debug("field %s unreadable: %r", key, e)
            out[key] = ""
    return out
