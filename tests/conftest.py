# tests/conftest.py
import json
import os
import pathlib
import types
from urllib.parse import urljoin

import pytest
import requests
from freezegun import freeze_time

from modules.listing_watch.lib.browser import Browser
from modules.listing_watch.lib.http_client import FetchedPage

BASE = "https://www.ss.com"


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Throwaway log dir per test so real logs stay clean
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.setenv("LISTING_WATCH_CONFIG_DIR", str(tmp_path / "config"))
    yield


@pytest.fixture(autouse=True)
def no_email_env(monkeypatch):
    monkeypatch.setenv("SEND_EMAIL", "0")
    monkeypatch.setenv("SCHEDULED_MODULES_DRY_RUN", "1")
    monkeypatch.setenv("CONFIG_PATH", "/app/local/config.json")
    yield


@pytest.fixture
def frozen_monday():
    # 2025-10-13 is a Monday; 10:00 in Riga (UTC+3)
    with freeze_time("2025-10-13T07:00:00Z"):
        yield


@pytest.fixture
def frozen_wednesday():
    with freeze_time("2025-10-15T07:00:00Z"):
        yield


@pytest.fixture
def stub_emailer(monkeypatch):
    sent = {"messages": []}

    def send_html(**kwargs):
        sent["messages"].append(kwargs)
        return "<fake-message-id@example>"

    ns = types.SimpleNamespace(send_html=send_html, sent=sent)
    monkeypatch.setattr("service.emailer.send_html", ns.send_html, raising=True)
    monkeypatch.setattr("service.runner.send_html", ns.send_html, raising=False)
    return ns


# ---------------------------------------------------------------------
# A fake ss.com served through the real Browser
# ---------------------------------------------------------------------
def listing_page_html(hrefs: list[str], next_href: str | None = None) -> str:
    rows = "".join(
        f'<tr><td class="msg2"><div class="d1"><a href="{h}" class="am">Ad {i}</a></div></td></tr>'
        for i, h in enumerate(hrefs)
    )
    pager = f'<a class="navi" href="{next_href}">Nākamie</a>' if next_href else ""
    return f"<html><body><table>{rows}</table><div class='td2'>{pager}</div></body></html>"


def detail_page_html(
    date: str | None = "14.10.2025 09:15",
    price: str = "12 000 €",
    district: str = "Ogre un raj.",
    area: str = "2.5 ha",
    cadastre: str = "74010010123",
    description: str = "Land plot near the river.",
) -> str:
    footer = f'<td class="msg_footer">Datums: {date}</td>' if date is not None else ""
    return f"""<html><body>
<div id="msg_div_msg">{description}
  <table>
    <tr><td class="ads_opt_name">Pilsēta, rajons:</td><td class="ads_opt">{district} [karte]</td></tr>
    <tr><td class="ads_opt_name">Platība:</td><td class="ads_opt">{area}</td></tr>
    <tr><td class="ads_opt_name">Kadastra numurs:</td><td class="ads_opt">{cadastre}</td></tr>
  </table>
</div>
<span class="ads_price">{price}</span>
<table><tr><td class="msg_footer">Reklāmas ID: 1</td>{footer}</tr></table>
</body></html>"""


class FakeClient:
    """Stands in for HttpClient: serves canned HTML, optionally redirecting or failing."""

    def __init__(self, site: "FakeSite") -> None:
        self.site = site
        self.fetched: list[str] = []
        self.closed = False

    def fetch(self, url: str) -> FetchedPage:
        self.fetched.append(url)
        if url in self.site.failing:
            raise requests.ConnectionError(f"boom: {url}")
        resolved = self.site.redirects.get(url, url)
        if resolved not in self.site.pages:
            raise requests.HTTPError(f"404 for {resolved}")
        return FetchedPage(url=resolved, text=self.site.pages[resolved])

    def close(self) -> None:
        self.closed = True


class FakeSite:
    def __init__(self) -> None:
        self.pages: dict[str, str] = {}
        self.redirects: dict[str, str] = {}
        self.failing: set[str] = set()
        self.clients: list[FakeClient] = []

    def url(self, path: str) -> str:
        return urljoin(BASE, path)

    def listing(self, path: str, hrefs: list[str], next_href: str | None = None) -> str:
        url = self.url(path)
        self.pages[url] = listing_page_html(hrefs, next_href)
        return url

    def detail(self, path: str, **fields) -> str:
        url = self.url(path)
        self.pages[url] = detail_page_html(**fields)
        return url

    def redirect(self, path: str, to_path: str) -> None:
        self.redirects[self.url(path)] = self.url(to_path)

    def fail(self, path: str) -> None:
        self.failing.add(self.url(path))

    def client(self) -> FakeClient:
        c = FakeClient(self)
        self.clients.append(c)
        return c

    def browser(self) -> Browser:
        return Browser(self.client())


@pytest.fixture
def fake_site() -> FakeSite:
    return FakeSite()


# ---------------------------------------------------------------------
# Sources file + ledger location per test
# ---------------------------------------------------------------------
@pytest.fixture
def write_sources(tmp_path: pathlib.Path):
    """Write listing_watch_sources.<profile>.json into LISTING_WATCH_CONFIG_DIR."""

    def _write(profile: str = "lands", **overrides) -> pathlib.Path:
        data = {
            "title": "Land Scraper Report",
            "urls": [f"{BASE}/lv/real-estate/plots-and-lands/ogre-and-reg/all/sell/"],
            "cutoff": {"policy": "weekday", "hours": 25, "wide_hours": 73, "wide_days": ["mon"]},
            "date_cell": "datetime",
            "ledger_path": str(tmp_path / "state" / f"{profile}-scraped.xlsx"),
        }
        data.update(overrides)
        config_dir = tmp_path / "config"
        config_dir.mkdir(exist_ok=True)
        path = config_dir / f"listing_watch_sources.{profile}.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def ledger_path(tmp_path: pathlib.Path) -> str:
    return str(tmp_path / "state" / "lands-scraped.xlsx")
