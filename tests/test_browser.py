import pytest

from modules.listing_watch.lib.browser import Browser, NavigationError


def test_listing_hrefs_are_absolute_and_in_document_order(fake_site):
    url = fake_site.listing("/lv/real-estate/wood/ogre-and-reg/sell/", ["/msg/a.html", "/msg/b.html"], "page2.html")
    browser = fake_site.browser()
    browser.goto(url)

    assert browser.listing_hrefs() == [fake_site.url("/msg/a.html"), fake_site.url("/msg/b.html")]
    assert browser.next_page_href() == fake_site.url("/lv/real-estate/wood/ogre-and-reg/sell/page2.html")


def test_next_page_href_absent_on_single_page(fake_site):
    url = fake_site.listing("/cat/", ["/msg/a.html"])
    browser = fake_site.browser()
    browser.goto(url)
    assert browser.next_page_href() is None


def test_open_follows_redirects_and_back_restores_listing(fake_site):
    listing = fake_site.listing("/cat/", ["/msg/short.html"])
    fake_site.detail("/msg/full/123.html")
    fake_site.redirect("/msg/short.html", "/msg/full/123.html")
    browser = fake_site.browser()

    browser.goto(listing)
    browser.open(browser.listing_hrefs()[0])
    assert browser.current_url == fake_site.url("/msg/full/123.html")

    browser.back()
    assert browser.current_url == listing
    # back() does not refetch
    assert fake_site.clients[0].fetched.count(listing) == 1


def test_failed_load_raises_navigation_error_and_keeps_location(fake_site):
    listing = fake_site.listing("/cat/", ["/msg/gone.html"])
    fake_site.fail("/msg/gone.html")
    browser = fake_site.browser()
    browser.goto(listing)

    with pytest.raises(NavigationError):
        browser.open("/msg/gone.html")
    assert browser.current_url == listing


def test_page_before_any_navigation_raises(fake_site):
    with pytest.raises(NavigationError):
        _ = fake_site.browser().page


def test_close_releases_client(fake_site):
    browser = fake_site.browser()
    browser.close()
    assert fake_site.clients[0].closed is True
    assert browser.current_url == ""


def test_custom_selectors(fake_site):
    from modules.listing_watch.lib.browser import PageSelectors

    url = fake_site.url("/custom/")
    fake_site.pages[url] = '<div class="ad"><a href="/x">x</a></div><a href="/p2">Next</a>'
    browser = Browser(fake_site.client(), PageSelectors(listing="div.ad", next_page_text="next"))
    browser.goto(url)
    assert browser.listing_hrefs() == [fake_site.url("/x")]
    assert browser.next_page_href() == fake_site.url("/p2")
