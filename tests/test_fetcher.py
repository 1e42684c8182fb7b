"""Tests for listing parsing and the HTTP fetcher."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest
import requests

from restock_monitor.fetcher import (
    BLOCKED,
    NETWORK,
    PARSE,
    TIMEOUT,
    FetchError,
    HttpRegionFetcher,
    looks_blocked,
    parse_listing,
    parse_price,
)
from restock_monitor.models import Region

US = Region(id=1, code="US", name="United States", url="https://www.hermes.com/us/en/", currency="USD")


def _jsonld_page(*products):
    data = {
        "@context": "https://schema.org",
        "@type": "ItemList",
        "itemListElement": [{"@type": "ListItem", "item": p} for p in products],
    }
    return f'<html><head><script type="application/ld+json">{json.dumps(data)}</script></head><body></body></html>'


TILES_PAGE = """
<html><body>
  <div class="product-grid">
    <div class="product-item" data-product-id="H056025CK89" data-color="Gold" data-size="25">
      <a href="/us/en/product/birkin-25-H056025CK89/"><img src="/images/birkin.jpg"></a>
      <h3 class="product-item-name">Birkin 25</h3>
      <span class="price">$12,500.00</span>
    </div>
    <div class="product-item" data-product-id="H078000CC37">
      <a href="/us/en/product/kelly-28-H078000CC37/">Kelly 28</a>
      <span class="price">$11,400.00</span>
      <span class="badge">Sold out</span>
    </div>
  </div>
</body></html>
"""


class _Response:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class _Session:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


class TestParsePrice:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("$12,500.00", Decimal("12500.00")),
            ("12.500,00 EUR", Decimal("12500.00")),
            ("10000", Decimal("10000")),
            ("12,500", Decimal("12500")),
            ("¥1,200,000", Decimal("1200000")),
            ("9,90 €", Decimal("9.90")),
            ("12.500 €", Decimal("12500")),
            ("1.250.000 €", Decimal("1250000")),
            ("9.99 €", Decimal("9.99")),
            (12500, Decimal("12500")),
        ],
    )
    def test_formats(self, text, expected):
        assert parse_price(text) == expected

    @pytest.mark.parametrize("text", [None, "", "Price on request"])
    def test_unparseable(self, text):
        assert parse_price(text) is None


class TestParseListing:
    def test_jsonld_products(self):
        html = _jsonld_page(
            {
                "@type": "Product",
                "name": "Birkin 25",
                "url": "/us/en/product/birkin-25-H056025CK89/",
                "sku": "H056025CK89",
                "color": "Gold",
                "image": ["https://assets.hermes.com/birkin.jpg"],
                "offers": {"price": "12500", "priceCurrency": "USD", "availability": "https://schema.org/InStock"},
            },
            {
                "@type": "Product",
                "name": "Kelly 28",
                "url": "https://www.hermes.com/us/en/product/kelly-28-H078000CC37/",
                "offers": {"price": "11400", "availability": "https://schema.org/OutOfStock"},
            },
        )
        birkin, kelly = parse_listing(html, US)

        assert birkin.external_id == "H056025CK89"
        assert birkin.product_url == "https://www.hermes.com/us/en/product/birkin-25-H056025CK89/"
        assert birkin.price == Decimal("12500")
        assert birkin.color == "Gold"
        assert birkin.is_available is True
        assert kelly.external_id == "H078000CC37"
        assert kelly.currency == "USD"
        assert kelly.is_available is False

    def test_tiles_fallback(self):
        birkin, kelly = parse_listing(TILES_PAGE, US)

        assert birkin.name == "Birkin 25"
        assert birkin.external_id == "H056025CK89"
        assert birkin.price == Decimal("12500.00")
        assert (birkin.color, birkin.size) == ("Gold", "25")
        assert birkin.image_url == "https://www.hermes.com/images/birkin.jpg"
        assert birkin.is_available is True
        assert kelly.is_available is False

    def test_category_labels(self):
        html = _jsonld_page(
            {"@type": "Product", "name": "Birkin 25", "url": "/p/H056025CK89/", "category": ["Birkin", "Bags"]},
            {"@type": "Product", "name": "Kelly 28", "url": "/p/H078000CC37/", "category": {"name": "Kelly"}},
            {"@type": "Product", "name": "Twilly", "url": "/p/H063000CC01/"},
        )
        assert [p.category for p in parse_listing(html, US)] == ["Birkin", "Kelly", None]

        tiles = TILES_PAGE.replace('data-color="Gold"', 'data-category="Birkin" data-color="Gold"')
        birkin, kelly = parse_listing(tiles, US)
        assert (birkin.category, kelly.category) == ("Birkin", None)

    def test_duplicates_are_collapsed(self):
        p = {"@type": "Product", "name": "Birkin 25", "url": "/p/birkin-25-H056025CK89/", "sku": "H056025CK89"}
        assert len(parse_listing(_jsonld_page(p, p), US)) == 1

    def test_empty_listing_container_is_not_an_error(self):
        assert parse_listing('<div class="product-grid"></div>', US) == []

    def test_unrecognised_page_is_a_parse_error(self):
        with pytest.raises(FetchError) as exc:
            parse_listing("<html><body><p>Hello</p></body></html>", US)
        assert exc.value.kind == PARSE


class TestLooksBlocked:
    def test_captcha_page(self):
        assert looks_blocked("<html><title>Please complete the CAPTCHA</title></html>")

    def test_normal_page(self):
        assert not looks_blocked(TILES_PAGE)


class TestFetchError:
    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            FetchError("teapot", "nope")

    def test_str_includes_kind(self):
        assert str(FetchError(TIMEOUT, "slow")) == "timeout: slow"


class TestHttpRegionFetcher:
    def test_success(self):
        session = _Session(_Response(200, TILES_PAGE))
        products = HttpRegionFetcher(timeout=5, session=session).fetch_region_products(US)

        assert len(products) == 2
        url, kwargs = session.requests[0]
        assert url == US.url
        assert kwargs["timeout"] == 5

    @pytest.mark.parametrize(
        "session,kind",
        [
            (_Session(exc=requests.Timeout("read timed out")), TIMEOUT),
            (_Session(exc=requests.ConnectionError("refused")), NETWORK),
            (_Session(_Response(403, "Forbidden")), BLOCKED),
            (_Session(_Response(429, "")), BLOCKED),
            (_Session(_Response(503, "")), NETWORK),
            (_Session(_Response(200, "<html>Access Denied</html>")), BLOCKED),
            (_Session(_Response(200, "<html><body>Maintenance</body></html>")), PARSE),
        ],
    )
    def test_failures_are_classified(self, session, kind):
        with pytest.raises(FetchError) as exc:
            HttpRegionFetcher(session=session).fetch_region_products(US)
        assert exc.value.kind == kind

    def test_no_retry_on_failure(self):
        session = _Session(exc=requests.ConnectionError("refused"))
        with pytest.raises(FetchError):
            HttpRegionFetcher(session=session).fetch_region_products(US)
        assert len(session.requests) == 1
