"""Region page fetchers.

A fetcher turns one `Region` into the list of products currently listed on
that region's storefront. The engine only relies on the `RegionFetcher`
protocol and on `FetchError.kind`; the two implementations here fetch the
listing with plain HTTP (requests) or with headless Chromium (Playwright)
and share the same markup parser.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional, Protocol
from urllib.parse import urljoin, urlparse, parse_qs

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import RawProduct, Region
from .utils import BROWSER_USER_AGENT, get_http_session

logger = logging.getLogger(__name__)

TIMEOUT = "timeout"
BLOCKED = "blocked"
NETWORK = "network"
PARSE = "parse"

FETCH_ERROR_KINDS = (TIMEOUT, BLOCKED, NETWORK, PARSE)


class FetchError(Exception):
    """A region page could not be turned into a product list."""

    def __init__(self, kind: str, message: str) -> None:
        if kind not in FETCH_ERROR_KINDS:
            raise ValueError(f"unknown fetch error kind: {kind!r}")
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.args[0]}"


class RegionFetcher(Protocol):
    def fetch_region_products(self, region: Region) -> List[RawProduct]: ...


# ---- markup parsing ---------------------------------------------------------

_BLOCK_MARKERS = (
    "captcha",
    "access denied",
    "are you a robot",
    "unusual traffic",
    "request unsuccessful",
    "datadome",
)

_LISTING_CONTAINER_SELECTORS = (
    "[data-product-grid]",
    ".product-grid",
    ".product-list",
    ".product-items",
    ".search-result",
    "main[data-page='category']",
)

_TILE_SELECTORS = "[data-product-id], [data-sku], .product-item, .product-tile"
_TILE_NAME_SELECTORS = (".product-item-name", ".product-title", ".product-name", "h2", "h3", "h4")
_TILE_PRICE_SELECTORS = ("[data-price]", ".product-item-price", ".price", "[itemprop='price']")
_SOLD_OUT_MARKERS = ("sold out", "out of stock", "unavailable", "currently unavailable")

# Trailing SKU segment in product URLs, e.g. /product/birkin-25-bag-H056025CK89/
_SKU_IN_URL = re.compile(r"-([A-Z0-9]{8,})/?$")


def parse_price(text: object) -> Optional[Decimal]:
    """Parse a price string like '$12,500.00', '12.500,00 EUR' or '10000'."""
    if text is None:
        return None
    t = str(text).strip()
    if re.fullmatch(r"\d+(\.\d+)?", t):
        return Decimal(t)
    t = re.sub(r"[^0-9\.,]", "", t)
    if not t:
        return None
    if "," in t and "." in t:
        # whichever separator comes last is the decimal one
        if t.rfind(",") > t.rfind("."):
            t = t.replace(".", "").replace(",", ".")
        else:
            t = t.replace(",", "")
    elif "," in t:
        head, _, tail = t.rpartition(",")
        t = f"{head.replace(',', '')}.{tail}" if len(tail) == 2 else t.replace(",", "")
    elif t.count(".") > 1 or ("." in t and len(t.rpartition(".")[2]) == 3):
        # '12.500 €' groups thousands with dots
        t = t.replace(".", "")
    try:
        return Decimal(t)
    except InvalidOperation:
        return None


def _normalize_url(src: Optional[str], base_url: str) -> Optional[str]:
    """Make relative URLs absolute and unwrap image-service proxy URLs."""
    if not src:
        return None
    abs_url = urljoin(base_url.rstrip("/") + "/", src.strip())
    parsed = urlparse(abs_url)
    qs = parse_qs(parsed.query or "")
    inner = qs.get("source", [None])[0] or qs.get("url", [None])[0]
    if inner and parsed.path.rstrip("/").endswith(("/images", "/image")):
        return urljoin(base_url.rstrip("/") + "/", inner)
    return abs_url


def _iter_dicts(o) -> Iterator[dict]:
    """Yield all dicts inside arbitrary JSON (list/dict scalars)."""
    if isinstance(o, dict):
        yield o
        for v in o.values():
            yield from _iter_dicts(v)
    elif isinstance(o, list):
        for v in o:
            yield from _iter_dicts(v)


def _is_type(block: dict, name: str) -> bool:
    t = block.get("@type")
    if isinstance(t, list):
        return name in t
    return t == name


def _first(value):
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _category_label(value) -> Optional[str]:
    """JSON-LD `category` may be a string, a list or a Thing with a name."""
    value = _first(value)
    if isinstance(value, dict):
        value = value.get("name")
    if not value:
        return None
    return str(value).strip() or None


def _external_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = _SKU_IN_URL.search(urlparse(url).path)
    return m.group(1) if m else None


def _product_from_jsonld(block: dict, region: Region) -> Optional[RawProduct]:
    name = (block.get("name") or "").strip()
    url = _normalize_url(block.get("url"), region.url)
    if not name or not url:
        return None

    offers = _first(block.get("offers")) or {}
    if not isinstance(offers, dict):
        offers = {}
    price = offers.get("price")
    if price is None:
        price = (offers.get("priceSpecification") or {}).get("price")
    availability = str(offers.get("availability") or "InStock")

    image = _first(block.get("image"))
    if isinstance(image, dict):
        image = image.get("url")

    external_id = block.get("sku") or block.get("productID") or _external_id_from_url(url)
    return RawProduct(
        name=name,
        product_url=url,
        external_id=str(external_id) if external_id else None,
        description=(block.get("description") or None),
        price=parse_price(price),
        currency=offers.get("priceCurrency") or region.currency,
        color=_first(block.get("color")) or None,
        size=_first(block.get("size")) or None,
        image_url=_normalize_url(image, region.url),
        category=_category_label(block.get("category")),
        is_available=availability.rsplit("/", 1)[-1] in ("InStock", "LimitedAvailability", "OnlineOnly"),
    )


def _extract_from_jsonld(soup: BeautifulSoup, region: Region) -> List[RawProduct]:
    out: List[RawProduct] = []
    for tag in soup.select('script[type="application/ld+json"]'):
        try:
            data = json.loads(tag.string or "")
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block on %s", region.url)
            continue
        for block in _iter_dicts(data):
            if not _is_type(block, "Product"):
                continue
            p = _product_from_jsonld(block, region)
            if p:
                out.append(p)
    return out


def _tile_text(card: Tag, selectors) -> Optional[str]:
    for sel in selectors:
        el = card.select_one(sel)
        if el is None:
            continue
        if el.has_attr("data-price"):
            return el["data-price"]
        if el.name == "meta" and el.get("content"):
            return el["content"]
        txt = el.get_text(" ", strip=True)
        if txt:
            return txt
    return None


def _product_from_tile(card: Tag, region: Region) -> Optional[RawProduct]:
    a = card if card.name == "a" and card.get("href") else card.find("a", href=True)
    href = a.get("href") if a else None
    url = _normalize_url(href, region.url)
    if not url:
        return None
    name = _tile_text(card, _TILE_NAME_SELECTORS) or (a.get_text(" ", strip=True) if a else "")
    if not name:
        return None

    img = card.find("img")
    image = None
    if img is not None:
        image = img.get("data-src") or img.get("src")

    text = card.get_text(" ", strip=True).lower()
    available_attr = (card.get("data-available") or "").lower()
    if available_attr:
        is_available = available_attr in ("1", "true", "yes")
    else:
        is_available = not any(m in text for m in _SOLD_OUT_MARKERS)

    external_id = (
        card.get("data-product-id")
        or card.get("data-sku")
        or card.get("data-pid")
        or _external_id_from_url(url)
    )
    return RawProduct(
        name=name,
        product_url=url,
        external_id=str(external_id) if external_id else None,
        description=card.get("data-description") or None,
        price=parse_price(_tile_text(card, _TILE_PRICE_SELECTORS)),
        currency=region.currency,
        color=card.get("data-color") or None,
        size=card.get("data-size") or None,
        category=card.get("data-category") or None,
        image_url=_normalize_url(image, region.url),
        is_available=is_available,
    )


def _extract_from_tiles(soup: BeautifulSoup, region: Region) -> List[RawProduct]:
    out: List[RawProduct] = []
    for card in soup.select(_TILE_SELECTORS):
        # nested matches (a .product-item inside a [data-sku]) are the same tile
        if card.find_parent(attrs={"data-product-id": True}) or card.find_parent(attrs={"data-sku": True}):
            continue
        p = _product_from_tile(card, region)
        if p:
            out.append(p)
    return out


def looks_blocked(html: str) -> bool:
    """True for anti-bot interstitials (captcha walls, access denied pages)."""
    head = (html or "")[:5000].lower()
    return any(m in head for m in _BLOCK_MARKERS)


def parse_listing(html: str, region: Region) -> List[RawProduct]:
    """Extract the products listed on a region page.

    JSON-LD data is preferred; visible product tiles are the fallback.
    Duplicate listings (same external id or URL) are collapsed.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    products = _extract_from_jsonld(soup, region) or _extract_from_tiles(soup, region)

    if not products and not any(soup.select_one(sel) for sel in _LISTING_CONTAINER_SELECTORS):
        raise FetchError(PARSE, f"no product listing found on {region.url}")

    out: List[RawProduct] = []
    seen: set[str] = set()
    for p in products:
        key = p.external_id or p.product_url.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


# ---- fetchers ---------------------------------------------------------------

def _browser_headers(region: Region) -> dict:
    return {
        "User-Agent": BROWSER_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Dest": "document",
        "Referer": region.url,
    }


class HttpRegionFetcher:
    """Fetch region listings with plain HTTP requests.

    No retries: a failed fetch is reported once and the cycle moves on.
    """

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or get_http_session()

    def fetch_region_products(self, region: Region) -> List[RawProduct]:
        logger.debug("GET %s (region=%s)", region.url, region.code)
        try:
            resp = self.session.get(
                region.url, headers=_browser_headers(region), timeout=self.timeout, allow_redirects=True
            )
        except requests.Timeout as e:
            raise FetchError(TIMEOUT, f"timed out after {self.timeout}s fetching {region.url}") from e
        except requests.RequestException as e:
            raise FetchError(NETWORK, f"request to {region.url} failed: {e}") from e

        if resp.status_code in (403, 429):
            raise FetchError(BLOCKED, f"HTTP {resp.status_code} from {region.url}")
        if resp.status_code >= 400:
            raise FetchError(NETWORK, f"HTTP {resp.status_code} from {region.url}")
        html = resp.text or ""
        if looks_blocked(html):
            raise FetchError(BLOCKED, f"anti-bot page served for {region.url}")

        products = parse_listing(html, region)
        logger.info("Fetched %d products for region %s", len(products), region.code)
        return products

    def close(self) -> None:
        self.session.close()


class BrowserRegionFetcher:
    """Render region listings with headless Chromium (Playwright).

    Requires the `browser` extra (`pip install restock-monitor[browser]`
    followed by `python -m playwright install chromium`).
    """

    def __init__(self, timeout_ms: int = 60000, headless: bool = True) -> None:
        try:
            from playwright.sync_api import sync_playwright  # noqa: F401
        except ImportError as e:
            raise RuntimeError(
                "FETCHER_BACKEND=browser needs Playwright: pip install 'restock-monitor[browser]' "
                "&& python -m playwright install chromium"
            ) from e
        self.timeout_ms = timeout_ms
        self.headless = headless

    def _render(self, url: str) -> str:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.headless)
            try:
                ctx = browser.new_context(user_agent=BROWSER_USER_AGENT, locale="en-US")
                page = ctx.new_page()
                page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                return page.content()
            finally:
                browser.close()

    def fetch_region_products(self, region: Region) -> List[RawProduct]:
        from playwright.sync_api import Error as PWError, TimeoutError as PWTimeoutError

        logger.info("Rendering %s with headless browser (region=%s)", region.url, region.code)
        try:
            html = self._render(region.url)
        except PWTimeoutError as e:
            raise FetchError(TIMEOUT, f"browser timed out after {self.timeout_ms}ms on {region.url}") from e
        except PWError as e:
            raise FetchError(NETWORK, f"browser failed on {region.url}: {e}") from e

        if looks_blocked(html):
            raise FetchError(BLOCKED, f"anti-bot page served for {region.url}")
        return parse_listing(html, region)


__all__ = [
    "BLOCKED",
    "BrowserRegionFetcher",
    "FETCH_ERROR_KINDS",
    "FetchError",
    "HttpRegionFetcher",
    "NETWORK",
    "PARSE",
    "RegionFetcher",
    "TIMEOUT",
    "looks_blocked",
    "parse_listing",
    "parse_price",
]
