"""Reconcile freshly scraped listings with persisted product state.

`StateDiffer` classifies every scraped item against the stored product with
the same (region, external id) and hands the transition to
`RestockRecorder`, which writes it.

Products that are stored but absent from a scrape are left alone. A
product only becomes unavailable when a scrape still lists it and reports it
as unavailable (`sold_out`). Items without an external id can never be
matched and are recorded as new on every sighting.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from .models import (
    NEW,
    RESTOCKED,
    SOLD_OUT,
    UNCHANGED,
    Product,
    ProductCategory,
    RawProduct,
    Region,
    RestockEvent,
)
from .repository import Repository
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    classification: str
    raw: RawProduct
    product: Product
    restock: Optional[RestockEvent] = None


@dataclass
class RegionDiff:
    region: Region
    transitions: list[Transition] = field(default_factory=list)

    @property
    def products_found(self) -> int:
        return len(self.transitions)

    @property
    def restocks(self) -> list[Transition]:
        return [t for t in self.transitions if t.restock is not None]

    @property
    def notifiable(self) -> list[Transition]:
        """Restocks worth an alert: the product is actually purchasable."""
        return [t for t in self.restocks if t.product.is_available]

    @property
    def new_restocks(self) -> int:
        return len(self.restocks)

    def count(self, classification: str) -> int:
        return sum(1 for t in self.transitions if t.classification == classification)


class RestockRecorder:
    """Persists product transitions and the restock events they produce."""

    def __init__(self, repo: Repository, clock: Callable[[], _dt.datetime] = utcnow) -> None:
        self.repo = repo
        self.clock = clock

    def record_new(self, region: Region, raw: RawProduct) -> tuple[Product, RestockEvent]:
        now = self.clock()
        product = self.repo.insert_product(region.id, raw, now)
        event = self.repo.insert_restock_event(product.id, raw.price, now)
        logger.info("New product in %s: %s (id=%s, external_id=%s)",
                    region.code, product.name, product.id, product.external_id)
        return product, event

    def record_restock(self, existing: Product, raw: RawProduct) -> tuple[Product, RestockEvent]:
        now = self.clock()
        self.repo.mark_restocked(existing.id, raw.price, now)
        event = self.repo.insert_restock_event(existing.id, raw.price, now)
        product = dataclasses.replace(
            existing,
            is_available=True,
            last_seen_at=now,
            price=raw.price if raw.price is not None else existing.price,
        )
        logger.info("Restock detected: %s (id=%s)", product.name, product.id)
        return product, event

    def record_seen(self, existing: Product) -> Product:
        now = self.clock()
        self.repo.touch_product(existing.id, now)
        return dataclasses.replace(existing, last_seen_at=now)

    def record_sold_out(self, existing: Product) -> Product:
        self.repo.mark_unavailable(existing.id, self.clock())
        logger.info("Product listed as unavailable: %s (id=%s)", existing.name, existing.id)
        return dataclasses.replace(existing, is_available=False)


def _mentions(text: str, term: str) -> bool:
    term = term.casefold().replace("-", " ").strip()
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text.casefold().replace("-", " ")) is not None


def resolve_category(raw: RawProduct, categories: Sequence[ProductCategory]) -> Optional[int]:
    """Pick the category of a scraped item.

    The storefront's own category label wins; otherwise the first category
    whose name or slug appears as a word in the product name.
    """
    if raw.category_id is not None:
        return raw.category_id
    for text in (raw.category, raw.name):
        if not text:
            continue
        for c in categories:
            if _mentions(text, c.name) or _mentions(text, c.slug):
                return c.id
    return None


class StateDiffer:
    def __init__(self, repo: Repository, recorder: Optional[RestockRecorder] = None) -> None:
        self.repo = repo
        self.recorder = recorder or RestockRecorder(repo)

    def _categorize(self, scraped: Iterable[RawProduct]) -> list[RawProduct]:
        categories = self.repo.load_categories()
        out = []
        for raw in scraped:
            category_id = resolve_category(raw, categories)
            if category_id != raw.category_id:
                raw = dataclasses.replace(raw, category_id=category_id)
            out.append(raw)
        return out

    @staticmethod
    def classify(raw: RawProduct, existing: Optional[Product]) -> str:
        if existing is None:
            return NEW
        if not existing.is_available and raw.is_available:
            return RESTOCKED
        if existing.is_available and not raw.is_available:
            return SOLD_OUT
        return UNCHANGED

    def _lookup(self, region: Region, raw: RawProduct) -> Optional[Product]:
        if not raw.external_id:
            return None
        return self.repo.find_product(region.id, raw.external_id)

    def reconcile(self, region: Region, scraped: Iterable[RawProduct]) -> RegionDiff:
        """Classify and record every scraped item of one region."""
        diff = RegionDiff(region=region)
        for raw in self._categorize(scraped):
            existing = self._lookup(region, raw)
            kind = self.classify(raw, existing)
            restock = None
            if kind == NEW:
                product, restock = self.recorder.record_new(region, raw)
            elif kind == RESTOCKED:
                product, restock = self.recorder.record_restock(existing, raw)
            elif kind == SOLD_OUT:
                product = self.recorder.record_sold_out(existing)
            elif existing.is_available:
                product = self.recorder.record_seen(existing)
            else:
                product = existing
            diff.transitions.append(Transition(kind, raw, product, restock))

        logger.debug(
            "Region %s: %d found, %d new, %d restocked, %d sold out",
            region.code, diff.products_found, diff.count(NEW), diff.count(RESTOCKED), diff.count(SOLD_OUT),
        )
        return diff


__all__ = ["RegionDiff", "RestockRecorder", "StateDiffer", "Transition", "resolve_category"]
