"""Decide whether a user's saved filters accept a product.

Within one filter every condition that is set must hold. Across filters any
single accepting filter is enough. A filter with `notify_all_restocks`
accepts everything and short-circuits the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .models import Product, ProductFilter
from .repository import Repository

logger = logging.getLogger(__name__)

NOTIFY_ALL_REASON = "notify all restocks enabled"


@dataclass(frozen=True)
class MatchResult:
    matched: tuple[ProductFilter, ...] = ()
    reason: str = ""

    def __bool__(self) -> bool:
        return bool(self.matched)


def _in_set(value: Optional[str], allowed: frozenset[str]) -> bool:
    # a product without the attribute is not excluded by it
    if value is None:
        return True
    wanted = {a.casefold() for a in allowed}
    return value.casefold() in wanted


def filter_accepts(f: ProductFilter, product: Product) -> bool:
    """True when every condition set on `f` holds for `product`."""
    if f.category_id is not None and product.category_id != f.category_id:
        return False
    if f.colors and not _in_set(product.color, f.colors):
        return False
    if f.sizes and not _in_set(product.size, f.sizes):
        return False
    if f.min_price is not None and (product.price is None or product.price < f.min_price):
        return False
    if f.max_price is not None and (product.price is None or product.price > f.max_price):
        return False
    keywords = (f.keywords or "").strip()
    if keywords:
        haystack = f"{product.name or ''} {product.description or ''}".casefold()
        if keywords.casefold() not in haystack:
            return False
    return True


class FilterMatcher:
    def __init__(self, repo: Optional[Repository] = None) -> None:
        self.repo = repo

    def match(self, filters: Iterable[ProductFilter], product: Product) -> MatchResult:
        active: Sequence[ProductFilter] = [f for f in filters if f.is_active]

        for f in active:
            if f.notify_all_restocks:
                return MatchResult(matched=(f,), reason=NOTIFY_ALL_REASON)

        matched = tuple(f for f in active if filter_accepts(f, product))
        if not matched:
            return MatchResult()
        reason = "; ".join(f"filter #{f.id} ({f.describe()})" for f in matched)
        return MatchResult(matched=matched, reason=reason)

    def match_user(self, user_id: int, product: Product) -> MatchResult:
        """Load the user's active filters and match them against `product`."""
        if self.repo is None:
            raise RuntimeError("FilterMatcher.match_user needs a repository")
        result = self.match(self.repo.load_active_filters(user_id), product)
        logger.debug("User %s vs product %s: %s", user_id, product.id, result.reason or "no match")
        return result


__all__ = ["FilterMatcher", "MatchResult", "NOTIFY_ALL_REASON", "filter_accepts"]
