"""Tests for filter matching rules."""

from __future__ import annotations

from decimal import Decimal

import pytest

from restock_monitor.matcher import NOTIFY_ALL_REASON, FilterMatcher, filter_accepts
from restock_monitor.models import Product, ProductFilter


def _product(**kwargs):
    defaults = dict(
        id=7, region_id=1, name="Birkin 25", product_url="https://www.hermes.com/us/en/product/birkin-25/",
        description="Togo leather, gold hardware", category_id=1, color="Gold", size="25",
        price=Decimal("10000"),
    )
    defaults.update(kwargs)
    return Product(**defaults)


def _filter(id=1, **kwargs):
    return ProductFilter(id=id, user_id=1, **kwargs)


class TestFilterAccepts:
    def test_empty_filter_accepts_anything(self):
        assert filter_accepts(_filter(), _product())

    def test_all_set_conditions_must_hold(self):
        f = _filter(category_id=1, colors=frozenset({"Gold"}))
        assert filter_accepts(f, _product())
        assert not filter_accepts(f, _product(color="Black"))
        assert not filter_accepts(f, _product(category_id=2))

    def test_color_and_size_compare_case_insensitively(self):
        f = _filter(colors=frozenset({"gold"}), sizes=frozenset({"25"}))
        assert filter_accepts(f, _product(color="GOLD"))

    def test_missing_color_does_not_exclude(self):
        assert filter_accepts(_filter(colors=frozenset({"Gold"})), _product(color=None))

    @pytest.mark.parametrize("price,ok", [("9000", True), ("12000", True), ("8999.99", False), ("12000.01", False)])
    def test_price_bounds_are_inclusive(self, price, ok):
        f = _filter(min_price=Decimal("9000"), max_price=Decimal("12000"))
        assert filter_accepts(f, _product(price=Decimal(price))) is ok

    def test_missing_price_fails_bounds(self):
        assert not filter_accepts(_filter(min_price=Decimal("1")), _product(price=None))

    def test_keywords_search_name_and_description(self):
        assert filter_accepts(_filter(keywords="birkin"), _product())
        assert filter_accepts(_filter(keywords="GOLD HARDWARE"), _product())
        assert not filter_accepts(_filter(keywords="Kelly"), _product())

    def test_blank_keywords_are_unset(self):
        assert filter_accepts(_filter(keywords="   "), _product())


class TestFilterMatcher:
    def test_notify_all_short_circuits(self):
        picky = _filter(1, keywords="Kelly")
        everything = _filter(2, notify_all_restocks=True)
        result = FilterMatcher().match([picky, everything], _product())
        assert result
        assert result.matched == (everything,)
        assert result.reason == NOTIFY_ALL_REASON

    def test_filters_are_ored(self):
        birkin_gold = _filter(1, category_id=1, colors=frozenset({"Gold"}))
        kelly = _filter(2, category_id=2)
        matcher = FilterMatcher()

        assert matcher.match([birkin_gold, kelly], _product(category_id=1, color="Gold")).matched == (birkin_gold,)
        assert matcher.match([birkin_gold, kelly], _product(category_id=2, color="Black")).matched == (kelly,)
        assert not matcher.match([birkin_gold, kelly], _product(category_id=1, color="Black"))

    def test_and_within_or_across(self):
        birkin = _filter(1, category_id=1)
        gold_kelly = _filter(2, category_id=2, colors=frozenset({"Gold"}))
        matcher = FilterMatcher()

        assert matcher.match([birkin, gold_kelly], _product(category_id=2, color="Gold")).matched == (gold_kelly,)
        assert not matcher.match([birkin, gold_kelly], _product(category_id=2, color="Black"))

    def test_reason_names_matching_filters(self):
        result = FilterMatcher().match([_filter(5, colors=frozenset({"Gold"}))], _product())
        assert result.reason == "filter #5 (colors=Gold)"

    def test_inactive_filters_are_ignored(self):
        assert not FilterMatcher().match([_filter(notify_all_restocks=True, is_active=False)], _product())

    def test_no_filters_no_match(self):
        result = FilterMatcher().match([], _product())
        assert not result
        assert result.reason == ""

    def test_match_user_loads_filters(self, repo):
        user = repo.add_user("alice@example.com")
        repo.add_filter(user.id, keywords="birkin")
        result = FilterMatcher(repo).match_user(user.id, _product())
        assert len(result.matched) == 1

    def test_match_user_requires_repository(self):
        with pytest.raises(RuntimeError):
            FilterMatcher().match_user(1, _product())
