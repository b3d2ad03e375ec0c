"""Tests for the analytics cache helpers."""

import pytest

from conftest import make_submission
from formpipe.utils.cache import (
    cached_form_analytics,
    clear_all_caches,
    get_cache_key,
    get_form_analytics_cache,
)


@pytest.fixture(autouse=True)
def _clear_caches():
    clear_all_caches()
    yield
    clear_all_caches()


class TestGetCacheKey:
    def test_stable_for_equal_models(self):
        assert get_cache_key(make_submission("a")) == get_cache_key(make_submission("a"))

    def test_differs_for_different_models(self):
        assert get_cache_key(make_submission("a")) != get_cache_key(make_submission("b"))

    def test_set_order_does_not_matter(self):
        assert get_cache_key(flags={"b", "a"}) == get_cache_key(flags={"a", "b"})

    def test_kwargs_order_does_not_matter(self):
        assert get_cache_key(x=1, y=2) == get_cache_key(y=2, x=1)


class TestCachedFormAnalytics:
    def test_result_reused(self):
        calls = []

        @cached_form_analytics
        def compute(submission, window_days=30):
            calls.append(submission.id)
            return {"id": submission.id, "window": window_days}

        first = compute(make_submission("a"), window_days=7)
        second = compute(make_submission("a"), window_days=7)
        compute(make_submission("a"), window_days=30)

        assert first == second == {"id": "a", "window": 7}
        assert calls == ["a", "a"]
        assert len(get_form_analytics_cache()) == 2

    def test_clear_all_caches(self):
        @cached_form_analytics
        def compute(value):
            return value * 2

        compute(2)
        clear_all_caches()
        assert len(get_form_analytics_cache()) == 0
