"""Tests for the competitor suggestion review workflow and its count cache."""

import pytest

from storesight.models.competitor_suggestion import SuggestionStatus
from storesight.services import competitor_service
from storesight.services.competitor_service import CompetitorService, SuggestionCountCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def monotonic(self):
        return self.now


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(competitor_service, "time", fake)
    return fake


@pytest.fixture
def shop(make_shop):
    return make_shop("test-store.myshopify.com")


@pytest.fixture
def service(db_session, count_cache):
    return CompetitorService(db_session, count_cache=count_cache)


class TestSuggestionCountCache:

    def test_fresh_entry_is_returned(self):
        cache = SuggestionCountCache()
        cache.put(1, 5)
        assert cache.get(1) == 5

    def test_stale_entry_is_a_miss(self, clock):
        cache = SuggestionCountCache(fresh_minutes=30)
        cache.put(1, 5)

        clock.now += 31 * 60
        assert cache.get(1) is None

    def test_put_prunes_old_entries(self, clock):
        cache = SuggestionCountCache(fresh_minutes=30, prune_minutes=60)
        cache.put(1, 5)

        clock.now += 61 * 60
        cache.put(2, 3)
        assert len(cache) == 1

    def test_invalidate(self):
        cache = SuggestionCountCache()
        cache.put(1, 5)
        cache.invalidate(1)
        assert cache.get(1) is None


class TestListSuggestions:

    def test_pages_newest_first(self, service, shop, make_suggestion):
        oldest = make_suggestion(shop.id, age_minutes=30)
        middle = make_suggestion(shop.id, age_minutes=20)
        newest = make_suggestion(shop.id, age_minutes=10)
        make_suggestion(shop.id, status=SuggestionStatus.IGNORED)

        page = service.list_suggestions(shop.id, SuggestionStatus.NEW, page=0, size=2)

        assert [item["id"] for item in page["content"]] == [newest.id, middle.id]
        assert page["totalElements"] == 3
        assert page["totalPages"] == 2
        assert page["number"] == 0
        assert page["size"] == 2

        second = service.list_suggestions(shop.id, SuggestionStatus.NEW, page=1, size=2)
        assert [item["id"] for item in second["content"]] == [oldest.id]

    def test_empty(self, service, shop):
        page = service.list_suggestions(shop.id)
        assert page["content"] == []
        assert page["totalPages"] == 0


class TestReview:

    def test_count_is_cached_until_a_review(self, service, shop, make_suggestion):
        first = make_suggestion(shop.id)
        make_suggestion(shop.id)
        assert service.get_new_count(shop.id) == 2

        make_suggestion(shop.id)
        assert service.get_new_count(shop.id) == 2

        service.approve(shop.id, first.id)
        assert service.get_new_count(shop.id) == 2

    def test_refresh_count(self, service, shop, make_suggestion):
        make_suggestion(shop.id)
        assert service.get_new_count(shop.id) == 1
        make_suggestion(shop.id)
        service.refresh_count(shop.id)
        assert service.get_new_count(shop.id) == 2

    def test_approve_and_ignore(self, service, shop, make_suggestion):
        a = make_suggestion(shop.id)
        b = make_suggestion(shop.id)

        assert service.approve(shop.id, a.id).status == SuggestionStatus.APPROVED
        assert service.ignore(shop.id, b.id).status == SuggestionStatus.IGNORED

    def test_other_shops_suggestion_is_not_found(self, service, shop, make_shop, make_suggestion):
        other = make_shop("other.myshopify.com")
        suggestion = make_suggestion(other.id)

        assert service.approve(shop.id, suggestion.id) is None
        assert service.ignore(shop.id, 99999) is None
        assert suggestion.status == SuggestionStatus.NEW
