from app.requests.application.query_cache import (
    DETAIL_NAMESPACE,
    LIST_NAMESPACE,
    NAMESPACE,
    QueryCache,
    detail_key,
    list_key,
)
from app.requests.application.resolver import build_pagination_meta, resolve
from app.requests.domain.models import PaginatedResponse

from store_fakes import make_request, make_requests


def page_of(rows):
    return PaginatedResponse(data=tuple(rows), pagination=build_pagination_meta(len(rows), 0, 10))


def test_keys_are_namespaced():
    descriptor = resolve({"status": "pending"})
    assert list_key(descriptor)[: len(LIST_NAMESPACE)] == LIST_NAMESPACE
    assert detail_key("r1") == DETAIL_NAMESPACE + ("r1",)
    assert list_key(descriptor) == list_key(resolve({"status": "PENDING"}))


def test_staleness():
    cache = QueryCache()
    entry = cache.set_data(detail_key("r1"), make_request("r1"), fetched_at=100.0)
    assert not entry.is_stale(129.9, 30.0)
    assert entry.is_stale(130.0, 30.0)


def test_invalidate_by_prefix_keeps_data():
    cache = QueryCache()
    cache.set_data(list_key(resolve()), page_of(make_requests(2)), 0.0)
    cache.set_data(detail_key("req-000"), make_request("req-000"), 0.0)

    invalidated = cache.invalidate(LIST_NAMESPACE)

    assert invalidated == [list_key(resolve())]
    assert cache.get(list_key(resolve())).invalidated
    assert cache.get(list_key(resolve())).data.pagination.total_count == 2
    assert not cache.get(detail_key("req-000")).invalidated
    assert len(cache.invalidate(NAMESPACE)) == 2


def test_snapshot_finds_every_entry_holding_the_row():
    cache = QueryCache()
    rows = make_requests(3)
    cache.set_data(list_key(resolve()), page_of(rows), 0.0)
    cache.set_data(list_key(resolve({"priority": "low"})), page_of([]), 0.0)
    cache.set_data(detail_key("req-001"), rows[1], 0.0)

    keys = [key for key, _ in cache.snapshot_containing("req-001")]

    assert keys == [list_key(resolve()), detail_key("req-001")]


def test_restore_puts_back_or_removes():
    cache = QueryCache()
    key = detail_key("r1")
    original = cache.set_data(key, make_request("r1"), 0.0)
    cache.replace_data(key, make_request("r1", status="approved"))
    assert cache.get(key).fetched_at == 0.0

    cache.restore(key, original)
    assert cache.get(key) is original

    cache.restore(key, None)
    assert key not in cache
