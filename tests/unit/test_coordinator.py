import asyncio
from dataclasses import replace

import pytest

from app.requests.application.coordinator import (
    MaterialRequestCoordinator,
    MutationResult,
    RetryPolicy,
)
from app.requests.application.query_cache import detail_key, list_key
from app.requests.application.resolver import next_page, resolve
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import NewMaterialRequest

from store_fakes import (
    COMPANY_ID,
    USER_ID,
    FakeClock,
    FakeConnectivity,
    FakeMaterialRequestStore,
    RecordingSleep,
    make_request,
    make_requests,
)


def run(coro):
    return asyncio.run(coro)


def build(store, **kwargs):
    clock = kwargs.pop("clock", FakeClock())
    sleep = kwargs.pop("sleep", RecordingSleep())
    coordinator = MaterialRequestCoordinator(
        store, COMPANY_ID, kwargs.pop("connectivity", None), timer=clock, sleep=sleep, **kwargs
    )
    return coordinator, clock, sleep


def test_coordinator_requires_company():
    with pytest.raises(AppError) as exc:
        MaterialRequestCoordinator(FakeMaterialRequestStore(), "")
    assert exc.value.code == ErrorCode.AUTH_UNAUTHORIZED


def test_fresh_list_is_served_from_cache():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(3))
        coordinator, clock, _ = build(store)

        first = await coordinator.list_requests()
        clock.advance(10)
        second = await coordinator.list_requests()
        await coordinator.wait_idle()
        return store, first, second

    store, first, second = run(scenario())
    assert len(store.calls_for("list")) == 1
    assert second is first
    assert first.pagination.total_count == 3


def test_stale_list_returns_cached_page_and_refreshes_in_background():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(3))
        coordinator, clock, _ = build(store)

        first = await coordinator.list_requests()
        store.rows["req-000"] = replace(store.rows["req-000"], material_name="Rebar")
        clock.advance(31)

        stale = await coordinator.list_requests()
        await coordinator.wait_idle()
        refreshed = await coordinator.list_requests()
        return store, first, stale, refreshed

    store, first, stale, refreshed = run(scenario())
    assert stale is first
    assert len(store.calls_for("list")) == 2
    assert "Rebar" in [row.material_name for row in refreshed.data]


def test_concurrent_reads_share_one_fetch():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        store.gates["list"] = asyncio.Event()
        coordinator, _, _ = build(store)

        readers = [asyncio.ensure_future(coordinator.list_requests()) for _ in range(3)]
        await asyncio.sleep(0)
        store.gates["list"].set()
        pages = await asyncio.gather(*readers)
        return store, pages

    store, pages = run(scenario())
    assert len(store.calls_for("list")) == 1
    assert pages[0] is pages[1] is pages[2]


def test_permission_denied_is_not_retried():
    async def scenario():
        store = FakeMaterialRequestStore([make_request("req-1")])
        store.fail("get", AppError(ErrorCode.DB_PERMISSION_DENIED, "rls"))
        coordinator, _, sleep = build(store)

        with pytest.raises(AppError) as exc:
            await coordinator.get_request("req-1")
        return store, sleep, exc.value

    store, sleep, error = run(scenario())
    assert error.code == ErrorCode.DB_PERMISSION_DENIED
    assert len(store.calls_for("get")) == 1
    assert sleep.delays == []


def test_not_found_is_not_retried():
    async def scenario():
        store = FakeMaterialRequestStore()
        coordinator, _, sleep = build(store)
        with pytest.raises(AppError) as exc:
            await coordinator.get_request("missing")
        return store, sleep, exc.value

    store, sleep, error = run(scenario())
    assert error.code == ErrorCode.DB_NOT_FOUND
    assert len(store.calls_for("get")) == 1
    assert sleep.delays == []


def test_transient_failures_retry_with_exponential_backoff():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        store.fail(
            "list",
            ConnectionError("connection reset"),
            ConnectionError("connection reset"),
            ConnectionError("connection reset"),
        )
        coordinator, _, sleep = build(store)
        page = await coordinator.list_requests()
        return store, sleep, page

    store, sleep, page = run(scenario())
    assert len(store.calls_for("list")) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert page.pagination.total_count == 2


def test_retries_give_up_after_max_retries():
    async def scenario():
        store = FakeMaterialRequestStore()
        store.fail("get", *[TimeoutError("timed out")] * 5)
        coordinator, _, sleep = build(store)
        with pytest.raises(AppError) as exc:
            await coordinator.get_request("req-1")
        return store, sleep, exc.value

    store, sleep, error = run(scenario())
    # detail reads retry twice
    assert len(store.calls_for("get")) == 3
    assert sleep.delays == [1.0, 2.0]
    assert error.code == ErrorCode.NETWORK_TIMEOUT


def test_retry_delay_is_capped():
    policy = RetryPolicy(max_retries=10, base_delay=1.0, max_delay=30.0)
    assert [policy.delay(i) for i in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_offline_fails_fast_without_store_call():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        coordinator, _, _ = build(store, connectivity=FakeConnectivity(online=False))
        with pytest.raises(AppError) as exc:
            await coordinator.list_requests()
        return store, exc.value

    store, error = run(scenario())
    assert error.code == ErrorCode.NETWORK_OFFLINE
    assert store.calls == []


def test_request_timeout_is_classified():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(1))
        store.gates["count"] = asyncio.Event()
        coordinator, _, _ = build(store, request_timeout=0.01)
        with pytest.raises(AppError) as exc:
            await coordinator.count_requests(None)
        return exc.value

    error = run(scenario())
    assert error.code == ErrorCode.NETWORK_TIMEOUT


def test_next_page_is_prefetched():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(25))
        coordinator, _, _ = build(store)
        descriptor = resolve(pagination={"page_index": 0, "page_size": 10})

        await coordinator.fetch_list(descriptor)
        await coordinator.wait_idle()
        upcoming = coordinator.cache.get(list_key(next_page(descriptor)))
        return store, upcoming

    store, upcoming = run(scenario())
    assert upcoming is not None
    assert upcoming.data.pagination.current_page == 1
    assert [call[2].pagination.page_index for call in store.calls_for("list")] == [0, 1]


def test_last_page_is_not_prefetched():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(5))
        coordinator, _, _ = build(store)
        await coordinator.list_requests()
        await coordinator.wait_idle()
        return store

    store = run(scenario())
    assert len(store.calls_for("list")) == 1


def test_cancelled_query_result_is_not_cached():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        store.gates["list"] = asyncio.Event()
        coordinator, _, _ = build(store)
        descriptor = resolve()

        reader = asyncio.ensure_future(coordinator.fetch_list(descriptor))
        await asyncio.sleep(0)
        coordinator.cancel_query(descriptor)
        store.gates["list"].set()
        page = await reader
        await coordinator.wait_idle()
        return coordinator, descriptor, page

    coordinator, descriptor, page = run(scenario())
    assert page.pagination.total_count == 2
    assert coordinator.cache.get(list_key(descriptor)) is None


def test_fetch_started_before_a_mutation_cannot_overwrite_it():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        coordinator, clock, _ = build(store)
        descriptor = resolve()
        await coordinator.fetch_list(descriptor)

        # A background refresh is in flight when the user approves a request
        clock.advance(31)
        store.gates["list"] = asyncio.Event()
        await coordinator.fetch_list(descriptor)
        await asyncio.sleep(0)

        result = await coordinator.update_status("req-000", "approved")
        store.gates["list"].set()
        await coordinator.wait_idle()
        return coordinator, descriptor, result

    coordinator, descriptor, result = run(scenario())
    assert result.ok
    entry = coordinator.cache.get(list_key(descriptor))
    # The late refresh was discarded; the entry still waits for a fresh read
    assert entry.invalidated
    statuses = {row.id: row.status for row in entry.data.data}
    assert statuses["req-000"] == "approved"


def test_failed_update_rolls_back_to_snapshot():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(3))
        coordinator, _, _ = build(store)
        descriptor = resolve()
        await coordinator.fetch_list(descriptor)
        await coordinator.get_request("req-001")
        list_before = coordinator.cache.get(list_key(descriptor)).data
        detail_before = coordinator.cache.get(detail_key("req-001")).data

        store.gates["update"] = asyncio.Event()
        store.fail("update", AppError(ErrorCode.DB_UPDATE_FAILED, "boom"))
        mutation = asyncio.ensure_future(coordinator.update_status("req-001", "approved"))
        await asyncio.sleep(0)
        optimistic = coordinator.peek_request("req-001").status
        store.gates["update"].set()
        result = await mutation
        return coordinator, descriptor, list_before, detail_before, optimistic, result

    coordinator, descriptor, list_before, detail_before, optimistic, result = run(scenario())
    assert optimistic == "approved"
    assert not result.ok
    assert result.error.code == ErrorCode.DB_UPDATE_FAILED

    list_entry = coordinator.cache.get(list_key(descriptor))
    detail_entry = coordinator.cache.get(detail_key("req-001"))
    assert list_entry.data is list_before
    assert detail_entry.data is detail_before
    assert list_entry.invalidated and detail_entry.invalidated


def test_settled_mutation_reconciles_with_server_state():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        coordinator, _, _ = build(store)
        descriptor = resolve()
        await coordinator.fetch_list(descriptor)

        # Someone else renamed the row; the cache does not know yet
        store.rows["req-000"] = replace(store.rows["req-000"], material_name="Cement")
        result = await coordinator.update_status("req-000", "approved")
        page = await coordinator.fetch_list(descriptor)
        return result, page

    result, page = run(scenario())
    assert result.ok
    row = next(row for row in page.data if row.id == "req-000")
    assert row.material_name == "Cement"
    assert row.status == "approved"


def test_optimistic_delete_removes_row_then_rolls_back_on_failure():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(3))
        coordinator, _, _ = build(store)
        descriptor = resolve()
        await coordinator.fetch_list(descriptor)
        before = coordinator.cache.get(list_key(descriptor)).data

        store.gates["delete"] = asyncio.Event()
        mutation = asyncio.ensure_future(
            coordinator.delete_request("req-002", "someone-else")
        )
        await asyncio.sleep(0)
        during = [row.id for row in coordinator.cache.get(list_key(descriptor)).data.data]
        store.gates["delete"].set()
        result = await mutation
        after = coordinator.cache.get(list_key(descriptor)).data
        return before, during, result, after

    before, during, result, after = run(scenario())
    assert "req-002" not in during
    assert not result.ok
    assert result.error.code == ErrorCode.DB_PERMISSION_DENIED
    assert after is before


def test_successful_delete_by_requester():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(3))
        coordinator, _, _ = build(store)
        await coordinator.list_requests()
        result = await coordinator.delete_request("req-001", USER_ID)
        page = await coordinator.list_requests()
        return store, result, page

    store, result, page = run(scenario())
    assert result == MutationResult.success(None)
    assert "req-001" not in store.rows
    assert [row.id for row in page.data] == ["req-002", "req-000"]


def test_create_invalidates_lists_without_optimistic_insert():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        coordinator, _, _ = build(store)
        descriptor = resolve()
        await coordinator.fetch_list(descriptor)

        result = await coordinator.create_request(
            NewMaterialRequest(
                material_name="Sand",
                quantity=3,
                unit="tons",
                priority="high",
                requested_by=USER_ID,
            )
        )
        entry = coordinator.cache.get(list_key(descriptor))
        page = await coordinator.fetch_list(descriptor)
        return result, entry, page

    result, entry, page = run(scenario())
    assert result.ok
    assert result.data.status == "pending"
    assert entry.invalidated
    assert len(entry.data.data) == 2
    assert page.pagination.total_count == 3


def test_failed_create_returns_failure_result():
    async def scenario():
        store = FakeMaterialRequestStore()
        store.fail("insert", AppError(ErrorCode.DB_CONSTRAINT_VIOLATION, "duplicate"))
        coordinator, _, _ = build(store)
        return await coordinator.create_request(
            NewMaterialRequest("Sand", 3, "tons", "high", USER_ID)
        )

    result = run(scenario())
    assert not result.ok
    assert result.error.code == ErrorCode.DB_CONSTRAINT_VIOLATION


def test_update_status_rejects_unknown_value():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(1))
        coordinator, _, _ = build(store)
        result = await coordinator.update_status("req-000", "shipped")
        return store, result

    store, result = run(scenario())
    assert result.error.code == ErrorCode.VALIDATION_INVALID_FORMAT
    assert store.calls_for("update") == []


def test_reset_clears_cache():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        coordinator, _, _ = build(store)
        await coordinator.list_requests()
        coordinator.reset()
        return coordinator

    coordinator = run(scenario())
    assert len(coordinator.cache) == 0
