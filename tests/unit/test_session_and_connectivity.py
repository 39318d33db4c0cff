import asyncio
from datetime import datetime, timezone

import pytest

from app.requests.application.coordinator import MaterialRequestCoordinator, RetryPolicy
from app.requests.application.registry import CoordinatorRegistry, reset_on_sign_out
from app.requests.application.session import (
    AuthEvent,
    SessionContext,
    SessionState,
    require_company,
)
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.infrastructure.connectivity import ConnectivityMonitor

from store_fakes import COMPANY_ID, FakeClock, FakeMaterialRequestStore, make_requests

SESSION = SessionContext(user_id="u1", email="ali@example.com", company_id=COMPANY_ID)


def run(coro):
    return asyncio.run(coro)


def test_require_company():
    assert require_company(SESSION) == COMPANY_ID
    with pytest.raises(AppError) as exc:
        require_company(SessionContext(user_id="u2", email="new@example.com"))
    assert exc.value.code == ErrorCode.AUTH_UNAUTHORIZED
    with pytest.raises(AppError):
        require_company(None)


def test_session_events_reach_subscribers():
    state = SessionState()
    events = []
    unsubscribe = state.subscribe(lambda event, session: events.append((event, session)))

    state.sign_in(SESSION)
    state.refresh(datetime(2026, 1, 1, tzinfo=timezone.utc))
    state.sign_out()
    unsubscribe()
    state.sign_in(SESSION)

    assert [event for event, _ in events] == [
        AuthEvent.SIGNED_IN,
        AuthEvent.TOKEN_REFRESHED,
        AuthEvent.SIGNED_OUT,
    ]
    # sign-out reports the session that ended
    assert events[2][1].company_id == COMPANY_ID
    assert state.current == SESSION


def test_sign_out_clears_the_tenant_cache():
    async def scenario():
        store = FakeMaterialRequestStore(make_requests(2))
        registry = CoordinatorRegistry(
            lambda company_id: MaterialRequestCoordinator(store, company_id, timer=FakeClock())
        )
        state = SessionState()
        state.subscribe(reset_on_sign_out(registry))
        state.sign_in(SESSION)

        coordinator = registry.get(state.require_company())
        await coordinator.list_requests()
        cached = len(coordinator.cache)
        state.sign_out()
        return registry, coordinator, cached

    registry, coordinator, cached = run(scenario())
    assert cached == 1
    assert len(coordinator.cache) == 0
    assert registry.get(COMPANY_ID) is coordinator


def test_registry_keeps_one_coordinator_per_company():
    registry = CoordinatorRegistry(
        lambda company_id: MaterialRequestCoordinator(FakeMaterialRequestStore(), company_id)
    )
    first = registry.get("c1")
    assert registry.get("c1") is first
    assert registry.get("c2") is not first
    assert len(registry) == 2
    run(registry.close_all())
    assert "c1" not in registry


def test_connectivity_transitions_notify_listeners():
    clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
    monitor = ConnectivityMonitor(clock=clock)
    seen = []
    monitor.subscribe(seen.append)

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)

    assert seen == [False, True]
    assert monitor.is_online
    assert monitor.was_offline
    assert monitor.last_offline_at is not None


def test_check_connection_records_the_result():
    async def refused_ping():
        raise OSError("connection refused")

    async def scenario():
        monitor = ConnectivityMonitor(probe=refused_ping)
        result = await monitor.check_connection()
        return monitor, result

    monitor, result = run(scenario())
    assert result is False
    assert not monitor.is_online


def test_publish_reports_an_explicit_session():
    state = SessionState()
    events = []
    state.subscribe(lambda event, session: events.append((event, session)))

    state.publish(AuthEvent.SIGNED_OUT, SESSION)

    assert events == [(AuthEvent.SIGNED_OUT, SESSION)]
    assert state.current is None


def test_connection_failure_fails_fast_until_the_database_answers():
    async def ping():
        return True

    async def scenario():
        store = FakeMaterialRequestStore(make_requests(1))
        store.fail("list", ConnectionResetError("connection reset by peer"))
        monitor = ConnectivityMonitor(probe=ping)
        coordinator = MaterialRequestCoordinator(
            store,
            COMPANY_ID,
            monitor,
            timer=FakeClock(),
            retry_policy=RetryPolicy(max_retries=0),
        )
        codes = []
        for _ in range(2):
            with pytest.raises(AppError) as exc:
                await coordinator.list_requests()
            codes.append(exc.value.code)
        online_after_failure = monitor.is_online
        await monitor.check_connection()
        page = await coordinator.list_requests()
        return store, monitor, codes, online_after_failure, page

    store, monitor, codes, online_after_failure, page = run(scenario())
    assert codes == [ErrorCode.NETWORK_CONNECTION_FAILED, ErrorCode.NETWORK_OFFLINE]
    assert online_after_failure is False
    assert monitor.is_online
    assert len(page.data) == 1
    # the offline attempt never reached the store
    assert len(store.calls_for("list")) == 2


def test_watch_checks_on_an_interval():
    class StopWatching(Exception):
        pass

    results = [False, True]
    delays = []

    async def ping():
        return results.pop(0)

    async def sleep(delay):
        if len(delays) == 2:
            raise StopWatching
        delays.append(delay)

    monitor = ConnectivityMonitor(probe=ping)
    seen = []
    monitor.subscribe(seen.append)

    with pytest.raises(StopWatching):
        run(monitor.watch(5, sleep=sleep))
    assert delays == [5, 5]
    assert seen == [False, True]
