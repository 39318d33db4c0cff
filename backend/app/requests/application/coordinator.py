"""Cache-backed reads and optimistic writes for material requests.

One coordinator is built per tenant session. It owns the ``QueryCache`` and
is the only code that talks to the store, so every store call goes through
the connectivity check, the timeout, and error classification.

Reads are stale-while-revalidate: a cached page comes back at once and is
refreshed in the background once it is older than ``stale_time``. Each fetch
carries a per-key generation number and only writes to the cache while that
generation is still current, so a superseded fetch cannot overwrite newer
state.

Writes return a ``MutationResult`` instead of raising. Updates and deletes
are applied to the cache before the store call and rolled back from
snapshots when it fails. In both outcomes the list namespace and the detail
entry are invalidated afterwards so the next read reconciles with the store.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, fields, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from app.requests.application.error_log import handle_mutation_error, handle_query_error
from app.requests.application.ports import Connectivity, MaterialRequestStore, Sleep, Timer
from app.requests.application.query_cache import (
    LIST_NAMESPACE,
    NAMESPACE,
    CacheEntry,
    CacheKey,
    QueryCache,
    detail_key,
    list_key,
)
from app.requests.application.resolver import (
    DEFAULT_PAGE_SIZE,
    build_pagination_meta,
    next_page,
    resolve,
)
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import (
    ExportFilters,
    MaterialRequest,
    MaterialRequestStatus,
    NewMaterialRequest,
    PaginatedResponse,
    QueryDescriptor,
    SortingParams,
)
from app.requests.infrastructure.error_parsers import parse_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTITY_NAME = "material request"

NON_RETRYABLE_CODES: FrozenSet[ErrorCode] = frozenset(
    {
        ErrorCode.AUTH_SESSION_EXPIRED,
        ErrorCode.AUTH_UNAUTHORIZED,
        ErrorCode.DB_PERMISSION_DENIED,
        ErrorCode.DB_NOT_FOUND,
    }
)

_ROW_FIELDS = frozenset(field.name for field in fields(MaterialRequest))


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    non_retryable: FrozenSet[ErrorCode] = NON_RETRYABLE_CODES

    def should_retry(self, failure_count: int, error: AppError) -> bool:
        if error.code in self.non_retryable:
            return False
        return failure_count < self.max_retries

    def delay(self, attempt_index: int) -> float:
        return min(self.base_delay * 2 ** attempt_index, self.max_delay)


@dataclass(frozen=True)
class MutationResult:
    ok: bool
    data: Any = None
    error: Optional[AppError] = None

    @classmethod
    def success(cls, data: Any = None) -> "MutationResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: AppError) -> "MutationResult":
        return cls(ok=False, error=error)


RowTransform = Optional[Callable[[MaterialRequest], MaterialRequest]]


class MaterialRequestCoordinator:
    def __init__(
        self,
        store: MaterialRequestStore,
        company_id: str,
        connectivity: Optional[Connectivity] = None,
        *,
        cache: Optional[QueryCache] = None,
        timer: Timer = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        retry_policy: Optional[RetryPolicy] = None,
        detail_retry_policy: Optional[RetryPolicy] = None,
        stale_time: float = 30.0,
        request_timeout: Optional[float] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if not company_id:
            raise AppError(
                ErrorCode.AUTH_UNAUTHORIZED,
                "A company is required to access material requests",
                user_message="Your profile is not linked to a company yet.",
            )
        self._store = store
        self._company_id = company_id
        self._connectivity = connectivity
        self._cache = cache if cache is not None else QueryCache()
        self._timer = timer
        self._sleep = sleep
        self._retry_policy = retry_policy or RetryPolicy()
        self._detail_retry_policy = detail_retry_policy or RetryPolicy(max_retries=2)
        self._stale_time = stale_time
        self._request_timeout = request_timeout
        self._default_page_size = default_page_size

        self._generations: Dict[CacheKey, int] = {}
        self._in_flight: Dict[CacheKey, "asyncio.Future[Any]"] = {}
        self._tasks: Set["asyncio.Future[Any]"] = set()

    @property
    def company_id(self) -> str:
        return self._company_id

    @property
    def cache(self) -> QueryCache:
        return self._cache

    # ---------------------------------------------------------------- remote

    async def _call_remote(self, call: Callable[[], Awaitable[T]], operation: str) -> T:
        if self._connectivity is not None and not self._connectivity.is_online:
            raise AppError(
                ErrorCode.NETWORK_OFFLINE,
                "No internet connection",
                recoverable=True,
                context={"operation": operation},
            )
        try:
            if self._request_timeout:
                return await asyncio.wait_for(call(), self._request_timeout)
            return await call()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = parse_error(exc, operation)
            if (
                error.code == ErrorCode.NETWORK_CONNECTION_FAILED
                and self._connectivity is not None
            ):
                # Later calls fail fast until the connectivity probe succeeds
                self._connectivity.set_online(False)
            if error is exc:
                raise
            raise error from exc

    async def _fetch_with_retry(
        self, fetcher: Callable[[], Awaitable[T]], policy: RetryPolicy
    ) -> T:
        failure_count = 0
        while True:
            try:
                return await self._call_remote(fetcher, "fetch")
            except AppError as error:
                if not policy.should_retry(failure_count, error):
                    raise
                delay = policy.delay(failure_count)
                failure_count += 1
                logger.warning(
                    "Fetch failed with %s, retry %d/%d in %.1fs",
                    error.code.value,
                    failure_count,
                    policy.max_retries,
                    delay,
                )
                await self._sleep(delay)

    # ------------------------------------------------------------ fetch tasks

    def _track(self, task: "asyncio.Future[Any]") -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_fetch(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
    ) -> "asyncio.Future[Any]":
        task = self._in_flight.get(key)
        if task is not None and not task.done():
            return task

        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        task = asyncio.ensure_future(self._run_fetch(key, generation, fetcher, policy))
        self._in_flight[key] = task
        self._track(task)
        task.add_done_callback(lambda done, key=key: self._fetch_done(key, done))
        return task

    async def _run_fetch(
        self,
        key: CacheKey,
        generation: int,
        fetcher: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
    ) -> Any:
        data = await self._fetch_with_retry(fetcher, policy)
        if self._generations.get(key) == generation:
            self._cache.set_data(key, data, self._timer())
        else:
            logger.debug("Discarding superseded result for %s", key)
        return data

    def _fetch_done(self, key: CacheKey, task: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Consume the exception so unawaited background fetches stay quiet.
            task.exception()

    def _supersede(self, prefix: CacheKey) -> None:
        size = len(prefix)
        for key in [key for key in self._in_flight if key[:size] == prefix]:
            self._generations[key] = self._generations.get(key, 0) + 1
            del self._in_flight[key]

    def _refresh_in_background(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        reason: str = "refresh",
    ) -> None:
        if key in self._in_flight:
            return
        task = self._start_fetch(key, fetcher, policy)

        def report(done: "asyncio.Future[Any]") -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                handle_query_error(error, ENTITY_NAME, {"reason": reason, "key": repr(key)})

        task.add_done_callback(report)

    # ------------------------------------------------------------------ reads

    async def _read(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
    ) -> Any:
        entry = self._cache.get(key)
        if entry is not None and not entry.invalidated:
            if entry.is_stale(self._timer(), self._stale_time):
                logger.debug("Cache STALE: %s", key)
                self._refresh_in_background(key, fetcher, policy)
            else:
                logger.debug("Cache HIT: %s", key)
            return entry.data

        logger.debug("Cache MISS: %s", key)
        return await asyncio.shield(self._start_fetch(key, fetcher, policy))

    async def _load_page(self, descriptor: QueryDescriptor) -> PaginatedResponse:
        rows, total_count = await self._store.list_requests(self._company_id, descriptor)
        return PaginatedResponse(
            data=tuple(rows),
            pagination=build_pagination_meta(
                total_count,
                descriptor.pagination.page_index,
                descriptor.pagination.page_size,
            ),
        )

    def _prefetch_next(self, descriptor: QueryDescriptor, page: PaginatedResponse) -> None:
        if not page.pagination.has_next_page:
            return
        upcoming = next_page(descriptor)
        key = list_key(upcoming)
        entry = self._cache.get(key)
        if entry is not None and not entry.is_stale(self._timer(), self._stale_time):
            return
        self._refresh_in_background(
            key, lambda: self._load_page(upcoming), self._retry_policy, reason="prefetch"
        )

    async def list_requests(
        self,
        filters: Any = None,
        pagination: Any = None,
        sorting: Any = None,
    ) -> PaginatedResponse:
        descriptor = resolve(filters, pagination, sorting, self._default_page_size)
        return await self.fetch_list(descriptor)

    async def fetch_list(self, descriptor: QueryDescriptor) -> PaginatedResponse:
        page = await self._read(
            list_key(descriptor), lambda: self._load_page(descriptor), self._retry_policy
        )
        self._prefetch_next(descriptor, page)
        return page

    async def get_request(self, request_id: str) -> MaterialRequest:
        return await self._read(
            detail_key(request_id),
            lambda: self._store.get_request(self._company_id, request_id),
            self._detail_retry_policy,
        )

    async def fetch_request(self, request_id: str) -> MaterialRequest:
        """Read a request from the store even when it is cached; the result refreshes the cache."""
        return await asyncio.shield(
            self._start_fetch(
                detail_key(request_id),
                lambda: self._store.get_request(self._company_id, request_id),
                self._detail_retry_policy,
            )
        )

    def peek_request(self, request_id: str) -> Optional[MaterialRequest]:
        """Best cached copy of a request, without touching the store."""
        detail = self._cache.get_data(detail_key(request_id))
        if isinstance(detail, MaterialRequest):
            return detail
        for _, entry in self._cache.find(LIST_NAMESPACE):
            for row in entry.data.data:
                if row.id == request_id:
                    return row
        return None

    def cancel_query(self, descriptor: QueryDescriptor) -> None:
        """Drop interest in a list page; a late result will not be cached."""
        self._supersede(list_key(descriptor))

    async def export_requests(
        self,
        filters: ExportFilters,
        limit: int,
        sorting: SortingParams,
    ) -> Sequence[MaterialRequest]:
        return await self._call_remote(
            lambda: self._store.export_requests(self._company_id, filters, limit, sorting),
            "fetch",
        )

    async def count_requests(self, filters: ExportFilters) -> int:
        return await self._call_remote(
            lambda: self._store.count_requests(self._company_id, filters), "fetch"
        )

    # ----------------------------------------------------------------- writes

    async def create_request(self, request: NewMaterialRequest) -> MutationResult:
        # No optimistic insert: where a new row lands under an arbitrary
        # sort/filter is only known to the store.
        try:
            created = await self._call_remote(
                lambda: self._store.insert_request(self._company_id, request), "insert"
            )
        except AppError as error:
            return MutationResult.failure(handle_mutation_error(error, "create", ENTITY_NAME))
        self.invalidate_lists()
        return MutationResult.success(created)

    async def update_request(
        self,
        request_id: str,
        patch: Mapping[str, Any],
        expected_status: Optional[str] = None,
    ) -> MutationResult:
        changes = dict(patch)
        local = {name: value for name, value in changes.items() if name in _ROW_FIELDS}
        return await self._mutate_optimistically(
            request_id,
            lambda row: replace(row, **local),
            lambda: self._store.update_request(
                self._company_id, request_id, changes, expected_status=expected_status
            ),
            "update",
            ENTITY_NAME,
        )

    async def update_status(
        self, request_id: str, status: Any, expected_status: Optional[str] = None
    ) -> MutationResult:
        """Change the status; with ``expected_status`` the store refuses the
        write when the stored status has moved on."""
        try:
            value = MaterialRequestStatus(status).value
        except ValueError as exc:
            return MutationResult.failure(
                AppError(
                    ErrorCode.VALIDATION_INVALID_FORMAT,
                    f"Unknown status {status!r}",
                    original_error=exc,
                    context={"field": "status"},
                )
            )
        return await self._mutate_optimistically(
            request_id,
            lambda row: replace(row, status=value),
            lambda: self._store.update_request(
                self._company_id, request_id, {"status": value}, expected_status=expected_status
            ),
            "update",
            "status",
        )

    async def delete_request(self, request_id: str, requester_id: str) -> MutationResult:
        return await self._mutate_optimistically(
            request_id,
            None,
            lambda: self._store.delete_request(self._company_id, request_id, requester_id),
            "delete",
            ENTITY_NAME,
        )

    async def _mutate_optimistically(
        self,
        request_id: str,
        transform: RowTransform,
        remote: Callable[[], Awaitable[Any]],
        operation: str,
        entity_name: str,
    ) -> MutationResult:
        self._supersede(LIST_NAMESPACE)
        self._supersede(detail_key(request_id))
        snapshots = self._cache.snapshot_containing(request_id)
        self._apply_locally(snapshots, request_id, transform)

        try:
            data = await self._call_remote(remote, operation)
        except AppError as error:
            self._rollback(snapshots)
            result = MutationResult.failure(
                handle_mutation_error(
                    error, operation, entity_name, {"request_id": request_id}
                )
            )
        except asyncio.CancelledError:
            self._rollback(snapshots)
            raise
        else:
            result = MutationResult.success(data)
        finally:
            self._cache.invalidate(LIST_NAMESPACE)
            self._cache.invalidate(detail_key(request_id))
        return result

    def _apply_locally(
        self,
        snapshots: List[Tuple[CacheKey, CacheEntry]],
        request_id: str,
        transform: RowTransform,
    ) -> None:
        for key, entry in snapshots:
            data = entry.data
            if isinstance(data, PaginatedResponse):
                if transform is None:
                    rows = tuple(row for row in data.data if row.id != request_id)
                else:
                    rows = tuple(
                        transform(row) if row.id == request_id else row for row in data.data
                    )
                self._cache.replace_data(key, replace(data, data=rows))
            elif isinstance(data, MaterialRequest):
                if transform is None:
                    self._cache.remove(key)
                else:
                    self._cache.replace_data(key, transform(data))

    def _rollback(self, snapshots: List[Tuple[CacheKey, CacheEntry]]) -> None:
        for key, entry in snapshots:
            self._cache.restore(key, entry)

    # ----------------------------------------------------------- maintenance

    def invalidate_lists(self) -> None:
        self._cache.invalidate(LIST_NAMESPACE)

    def reset(self) -> None:
        """Forget everything, e.g. after sign-out."""
        self._supersede(NAMESPACE)
        self._cache.clear()

    async def wait_idle(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()
