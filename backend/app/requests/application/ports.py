from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence, Tuple

from app.requests.domain.models import (
    ExportFilters,
    MaterialRequest,
    NewMaterialRequest,
    QueryDescriptor,
    SortingParams,
)


class MaterialRequestStore(Protocol):
    """Tenant-scoped access to the material request table.

    ``company_id`` is the first argument of every call and is never optional.
    Implementations raise classified ``AppError`` instances only.
    """

    async def list_requests(
        self, company_id: str, descriptor: QueryDescriptor
    ) -> Tuple[Sequence[MaterialRequest], int]:
        ...

    async def get_request(self, company_id: str, request_id: str) -> MaterialRequest:
        ...

    async def insert_request(
        self, company_id: str, request: NewMaterialRequest
    ) -> MaterialRequest:
        ...

    async def update_request(
        self,
        company_id: str,
        request_id: str,
        patch: Mapping[str, Any],
        expected_status: Optional[str] = None,
    ) -> MaterialRequest:
        """Apply ``patch``; with ``expected_status`` the write only happens
        while the stored status still equals it (``InvalidTransition`` otherwise)."""
        ...

    async def delete_request(
        self, company_id: str, request_id: str, requester_id: str
    ) -> None:
        ...

    async def export_requests(
        self,
        company_id: str,
        filters: ExportFilters,
        limit: int,
        sorting: SortingParams,
    ) -> Sequence[MaterialRequest]:
        ...

    async def count_requests(self, company_id: str, filters: ExportFilters) -> int:
        ...


class Connectivity(Protocol):
    @property
    def is_online(self) -> bool:
        ...

    def set_online(self, online: bool) -> None:
        ...


Timer = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
ConnectionProbe = Callable[[], Awaitable[bool]]
