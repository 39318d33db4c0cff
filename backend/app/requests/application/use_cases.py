from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Mapping, Optional

from app.requests.application.coordinator import MaterialRequestCoordinator, MutationResult
from app.requests.application.error_log import handle_mutation_error
from app.requests.application.resolver import (
    clamp_export_limit,
    resolve_export_filters,
    resolve_sorting,
)
from app.requests.application.session import SessionContext, require_company
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import (
    MaterialRequest,
    NewMaterialRequest,
    PaginatedResponse,
)
from app.requests.domain.validation import (
    validate_new_request,
    validate_patch,
    validate_status,
)
from app.requests.domain.workflow import request_transition
from app.requests.presentation.exporters import (
    EXPORT_RENDERERS,
    FILE_EXTENSIONS,
    MEDIA_TYPES,
    ExportFormat,
    export_filename,
)


@dataclass(frozen=True)
class CreateMaterialRequestCommand:
    material_name: str
    quantity: float
    unit: str
    priority: str
    project_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ListMaterialRequestsQuery:
    status: Optional[str] = None
    priority: Optional[str] = None
    search: Optional[str] = None
    page_index: int = 0
    page_size: Optional[int] = None
    sort_column: Optional[str] = None
    sort_direction: Optional[str] = None


@dataclass(frozen=True)
class UpdateMaterialRequestCommand:
    request_id: str
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateStatusCommand:
    request_id: str
    status: str


@dataclass(frozen=True)
class ExportMaterialRequestsQuery:
    format: ExportFormat = ExportFormat.CSV
    status: Optional[str] = None
    priority: Optional[str] = None
    unit: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = None
    sort_column: Optional[str] = None
    sort_direction: Optional[str] = None


@dataclass(frozen=True)
class ExportFile:
    filename: str
    media_type: str
    content: bytes
    row_count: int
    total_available: int


Clock = Callable[[], datetime]


def _company_or_failure(
    session: Optional[SessionContext], operation: str
) -> Optional[MutationResult]:
    try:
        require_company(session)
    except AppError as error:
        return MutationResult.failure(
            handle_mutation_error(error, operation, "material request")
        )
    return None


async def _current_status(coordinator: MaterialRequestCoordinator, request_id: str) -> str:
    # Cached copies may be stale or optimistic; the gate needs the stored value
    current = await coordinator.fetch_request(request_id)
    return current.status


def _trimmed(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class CreateMaterialRequestUseCase:
    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(
        self,
        command: CreateMaterialRequestCommand,
        current_session: SessionContext,
    ) -> MutationResult:
        rejected = _company_or_failure(current_session, "create")
        if rejected is not None:
            return rejected

        request = NewMaterialRequest(
            material_name=_trimmed(command.material_name),
            quantity=command.quantity,
            unit=command.unit,
            priority=command.priority,
            requested_by=current_session.user_id,
            project_id=command.project_id,
            notes=command.notes or None,
        )
        try:
            validate_new_request(request)
        except AppError as error:
            return MutationResult.failure(
                handle_mutation_error(error, "create", "material request")
            )
        return await self._coordinator.create_request(request)


class ListMaterialRequestsUseCase:
    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(self, query: ListMaterialRequestsQuery) -> PaginatedResponse:
        return await self._coordinator.list_requests(
            {"status": query.status, "priority": query.priority, "search": query.search},
            {"page_index": query.page_index, "page_size": query.page_size},
            {"column": query.sort_column, "direction": query.sort_direction},
        )


class GetMaterialRequestUseCase:
    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(self, request_id: str) -> MaterialRequest:
        return await self._coordinator.get_request(request_id)


class UpdateMaterialRequestUseCase:
    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(
        self,
        command: UpdateMaterialRequestCommand,
        current_session: SessionContext,
    ) -> MutationResult:
        rejected = _company_or_failure(current_session, "update")
        if rejected is not None:
            return rejected

        patch = dict(command.changes)
        if "material_name" in patch:
            patch["material_name"] = _trimmed(patch["material_name"])

        current: Optional[str] = None
        try:
            changes: Dict[str, Any] = validate_patch(patch)
            if "status" in changes:
                current = await _current_status(self._coordinator, command.request_id)
                changes["status"] = request_transition(current, changes["status"]).value
        except AppError as error:
            return MutationResult.failure(
                handle_mutation_error(
                    error, "update", "material request", {"request_id": command.request_id}
                )
            )
        return await self._coordinator.update_request(
            command.request_id, changes, expected_status=current
        )


class UpdateStatusUseCase:
    """Gate a status change through the workflow before touching the store."""

    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(
        self,
        command: UpdateStatusCommand,
        current_session: SessionContext,
    ) -> MutationResult:
        rejected = _company_or_failure(current_session, "update")
        if rejected is not None:
            return rejected

        try:
            target = validate_status(command.status)
            current = await _current_status(self._coordinator, command.request_id)
            request_transition(current, target)
        except AppError as error:
            return MutationResult.failure(
                handle_mutation_error(
                    error, "update", "status", {"request_id": command.request_id}
                )
            )
        return await self._coordinator.update_status(
            command.request_id, target, expected_status=current
        )


class DeleteMaterialRequestUseCase:
    def __init__(self, coordinator: MaterialRequestCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(
        self,
        request_id: str,
        current_session: SessionContext,
    ) -> MutationResult:
        rejected = _company_or_failure(current_session, "delete")
        if rejected is not None:
            return rejected
        return await self._coordinator.delete_request(request_id, current_session.user_id)


class ExportMaterialRequestsUseCase:
    def __init__(
        self,
        coordinator: MaterialRequestCoordinator,
        clock: Clock,
        max_rows: int = 1000,
        default_rows: int = 100,
    ) -> None:
        self._coordinator = coordinator
        self._clock = clock
        self._max_rows = max_rows
        self._default_rows = default_rows

    async def execute(self, query: ExportMaterialRequestsQuery) -> ExportFile:
        export_format = ExportFormat(query.format)
        filters = resolve_export_filters(
            {
                "status": query.status,
                "priority": query.priority,
                "unit": query.unit,
                "date_from": query.date_from,
                "date_to": query.date_to,
            }
        )
        sorting = resolve_sorting(
            {"column": query.sort_column, "direction": query.sort_direction}
        )
        limit = clamp_export_limit(
            query.limit if query.limit is not None else self._default_rows, self._max_rows
        )

        total_available = await self._coordinator.count_requests(filters)
        rows = (
            await self._coordinator.export_requests(filters, limit, sorting)
            if total_available
            else []
        )
        if not rows:
            raise AppError(
                ErrorCode.VALIDATION_FAILED,
                "No data to export with the selected filters",
                user_message="No data to export with the selected filters",
            )

        renderer = EXPORT_RENDERERS[export_format]
        filename = export_filename(self._clock()) + FILE_EXTENSIONS[export_format]
        return ExportFile(
            filename=filename,
            media_type=MEDIA_TYPES[export_format],
            content=renderer(rows),
            row_count=len(rows),
            total_available=total_available,
        )
