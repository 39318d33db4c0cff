"""
Material Requests Routes
Thin HTTP glue over the request use cases; all state lives in the coordinators
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from typing import Optional
from datetime import date
import io
import logging

from database.models import utcnow
from database import tracker_settings
from app.requests.application.coordinator import MaterialRequestCoordinator, MutationResult
from app.requests.application.registry import CoordinatorRegistry
from app.requests.application.resolver import build_pagination_meta, resolve_pagination
from app.requests.application.session import SessionContext
from app.requests.application.use_cases import (
    CreateMaterialRequestCommand,
    CreateMaterialRequestUseCase,
    DeleteMaterialRequestUseCase,
    ExportMaterialRequestsQuery,
    ExportMaterialRequestsUseCase,
    GetMaterialRequestUseCase,
    ListMaterialRequestsQuery,
    ListMaterialRequestsUseCase,
    UpdateMaterialRequestCommand,
    UpdateMaterialRequestUseCase,
    UpdateStatusCommand,
    UpdateStatusUseCase,
)
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import PaginatedResponse
from app.requests.presentation.exporters import ExportFormat
from app.requests.presentation.response_mapper import (
    material_request_to_response,
    page_to_response,
)
from routes.auth_routes import get_current_session

logger = logging.getLogger(__name__)

# Create router
requests_router = APIRouter(prefix="/api", tags=["Material Requests"])


# ==================== PYDANTIC MODELS ====================

class MaterialRequestCreate(BaseModel):
    material_name: str
    quantity: float
    unit: str
    priority: str = "medium"
    project_id: Optional[str] = None
    notes: Optional[str] = None


class MaterialRequestUpdate(BaseModel):
    material_name: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    project_id: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


# ==================== ERROR MAPPING ====================

HTTP_STATUS_BY_CODE = {
    ErrorCode.DB_NOT_FOUND: 404,
    ErrorCode.AUTH_USER_NOT_FOUND: 404,
    ErrorCode.DB_PERMISSION_DENIED: 403,
    ErrorCode.AUTH_UNAUTHORIZED: 403,
    ErrorCode.AUTH_SESSION_EXPIRED: 401,
    ErrorCode.AUTH_INVALID_CREDENTIALS: 401,
    ErrorCode.DB_CONSTRAINT_VIOLATION: 409,
    ErrorCode.AUTH_EMAIL_ALREADY_EXISTS: 409,
    ErrorCode.NETWORK_OFFLINE: 503,
    ErrorCode.NETWORK_CONNECTION_FAILED: 503,
    ErrorCode.NETWORK_TIMEOUT: 504,
}


def http_status_for(error: AppError) -> int:
    if error.code in HTTP_STATUS_BY_CODE:
        return HTTP_STATUS_BY_CODE[error.code]
    if error.code.value.startswith("VALIDATION_"):
        return 400
    return 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=http_status_for(exc),
        content={"detail": exc.user_message, "code": exc.code.value},
    )


def unwrap(result: MutationResult):
    if not result.ok:
        raise result.error
    return result.data


# ==================== DEPENDENCIES ====================

def get_registry(request: Request) -> CoordinatorRegistry:
    return request.app.state.coordinators


def get_coordinator(
    current_session: SessionContext = Depends(get_current_session),
    registry: CoordinatorRegistry = Depends(get_registry),
) -> Optional[MaterialRequestCoordinator]:
    """Coordinator for the session's company; None for a user without one."""
    if not current_session.company_id:
        return None
    return registry.get(current_session.company_id)


def require_coordinator(
    coordinator: Optional[MaterialRequestCoordinator] = Depends(get_coordinator),
) -> MaterialRequestCoordinator:
    if coordinator is None:
        raise AppError(
            ErrorCode.AUTH_UNAUTHORIZED,
            "Session has no company",
            user_message="Your profile is not linked to a company yet.",
        )
    return coordinator


# ==================== MATERIAL REQUESTS ROUTES ====================

@requests_router.get("/requests")
async def list_material_requests(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page_index: int = 0,
    page_size: Optional[int] = None,
    sort_column: Optional[str] = None,
    sort_direction: Optional[str] = None,
    coordinator: Optional[MaterialRequestCoordinator] = Depends(get_coordinator),
):
    """List one page of the company's material requests"""
    if coordinator is None:
        # No company yet: nothing is visible
        pagination = resolve_pagination(
            {"page_index": page_index, "page_size": page_size},
            tracker_settings.default_page_size,
        )
        empty = PaginatedResponse(
            data=(),
            pagination=build_pagination_meta(0, pagination.page_index, pagination.page_size),
        )
        return page_to_response(empty)

    query = ListMaterialRequestsQuery(
        status=status,
        priority=priority,
        search=search,
        page_index=page_index,
        page_size=page_size,
        sort_column=sort_column,
        sort_direction=sort_direction,
    )
    page = await ListMaterialRequestsUseCase(coordinator).execute(query)
    return page_to_response(page)


@requests_router.get("/requests/export")
async def export_material_requests(
    format: ExportFormat = ExportFormat.CSV,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    unit: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: Optional[int] = None,
    sort_column: Optional[str] = None,
    sort_direction: Optional[str] = None,
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Export filtered requests as CSV or Excel"""
    use_case = ExportMaterialRequestsUseCase(
        coordinator,
        clock=utcnow,
        max_rows=tracker_settings.export_max_rows,
        default_rows=tracker_settings.export_default_rows,
    )
    export = await use_case.execute(
        ExportMaterialRequestsQuery(
            format=format,
            status=status,
            priority=priority,
            unit=unit,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            sort_column=sort_column,
            sort_direction=sort_direction,
        )
    )
    logger.info(f"Exported {export.row_count} of {export.total_available} requests as {format.value}")

    return StreamingResponse(
        io.BytesIO(export.content),
        media_type=export.media_type,
        headers={
            "Content-Disposition": f"attachment; filename={export.filename}",
            "X-Total-Count": str(export.total_available),
        },
    )


@requests_router.get("/requests/{request_id}")
async def get_material_request(
    request_id: str,
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Get a single material request"""
    request = await GetMaterialRequestUseCase(coordinator).execute(request_id)
    return material_request_to_response(request)


@requests_router.post("/requests", status_code=201)
async def create_material_request(
    request_data: MaterialRequestCreate,
    current_session: SessionContext = Depends(get_current_session),
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Create a new material request; it always starts as pending"""
    command = CreateMaterialRequestCommand(
        material_name=request_data.material_name,
        quantity=request_data.quantity,
        unit=request_data.unit,
        priority=request_data.priority,
        project_id=request_data.project_id,
        notes=request_data.notes,
    )
    result = await CreateMaterialRequestUseCase(coordinator).execute(command, current_session)
    return material_request_to_response(unwrap(result))


@requests_router.patch("/requests/{request_id}")
async def update_material_request(
    request_id: str,
    update_data: MaterialRequestUpdate,
    current_session: SessionContext = Depends(get_current_session),
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Edit a material request; status changes follow the workflow"""
    command = UpdateMaterialRequestCommand(
        request_id=request_id,
        changes=update_data.model_dump(exclude_unset=True),
    )
    result = await UpdateMaterialRequestUseCase(coordinator).execute(command, current_session)
    return material_request_to_response(unwrap(result))


@requests_router.patch("/requests/{request_id}/status")
async def update_material_request_status(
    request_id: str,
    status_data: StatusUpdate,
    current_session: SessionContext = Depends(get_current_session),
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Move a request to another status"""
    command = UpdateStatusCommand(
        request_id=request_id,
        status=status_data.status,
    )
    result = await UpdateStatusUseCase(coordinator).execute(command, current_session)
    return material_request_to_response(unwrap(result))


@requests_router.delete("/requests/{request_id}")
async def delete_material_request(
    request_id: str,
    current_session: SessionContext = Depends(get_current_session),
    coordinator: MaterialRequestCoordinator = Depends(require_coordinator),
):
    """Delete a request - only the original requester may do this"""
    result = await DeleteMaterialRequestUseCase(coordinator).execute(request_id, current_session)
    unwrap(result)
    return {"message": "Material request deleted", "id": request_id}
