from typing import Any, Dict, Optional

from app.requests.domain.models import (
    MaterialRequest,
    PaginatedResponse,
    PaginationMeta,
    RequesterProfile,
)


def requester_to_response(requester: Optional[RequesterProfile]) -> Optional[Dict[str, Any]]:
    if requester is None:
        return None
    return {
        "id": requester.id,
        "email": requester.email,
        "full_name": requester.full_name,
    }


def material_request_to_response(request: MaterialRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "project_id": request.project_id,
        "material_name": request.material_name,
        "quantity": request.quantity,
        "unit": request.unit,
        "status": request.status,
        "priority": request.priority,
        "requested_by": request.requested_by,
        "requested_at": request.requested_at.isoformat() if request.requested_at else None,
        "notes": request.notes,
        "company_id": request.company_id,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "updated_at": request.updated_at.isoformat() if request.updated_at else None,
        "requester": requester_to_response(request.requester),
        "requester_name": request.requester_name,
    }


def pagination_to_response(meta: PaginationMeta) -> Dict[str, Any]:
    return {
        "total_count": meta.total_count,
        "total_pages": meta.total_pages,
        "current_page": meta.current_page,
        "page_size": meta.page_size,
        "has_next_page": meta.has_next_page,
        "has_previous_page": meta.has_previous_page,
    }


def page_to_response(page: PaginatedResponse) -> Dict[str, Any]:
    return {
        "data": [material_request_to_response(request) for request in page.data],
        "pagination": pagination_to_response(page.pagination),
    }
