"""Turn list-view filter/sort/page state into cache keys and store queries.

``resolve`` must map equal inputs to equal descriptors: the descriptor is the
cache key, so two spellings of the same query share one entry.
"""
import math
from dataclasses import asdict, is_dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Union

from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import (
    ExportFilters,
    MaterialRequestFilters,
    MaterialRequestPriority,
    MaterialRequestStatus,
    MaterialUnit,
    PaginationMeta,
    PaginationParams,
    QueryDescriptor,
    SortDirection,
    SortingParams,
)

ALL = "all"
DEFAULT_PAGE_SIZE = 10
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100
DEFAULT_SORT_COLUMN = "requested_at"
DEFAULT_SORT_DIRECTION = SortDirection.DESC.value
SORTABLE_COLUMNS = frozenset(
    {
        "requested_at",
        "created_at",
        "updated_at",
        "material_name",
        "quantity",
        "status",
        "priority",
        "unit",
    }
)

Params = Union[None, Mapping[str, Any], Any]


def _as_dict(value: Params) -> dict:
    if value is None:
        return {}
    if is_dataclass(value):
        return asdict(value)
    return dict(value)


def _choice(field: str, value: Any, choices: Iterable[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value.value if hasattr(value, "value") else value).strip().lower()
    if not text or text == ALL:
        return None
    if text not in set(choices):
        raise AppError(
            ErrorCode.VALIDATION_INVALID_FORMAT,
            f"Unknown {field} filter: {value!r}",
            context={"field": field},
        )
    return text


def normalize_search(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text.lower() or None


def resolve_filters(filters: Params) -> MaterialRequestFilters:
    raw = _as_dict(filters)
    return MaterialRequestFilters(
        status=_choice("status", raw.get("status"), (s.value for s in MaterialRequestStatus)),
        priority=_choice(
            "priority", raw.get("priority"), (p.value for p in MaterialRequestPriority)
        ),
        search=normalize_search(raw.get("search")),
    )


def resolve_pagination(pagination: Params, default_page_size: int = DEFAULT_PAGE_SIZE) -> PaginationParams:
    raw = _as_dict(pagination)
    page_index = raw.get("page_index")
    page_size = raw.get("page_size")
    page_index = max(0, int(page_index)) if page_index is not None else 0
    page_size = int(page_size) if page_size is not None else default_page_size
    page_size = max(MIN_PAGE_SIZE, min(page_size, MAX_PAGE_SIZE))
    return PaginationParams(page_index=page_index, page_size=page_size)


def resolve_sorting(sorting: Params) -> SortingParams:
    raw = _as_dict(sorting)
    column = raw.get("column") or DEFAULT_SORT_COLUMN
    direction = str(raw.get("direction") or DEFAULT_SORT_DIRECTION).strip().lower()
    if column not in SORTABLE_COLUMNS:
        raise AppError(
            ErrorCode.VALIDATION_INVALID_FORMAT,
            f"Cannot sort by {column!r}",
            context={"field": "sort_column"},
        )
    if direction not in (SortDirection.ASC.value, SortDirection.DESC.value):
        raise AppError(
            ErrorCode.VALIDATION_INVALID_FORMAT,
            f"Unknown sort direction {direction!r}",
            context={"field": "sort_direction"},
        )
    return SortingParams(column=column, direction=direction)


def resolve(
    filters: Params = None,
    pagination: Params = None,
    sorting: Params = None,
    default_page_size: int = DEFAULT_PAGE_SIZE,
) -> QueryDescriptor:
    return QueryDescriptor(
        filters=resolve_filters(filters),
        pagination=resolve_pagination(pagination, default_page_size),
        sorting=resolve_sorting(sorting),
    )


def next_page(descriptor: QueryDescriptor) -> QueryDescriptor:
    return replace(
        descriptor,
        pagination=replace(
            descriptor.pagination, page_index=descriptor.pagination.page_index + 1
        ),
    )


def build_pagination_meta(total_count: int, page_index: int, page_size: int) -> PaginationMeta:
    total_pages = math.ceil(total_count / page_size) if page_size > 0 else 0
    return PaginationMeta(
        total_count=total_count,
        total_pages=total_pages,
        current_page=page_index,
        page_size=page_size,
        has_next_page=page_index < total_pages - 1,
        has_previous_page=page_index > 0,
    )


def _as_date(field: str, value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise AppError(
            ErrorCode.VALIDATION_INVALID_FORMAT,
            f"Invalid date for {field}: {value!r}",
            original_error=exc,
            context={"field": field},
        ) from exc


def resolve_export_filters(filters: Params) -> ExportFilters:
    raw = _as_dict(filters)
    date_from = _as_date("date_from", raw.get("date_from"))
    date_to = _as_date("date_to", raw.get("date_to"))
    if date_from and date_to and date_from > date_to:
        raise AppError(
            ErrorCode.VALIDATION_FAILED,
            "date_from is after date_to",
            user_message="The start date must be before the end date.",
            context={"field": "date_from"},
        )
    return ExportFilters(
        status=_choice("status", raw.get("status"), (s.value for s in MaterialRequestStatus)),
        priority=_choice(
            "priority", raw.get("priority"), (p.value for p in MaterialRequestPriority)
        ),
        unit=_choice("unit", raw.get("unit"), (u.value for u in MaterialUnit)),
        date_from=date_from,
        date_to=date_to,
    )


def clamp_export_limit(limit: Optional[int], max_rows: int) -> int:
    if limit is None:
        return max_rows
    return max(1, min(int(limit), max_rows))
