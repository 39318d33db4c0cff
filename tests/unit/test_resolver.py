from datetime import date

import pytest

from app.requests.application.resolver import (
    build_pagination_meta,
    clamp_export_limit,
    next_page,
    resolve,
    resolve_export_filters,
)
from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import MaterialRequestFilters, PaginationParams


def test_equal_inputs_give_equal_descriptors():
    first = resolve({"status": "pending", "search": "Steel"}, {"page_size": 20}, None)
    second = resolve(
        MaterialRequestFilters(status="PENDING", search="  steel "),
        PaginationParams(page_index=0, page_size=20),
        {"column": "requested_at", "direction": "DESC"},
    )
    assert first == second
    assert hash(first) == hash(second)


def test_search_is_lower_cased_without_case_folding():
    # ILIKE compares lower-case forms, so "ß" must not become "ss"
    assert resolve({"search": " Straße "}).filters.search == "straße"


def test_defaults():
    descriptor = resolve()
    assert descriptor.filters == MaterialRequestFilters()
    assert descriptor.pagination == PaginationParams(page_index=0, page_size=10)
    assert descriptor.sorting.column == "requested_at"
    assert descriptor.sorting.direction == "desc"


def test_all_and_blank_mean_no_filter():
    descriptor = resolve({"status": "all", "priority": "", "search": "   "})
    assert descriptor.filters == MaterialRequestFilters()


def test_page_size_and_index_are_clamped():
    assert resolve(pagination={"page_size": 1}).pagination.page_size == 5
    assert resolve(pagination={"page_size": 500}).pagination.page_size == 100
    assert resolve(pagination={"page_index": -3}).pagination.page_index == 0


def test_unknown_filter_value_is_rejected():
    with pytest.raises(AppError) as exc:
        resolve({"status": "shipped"})
    assert exc.value.code == ErrorCode.VALIDATION_INVALID_FORMAT
    assert exc.value.context["field"] == "status"


def test_unknown_sort_column_is_rejected():
    with pytest.raises(AppError) as exc:
        resolve(sorting={"column": "company_id"})
    assert exc.value.context["field"] == "sort_column"


def test_pagination_meta_on_last_page():
    meta = build_pagination_meta(95, 9, 10)
    assert meta.total_pages == 10
    assert meta.has_next_page is False
    assert meta.has_previous_page is True


def test_pagination_meta_for_empty_result():
    meta = build_pagination_meta(0, 0, 10)
    assert meta.total_pages == 0
    assert not meta.has_next_page
    assert not meta.has_previous_page


def test_next_page_keeps_filters_and_sorting():
    descriptor = resolve({"priority": "high"}, {"page_index": 2}, {"column": "quantity"})
    upcoming = next_page(descriptor)
    assert upcoming.pagination.page_index == 3
    assert upcoming.filters == descriptor.filters
    assert upcoming.sorting == descriptor.sorting


def test_export_filters():
    filters = resolve_export_filters(
        {"status": "all", "unit": "tons", "date_from": "2026-01-01", "date_to": date(2026, 1, 31)}
    )
    assert filters.status is None
    assert filters.unit == "tons"
    assert filters.date_from == date(2026, 1, 1)
    assert filters.date_to == date(2026, 1, 31)


def test_export_date_range_must_be_ordered():
    with pytest.raises(AppError) as exc:
        resolve_export_filters({"date_from": "2026-02-01", "date_to": "2026-01-01"})
    assert exc.value.code == ErrorCode.VALIDATION_FAILED


def test_export_limit_is_clamped():
    assert clamp_export_limit(None, 1000) == 1000
    assert clamp_export_limit(0, 1000) == 1
    assert clamp_export_limit(5000, 1000) == 1000
    assert clamp_export_limit(250, 1000) == 250
