from typing import Any, Dict, Iterable, Mapping, Optional

from app.requests.domain.errors import AppError, ErrorCode
from app.requests.domain.models import (
    MaterialRequestPriority,
    MaterialRequestStatus,
    MaterialUnit,
    NewMaterialRequest,
)

MAX_MATERIAL_NAME_LENGTH = 200
MAX_QUANTITY = 1_000_000
MAX_NOTES_LENGTH = 1000

# Fields a company member may edit. Tenant, requester and timestamps are not.
EDITABLE_FIELDS = frozenset(
    {"material_name", "quantity", "unit", "priority", "status", "notes", "project_id"}
)


def _invalid(code: ErrorCode, field: str, message: str) -> AppError:
    return AppError(code, message, user_message=message, context={"field": field})


def _check_choice(field: str, value: Any, choices: Iterable[str], label: str) -> str:
    if value not in set(choices):
        raise _invalid(
            ErrorCode.VALIDATION_INVALID_FORMAT,
            field,
            f"Please select a valid {label}",
        )
    return value


def validate_material_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _invalid(
            ErrorCode.VALIDATION_REQUIRED_FIELD, "material_name", "Material name is required"
        )
    if len(value) > MAX_MATERIAL_NAME_LENGTH:
        raise _invalid(
            ErrorCode.VALIDATION_FAILED,
            "material_name",
            f"Material name must be less than {MAX_MATERIAL_NAME_LENGTH} characters",
        )
    return value


def validate_quantity(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _invalid(
            ErrorCode.VALIDATION_INVALID_FORMAT, "quantity", "Quantity must be a number"
        )
    if value <= 0:
        raise _invalid(
            ErrorCode.VALIDATION_FAILED, "quantity", "Quantity must be a positive number"
        )
    if value > MAX_QUANTITY:
        raise _invalid(ErrorCode.VALIDATION_FAILED, "quantity", "Quantity is too large")
    return value


def validate_notes(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(ErrorCode.VALIDATION_INVALID_FORMAT, "notes", "Notes must be text")
    if len(value) > MAX_NOTES_LENGTH:
        raise _invalid(
            ErrorCode.VALIDATION_FAILED,
            "notes",
            f"Notes must be less than {MAX_NOTES_LENGTH} characters",
        )
    return value


def validate_unit(value: Any) -> str:
    return _check_choice("unit", value, (unit.value for unit in MaterialUnit), "unit")


def validate_priority(value: Any) -> str:
    return _check_choice(
        "priority",
        value,
        (priority.value for priority in MaterialRequestPriority),
        "priority level",
    )


def validate_status(value: Any) -> str:
    return _check_choice(
        "status", value, (status.value for status in MaterialRequestStatus), "status"
    )


def validate_new_request(request: NewMaterialRequest) -> NewMaterialRequest:
    validate_material_name(request.material_name)
    validate_quantity(request.quantity)
    validate_unit(request.unit)
    validate_priority(request.priority)
    validate_notes(request.notes)
    if not request.requested_by:
        raise _invalid(
            ErrorCode.VALIDATION_REQUIRED_FIELD, "requested_by", "Requester is required"
        )
    return request


_FIELD_VALIDATORS = {
    "material_name": validate_material_name,
    "quantity": validate_quantity,
    "unit": validate_unit,
    "priority": validate_priority,
    "status": validate_status,
    "notes": validate_notes,
}


def validate_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Check an edit and return it as a plain dict.

    Unknown or read-only fields are rejected rather than silently dropped.
    """
    if not patch:
        raise AppError(
            ErrorCode.VALIDATION_FAILED,
            "Empty update",
            user_message="There are no changes to save.",
        )
    cleaned: Dict[str, Any] = {}
    for field, value in patch.items():
        if field not in EDITABLE_FIELDS:
            raise _invalid(
                ErrorCode.VALIDATION_FAILED, field, f"Field '{field}' cannot be changed"
            )
        validator = _FIELD_VALIDATORS.get(field)
        cleaned[field] = validator(value) if validator else value
    return cleaned
