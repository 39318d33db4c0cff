import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Tuple


class MaterialRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"


class MaterialRequestPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MaterialUnit(str, enum.Enum):
    KG = "kg"
    M = "m"
    PIECES = "pieces"
    LITERS = "liters"
    TONS = "tons"
    CUBIC_METERS = "cubic_meters"
    SQUARE_METERS = "square_meters"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


UNKNOWN_REQUESTER = "Unknown"


@dataclass(frozen=True)
class RequesterProfile:
    id: str
    email: str
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or UNKNOWN_REQUESTER


@dataclass(frozen=True)
class MaterialRequest:
    id: str
    material_name: str
    quantity: float
    unit: str
    status: str
    priority: str
    requested_by: str
    requested_at: datetime
    company_id: str
    created_at: datetime
    updated_at: datetime
    project_id: Optional[str] = None
    notes: Optional[str] = None
    requester: Optional[RequesterProfile] = None

    @property
    def requester_name(self) -> str:
        if self.requester is None:
            return UNKNOWN_REQUESTER
        return self.requester.display_name


@dataclass(frozen=True)
class NewMaterialRequest:
    material_name: str
    quantity: float
    unit: str
    priority: str
    requested_by: str
    project_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class MaterialRequestFilters:
    status: Optional[str] = None
    priority: Optional[str] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class PaginationParams:
    page_index: int = 0
    page_size: int = 10


@dataclass(frozen=True)
class SortingParams:
    column: str = "requested_at"
    direction: str = SortDirection.DESC.value


@dataclass(frozen=True)
class QueryDescriptor:
    filters: MaterialRequestFilters = field(default_factory=MaterialRequestFilters)
    pagination: PaginationParams = field(default_factory=PaginationParams)
    sorting: SortingParams = field(default_factory=SortingParams)

    @property
    def offset(self) -> int:
        return self.pagination.page_index * self.pagination.page_size

    @property
    def limit(self) -> int:
        return self.pagination.page_size


@dataclass(frozen=True)
class PaginationMeta:
    total_count: int
    total_pages: int
    current_page: int
    page_size: int
    has_next_page: bool
    has_previous_page: bool


@dataclass(frozen=True)
class PaginatedResponse:
    data: Tuple[MaterialRequest, ...]
    pagination: PaginationMeta


@dataclass(frozen=True)
class ExportFilters:
    status: Optional[str] = None
    priority: Optional[str] = None
    unit: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
