import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from sqlalchemy import Select, asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.requests.application.ports import MaterialRequestStore
from app.requests.domain.errors import AppError, ErrorCode, InvalidTransition
from app.requests.domain.models import (
    ExportFilters,
    MaterialRequest,
    MaterialRequestFilters,
    MaterialRequestStatus,
    NewMaterialRequest,
    QueryDescriptor,
    RequesterProfile,
    SortDirection,
    SortingParams,
)
from app.requests.infrastructure.error_parsers import parse_error, parse_store_error
from database import MaterialRequest as MaterialRequestModel, Profile, Project
from database.models import new_id, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SORT_COLUMNS = {
    "requested_at": MaterialRequestModel.requested_at,
    "created_at": MaterialRequestModel.created_at,
    "updated_at": MaterialRequestModel.updated_at,
    "material_name": MaterialRequestModel.material_name,
    "quantity": MaterialRequestModel.quantity,
    "status": MaterialRequestModel.status,
    "priority": MaterialRequestModel.priority,
    "unit": MaterialRequestModel.unit,
}


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _day_start(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _require_company(company_id: str) -> None:
    if not company_id:
        raise AppError(
            ErrorCode.AUTH_UNAUTHORIZED,
            "company_id is required for every store call",
            user_message="Your profile is not linked to a company yet.",
        )


def _not_found(request_id: str, operation: str) -> AppError:
    return parse_store_error(
        "PGRST116",
        f"Material request {request_id} not found",
        operation,
        context={"request_id": request_id},
    )


class SqlAlchemyMaterialRequestStore(MaterialRequestStore):
    """Material request table access, always filtered by company."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        strict_requester_lookup: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._session_maker = session_maker
        self._strict_requester_lookup = strict_requester_lookup
        self._clock = clock

    # ----------------------------------------------------------- statements

    @staticmethod
    def _scoped(query: Select, company_id: str) -> Select:
        return query.where(MaterialRequestModel.company_id == company_id)

    @staticmethod
    def _apply_filters(query: Select, filters: MaterialRequestFilters) -> Select:
        if filters.status:
            query = query.where(MaterialRequestModel.status == filters.status)
        if filters.priority:
            query = query.where(MaterialRequestModel.priority == filters.priority)
        if filters.search:
            pattern = f"%{escape_like(filters.search)}%"
            query = query.where(
                MaterialRequestModel.material_name.ilike(pattern, escape="\\")
            )
        return query

    @staticmethod
    def _apply_export_filters(query: Select, filters: ExportFilters) -> Select:
        if filters.status:
            query = query.where(MaterialRequestModel.status == filters.status)
        if filters.priority:
            query = query.where(MaterialRequestModel.priority == filters.priority)
        if filters.unit:
            query = query.where(MaterialRequestModel.unit == filters.unit)
        if filters.date_from:
            query = query.where(
                MaterialRequestModel.requested_at >= _day_start(filters.date_from)
            )
        if filters.date_to:
            # date_to is inclusive of the whole day
            query = query.where(
                MaterialRequestModel.requested_at
                < _day_start(filters.date_to + timedelta(days=1))
            )
        return query

    @staticmethod
    def _apply_sorting(query: Select, sorting: SortingParams) -> Select:
        column = SORT_COLUMNS.get(sorting.column, MaterialRequestModel.requested_at)
        order = asc if sorting.direction == SortDirection.ASC.value else desc
        # id as tie-breaker keeps pages stable
        return query.order_by(order(column), order(MaterialRequestModel.id))

    # -------------------------------------------------------------- helpers

    async def _load_requesters(
        self, session: AsyncSession, requester_ids: Iterable[str]
    ) -> Dict[str, RequesterProfile]:
        ids = sorted({requester_id for requester_id in requester_ids if requester_id})
        if not ids:
            return {}
        try:
            result = await session.execute(select(Profile).where(Profile.id.in_(ids)))
        except SQLAlchemyError as exc:
            if self._strict_requester_lookup:
                raise parse_error(exc, "fetch", {"lookup": "requesters"}) from exc
            logger.warning(f"Requester lookup failed, names will show as unknown: {exc}")
            return {}
        return {
            profile.id: RequesterProfile(
                id=profile.id, email=profile.email, full_name=profile.full_name
            )
            for profile in result.scalars().all()
        }

    @staticmethod
    def _to_domain(
        row: MaterialRequestModel, requesters: Mapping[str, RequesterProfile]
    ) -> MaterialRequest:
        return MaterialRequest(
            id=row.id,
            material_name=row.material_name,
            quantity=row.quantity,
            unit=row.unit,
            status=row.status,
            priority=row.priority,
            requested_by=row.requested_by,
            requested_at=row.requested_at,
            company_id=row.company_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
            project_id=row.project_id,
            notes=row.notes,
            requester=requesters.get(row.requested_by),
        )

    async def _resolved(
        self, session: AsyncSession, rows: Sequence[MaterialRequestModel]
    ) -> Tuple[MaterialRequest, ...]:
        requesters = await self._load_requesters(session, (row.requested_by for row in rows))
        return tuple(self._to_domain(row, requesters) for row in rows)

    async def _find(
        self,
        session: AsyncSession,
        company_id: str,
        request_id: str,
        for_update: bool = False,
    ) -> Optional[MaterialRequestModel]:
        query = self._scoped(
            select(MaterialRequestModel).where(MaterialRequestModel.id == request_id),
            company_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def _check_project(
        session: AsyncSession, company_id: str, project_id: Optional[str]
    ) -> None:
        """The foreign key accepts any company's project; only our own may be linked."""
        if project_id is None:
            return
        query = select(Project.id).where(
            Project.id == project_id, Project.company_id == company_id
        )
        if (await session.execute(query)).scalar_one_or_none() is None:
            raise AppError(
                ErrorCode.DB_CONSTRAINT_VIOLATION,
                f"Project {project_id} does not belong to company {company_id}",
                user_message="The selected project does not belong to your company.",
                context={"field": "project_id", "project_id": project_id},
            )

    # ----------------------------------------------------------- operations

    async def list_requests(
        self, company_id: str, descriptor: QueryDescriptor
    ) -> Tuple[Sequence[MaterialRequest], int]:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                base = self._apply_filters(
                    self._scoped(select(MaterialRequestModel), company_id),
                    descriptor.filters,
                )
                count_query = self._apply_filters(
                    self._scoped(
                        select(func.count()).select_from(MaterialRequestModel), company_id
                    ),
                    descriptor.filters,
                )
                total_count = (await session.execute(count_query)).scalar() or 0

                query = self._apply_sorting(base, descriptor.sorting)
                query = query.offset(descriptor.offset).limit(descriptor.limit)
                rows = (await session.execute(query)).scalars().all()
                return await self._resolved(session, rows), total_count
        except SQLAlchemyError as exc:
            raise parse_error(exc, "fetch", {"company_id": company_id}) from exc

    async def get_request(self, company_id: str, request_id: str) -> MaterialRequest:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                row = await self._find(session, company_id, request_id)
                if row is None:
                    raise _not_found(request_id, "fetch")
                return (await self._resolved(session, [row]))[0]
        except SQLAlchemyError as exc:
            raise parse_error(exc, "fetch", {"request_id": request_id}) from exc

    async def insert_request(
        self, company_id: str, request: NewMaterialRequest
    ) -> MaterialRequest:
        _require_company(company_id)
        now = self._clock()
        row = MaterialRequestModel(
            id=new_id(),
            project_id=request.project_id,
            material_name=request.material_name,
            quantity=request.quantity,
            unit=request.unit,
            status=MaterialRequestStatus.PENDING.value,
            priority=request.priority,
            requested_by=request.requested_by,
            requested_at=now,
            notes=request.notes,
            company_id=company_id,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_maker() as session:
                await self._check_project(session, company_id, request.project_id)
                session.add(row)
                await session.commit()
                created = (await self._resolved(session, [row]))[0]
        except SQLAlchemyError as exc:
            raise parse_error(exc, "insert", {"company_id": company_id}) from exc
        logger.info(f"Material request created: {created.id} ({created.material_name})")
        return created

    async def update_request(
        self,
        company_id: str,
        request_id: str,
        patch: Mapping[str, Any],
        expected_status: Optional[str] = None,
    ) -> MaterialRequest:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                # Lock the row so the status check and the write see the same value
                row = await self._find(
                    session, company_id, request_id, for_update=expected_status is not None
                )
                if row is None:
                    raise _not_found(request_id, "update")
                if expected_status is not None and row.status != expected_status:
                    raise InvalidTransition(row.status, patch.get("status", row.status))
                if "project_id" in patch:
                    await self._check_project(session, company_id, patch["project_id"])
                for name, value in patch.items():
                    setattr(row, name, value)
                row.updated_at = self._clock()
                await session.commit()
                return (await self._resolved(session, [row]))[0]
        except SQLAlchemyError as exc:
            raise parse_error(exc, "update", {"request_id": request_id}) from exc

    async def delete_request(
        self, company_id: str, request_id: str, requester_id: str
    ) -> None:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                row = await self._find(session, company_id, request_id)
                if row is None:
                    raise _not_found(request_id, "delete")
                if row.requested_by != requester_id:
                    raise parse_store_error(
                        "42501",
                        f"User {requester_id} did not request {request_id}",
                        "delete",
                        context={"request_id": request_id},
                    )
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise parse_error(exc, "delete", {"request_id": request_id}) from exc
        logger.info(f"Material request deleted: {request_id}")

    async def export_requests(
        self,
        company_id: str,
        filters: ExportFilters,
        limit: int,
        sorting: SortingParams,
    ) -> Sequence[MaterialRequest]:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                query = self._apply_export_filters(
                    self._scoped(select(MaterialRequestModel), company_id), filters
                )
                query = self._apply_sorting(query, sorting).limit(limit)
                rows = (await session.execute(query)).scalars().all()
                return await self._resolved(session, rows)
        except SQLAlchemyError as exc:
            raise parse_error(exc, "fetch", {"company_id": company_id}) from exc

    async def count_requests(self, company_id: str, filters: ExportFilters) -> int:
        _require_company(company_id)
        try:
            async with self._session_maker() as session:
                query = self._apply_export_filters(
                    self._scoped(
                        select(func.count()).select_from(MaterialRequestModel), company_id
                    ),
                    filters,
                )
                return (await session.execute(query)).scalar() or 0
        except SQLAlchemyError as exc:
            raise parse_error(exc, "fetch", {"company_id": company_id}) from exc
