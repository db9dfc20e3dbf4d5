from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    StockReservation, Stock, Warehouse, Component, CaseLine, GuaranteeCase,
    ComponentStatus, ACTIVE_RESERVATION_STATUSES, ON_HAND_COMPONENT_STATUSES,
)
from app.schemas import ReservationFilter, SortField, SortOrder

_SORT_COLUMNS = {
    SortField.CREATED_AT: StockReservation.created_at,
    SortField.UPDATED_AT: StockReservation.updated_at,
}


def _warehouse_scoped(stmt, service_center_id: Optional[UUID], company_id: Optional[UUID]):
    # Expects Stock in the FROM clause; no scope means every warehouse
    if service_center_id is None and company_id is None:
        return stmt
    stmt = stmt.join(Warehouse, Warehouse.warehouse_id == Stock.warehouse_id)
    if service_center_id is not None:
        stmt = stmt.where(Warehouse.service_center_id == service_center_id)
    if company_id is not None:
        stmt = stmt.where(Warehouse.vehicle_company_id == company_id)
    return stmt


class ReservationRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    def _scoped(self, stmt, service_center_id: Optional[UUID], company_id: Optional[UUID] = None):
        stmt = stmt.join(Stock, Stock.stock_id == StockReservation.stock_id)
        return _warehouse_scoped(stmt, service_center_id, company_id)

    def _filtered(self, stmt, filters: ReservationFilter):
        if filters.status is not None:
            stmt = stmt.where(StockReservation.status == filters.status)
        if filters.warehouse_id is not None:
            stmt = stmt.where(Stock.warehouse_id == filters.warehouse_id)
        if filters.type_component_id is not None:
            stmt = stmt.where(Stock.type_component_id == filters.type_component_id)
        if filters.case_line_id is not None:
            stmt = stmt.where(StockReservation.case_line_id == filters.case_line_id)

        needs_case_line = (
            filters.guarantee_case_id is not None
            or filters.vehicle_processing_record_id is not None
            or filters.repair_tech_id is not None
        )
        if needs_case_line:
            stmt = stmt.join(CaseLine, CaseLine.case_line_id == StockReservation.case_line_id)
            if filters.repair_tech_id is not None:
                stmt = stmt.where(CaseLine.repair_tech_id == filters.repair_tech_id)
            if filters.guarantee_case_id is not None:
                stmt = stmt.where(CaseLine.guarantee_case_id == filters.guarantee_case_id)
            if filters.vehicle_processing_record_id is not None:
                stmt = stmt.join(
                    GuaranteeCase, GuaranteeCase.guarantee_case_id == CaseLine.guarantee_case_id
                ).where(GuaranteeCase.vehicle_processing_record_id == filters.vehicle_processing_record_id)
        return stmt

    async def list_reservations(
        self, filters: ReservationFilter, service_center_id: Optional[UUID], company_id: Optional[UUID] = None
    ) -> Tuple[List[Tuple[StockReservation, Stock]], int]:
        count_stmt = self._filtered(
            self._scoped(select(func.count(StockReservation.reservation_id)), service_center_id, company_id), filters
        )
        total = (await self.session.execute(count_stmt)).scalar_one()

        column = _SORT_COLUMNS[filters.sort_by]
        order = column.asc() if filters.sort_order == SortOrder.ASC else column.desc()
        stmt = self._filtered(self._scoped(select(StockReservation, Stock), service_center_id, company_id), filters)
        stmt = (
            stmt.order_by(order, StockReservation.reservation_id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()], total

    async def get_for_update(
        self, reservation_id: UUID, service_center_id: Optional[UUID]
    ) -> Optional[StockReservation]:
        stmt = self._scoped(select(StockReservation), service_center_id).where(
            StockReservation.reservation_id == reservation_id
        ).with_for_update(of=StockReservation)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many_for_update(
        self, reservation_ids: Sequence[UUID], service_center_id: Optional[UUID]
    ) -> List[StockReservation]:
        # Fixed lock order so concurrent bulk pickups cannot deadlock
        stmt = (
            self._scoped(select(StockReservation), service_center_id)
            .where(StockReservation.reservation_id.in_(list(reservation_ids)))
            .order_by(StockReservation.reservation_id)
            .with_for_update(of=StockReservation)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_active_for_case_line(self, case_line_id: UUID) -> int:
        stmt = select(func.count(StockReservation.reservation_id)).where(
            StockReservation.case_line_id == case_line_id,
            StockReservation.status.in_(ACTIVE_RESERVATION_STATUSES),
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def sum_active_for_stock(self, stock_id: UUID) -> int:
        stmt = select(func.coalesce(func.sum(StockReservation.quantity_reserved), 0)).where(
            StockReservation.stock_id == stock_id,
            StockReservation.status.in_(ACTIVE_RESERVATION_STATUSES),
        )
        return (await self.session.execute(stmt)).scalar_one()

    def add(self, reservation: StockReservation) -> None:
        self.session.add(reservation)


class ComponentRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_update(self, component_id: UUID) -> Optional[Component]:
        stmt = select(Component).where(Component.component_id == component_id).with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def claim_in_warehouse(self, warehouse_id: UUID, type_component_id: UUID, limit: int) -> List[Component]:
        # Units locked by another allocation are skipped instead of waited on
        stmt = (
            select(Component)
            .where(
                Component.warehouse_id == warehouse_id,
                Component.type_component_id == type_component_id,
                Component.status == ComponentStatus.IN_WAREHOUSE,
            )
            .order_by(Component.created_at, Component.component_id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def count_on_hand(self, warehouse_id: UUID, type_component_id: UUID) -> int:
        stmt = select(func.count(Component.component_id)).where(
            Component.warehouse_id == warehouse_id,
            Component.type_component_id == type_component_id,
            Component.status.in_(ON_HAND_COMPONENT_STATUSES),
        )
        return (await self.session.execute(stmt)).scalar_one()


class StockRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(
        self, stock_id: UUID, service_center_id: Optional[UUID] = None, company_id: Optional[UUID] = None
    ) -> Optional[Stock]:
        stmt = _warehouse_scoped(select(Stock), service_center_id, company_id).where(Stock.stock_id == stock_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_for_update(self, stock_id: UUID) -> Optional[Stock]:
        stmt = select(Stock).where(Stock.stock_id == stock_id).with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def list_for_allocation(self, type_component_id: UUID, service_center_id: UUID) -> List[Stock]:
        stmt = (
            select(Stock)
            .join(Warehouse, Warehouse.warehouse_id == Stock.warehouse_id)
            .where(
                Stock.type_component_id == type_component_id,
                Warehouse.service_center_id == service_center_id,
            )
            .order_by(Warehouse.priority, Stock.stock_id)
            .with_for_update(of=Stock)
        )
        return list((await self.session.execute(stmt)).scalars().all())


class CaseLineRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_update(
        self, case_line_id: UUID, service_center_id: Optional[UUID] = None
    ) -> Optional[CaseLine]:
        stmt = select(CaseLine).where(CaseLine.case_line_id == case_line_id)
        if service_center_id is not None:
            stmt = stmt.join(
                GuaranteeCase, GuaranteeCase.guarantee_case_id == CaseLine.guarantee_case_id
            ).where(GuaranteeCase.service_center_id == service_center_id)
        stmt = stmt.with_for_update(of=CaseLine)
        return (await self.session.execute(stmt)).scalar_one_or_none()
