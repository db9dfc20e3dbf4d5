"""
Reservation lifecycle service.

Every operation runs inside one unit of work: rows are locked in a fixed
order (reservation, component, stock, case line), all preconditions are
checked, and only then is anything mutated. A failed precondition raises
before the first write, and any exception rolls the whole transaction back.
Events for the notification layer go out only after commit.
"""
import logging
from dataclasses import dataclass
from math import ceil
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from app.auth import CurrentUser
from app.config import settings
from app.errors import BadRequestError, ConflictError, InvalidTransitionError, NotFoundError
from app.messaging import publish_event
from app.models import (
    StockReservation, Component, Stock, CaseLine,
    ReservationStatus, ComponentStatus, CaseLineStatus, WarrantyStatus, utcnow,
)
from app.schemas import (
    ReservationFilter, ReservationPage, ReservationRead, StockRead, Pagination,
    StockConsistencyReport,
)
from app.state_machine import COMPONENT_STATUS_FOR, ensure_transition

logger = logging.getLogger(__name__)

# Case-line statuses from which a pickup starts the repair
_REPAIRABLE_CASE_LINE_STATUSES = (
    CaseLineStatus.CUSTOMER_APPROVED,
    CaseLineStatus.PARTS_AVAILABLE,
    CaseLineStatus.READY_FOR_REPAIR,
)

# Case-line statuses that may still receive stock
_ALLOCATABLE_CASE_LINE_STATUSES = (
    CaseLineStatus.DRAFT,
    CaseLineStatus.PENDING_APPROVAL,
    CaseLineStatus.CUSTOMER_APPROVED,
    CaseLineStatus.READY_FOR_REPAIR,
)


@dataclass
class TransitionResult:
    reservation: StockReservation
    component: Optional[Component] = None
    case_line: Optional[CaseLine] = None


class ReservationService:

    def __init__(self, uow_factory: Callable, publisher=publish_event, exchange: str = None):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.exchange = exchange or settings.reservation_exchange

    # Queries

    async def list_reservations(self, filters: ReservationFilter, user: CurrentUser) -> ReservationPage:
        async with self.uow_factory() as uow:
            rows, total = await uow.reservations.list_reservations(
                filters, user.service_center_id, user.company_scope
            )

        reservations = [
            ReservationRead.model_validate(reservation).model_copy(
                update={"stock": StockRead.model_validate(stock)}
            )
            for reservation, stock in rows
        ]
        return ReservationPage(
            reservations=reservations,
            pagination=Pagination(
                total=total,
                page=filters.page,
                limit=filters.limit,
                total_pages=ceil(total / filters.limit) if total else 0,
            ),
        )

    async def check_stock_consistency(self, stock_id: UUID, user: CurrentUser) -> StockConsistencyReport:
        async with self.uow_factory() as uow:
            stock = await uow.stocks.get(stock_id, user.service_center_id, user.company_scope)
            if stock is None:
                raise NotFoundError(f"Stock {stock_id} not found")
            active_reserved = await uow.reservations.sum_active_for_stock(stock.stock_id)
            on_hand = await uow.components.count_on_hand(stock.warehouse_id, stock.type_component_id)

        consistent = stock.quantity_reserved == active_reserved and stock.quantity_in_stock == on_hand
        if not consistent:
            logger.warning(
                f"Stock {stock_id} drifted: in_stock={stock.quantity_in_stock}/{on_hand} "
                f"reserved={stock.quantity_reserved}/{active_reserved}"
            )
        return StockConsistencyReport(
            stock_id=stock.stock_id,
            quantity_in_stock=stock.quantity_in_stock,
            quantity_reserved=stock.quantity_reserved,
            quantity_available=stock.quantity_available,
            active_reserved=active_reserved,
            on_hand_components=on_hand,
            consistent=consistent,
        )

    # Lifecycle

    async def pickup(self, reservation_id: UUID, picked_up_by_tech_id: UUID, user: CurrentUser) -> TransitionResult:
        async with self.uow_factory() as uow:
            reservation = await self._lock_reservation(uow, reservation_id, user)
            self._check_transition(reservation, ReservationStatus.PICKED_UP)
            component = await self._lock_component(uow, reservation)
            case_line = await uow.case_lines.get_for_update(reservation.case_line_id)

            self._apply_pickup(reservation, component, case_line, picked_up_by_tech_id)

        logger.info(f"Reservation {reservation_id} picked up by technician {picked_up_by_tech_id}")
        await self._publish("reservation.picked_up", "ReservationPickedUp", [reservation], user, {
            "case_line_id": reservation.case_line_id,
            "picked_up_by_tech_id": picked_up_by_tech_id,
        })
        return TransitionResult(reservation, component, case_line)

    async def pickup_many(
        self, reservation_ids: Sequence[UUID], picked_up_by_tech_id: UUID, user: CurrentUser
    ) -> List[StockReservation]:
        """Pick up several reservations for one technician; either all move or none do."""
        async with self.uow_factory() as uow:
            reservations = await uow.reservations.get_many_for_update(reservation_ids, user.service_center_id)
            found = {r.reservation_id for r in reservations}
            missing = [str(rid) for rid in reservation_ids if rid not in found]
            if missing:
                raise NotFoundError(f"Reservations not found: {', '.join(missing)}")

            for reservation in reservations:
                self._check_transition(reservation, ReservationStatus.PICKED_UP)
            components = [await self._lock_component(uow, r) for r in reservations]

            case_lines = {}
            for case_line_id in sorted({r.case_line_id for r in reservations}):
                case_lines[case_line_id] = await uow.case_lines.get_for_update(case_line_id)

            for reservation, component in zip(reservations, components):
                self._apply_pickup(reservation, component, case_lines.get(reservation.case_line_id), picked_up_by_tech_id)

        logger.info(f"{len(reservations)} reservations picked up by technician {picked_up_by_tech_id}")
        await self._publish("reservation.picked_up", "ReservationPickedUp", reservations, user, {
            "picked_up_by_tech_id": picked_up_by_tech_id,
        })
        return reservations

    async def install(self, reservation_id: UUID, user: CurrentUser) -> TransitionResult:
        async with self.uow_factory() as uow:
            reservation = await self._lock_reservation(uow, reservation_id, user)
            self._check_transition(reservation, ReservationStatus.INSTALLED)
            component = await self._lock_component(uow, reservation)
            stock = await self._lock_stock(uow, reservation)
            case_line = await uow.case_lines.get_for_update(reservation.case_line_id)

            quantity = reservation.quantity_reserved
            if stock.quantity_in_stock < quantity:
                logger.warning(f"Stock {stock.stock_id} has {stock.quantity_in_stock} units, cannot install {quantity}")
                raise ConflictError("No physical units left in stock to install")

            now = utcnow()
            reservation.status = ReservationStatus.INSTALLED
            reservation.installed_by_tech_id = user.user_id
            reservation.installed_at = now
            reservation.updated_at = now
            component.status = ComponentStatus.INSTALLED
            component.updated_at = now
            # The unit leaves the warehouse and the claim on it ends: available is unchanged
            stock.quantity_in_stock -= quantity
            stock.quantity_reserved -= quantity
            stock.updated_at = now

            await uow.flush()
            if case_line is not None and case_line.status == CaseLineStatus.IN_REPAIR:
                remaining = await uow.reservations.count_active_for_case_line(case_line.case_line_id)
                if remaining == 0:
                    case_line.status = CaseLineStatus.COMPLETED
                    case_line.updated_at = now

        logger.info(f"Component {component.serial_number} installed for reservation {reservation_id}")
        await self._publish("reservation.installed", "ComponentInstalled", [reservation], user, {
            "case_line_id": reservation.case_line_id,
            "installed_by_tech_id": user.user_id,
            "component_id": component.component_id,
        })
        return TransitionResult(reservation, component, case_line)

    async def return_component(self, reservation_id: UUID, serial_number: str, user: CurrentUser) -> TransitionResult:
        async with self.uow_factory() as uow:
            reservation = await self._lock_reservation(uow, reservation_id, user)
            self._check_transition(reservation, ReservationStatus.RETURNED)
            component = await self._lock_component(uow, reservation)
            if component.serial_number != serial_number:
                logger.warning(f"Return of reservation {reservation_id} rejected: serial mismatch")
                raise BadRequestError("Serial number does not match the picked-up component")
            stock = await self._lock_stock(uow, reservation)

            now = utcnow()
            reservation.status = ReservationStatus.RETURNED
            reservation.returned_at = now
            reservation.updated_at = now
            component.status = ComponentStatus.IN_WAREHOUSE
            component.updated_at = now
            self._release(stock, reservation, now)

        logger.info(f"Component {serial_number} returned to stock from reservation {reservation_id}")
        await self._publish("reservation.returned", "ComponentReturned", [reservation], user, {
            "case_line_id": reservation.case_line_id,
            "component_id": component.component_id,
        })
        return TransitionResult(reservation, component)

    async def cancel(self, reservation_id: UUID, user: CurrentUser) -> TransitionResult:
        async with self.uow_factory() as uow:
            reservation = await self._lock_reservation(uow, reservation_id, user)
            self._check_transition(reservation, ReservationStatus.CANCELLED)
            component = await self._lock_component(uow, reservation)
            stock = await self._lock_stock(uow, reservation)

            now = utcnow()
            reservation.status = ReservationStatus.CANCELLED
            reservation.cancelled_at = now
            reservation.updated_at = now
            component.status = ComponentStatus.IN_WAREHOUSE
            component.updated_at = now
            self._release(stock, reservation, now)

        logger.info(f"Reservation {reservation_id} cancelled by {user.user_id}")
        await self._publish("reservation.cancelled", "ReservationCancelled", [reservation], user, {
            "case_line_id": reservation.case_line_id,
        })
        return TransitionResult(reservation, component)

    async def allocate_for_case_line(self, case_line_id: UUID, user: CurrentUser) -> List[StockReservation]:
        """
        Reserve warehouse units for a case line.

        Warehouses of the caller's service center are drawn from in priority
        order; each unit becomes its own RESERVED reservation with a concrete
        component attached.
        """
        async with self.uow_factory() as uow:
            case_line = await uow.case_lines.get_for_update(case_line_id, user.service_center_id)
            if case_line is None:
                raise NotFoundError(f"Case line {case_line_id} not found")
            if case_line.type_component_id is None:
                raise BadRequestError("Case line does not reference a component type")
            if case_line.warranty_status != WarrantyStatus.ELIGIBLE:
                raise ConflictError("Case line is not eligible for warranty")
            if case_line.status not in _ALLOCATABLE_CASE_LINE_STATUSES:
                raise ConflictError(f"Case line in status {case_line.status.value} cannot receive stock")
            if await uow.reservations.count_active_for_case_line(case_line_id) > 0:
                raise ConflictError("Case line already has active reservations")

            needed = case_line.quantity
            stocks = await uow.stocks.list_for_allocation(case_line.type_component_id, user.service_center_id)
            if not stocks:
                raise ConflictError("No available stock for component")
            if sum(max(s.quantity_available, 0) for s in stocks) < needed:
                raise ConflictError("Insufficient stock available for component")

            now = utcnow()
            reservations = []
            for stock in stocks:
                if needed == 0:
                    break
                take = min(stock.quantity_available, needed)
                if take <= 0:
                    continue
                components = await uow.components.claim_in_warehouse(stock.warehouse_id, stock.type_component_id, take)
                if len(components) < take:
                    logger.warning(
                        f"Stock {stock.stock_id} lists {take} available units but only {len(components)} are in the warehouse"
                    )
                    raise ConflictError("Stock ledger and warehouse units disagree")
                for component in components:
                    component.status = ComponentStatus.RESERVED
                    component.updated_at = now
                    reservation = StockReservation(
                        reservation_id=uuid4(),
                        stock_id=stock.stock_id,
                        case_line_id=case_line.case_line_id,
                        component_id=component.component_id,
                        quantity_reserved=1,
                        status=ReservationStatus.RESERVED,
                        created_at=now,
                        updated_at=now,
                    )
                    uow.reservations.add(reservation)
                    reservations.append(reservation)
                stock.quantity_reserved += take
                stock.updated_at = now
                needed -= take

            if case_line.status == CaseLineStatus.CUSTOMER_APPROVED:
                case_line.status = CaseLineStatus.PARTS_AVAILABLE
                case_line.updated_at = now

        logger.info(f"Allocated {len(reservations)} units for case line {case_line_id}")
        await self._publish("reservation.created", "ReservationCreated", reservations, user, {
            "case_line_id": case_line_id,
        })
        return reservations

    # Helpers

    async def _lock_reservation(self, uow, reservation_id: UUID, user: CurrentUser) -> StockReservation:
        reservation = await uow.reservations.get_for_update(reservation_id, user.service_center_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    async def _lock_component(self, uow, reservation: StockReservation) -> Component:
        if reservation.component_id is None:
            logger.warning(f"Reservation {reservation.reservation_id} has no component assigned")
            raise ConflictError("Reservation has no component assigned")
        component = await uow.components.get_for_update(reservation.component_id)
        if component is None:
            logger.warning(f"Component {reservation.component_id} of reservation {reservation.reservation_id} is missing")
            raise ConflictError("Reserved component no longer exists")
        expected = COMPONENT_STATUS_FOR[reservation.status]
        if component.status != expected:
            logger.warning(
                f"Component {component.component_id} is {component.status.value}, expected {expected.value} "
                f"for reservation {reservation.reservation_id}"
            )
            raise ConflictError("Component is not in the expected state")
        return component

    async def _lock_stock(self, uow, reservation: StockReservation) -> Stock:
        stock = await uow.stocks.get_for_update(reservation.stock_id)
        if stock is None:
            logger.warning(f"Stock {reservation.stock_id} of reservation {reservation.reservation_id} is missing")
            raise ConflictError("Stock record for this reservation no longer exists")
        if stock.quantity_reserved < reservation.quantity_reserved:
            logger.warning(
                f"Stock {stock.stock_id} reserves {stock.quantity_reserved}, "
                f"reservation {reservation.reservation_id} holds {reservation.quantity_reserved}"
            )
            raise ConflictError("Stock ledger and reservation disagree")
        return stock

    @staticmethod
    def _check_transition(reservation: StockReservation, target: ReservationStatus) -> None:
        try:
            ensure_transition(reservation.status, target)
        except InvalidTransitionError:
            logger.warning(
                f"Rejected transition {reservation.status.value} -> {target.value} "
                f"for reservation {reservation.reservation_id}"
            )
            raise

    @staticmethod
    def _apply_pickup(reservation, component, case_line, picked_up_by_tech_id: UUID) -> None:
        now = utcnow()
        reservation.status = ReservationStatus.PICKED_UP
        reservation.picked_up_by_tech_id = picked_up_by_tech_id
        reservation.picked_up_at = now
        reservation.updated_at = now
        component.status = ComponentStatus.WITH_TECHNICIAN
        component.updated_at = now
        if case_line is not None and case_line.status in _REPAIRABLE_CASE_LINE_STATUSES:
            case_line.status = CaseLineStatus.IN_REPAIR
            case_line.updated_at = now

    @staticmethod
    def _release(stock: Stock, reservation: StockReservation, now) -> None:
        stock.quantity_reserved -= reservation.quantity_reserved
        stock.updated_at = now

    async def _publish(self, routing_key: str, event_type: str, reservations, user: CurrentUser, extra: dict):
        event = {
            "event_id": str(uuid4()),
            "event_type": event_type,
            "timestamp": utcnow().isoformat(),
            "reservation_ids": [str(r.reservation_id) for r in reservations],
            "service_center_id": str(user.service_center_id) if user.service_center_id else None,
            "actor_id": str(user.user_id),
            **{key: str(value) if value is not None else None for key, value in extra.items()},
        }
        await self.publisher(self.exchange, routing_key, event)
