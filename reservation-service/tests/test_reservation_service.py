import asyncio
from uuid import uuid4

import pytest

from app.errors import BadRequestError, ConflictError, InvalidTransitionError, NotFoundError
from app.models import ReservationStatus, ComponentStatus, CaseLineStatus, WarrantyStatus, StockReservation, Component
from app.schemas import ReservationFilter, SortOrder
from app.service import TransitionResult

from conftest import OTHER_SERVICE_CENTER_ID


# --- pickup ---

async def test_pickup_moves_reservation_and_component(service, world, coordinator, publisher):
    reservation, component, stock, case_line = world.reserved_unit()
    tech_id = uuid4()

    result = await service.pickup(reservation.reservation_id, tech_id, coordinator)

    assert result.reservation.status == ReservationStatus.PICKED_UP
    assert result.reservation.picked_up_by_tech_id == tech_id
    assert result.reservation.picked_up_at is not None
    assert component.status == ComponentStatus.WITH_TECHNICIAN
    assert case_line.status == CaseLineStatus.IN_REPAIR
    # Pickup does not touch the ledger
    assert (stock.quantity_in_stock, stock.quantity_reserved) == (1, 1)

    publisher.assert_awaited_once()
    exchange, routing_key, event = publisher.call_args.args
    assert exchange == "reservation_exchange"
    assert routing_key == "reservation.picked_up"
    assert event["event_type"] == "ReservationPickedUp"
    assert event["reservation_ids"] == [str(reservation.reservation_id)]
    assert event["picked_up_by_tech_id"] == str(tech_id)


async def test_pickup_unknown_reservation_is_not_found(service, world, coordinator, publisher):
    with pytest.raises(NotFoundError):
        await service.pickup(uuid4(), uuid4(), coordinator)
    publisher.assert_not_awaited()


async def test_pickup_outside_caller_service_center_is_not_found(service, world, outsider, store):
    reservation, component, _, _ = world.reserved_unit()

    with pytest.raises(NotFoundError):
        await service.pickup(reservation.reservation_id, uuid4(), outsider)

    assert reservation.status == ReservationStatus.RESERVED
    assert component.status == ComponentStatus.RESERVED


@pytest.mark.parametrize("status", [
    ReservationStatus.PICKED_UP, ReservationStatus.INSTALLED,
    ReservationStatus.RETURNED, ReservationStatus.CANCELLED,
])
async def test_pickup_requires_reserved(service, world, coordinator, publisher, status):
    reservation, component, _, _ = world.reserved_unit()
    reservation.status = status
    before = reservation.picked_up_by_tech_id

    with pytest.raises(InvalidTransitionError):
        await service.pickup(reservation.reservation_id, uuid4(), coordinator)

    assert reservation.status == status
    assert reservation.picked_up_by_tech_id == before
    publisher.assert_not_awaited()


async def test_pickup_rejects_component_in_unexpected_state(service, world, coordinator, store):
    reservation, component, _, _ = world.reserved_unit()
    component.status = ComponentStatus.IN_WAREHOUSE

    with pytest.raises(ConflictError) as exc_info:
        await service.pickup(reservation.reservation_id, uuid4(), coordinator)

    assert reservation.status == ReservationStatus.RESERVED
    assert store.rollbacks == 1
    assert exc_info.value.message == "Component is not in the expected state"
    assert str(component.component_id) not in exc_info.value.message


async def test_concurrent_pickups_have_exactly_one_winner(service, world, coordinator):
    reservation, _, _, _ = world.reserved_unit()
    first, second = uuid4(), uuid4()

    results = await asyncio.gather(
        service.pickup(reservation.reservation_id, first, coordinator),
        service.pickup(reservation.reservation_id, second, coordinator),
        return_exceptions=True,
    )

    wins = [r for r in results if isinstance(r, TransitionResult)]
    losses = [r for r in results if isinstance(r, Exception)]
    assert len(wins) == 1
    assert len(losses) == 1 and isinstance(losses[0], InvalidTransitionError)
    assert reservation.status == ReservationStatus.PICKED_UP
    assert reservation.picked_up_by_tech_id == wins[0].reservation.picked_up_by_tech_id


# --- bulk pickup ---

async def test_pickup_many_moves_all(service, world, coordinator):
    a, comp_a, _, _ = world.reserved_unit("SN-A")
    b, comp_b, _, _ = world.reserved_unit("SN-B")
    tech_id = uuid4()

    picked = await service.pickup_many([a.reservation_id, b.reservation_id], tech_id, coordinator)

    assert {r.reservation_id for r in picked} == {a.reservation_id, b.reservation_id}
    assert a.status == b.status == ReservationStatus.PICKED_UP
    assert comp_a.status == comp_b.status == ComponentStatus.WITH_TECHNICIAN


async def test_pickup_many_is_all_or_nothing(service, world, coordinator, publisher):
    a, comp_a, _, case_a = world.reserved_unit("SN-A")
    b, _, _, _ = world.reserved_unit("SN-B")
    b.status = ReservationStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        await service.pickup_many([a.reservation_id, b.reservation_id], uuid4(), coordinator)

    assert a.status == ReservationStatus.RESERVED
    assert a.picked_up_by_tech_id is None
    assert comp_a.status == ComponentStatus.RESERVED
    assert case_a.status == CaseLineStatus.PARTS_AVAILABLE
    publisher.assert_not_awaited()


async def test_pickup_many_reports_missing_ids(service, world, coordinator):
    a, _, _, _ = world.reserved_unit()
    missing = uuid4()

    with pytest.raises(NotFoundError) as exc_info:
        await service.pickup_many([a.reservation_id, missing], uuid4(), coordinator)

    assert str(missing) in exc_info.value.message
    assert a.status == ReservationStatus.RESERVED


# --- install ---

async def test_install_moves_reservation_component_and_ledger(service, world, coordinator, technician, publisher):
    reservation, component, stock, case_line = world.reserved_unit()
    await service.pickup(reservation.reservation_id, technician.user_id, coordinator)

    result = await service.install(reservation.reservation_id, technician)

    assert result.reservation.status == ReservationStatus.INSTALLED
    assert result.reservation.installed_by_tech_id == technician.user_id
    assert result.component.status == ComponentStatus.INSTALLED
    assert (stock.quantity_in_stock, stock.quantity_reserved, stock.quantity_available) == (0, 0, 0)
    assert case_line.status == CaseLineStatus.COMPLETED
    assert publisher.call_args.args[1] == "reservation.installed"


async def test_install_keeps_case_line_open_while_other_units_are_pending(service, world, coordinator, technician):
    warehouse = world.warehouse()
    stock = world.stock(warehouse, quantity_in_stock=2, quantity_reserved=2)
    case_line = world.case_line(quantity=2, status=CaseLineStatus.PARTS_AVAILABLE)
    first = world.reservation(stock, case_line, world.component(warehouse, "SN-1", ComponentStatus.RESERVED))
    world.reservation(stock, case_line, world.component(warehouse, "SN-2", ComponentStatus.RESERVED))

    await service.pickup(first.reservation_id, technician.user_id, coordinator)
    await service.install(first.reservation_id, technician)

    assert case_line.status == CaseLineStatus.IN_REPAIR


async def test_install_requires_picked_up(service, world, technician):
    reservation, component, stock, _ = world.reserved_unit()

    with pytest.raises(InvalidTransitionError):
        await service.install(reservation.reservation_id, technician)

    assert reservation.status == ReservationStatus.RESERVED
    assert component.status == ComponentStatus.RESERVED
    assert stock.quantity_in_stock == 1


async def test_install_is_atomic(service, world, store, coordinator, technician, publisher):
    reservation, component, stock, case_line = world.reserved_unit()
    await service.pickup(reservation.reservation_id, technician.user_id, coordinator)
    publisher.reset_mock()

    def crash(uow):
        raise RuntimeError("connection lost during commit")

    store.fail_before_commit = crash
    with pytest.raises(RuntimeError):
        await service.install(reservation.reservation_id, technician)

    assert reservation.status == ReservationStatus.PICKED_UP
    assert reservation.installed_at is None
    assert component.status == ComponentStatus.WITH_TECHNICIAN
    assert (stock.quantity_in_stock, stock.quantity_reserved) == (1, 1)
    assert case_line.status == CaseLineStatus.IN_REPAIR
    publisher.assert_not_awaited()


# --- return ---

async def test_return_puts_unit_back_in_stock(service, world, coordinator, technician, publisher):
    reservation, component, stock, case_line = world.reserved_unit("SN-123")
    await service.pickup(reservation.reservation_id, technician.user_id, coordinator)

    result = await service.return_component(reservation.reservation_id, "SN-123", technician)

    assert result.reservation.status == ReservationStatus.RETURNED
    assert result.reservation.returned_at is not None
    assert component.status == ComponentStatus.IN_WAREHOUSE
    assert (stock.quantity_in_stock, stock.quantity_reserved, stock.quantity_available) == (1, 0, 1)
    assert case_line.status == CaseLineStatus.IN_REPAIR
    assert publisher.call_args.args[1] == "reservation.returned"


async def test_return_with_wrong_serial_changes_nothing(service, world, coordinator, technician, publisher):
    reservation, component, stock, _ = world.reserved_unit("SN-999")
    await service.pickup(reservation.reservation_id, uuid4(), coordinator)
    publisher.reset_mock()

    with pytest.raises(BadRequestError):
        await service.return_component(reservation.reservation_id, "SN-123", technician)

    assert reservation.status == ReservationStatus.PICKED_UP
    assert component.status == ComponentStatus.WITH_TECHNICIAN
    assert stock.quantity_reserved == 1
    publisher.assert_not_awaited()


async def test_return_requires_picked_up(service, world, technician):
    reservation, _, stock, _ = world.reserved_unit("SN-1")

    with pytest.raises(InvalidTransitionError):
        await service.return_component(reservation.reservation_id, "SN-1", technician)

    assert reservation.status == ReservationStatus.RESERVED
    assert stock.quantity_reserved == 1


# --- cancel ---

async def test_cancel_releases_reserved_quantity(service, world, coordinator, publisher):
    reservation, component, stock, _ = world.reserved_unit()

    result = await service.cancel(reservation.reservation_id, coordinator)

    assert result.reservation.status == ReservationStatus.CANCELLED
    assert result.reservation.cancelled_at is not None
    assert component.status == ComponentStatus.IN_WAREHOUSE
    assert stock.quantity_available == 1
    assert publisher.call_args.args[1] == "reservation.cancelled"


async def test_cancel_after_pickup_is_rejected(service, world, coordinator):
    reservation, _, _, _ = world.reserved_unit()
    await service.pickup(reservation.reservation_id, uuid4(), coordinator)

    with pytest.raises(InvalidTransitionError):
        await service.cancel(reservation.reservation_id, coordinator)


# --- full scenarios ---

async def test_pickup_install_then_return_is_a_conflict(service, world, coordinator, technician):
    r1, component, _, _ = world.reserved_unit("SN-R1")
    t1 = uuid4()

    picked = await service.pickup(r1.reservation_id, t1, coordinator)
    assert picked.reservation.status == ReservationStatus.PICKED_UP
    assert picked.reservation.picked_up_by_tech_id == t1

    installed = await service.install(r1.reservation_id, technician)
    assert installed.reservation.status == ReservationStatus.INSTALLED
    assert installed.component.status == ComponentStatus.INSTALLED

    with pytest.raises(ConflictError):
        await service.return_component(r1.reservation_id, "SN-R1", technician)
    assert r1.status == ReservationStatus.INSTALLED
    assert component.status == ComponentStatus.INSTALLED


# --- allocation ---

async def test_allocate_draws_from_warehouses_by_priority(service, world, technician, store, publisher):
    overflow = world.warehouse(priority=2)
    main = world.warehouse(priority=1)
    main_stock = world.stock(main, quantity_in_stock=2)
    overflow_stock = world.stock(overflow, quantity_in_stock=2)
    for i in range(2):
        world.component(main, f"SN-M{i}")
        world.component(overflow, f"SN-O{i}")
    case_line = world.case_line(quantity=3)

    reservations = await service.allocate_for_case_line(case_line.case_line_id, technician)

    assert len(reservations) == 3
    assert all(r.status == ReservationStatus.RESERVED for r in reservations)
    assert [r.stock_id for r in reservations].count(main_stock.stock_id) == 2
    assert (main_stock.quantity_reserved, overflow_stock.quantity_reserved) == (2, 1)
    assert len(store.rows(StockReservation)) == 3
    assert case_line.status == CaseLineStatus.PARTS_AVAILABLE
    reserved_components = [c for c in store.rows(Component) if c.status == ComponentStatus.RESERVED]
    assert len(reserved_components) == 3
    assert publisher.call_args.args[1] == "reservation.created"


async def test_allocate_refuses_more_than_available(service, world, technician, store):
    warehouse = world.warehouse()
    stock = world.stock(warehouse, quantity_in_stock=2, quantity_reserved=1)
    world.component(warehouse, "SN-1")
    case_line = world.case_line(quantity=2)

    with pytest.raises(ConflictError, match="Insufficient stock"):
        await service.allocate_for_case_line(case_line.case_line_id, technician)

    assert stock.quantity_reserved == 1
    assert store.rows(StockReservation) == []


async def test_allocate_rolls_back_when_ledger_and_units_disagree(service, world, technician, store):
    warehouse = world.warehouse()
    stock = world.stock(warehouse, quantity_in_stock=2)
    only = world.component(warehouse, "SN-1")
    case_line = world.case_line(quantity=2)

    with pytest.raises(ConflictError):
        await service.allocate_for_case_line(case_line.case_line_id, technician)

    assert only.status == ComponentStatus.IN_WAREHOUSE
    assert stock.quantity_reserved == 0
    assert store.rows(StockReservation) == []


async def test_allocate_requires_eligible_case_line(service, world, technician):
    warehouse = world.warehouse()
    world.stock(warehouse, quantity_in_stock=1)
    world.component(warehouse, "SN-1")
    case_line = world.case_line(warranty_status=WarrantyStatus.INELIGIBLE)

    with pytest.raises(ConflictError, match="not eligible"):
        await service.allocate_for_case_line(case_line.case_line_id, technician)


async def test_allocate_twice_is_rejected(service, world, technician):
    warehouse = world.warehouse()
    world.stock(warehouse, quantity_in_stock=2)
    world.component(warehouse, "SN-1")
    world.component(warehouse, "SN-2")
    case_line = world.case_line(quantity=1, status=CaseLineStatus.READY_FOR_REPAIR)

    await service.allocate_for_case_line(case_line.case_line_id, technician)
    with pytest.raises(ConflictError, match="already has active reservations"):
        await service.allocate_for_case_line(case_line.case_line_id, technician)


async def test_allocate_unknown_case_line_is_not_found(service, world, technician):
    foreign = world.case_line(service_center_id=OTHER_SERVICE_CENTER_ID)

    with pytest.raises(NotFoundError):
        await service.allocate_for_case_line(foreign.case_line_id, technician)


# --- listing ---

def _fifteen_reservations(world):
    warehouse = world.warehouse()
    stock = world.stock(warehouse, quantity_in_stock=15, quantity_reserved=15)
    case_line = world.case_line(quantity=15)
    return [
        world.reservation(stock, case_line, world.component(warehouse, f"SN-{i:02d}", ComponentStatus.RESERVED))
        for i in range(15)
    ]


async def test_list_second_page_holds_the_remainder(service, world, technician):
    _fifteen_reservations(world)

    page = await service.list_reservations(ReservationFilter(page=2, limit=10), technician)

    assert len(page.reservations) == 5
    assert page.pagination.total == 15
    assert page.pagination.total_pages == 2


async def test_list_defaults_to_first_ten_newest_first(service, world, technician):
    created = _fifteen_reservations(world)

    page = await service.list_reservations(ReservationFilter(), technician)

    assert page.pagination.page == 1 and page.pagination.limit == 10
    assert len(page.reservations) == 10
    assert page.reservations[0].reservation_id == created[-1].reservation_id
    assert page.reservations[0].stock is not None


async def test_list_sort_ascending(service, world, technician):
    created = _fifteen_reservations(world)

    page = await service.list_reservations(ReservationFilter(sort_order=SortOrder.ASC, limit=3), technician)

    assert [r.reservation_id for r in page.reservations] == [r.reservation_id for r in created[:3]]


async def test_list_is_scoped_and_filtered(service, world, technician, coordinator):
    mine, _, stock, case_line = world.reserved_unit("SN-MINE")
    world.reserved_unit("SN-FOREIGN", service_center_id=OTHER_SERVICE_CENTER_ID)
    picked, _, _, _ = world.reserved_unit("SN-PICKED")
    await service.pickup(picked.reservation_id, technician.user_id, coordinator)

    reserved = await service.list_reservations(ReservationFilter(), technician)
    assert [r.reservation_id for r in reserved.reservations] == [mine.reservation_id]

    everything = await service.list_reservations(ReservationFilter(status="ALL"), technician)
    assert {r.reservation_id for r in everything.reservations} == {mine.reservation_id, picked.reservation_id}

    by_warehouse = await service.list_reservations(
        ReservationFilter(status="ALL", warehouse_id=stock.warehouse_id), technician
    )
    assert [r.reservation_id for r in by_warehouse.reservations] == [mine.reservation_id]

    by_case_line = await service.list_reservations(
        ReservationFilter(status="ALL", case_line_id=case_line.case_line_id), technician
    )
    assert by_case_line.pagination.total == 1


async def test_list_filters_by_repair_technician(service, world, technician):
    warehouse = world.warehouse()
    stock = world.stock(warehouse, quantity_in_stock=2, quantity_reserved=2)
    assigned = world.case_line(repair_tech_id=technician.user_id)
    other = world.case_line(repair_tech_id=uuid4())
    expected = world.reservation(stock, assigned, world.component(warehouse, "SN-1", ComponentStatus.RESERVED))
    world.reservation(stock, other, world.component(warehouse, "SN-2", ComponentStatus.RESERVED))

    page = await service.list_reservations(ReservationFilter(repair_tech_id=technician.user_id), technician)

    assert [r.reservation_id for r in page.reservations] == [expected.reservation_id]


# --- stock audit ---

async def test_stock_consistency_holds_through_the_lifecycle(service, world, coordinator, technician):
    reservation, _, stock, _ = world.reserved_unit("SN-1")

    assert (await service.check_stock_consistency(stock.stock_id, coordinator)).consistent
    await service.pickup(reservation.reservation_id, technician.user_id, coordinator)
    assert (await service.check_stock_consistency(stock.stock_id, coordinator)).consistent
    await service.return_component(reservation.reservation_id, "SN-1", technician)

    report = await service.check_stock_consistency(stock.stock_id, coordinator)
    assert report.consistent
    assert report.quantity_available == 1
    assert report.active_reserved == 0


async def test_stock_consistency_reports_drift(service, world, coordinator):
    _, _, stock, _ = world.reserved_unit()
    stock.quantity_reserved = 0

    report = await service.check_stock_consistency(stock.stock_id, coordinator)

    assert not report.consistent
    assert report.active_reserved == 1


async def test_stock_consistency_outside_scope_is_not_found(service, world, outsider):
    _, _, stock, _ = world.reserved_unit()

    with pytest.raises(NotFoundError):
        await service.check_stock_consistency(stock.stock_id, outsider)
