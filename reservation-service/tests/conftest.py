import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

from app.auth import CurrentUser, Role
from app.models import (
    Warehouse, TypeComponent, Stock, Component, GuaranteeCase, CaseLine, StockReservation,
    ReservationStatus, ComponentStatus, CaseLineStatus, WarrantyStatus,
)
from app.service import ReservationService
from fakes import FakeStore, FakeUnitOfWork

SERVICE_CENTER_ID = UUID("5b1f4d2e-0c7a-4b8e-9f3d-2a6c1e8b7d40")
OTHER_SERVICE_CENTER_ID = UUID("9e8d7c6b-5a49-4382-b1f0-e9d8c7b6a594")
COMPANY_ID = UUID("2d4c6e8a-1b3f-4a5c-9e7d-0f1a2b3c4d5e")
OTHER_COMPANY_ID = UUID("7a6b5c4d-3e2f-4109-8a7b-6c5d4e3f2a10")
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class World:
    """Builds warehouse / stock / component / case-line / reservation rows in a FakeStore."""

    def __init__(self, store: FakeStore):
        self.store = store
        self.type_component = store.add(TypeComponent(type_component_id=uuid4(), name="HV battery", sku="BAT-HV-90KWH"))
        self._tick = 0

    def _now(self):
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def warehouse(self, service_center_id=SERVICE_CENTER_ID, priority=1, vehicle_company_id=COMPANY_ID):
        return self.store.add(Warehouse(
            warehouse_id=uuid4(), name=f"Warehouse {priority}",
            service_center_id=service_center_id, vehicle_company_id=vehicle_company_id, priority=priority,
        ))

    def stock(self, warehouse, quantity_in_stock=0, quantity_reserved=0):
        return self.store.add(Stock(
            stock_id=uuid4(), warehouse_id=warehouse.warehouse_id,
            type_component_id=self.type_component.type_component_id,
            quantity_in_stock=quantity_in_stock, quantity_reserved=quantity_reserved,
        ))

    def component(self, warehouse, serial_number, status=ComponentStatus.IN_WAREHOUSE):
        return self.store.add(Component(
            component_id=uuid4(), type_component_id=self.type_component.type_component_id,
            warehouse_id=warehouse.warehouse_id, serial_number=serial_number, status=status,
            created_at=self._now(),
        ))

    def case_line(self, service_center_id=SERVICE_CENTER_ID, quantity=1,
                  status=CaseLineStatus.CUSTOMER_APPROVED, warranty_status=WarrantyStatus.ELIGIBLE,
                  repair_tech_id=None, vehicle_processing_record_id=None):
        case = self.store.add(GuaranteeCase(
            guarantee_case_id=uuid4(),
            vehicle_processing_record_id=vehicle_processing_record_id or uuid4(),
            service_center_id=service_center_id,
        ))
        return self.store.add(CaseLine(
            case_line_id=uuid4(), guarantee_case_id=case.guarantee_case_id,
            type_component_id=self.type_component.type_component_id, quantity=quantity,
            warranty_status=warranty_status, status=status, repair_tech_id=repair_tech_id,
        ))

    def reservation(self, stock, case_line, component=None, status=ReservationStatus.RESERVED):
        created = self._now()
        return self.store.add(StockReservation(
            reservation_id=uuid4(), stock_id=stock.stock_id, case_line_id=case_line.case_line_id,
            component_id=component.component_id if component else None, quantity_reserved=1,
            status=status, created_at=created, updated_at=created,
        ))

    def reserved_unit(self, serial_number="SN-999", service_center_id=SERVICE_CENTER_ID,
                      case_line_status=CaseLineStatus.PARTS_AVAILABLE, vehicle_company_id=COMPANY_ID):
        """One warehouse holding one unit that is reserved for a fresh case line."""
        warehouse = self.warehouse(service_center_id, vehicle_company_id=vehicle_company_id)
        stock = self.stock(warehouse, quantity_in_stock=1, quantity_reserved=1)
        component = self.component(warehouse, serial_number, ComponentStatus.RESERVED)
        case_line = self.case_line(service_center_id, status=case_line_status)
        reservation = self.reservation(stock, case_line, component)
        return reservation, component, stock, case_line


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def world(store):
    return World(store)


@pytest.fixture
def publisher():
    return AsyncMock()


@pytest.fixture
def service(store, publisher):
    return ReservationService(lambda: FakeUnitOfWork(store), publisher=publisher, exchange="reservation_exchange")


@pytest.fixture
def technician():
    return CurrentUser(user_id=uuid4(), role=Role.SERVICE_CENTER_TECHNICIAN, service_center_id=SERVICE_CENTER_ID)


@pytest.fixture
def coordinator():
    return CurrentUser(user_id=uuid4(), role=Role.PARTS_COORDINATOR_SERVICE_CENTER, service_center_id=SERVICE_CENTER_ID)


@pytest.fixture
def outsider():
    return CurrentUser(user_id=uuid4(), role=Role.SERVICE_CENTER_TECHNICIAN, service_center_id=OTHER_SERVICE_CENTER_ID)


@pytest.fixture
def company_coordinator():
    return CurrentUser(user_id=uuid4(), role=Role.PARTS_COORDINATOR_COMPANY, company_id=COMPANY_ID)


@pytest.fixture
def emv_admin():
    return CurrentUser(user_id=uuid4(), role=Role.EMV_ADMIN)
