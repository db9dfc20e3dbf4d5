import asyncio
import logging
from uuid import UUID

from sqlalchemy import select

from app.auth import CurrentUser, Role, encode_token
from app.config import settings
from app.database import AsyncSessionLocal, init_db
from app.logging_config import setup_logging
from app.models import (
    Warehouse, TypeComponent, Stock, Component, GuaranteeCase, CaseLine,
    ComponentStatus, CaseLineStatus, WarrantyStatus,
)

logger = logging.getLogger(__name__)

SERVICE_CENTER_ID = UUID("5b1f4d2e-0c7a-4b8e-9f3d-2a6c1e8b7d40")
TECHNICIAN_ID = UUID("8d0e3a4e-2f7c-4c8e-9a51-6f1d2b7c9e10")
COORDINATOR_ID = UUID("c3a9e1f7-6b2d-4e58-8a0c-91d4f2b6e3a7")
COMPANY_COORDINATOR_ID = UUID("e4b8c2a6-9d1f-4f37-b5e0-3c7a9d2f1b84")
VEHICLE_COMPANY_ID = UUID("2d4c6e8a-1b3f-4a5c-9e7d-0f1a2b3c4d5e")
BATTERY_SKU = "BAT-HV-90KWH"


def _log_dev_tokens():
    users = [
        CurrentUser(user_id=TECHNICIAN_ID, role=Role.SERVICE_CENTER_TECHNICIAN, service_center_id=SERVICE_CENTER_ID),
        CurrentUser(user_id=COORDINATOR_ID, role=Role.PARTS_COORDINATOR_SERVICE_CENTER, service_center_id=SERVICE_CENTER_ID),
        CurrentUser(user_id=COMPANY_COORDINATOR_ID, role=Role.PARTS_COORDINATOR_COMPANY, company_id=VEHICLE_COMPANY_ID),
    ]
    for user in users:
        logger.info(f"Dev token for {user.role.value}: {encode_token(user)}")


async def seed_reservations():
    await init_db()
    async with AsyncSessionLocal() as session:
        # Check if already seeded
        existing = await session.execute(select(TypeComponent).where(TypeComponent.sku == BATTERY_SKU))
        if existing.scalar_one_or_none():
            logger.info("Reservation data already seeded.")
            _log_dev_tokens()
            return

        main = Warehouse(name="Main warehouse", service_center_id=SERVICE_CENTER_ID,
                         vehicle_company_id=VEHICLE_COMPANY_ID, priority=1)
        overflow = Warehouse(name="Overflow warehouse", service_center_id=SERVICE_CENTER_ID,
                             vehicle_company_id=VEHICLE_COMPANY_ID, priority=2)
        battery = TypeComponent(name="High-voltage battery 90kWh", sku=BATTERY_SKU)
        display = TypeComponent(name="LCD 12in dashboard", sku="LCD-12-VF34")
        session.add_all([main, overflow, battery, display])
        await session.flush()

        components = [
            Component(type_component_id=battery.type_component_id, warehouse_id=main.warehouse_id,
                      serial_number=f"SN-BAT-{i:04d}", status=ComponentStatus.IN_WAREHOUSE)
            for i in range(3)
        ] + [
            Component(type_component_id=battery.type_component_id, warehouse_id=overflow.warehouse_id,
                      serial_number=f"SN-BAT-{i:04d}", status=ComponentStatus.IN_WAREHOUSE)
            for i in range(3, 5)
        ] + [
            Component(type_component_id=display.type_component_id, warehouse_id=main.warehouse_id,
                      serial_number="SN-LCD-0001", status=ComponentStatus.IN_WAREHOUSE)
        ]
        stocks = [
            Stock(warehouse_id=main.warehouse_id, type_component_id=battery.type_component_id, quantity_in_stock=3),
            Stock(warehouse_id=overflow.warehouse_id, type_component_id=battery.type_component_id, quantity_in_stock=2),
            Stock(warehouse_id=main.warehouse_id, type_component_id=display.type_component_id, quantity_in_stock=1),
        ]
        case = GuaranteeCase(
            vehicle_processing_record_id=UUID("0f6b2c1d-3e4a-4b5c-8d7e-9f0a1b2c3d4e"),
            service_center_id=SERVICE_CENTER_ID,
            lead_tech_id=TECHNICIAN_ID,
        )
        session.add_all(components + stocks + [case])
        await session.flush()

        session.add_all([
            CaseLine(guarantee_case_id=case.guarantee_case_id, type_component_id=battery.type_component_id,
                     quantity=4, warranty_status=WarrantyStatus.ELIGIBLE, status=CaseLineStatus.CUSTOMER_APPROVED,
                     diagnosis_text="Battery pack cells degraded", correction_text="Replace modules",
                     tech_id=TECHNICIAN_ID, repair_tech_id=TECHNICIAN_ID),
            CaseLine(guarantee_case_id=case.guarantee_case_id, type_component_id=display.type_component_id,
                     quantity=1, warranty_status=WarrantyStatus.ELIGIBLE, status=CaseLineStatus.CUSTOMER_APPROVED,
                     diagnosis_text="Dashboard flickers", correction_text="Replace display",
                     tech_id=TECHNICIAN_ID, repair_tech_id=TECHNICIAN_ID),
        ])
        await session.commit()
        logger.info("Reservation data seeded successfully.")

    _log_dev_tokens()


if __name__ == "__main__":
    setup_logging(settings)
    asyncio.run(seed_reservations())
