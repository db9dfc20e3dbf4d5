from sqlalchemy import (
    Column, String, Integer, DateTime, Enum, ForeignKey, Uuid, Text,
    CheckConstraint, UniqueConstraint,
)
from datetime import datetime, timezone
from uuid import uuid4
import enum

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationStatus(enum.Enum):
    RESERVED = "RESERVED"
    PICKED_UP = "PICKED_UP"
    INSTALLED = "INSTALLED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


# Statuses that still hold stock
ACTIVE_RESERVATION_STATUSES = (ReservationStatus.RESERVED, ReservationStatus.PICKED_UP)


class ComponentStatus(enum.Enum):
    IN_WAREHOUSE = "IN_WAREHOUSE"
    RESERVED = "RESERVED"
    IN_TRANSIT = "IN_TRANSIT"
    WITH_TECHNICIAN = "WITH_TECHNICIAN"
    INSTALLED = "INSTALLED"
    RETURNED = "RETURNED"


# Units still physically counted by their warehouse stock row
ON_HAND_COMPONENT_STATUSES = (
    ComponentStatus.IN_WAREHOUSE,
    ComponentStatus.RESERVED,
    ComponentStatus.WITH_TECHNICIAN,
)


class CaseLineStatus(enum.Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CUSTOMER_APPROVED = "CUSTOMER_APPROVED"
    REJECTED_BY_CUSTOMER = "REJECTED_BY_CUSTOMER"
    PARTS_AVAILABLE = "PARTS_AVAILABLE"
    READY_FOR_REPAIR = "READY_FOR_REPAIR"
    IN_REPAIR = "IN_REPAIR"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class WarrantyStatus(enum.Enum):
    ELIGIBLE = "ELIGIBLE"
    INELIGIBLE = "INELIGIBLE"


class Warehouse(Base):
    __tablename__ = "warehouse"

    warehouse_id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    service_center_id = Column(Uuid, index=True, nullable=True)
    vehicle_company_id = Column(Uuid, index=True, nullable=True)
    # Lower value is drawn from first during allocation
    priority = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class TypeComponent(Base):
    __tablename__ = "type_component"

    type_component_id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), unique=True, nullable=False)


class Stock(Base):
    __tablename__ = "stock"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "type_component_id", name="uq_stock_warehouse_type"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_reserved_non_negative"),
        CheckConstraint("quantity_reserved <= quantity_in_stock", name="ck_stock_reserved_le_in_stock"),
    )

    stock_id = Column(Uuid, primary_key=True, default=uuid4)
    warehouse_id = Column(Uuid, ForeignKey("warehouse.warehouse_id"), index=True, nullable=False)
    type_component_id = Column(Uuid, ForeignKey("type_component.type_component_id"), index=True, nullable=False)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def quantity_available(self) -> int:
        return self.quantity_in_stock - self.quantity_reserved


class Component(Base):
    __tablename__ = "component"

    component_id = Column(Uuid, primary_key=True, default=uuid4)
    type_component_id = Column(Uuid, ForeignKey("type_component.type_component_id"), index=True, nullable=False)
    warehouse_id = Column(Uuid, ForeignKey("warehouse.warehouse_id"), index=True, nullable=True)
    serial_number = Column(String(100), unique=True, nullable=False)
    status = Column(Enum(ComponentStatus, name="component_status"), default=ComponentStatus.IN_WAREHOUSE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class GuaranteeCase(Base):
    __tablename__ = "guarantee_case"

    guarantee_case_id = Column(Uuid, primary_key=True, default=uuid4)
    vehicle_processing_record_id = Column(Uuid, index=True, nullable=False)
    service_center_id = Column(Uuid, index=True, nullable=False)
    lead_tech_id = Column(Uuid, nullable=True)
    status = Column(String(50), nullable=False, default="IN_DIAGNOSIS")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class CaseLine(Base):
    __tablename__ = "case_line"

    case_line_id = Column(Uuid, primary_key=True, default=uuid4)
    guarantee_case_id = Column(Uuid, ForeignKey("guarantee_case.guarantee_case_id"), index=True, nullable=False)
    type_component_id = Column(Uuid, ForeignKey("type_component.type_component_id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    warranty_status = Column(Enum(WarrantyStatus, name="warranty_status"), nullable=False)
    status = Column(Enum(CaseLineStatus, name="case_line_status"), default=CaseLineStatus.DRAFT, nullable=False)
    diagnosis_text = Column(Text, nullable=True)
    correction_text = Column(Text, nullable=True)
    tech_id = Column(Uuid, nullable=True)
    repair_tech_id = Column(Uuid, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class StockReservation(Base):
    __tablename__ = "stock_reservation"
    __table_args__ = (
        CheckConstraint("quantity_reserved > 0", name="ck_reservation_quantity_positive"),
    )

    reservation_id = Column(Uuid, primary_key=True, default=uuid4)
    stock_id = Column(Uuid, ForeignKey("stock.stock_id"), index=True, nullable=False)
    case_line_id = Column(Uuid, ForeignKey("case_line.case_line_id"), index=True, nullable=False)
    component_id = Column(Uuid, ForeignKey("component.component_id"), index=True, nullable=True)
    quantity_reserved = Column(Integer, nullable=False, default=1)
    status = Column(Enum(ReservationStatus, name="reservation_status"), default=ReservationStatus.RESERVED, nullable=False, index=True)
    picked_up_by_tech_id = Column(Uuid, nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    installed_by_tech_id = Column(Uuid, nullable=True)
    installed_at = Column(DateTime(timezone=True), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
