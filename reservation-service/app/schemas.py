import enum
from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models import ReservationStatus, ComponentStatus, CaseLineStatus, WarrantyStatus


class SortField(str, enum.Enum):
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortOrder(str, enum.Enum):
    ASC = "ASC"
    DESC = "DESC"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ReservationFilter(CamelModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    status: Optional[ReservationStatus] = ReservationStatus.RESERVED
    warehouse_id: Optional[UUID] = None
    type_component_id: Optional[UUID] = None
    case_line_id: Optional[UUID] = None
    guarantee_case_id: Optional[UUID] = None
    vehicle_processing_record_id: Optional[UUID] = None
    repair_tech_id: Optional[UUID] = None
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC

    @field_validator("status", mode="before")
    @classmethod
    def all_statuses(cls, v):
        # "ALL" lifts the status filter
        if isinstance(v, str) and v.upper() == "ALL":
            return None
        return v


class PickupRequest(CamelModel):
    picked_up_by_tech_id: UUID = Field(..., examples=["8d0e3a4e-2f7c-4c8e-9a51-6f1d2b7c9e10"])


class BulkPickupRequest(CamelModel):
    reservation_ids: List[UUID] = Field(..., min_length=1, max_length=100)
    picked_up_by_tech_id: UUID

    @field_validator("reservation_ids")
    @classmethod
    def unique_ids(cls, v: List[UUID]) -> List[UUID]:
        if len(set(v)) != len(v):
            raise ValueError("reservationIds must not contain duplicates")
        return v


class ReturnRequest(CamelModel):
    serial_number: str = Field(..., min_length=1, examples=["SN-123"])

    @field_validator("serial_number")
    @classmethod
    def strip_serial(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("serialNumber must not be blank")
        return v


class StockRead(CamelModel):
    stock_id: UUID
    warehouse_id: UUID
    type_component_id: UUID
    quantity_in_stock: int
    quantity_reserved: int
    quantity_available: int


class ComponentRead(CamelModel):
    component_id: UUID
    type_component_id: UUID
    warehouse_id: Optional[UUID] = None
    serial_number: str
    status: ComponentStatus


class CaseLineRead(CamelModel):
    case_line_id: UUID
    guarantee_case_id: UUID
    type_component_id: Optional[UUID] = None
    quantity: int
    warranty_status: WarrantyStatus
    status: CaseLineStatus
    repair_tech_id: Optional[UUID] = None


class ReservationRead(CamelModel):
    reservation_id: UUID
    stock_id: UUID
    case_line_id: UUID
    component_id: Optional[UUID] = None
    quantity_reserved: int
    status: ReservationStatus
    picked_up_by_tech_id: Optional[UUID] = None
    picked_up_at: Optional[datetime] = None
    installed_by_tech_id: Optional[UUID] = None
    installed_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    stock: Optional[StockRead] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class ReservationPage(CamelModel):
    reservations: List[ReservationRead]
    pagination: Pagination


class ReservationTransition(CamelModel):
    reservation: ReservationRead
    component: Optional[ComponentRead] = None
    case_line: Optional[CaseLineRead] = None


class ReservationList(CamelModel):
    reservations: List[ReservationRead]


class StockConsistencyReport(CamelModel):
    stock_id: UUID
    quantity_in_stock: int
    quantity_reserved: int
    quantity_available: int
    active_reserved: int
    on_hand_components: int
    consistent: bool


T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    status: str = "success"
    data: T
