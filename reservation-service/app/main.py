import uvicorn
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Depends, Query
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Capability, CurrentUser, require_capability
from app.config import settings
from app.database import AsyncSessionLocal, get_session
from app.errors import BadRequestError, register_exception_handlers
from app.logging_config import setup_logging
from app.messaging import setup_rabbitmq, close_rabbitmq
from app.schemas import (
    Envelope, ReservationFilter, ReservationPage, ReservationTransition, ReservationList,
    ReservationRead, PickupRequest, BulkPickupRequest, ReturnRequest, StockConsistencyReport,
)
from app.service import ReservationService
from app.unit_of_work import SqlAlchemyUnitOfWork

setup_logging(settings)

app = FastAPI(title="Reservation Service")
register_exception_handlers(app)

API_PREFIX = "/api/v1"


@app.on_event("startup")
async def startup_event():
    await setup_rabbitmq()


@app.on_event("shutdown")
async def shutdown_event():
    await close_rabbitmq()


def get_reservation_service() -> ReservationService:
    return ReservationService(lambda: SqlAlchemyUnitOfWork(AsyncSessionLocal))


def get_reservation_filter(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    type_component_id: Optional[str] = Query(None, alias="typeComponentId"),
    case_line_id: Optional[str] = Query(None, alias="caseLineId"),
    guarantee_case_id: Optional[str] = Query(None, alias="guaranteeCaseId"),
    vehicle_processing_record_id: Optional[str] = Query(None, alias="vehicleProcessingRecordId"),
    repair_tech_id: Optional[str] = Query(None, alias="repairTechId"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
) -> ReservationFilter:
    raw = {
        "page": page,
        "limit": limit,
        "status": status,
        "warehouse_id": warehouse_id,
        "type_component_id": type_component_id,
        "case_line_id": case_line_id,
        "guarantee_case_id": guarantee_case_id,
        "vehicle_processing_record_id": vehicle_processing_record_id,
        "repair_tech_id": repair_tech_id,
        "sort_by": sort_by,
        "sort_order": sort_order,
    }
    try:
        # Omitted params fall back to the model defaults
        return ReservationFilter.model_validate({k: v for k, v in raw.items() if v is not None})
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise BadRequestError(f"Invalid query parameters: {fields}")


@app.get("/health")
async def health(db: AsyncSession = Depends(get_session)):
    await db.execute(text("SELECT 1"))
    return {"status": "ok", "service": settings.service_name}


@app.get(f"{API_PREFIX}/reservations", response_model=Envelope[ReservationPage])
async def list_reservations(
    filters: ReservationFilter = Depends(get_reservation_filter),
    user: CurrentUser = Depends(require_capability(Capability.VIEW_RESERVATIONS)),
    service: ReservationService = Depends(get_reservation_service),
):
    page = await service.list_reservations(filters, user)
    return Envelope(data=page)


@app.patch(f"{API_PREFIX}/reservations/pickup", response_model=Envelope[ReservationList])
async def pickup_reservations(
    body: BulkPickupRequest,
    user: CurrentUser = Depends(require_capability(Capability.PICKUP_COMPONENT)),
    service: ReservationService = Depends(get_reservation_service),
):
    reservations = await service.pickup_many(body.reservation_ids, body.picked_up_by_tech_id, user)
    return Envelope(data=ReservationList(reservations=[ReservationRead.model_validate(r) for r in reservations]))


@app.patch(f"{API_PREFIX}/reservations/{{reservation_id}}/pickup", response_model=Envelope[ReservationTransition])
async def pickup_reservation(
    reservation_id: UUID,
    body: PickupRequest,
    user: CurrentUser = Depends(require_capability(Capability.PICKUP_COMPONENT)),
    service: ReservationService = Depends(get_reservation_service),
):
    result = await service.pickup(reservation_id, body.picked_up_by_tech_id, user)
    return Envelope(data=ReservationTransition.model_validate(result))


@app.patch(f"{API_PREFIX}/reservations/{{reservation_id}}/installComponent", response_model=Envelope[ReservationTransition])
async def install_component(
    reservation_id: UUID,
    user: CurrentUser = Depends(require_capability(Capability.INSTALL_COMPONENT)),
    service: ReservationService = Depends(get_reservation_service),
):
    # Installer is always the caller
    result = await service.install(reservation_id, user)
    return Envelope(data=ReservationTransition.model_validate(result))


@app.patch(f"{API_PREFIX}/reservations/{{reservation_id}}/return", response_model=Envelope[ReservationTransition])
async def return_component(
    reservation_id: UUID,
    body: ReturnRequest,
    user: CurrentUser = Depends(require_capability(Capability.RETURN_COMPONENT)),
    service: ReservationService = Depends(get_reservation_service),
):
    result = await service.return_component(reservation_id, body.serial_number, user)
    return Envelope(data=ReservationTransition.model_validate(result))


@app.patch(f"{API_PREFIX}/reservations/{{reservation_id}}/cancel", response_model=Envelope[ReservationTransition])
async def cancel_reservation(
    reservation_id: UUID,
    user: CurrentUser = Depends(require_capability(Capability.CANCEL_RESERVATION)),
    service: ReservationService = Depends(get_reservation_service),
):
    result = await service.cancel(reservation_id, user)
    return Envelope(data=ReservationTransition.model_validate(result))


@app.post(f"{API_PREFIX}/case-lines/{{case_line_id}}/reservations", response_model=Envelope[ReservationList], status_code=201)
async def allocate_case_line(
    case_line_id: UUID,
    user: CurrentUser = Depends(require_capability(Capability.ALLOCATE_STOCK)),
    service: ReservationService = Depends(get_reservation_service),
):
    reservations = await service.allocate_for_case_line(case_line_id, user)
    return Envelope(data=ReservationList(reservations=[ReservationRead.model_validate(r) for r in reservations]))


@app.get(f"{API_PREFIX}/stocks/{{stock_id}}/consistency", response_model=Envelope[StockConsistencyReport])
async def stock_consistency(
    stock_id: UUID,
    user: CurrentUser = Depends(require_capability(Capability.AUDIT_STOCK)),
    service: ReservationService = Depends(get_reservation_service),
):
    report = await service.check_stock_consistency(stock_id, user)
    return Envelope(data=report)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
