"""initial reservation schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 09:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

reservation_status = sa.Enum("RESERVED", "PICKED_UP", "INSTALLED", "RETURNED", "CANCELLED", name="reservation_status")
component_status = sa.Enum(
    "IN_WAREHOUSE", "RESERVED", "IN_TRANSIT", "WITH_TECHNICIAN", "INSTALLED", "RETURNED", name="component_status"
)
case_line_status = sa.Enum(
    "DRAFT", "PENDING_APPROVAL", "CUSTOMER_APPROVED", "REJECTED_BY_CUSTOMER", "PARTS_AVAILABLE",
    "READY_FOR_REPAIR", "IN_REPAIR", "COMPLETED", "CANCELLED", name="case_line_status",
)
warranty_status = sa.Enum("ELIGIBLE", "INELIGIBLE", name="warranty_status")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "warehouse",
        sa.Column("warehouse_id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("service_center_id", sa.Uuid(), nullable=True),
        sa.Column("vehicle_company_id", sa.Uuid(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_warehouse_service_center_id", "warehouse", ["service_center_id"])
    op.create_index("ix_warehouse_vehicle_company_id", "warehouse", ["vehicle_company_id"])

    op.create_table(
        "type_component",
        sa.Column("type_component_id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
    )

    op.create_table(
        "stock",
        sa.Column("stock_id", sa.Uuid(), primary_key=True),
        sa.Column("warehouse_id", sa.Uuid(), sa.ForeignKey("warehouse.warehouse_id"), nullable=False),
        sa.Column("type_component_id", sa.Uuid(), sa.ForeignKey("type_component.type_component_id"), nullable=False),
        sa.Column("quantity_in_stock", sa.Integer(), nullable=False),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("warehouse_id", "type_component_id", name="uq_stock_warehouse_type"),
        sa.CheckConstraint("quantity_reserved >= 0", name="ck_stock_reserved_non_negative"),
        sa.CheckConstraint("quantity_reserved <= quantity_in_stock", name="ck_stock_reserved_le_in_stock"),
    )
    op.create_index("ix_stock_warehouse_id", "stock", ["warehouse_id"])
    op.create_index("ix_stock_type_component_id", "stock", ["type_component_id"])

    op.create_table(
        "component",
        sa.Column("component_id", sa.Uuid(), primary_key=True),
        sa.Column("type_component_id", sa.Uuid(), sa.ForeignKey("type_component.type_component_id"), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), sa.ForeignKey("warehouse.warehouse_id"), nullable=True),
        sa.Column("serial_number", sa.String(100), nullable=False, unique=True),
        sa.Column("status", component_status, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_component_type_component_id", "component", ["type_component_id"])
    op.create_index("ix_component_warehouse_id", "component", ["warehouse_id"])

    op.create_table(
        "guarantee_case",
        sa.Column("guarantee_case_id", sa.Uuid(), primary_key=True),
        sa.Column("vehicle_processing_record_id", sa.Uuid(), nullable=False),
        sa.Column("service_center_id", sa.Uuid(), nullable=False),
        sa.Column("lead_tech_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(50), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_guarantee_case_vehicle_processing_record_id", "guarantee_case", ["vehicle_processing_record_id"])
    op.create_index("ix_guarantee_case_service_center_id", "guarantee_case", ["service_center_id"])

    op.create_table(
        "case_line",
        sa.Column("case_line_id", sa.Uuid(), primary_key=True),
        sa.Column("guarantee_case_id", sa.Uuid(), sa.ForeignKey("guarantee_case.guarantee_case_id"), nullable=False),
        sa.Column("type_component_id", sa.Uuid(), sa.ForeignKey("type_component.type_component_id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("warranty_status", warranty_status, nullable=False),
        sa.Column("status", case_line_status, nullable=False),
        sa.Column("diagnosis_text", sa.Text(), nullable=True),
        sa.Column("correction_text", sa.Text(), nullable=True),
        sa.Column("tech_id", sa.Uuid(), nullable=True),
        sa.Column("repair_tech_id", sa.Uuid(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_case_line_guarantee_case_id", "case_line", ["guarantee_case_id"])
    op.create_index("ix_case_line_repair_tech_id", "case_line", ["repair_tech_id"])

    op.create_table(
        "stock_reservation",
        sa.Column("reservation_id", sa.Uuid(), primary_key=True),
        sa.Column("stock_id", sa.Uuid(), sa.ForeignKey("stock.stock_id"), nullable=False),
        sa.Column("case_line_id", sa.Uuid(), sa.ForeignKey("case_line.case_line_id"), nullable=False),
        sa.Column("component_id", sa.Uuid(), sa.ForeignKey("component.component_id"), nullable=True),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False),
        sa.Column("status", reservation_status, nullable=False),
        sa.Column("picked_up_by_tech_id", sa.Uuid(), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("installed_by_tech_id", sa.Uuid(), nullable=True),
        sa.Column("installed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity_reserved > 0", name="ck_reservation_quantity_positive"),
    )
    op.create_index("ix_stock_reservation_stock_id", "stock_reservation", ["stock_id"])
    op.create_index("ix_stock_reservation_case_line_id", "stock_reservation", ["case_line_id"])
    op.create_index("ix_stock_reservation_component_id", "stock_reservation", ["component_id"])
    op.create_index("ix_stock_reservation_status", "stock_reservation", ["status"])
    op.create_index("ix_stock_reservation_created_at", "stock_reservation", ["created_at"])


def downgrade() -> None:
    op.drop_table("stock_reservation")
    op.drop_table("case_line")
    op.drop_table("guarantee_case")
    op.drop_table("component")
    op.drop_table("stock")
    op.drop_table("type_component")
    op.drop_table("warehouse")
    for enum_type in (reservation_status, case_line_status, warranty_status, component_status):
        enum_type.drop(op.get_bind(), checkfirst=True)
