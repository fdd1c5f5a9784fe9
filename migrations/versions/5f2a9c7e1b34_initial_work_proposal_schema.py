"""initial_work_proposal_schema

Creates the reference lookup tables and the work proposal aggregate:
  - cities, wards, departments, schemes, work_agencies, sdos,
    types_of_work, types_of_location   — named lookup rows
  - work_proposals                      — aggregate root (version counter)
  - technical_approvals, administrative_approvals,
    tender_processes, work_orders       — one-per-proposal stage records
  - work_progress_entries               — ordered progress/funds snapshots

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5f2a9c7e1b34
Revises:
Create Date: 2026-10-19 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5f2a9c7e1b34'
down_revision = None
branch_labels = None
depends_on = None


REFERENCE_TABLES = (
    "cities",
    "wards",
    "departments",
    "schemes",
    "work_agencies",
    "sdos",
    "types_of_work",
    "types_of_location",
)


def _audit_columns():
    return [
        sa.Column("attached_file", sa.JSON(), nullable=True),
        sa.Column("last_modified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _proposal_fk():
    return sa.Column(
        "proposal_id", sa.Integer(),
        sa.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Reference tables ──────────────────────────────────────────────────
    for table in REFERENCE_TABLES:
        if table in existing:
            continue
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False, unique=True),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )

    # ── WorkProposal ──────────────────────────────────────────────────────
    if "work_proposals" not in existing:
        op.create_table(
            "work_proposals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("serial_number", sa.String(length=20), nullable=True, unique=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("name_of_work", sa.String(length=500), nullable=False),
            sa.Column("work_name", sa.String(length=500), nullable=True),
            sa.Column("work_description", sa.Text(), nullable=False),
            sa.Column("financial_year", sa.String(length=20), nullable=False, index=True),
            sa.Column("name_of_jp_dbt", sa.String(length=200), nullable=True),
            sa.Column("name_of_gp_ward", sa.String(length=200), nullable=True),
            sa.Column("plan", sa.String(length=200), nullable=True),
            sa.Column("assembly", sa.String(length=200), nullable=True),
            sa.Column("map", sa.String(length=200), nullable=True, comment="Karya shreni"),
            sa.Column("landmark_number", sa.String(length=100), nullable=True),
            sa.Column("promise", sa.String(length=200), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("sanction_amount", sa.Float(), nullable=False),
            sa.Column("work_order_amount", sa.Float(), nullable=True),
            sa.Column("estimated_completion_date", sa.Date(), nullable=False),
            sa.Column("is_dpr", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_tender_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("type_of_work_id", sa.Integer(),
                      sa.ForeignKey("types_of_work.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("work_agency_id", sa.Integer(),
                      sa.ForeignKey("work_agencies.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("scheme_id", sa.Integer(),
                      sa.ForeignKey("schemes.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("work_department_id", sa.Integer(),
                      sa.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("approving_department_id", sa.Integer(),
                      sa.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("type_of_location_id", sa.Integer(),
                      sa.ForeignKey("types_of_location.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("city_id", sa.Integer(),
                      sa.ForeignKey("cities.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("ward_id", sa.Integer(),
                      sa.ForeignKey("wards.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("appointed_sdo_id", sa.Integer(),
                      sa.ForeignKey("sdos.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("appointed_engineer_id", sa.String(length=64), nullable=False,
                      comment="User id of the engineer allowed to record progress"),
            sa.Column("initial_documents", sa.JSON(), nullable=True),
            sa.Column("work_location_image", sa.JSON(), nullable=True),
            sa.Column("current_status", sa.String(length=40), nullable=False),
            sa.Column("work_progress_stage", sa.String(length=40), nullable=False),
            sa.Column("last_status_update", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_revision", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_by", sa.String(length=64), nullable=False),
            sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completion_date", sa.Date(), nullable=True),
            sa.Column("completion_documents", sa.JSON(), nullable=True),
            sa.Column("final_cost", sa.Float(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("sanction_amount >= 0", name="ck_work_proposal_sanction_amount"),
        )
        op.create_index("ix_work_proposals_status_stage", "work_proposals",
                        ["current_status", "work_progress_stage"])
        op.create_index("ix_work_proposals_departments", "work_proposals",
                        ["work_department_id", "approving_department_id"])
        op.create_index("ix_work_proposals_city_ward", "work_proposals", ["city_id", "ward_id"])
        op.create_index("ix_work_proposals_last_status_update", "work_proposals",
                        ["last_status_update"])

    # ── Stage records ─────────────────────────────────────────────────────
    if "technical_approvals" not in existing:
        op.create_table(
            "technical_approvals",
            sa.Column("id", sa.Integer(), primary_key=True),
            _proposal_fk(),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("approval_number", sa.String(length=100), nullable=True),
            sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("forwarding_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("amount_of_technical_sanction", sa.Float(), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("attached_images", sa.JSON(), nullable=True),
            sa.Column("approved_by", sa.String(length=64), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            *_audit_columns(),
        )

    if "administrative_approvals" not in existing:
        op.create_table(
            "administrative_approvals",
            sa.Column("id", sa.Integer(), primary_key=True),
            _proposal_fk(),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("by_govt_district_as", sa.String(length=200), nullable=True,
                      comment="Government / district sanction reference"),
            sa.Column("approval_number", sa.String(length=100), nullable=True),
            sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_amount", sa.Float(), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("approved_by", sa.String(length=64), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            *_audit_columns(),
        )

    if "tender_processes" not in existing:
        op.create_table(
            "tender_processes",
            sa.Column("id", sa.Integer(), primary_key=True),
            _proposal_fk(),
            sa.Column("tender_title", sa.String(length=500), nullable=True),
            sa.Column("tender_number", sa.String(length=100), nullable=True),
            sa.Column("department", sa.String(length=200), nullable=True),
            sa.Column("issued_date", sa.Date(), nullable=True),
            sa.Column("remark", sa.Text(), nullable=True),
            sa.Column("tender_status", sa.String(length=30), nullable=False),
            sa.Column("contractor_name", sa.String(length=200), nullable=True),
            sa.Column("contractor_contact", sa.String(length=200), nullable=True),
            sa.Column("awarded_amount", sa.Float(), nullable=True),
            sa.Column("awarded_by", sa.String(length=64), nullable=True),
            *_audit_columns(),
        )

    if "work_orders" not in existing:
        op.create_table(
            "work_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            _proposal_fk(),
            sa.Column("work_order_number", sa.String(length=100), nullable=False, unique=True),
            sa.Column("date_of_work_order", sa.Date(), nullable=False),
            sa.Column("contractor_or_gram_panchayat", sa.String(length=200), nullable=False),
            sa.Column("remark", sa.Text(), nullable=True),
            sa.Column("issued_by", sa.String(length=64), nullable=True),
            *_audit_columns(),
        )

    # ── WorkProgressEntry ─────────────────────────────────────────────────
    if "work_progress_entries" not in existing:
        op.create_table(
            "work_progress_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("proposal_id", sa.Integer(),
                      sa.ForeignKey("work_proposals.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sanctioned_amount", sa.Float(), nullable=True),
            sa.Column("total_amount_released_so_far", sa.Float(), nullable=True),
            sa.Column("remaining_balance", sa.Float(), nullable=True),
            sa.Column("installments", sa.JSON(), nullable=False),
            sa.Column("mb_stage", sa.String(length=200), nullable=True,
                      comment="Measurement book stage"),
            sa.Column("expenditure_amount", sa.Float(), nullable=True),
            sa.Column("progress_percentage", sa.Float(), nullable=True),
            sa.Column("progress_documents", sa.JSON(), nullable=True),
            sa.Column("progress_images", sa.JSON(), nullable=True),
            sa.Column("last_updated_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("proposal_id", "position", name="uq_work_progress_position"),
        )


def downgrade():
    for table in (
        "work_progress_entries",
        "work_orders",
        "tender_processes",
        "administrative_approvals",
        "technical_approvals",
        "work_proposals",
        *REFERENCE_TABLES,
    ):
        op.drop_table(table)
