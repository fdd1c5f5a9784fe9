"""
Nirman Works Tracker
Work proposal domain models.

Models:
    - WorkProposal:            aggregate root, one per submitted public work
    - TechnicalApproval:       first-stage sign-off (0..1 per proposal)
    - AdministrativeApproval:  second-stage sign-off (0..1 per proposal)
    - TenderProcess:           contractor bidding, only when a tender is required
    - WorkOrder:               formal instruction to start work, globally unique number
    - WorkProgressEntry:       append-only progress/funds record (0..N, ordered)

Architecture:
    WorkProposal ──1:1──▶ TechnicalApproval
    WorkProposal ──1:1──▶ AdministrativeApproval
    WorkProposal ──1:1──▶ TenderProcess
    WorkProposal ──1:1──▶ WorkOrder
    WorkProposal ──1:N──▶ WorkProgressEntry (ordered by position)
    WorkProposal ──N:1──▶ City / Ward / Department / Scheme / WorkAgency /
                          SDO / TypeOfWork / TypeOfLocation

Lifecycle:
    Pending Technical Approval → Pending Administrative Approval
    → Pending Tender (tender required) → Pending Work Order → Work In Progress
    → Work Completed | Work Cancelled | Work Stopped | Work Not Started
    Rejections end in Rejected Technical / Rejected Administrative Approval.

Attachments are stored as object-store references (JSON):
    {"key", "url", "size", "checksum", "storage_class"}
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Statuses ─────────────────────────────────────────────────────────────────

PENDING_TECHNICAL = "Pending Technical Approval"
REJECTED_TECHNICAL = "Rejected Technical Approval"
PENDING_ADMINISTRATIVE = "Pending Administrative Approval"
REJECTED_ADMINISTRATIVE = "Rejected Administrative Approval"
PENDING_TENDER = "Pending Tender"
TENDER_IN_PROGRESS = "Tender In Progress"
PENDING_WORK_ORDER = "Pending Work Order"
WORK_ORDER_CREATED = "Work Order Created"
WORK_IN_PROGRESS = "Work In Progress"
WORK_COMPLETED = "Work Completed"
WORK_CANCELLED = "Work Cancelled"
WORK_STOPPED = "Work Stopped"
WORK_NOT_STARTED = "Work Not Started"

PROPOSAL_STATUSES = (
    PENDING_TECHNICAL,
    REJECTED_TECHNICAL,
    PENDING_ADMINISTRATIVE,
    REJECTED_ADMINISTRATIVE,
    PENDING_TENDER,
    TENDER_IN_PROGRESS,
    PENDING_WORK_ORDER,
    WORK_ORDER_CREATED,
    WORK_IN_PROGRESS,
    WORK_COMPLETED,
    WORK_CANCELLED,
    WORK_STOPPED,
    WORK_NOT_STARTED,
)

TERMINAL_STATUSES = frozenset({
    REJECTED_TECHNICAL, REJECTED_ADMINISTRATIVE,
    WORK_COMPLETED, WORK_CANCELLED, WORK_STOPPED, WORK_NOT_STARTED,
})

# A proposal may only be deleted before the pipeline starts or after it ends
DELETABLE_STATUSES = frozenset({
    PENDING_TECHNICAL, PENDING_ADMINISTRATIVE,
    WORK_COMPLETED, WORK_CANCELLED, WORK_STOPPED, WORK_NOT_STARTED,
})

# Statuses an executing work can be moved between by a status update
WORK_EXECUTION_STATUSES = frozenset({
    WORK_IN_PROGRESS, WORK_COMPLETED, WORK_CANCELLED, WORK_STOPPED, WORK_NOT_STARTED,
})

APPROVAL_STATUSES = ("Pending", "Approved", "Rejected")

TENDER_STATUSES = (
    "Not Started",
    "Notice Published",
    "Bid Submission",
    "Under Evaluation",
    "Awarded",
    "Cancelled",
)


# ── Lifecycle Transition Table ───────────────────────────────────────────────
# "to_without_tender" is used instead of "to" when is_tender_required is False.

PROPOSAL_TRANSITIONS = {
    "approve_technical":      {"from": [PENDING_TECHNICAL], "to": PENDING_ADMINISTRATIVE},
    "reject_technical":       {"from": [PENDING_TECHNICAL], "to": REJECTED_TECHNICAL},
    "approve_administrative": {"from": [PENDING_ADMINISTRATIVE], "to": PENDING_TENDER,
                               "to_without_tender": PENDING_WORK_ORDER},
    "reject_administrative":  {"from": [PENDING_ADMINISTRATIVE], "to": REJECTED_ADMINISTRATIVE},
    "start_tender":           {"from": [PENDING_TENDER], "to": PENDING_WORK_ORDER},
    # Nothing sets Tender In Progress today, so award_tender is unreachable
    "award_tender":           {"from": [TENDER_IN_PROGRESS], "to": PENDING_WORK_ORDER},
    "create_work_order":      {"from": [PENDING_WORK_ORDER], "to": WORK_IN_PROGRESS},
    # Nothing sets Work Order Created today, so start_work is unreachable
    "start_work":             {"from": [WORK_ORDER_CREATED], "to": WORK_IN_PROGRESS},
    # Target is picked by the caller from WORK_EXECUTION_STATUSES
    "update_work_status":     {"from": sorted(WORK_EXECUTION_STATUSES), "to": None},
}

# ── Sub-record edit allow-lists ──────────────────────────────────────────────

_THROUGH_CANCELLED = (
    PENDING_TECHNICAL,
    REJECTED_TECHNICAL,
    PENDING_ADMINISTRATIVE,
    REJECTED_ADMINISTRATIVE,
    PENDING_TENDER,
    TENDER_IN_PROGRESS,
    PENDING_WORK_ORDER,
    WORK_ORDER_CREATED,
    WORK_IN_PROGRESS,
    WORK_COMPLETED,
    WORK_CANCELLED,
)

SUBRECORD_EDIT_STATUSES = {
    "technical_approval": frozenset(_THROUGH_CANCELLED),
    "administrative_approval": frozenset(_THROUGH_CANCELLED[2:]),
    "tender_process": frozenset(_THROUGH_CANCELLED),
    "work_order": frozenset(_THROUGH_CANCELLED),
}


def validate_proposal_transition(current_status: str, action: str) -> bool:
    """Return True if ``action`` may run from ``current_status``."""
    rule = PROPOSAL_TRANSITIONS.get(action)
    return bool(rule) and current_status in rule["from"]


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkProposal
# ═════════════════════════════════════════════════════════════════════════════


class WorkProposal(db.Model):
    """
    A submitted public work tracked from approval to completion.

    ``current_status`` and ``work_progress_stage`` are always written
    together by the lifecycle service. ``version`` is the optimistic
    concurrency counter: every committed change bumps it and a flush with
    a stale value fails.
    Serial format: WP{year}{seq:06d} (auto-generated in the service layer).
    """

    __tablename__ = "work_proposals"

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(20), unique=True, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    # Descriptive
    name_of_work = db.Column(db.String(500), nullable=False)
    work_name = db.Column(db.String(500), nullable=True)
    work_description = db.Column(db.Text, nullable=False)
    financial_year = db.Column(db.String(20), nullable=False, index=True)
    name_of_jp_dbt = db.Column(db.String(200), nullable=True)
    name_of_gp_ward = db.Column(db.String(200), nullable=True)
    plan = db.Column(db.String(200), nullable=True)
    assembly = db.Column(db.String(200), nullable=True)
    map = db.Column(db.String(200), nullable=True, comment="Karya shreni")
    landmark_number = db.Column(db.String(100), nullable=True)
    promise = db.Column(db.String(200), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    sanction_amount = db.Column(db.Float, nullable=False)
    work_order_amount = db.Column(db.Float, nullable=True)
    estimated_completion_date = db.Column(db.Date, nullable=False)
    is_dpr = db.Column(db.Boolean, nullable=False, default=False)
    is_tender_required = db.Column(db.Boolean, nullable=False, default=False)

    # References
    type_of_work_id = db.Column(
        db.Integer, db.ForeignKey("types_of_work.id", ondelete="RESTRICT"), nullable=False,
    )
    work_agency_id = db.Column(
        db.Integer, db.ForeignKey("work_agencies.id", ondelete="RESTRICT"), nullable=False,
    )
    scheme_id = db.Column(
        db.Integer, db.ForeignKey("schemes.id", ondelete="RESTRICT"), nullable=False,
    )
    work_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False,
    )
    approving_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False,
    )
    type_of_location_id = db.Column(
        db.Integer, db.ForeignKey("types_of_location.id", ondelete="RESTRICT"), nullable=False,
    )
    city_id = db.Column(
        db.Integer, db.ForeignKey("cities.id", ondelete="RESTRICT"), nullable=False,
    )
    ward_id = db.Column(
        db.Integer, db.ForeignKey("wards.id", ondelete="RESTRICT"), nullable=False,
    )
    appointed_sdo_id = db.Column(
        db.Integer, db.ForeignKey("sdos.id", ondelete="RESTRICT"), nullable=False,
    )
    appointed_engineer_id = db.Column(
        db.String(64), nullable=False,
        comment="User id of the engineer allowed to record progress",
    )

    # Attachments
    initial_documents = db.Column(db.JSON, nullable=True)
    work_location_image = db.Column(db.JSON, nullable=True)

    # Lifecycle
    current_status = db.Column(db.String(40), nullable=False, default=PENDING_TECHNICAL)
    work_progress_stage = db.Column(db.String(40), nullable=False, default=PENDING_TECHNICAL)
    last_status_update = db.Column(db.DateTime(timezone=True), default=_utcnow)
    last_revision = db.Column(db.DateTime(timezone=True), default=_utcnow)
    submitted_by = db.Column(db.String(64), nullable=False)
    submission_date = db.Column(db.DateTime(timezone=True), default=_utcnow)

    # Completion
    completion_date = db.Column(db.Date, nullable=True)
    completion_documents = db.Column(db.JSON, nullable=True)
    final_cost = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.Index("ix_work_proposals_status_stage", "current_status", "work_progress_stage"),
        db.Index("ix_work_proposals_departments", "work_department_id", "approving_department_id"),
        db.Index("ix_work_proposals_city_ward", "city_id", "ward_id"),
        db.Index("ix_work_proposals_last_status_update", "last_status_update"),
        db.CheckConstraint("sanction_amount >= 0", name="ck_work_proposal_sanction_amount"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    technical_approval = db.relationship(
        "TechnicalApproval", uselist=False, back_populates="proposal",
        cascade="all, delete-orphan",
    )
    administrative_approval = db.relationship(
        "AdministrativeApproval", uselist=False, back_populates="proposal",
        cascade="all, delete-orphan",
    )
    tender_process = db.relationship(
        "TenderProcess", uselist=False, back_populates="proposal",
        cascade="all, delete-orphan",
    )
    work_order = db.relationship(
        "WorkOrder", uselist=False, back_populates="proposal",
        cascade="all, delete-orphan",
    )
    progress_entries = db.relationship(
        "WorkProgressEntry", back_populates="proposal",
        cascade="all, delete-orphan", order_by="WorkProgressEntry.position",
    )

    type_of_work = db.relationship("TypeOfWork")
    work_agency = db.relationship("WorkAgency")
    scheme = db.relationship("Scheme")
    work_department = db.relationship("Department", foreign_keys=[work_department_id])
    approving_department = db.relationship("Department", foreign_keys=[approving_department_id])
    type_of_location = db.relationship("TypeOfLocation")
    city = db.relationship("City")
    ward = db.relationship("Ward")
    appointed_sdo = db.relationship("SDO")

    # ── Derived values ───────────────────────────────────────────────────

    @property
    def work_duration_days(self) -> int | None:
        """Days between the work order date and completion, when both exist."""
        if self.work_order and self.work_order.date_of_work_order and self.completion_date:
            return abs((self.completion_date - self.work_order.date_of_work_order).days)
        return None

    @property
    def overall_progress(self) -> float:
        if self.current_status == WORK_COMPLETED:
            return 100
        if self.progress_entries:
            return self.progress_entries[-1].progress_percentage or 0
        return 0

    def to_dict(self, include_children=True):
        def _ref(obj):
            return {"id": obj.id, "name": obj.name} if obj is not None else None

        result = {
            "id": self.id,
            "serial_number": self.serial_number,
            "version": self.version,
            "name_of_work": self.name_of_work,
            "work_name": self.work_name,
            "work_description": self.work_description,
            "financial_year": self.financial_year,
            "name_of_jp_dbt": self.name_of_jp_dbt,
            "name_of_gp_ward": self.name_of_gp_ward,
            "plan": self.plan,
            "assembly": self.assembly,
            "map": self.map,
            "landmark_number": self.landmark_number,
            "promise": self.promise,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "sanction_amount": self.sanction_amount,
            "work_order_amount": self.work_order_amount,
            "estimated_completion_date": _iso(self.estimated_completion_date),
            "is_dpr": self.is_dpr,
            "is_tender_required": self.is_tender_required,
            "type_of_work": _ref(self.type_of_work),
            "work_agency": _ref(self.work_agency),
            "scheme": _ref(self.scheme),
            "work_department": _ref(self.work_department),
            "approving_department": _ref(self.approving_department),
            "type_of_location": _ref(self.type_of_location),
            "city": _ref(self.city),
            "ward": _ref(self.ward),
            "appointed_sdo": _ref(self.appointed_sdo),
            "appointed_engineer_id": self.appointed_engineer_id,
            "initial_documents": self.initial_documents,
            "work_location_image": self.work_location_image,
            "current_status": self.current_status,
            "work_progress_stage": self.work_progress_stage,
            "last_status_update": _iso(self.last_status_update),
            "last_revision": _iso(self.last_revision),
            "submitted_by": self.submitted_by,
            "submission_date": _iso(self.submission_date),
            "completion_date": _iso(self.completion_date),
            "completion_documents": self.completion_documents,
            "final_cost": self.final_cost,
            "work_duration_days": self.work_duration_days,
            "overall_progress": self.overall_progress,
        }
        if include_children:
            result["technical_approval"] = (
                self.technical_approval.to_dict() if self.technical_approval else None
            )
            result["administrative_approval"] = (
                self.administrative_approval.to_dict() if self.administrative_approval else None
            )
            result["tender_process"] = self.tender_process.to_dict() if self.tender_process else None
            result["work_order"] = self.work_order.to_dict() if self.work_order else None
            result["work_progress"] = [e.to_dict() for e in self.progress_entries]
        return result

    def __repr__(self):
        return f"<WorkProposal {self.id}: {self.name_of_work} [{self.current_status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Sub-records
# ═════════════════════════════════════════════════════════════════════════════


class _SubRecordMixin:
    """Columns shared by the one-per-proposal stage records."""

    id = db.Column(db.Integer, primary_key=True)
    attached_file = db.Column(db.JSON, nullable=True)
    last_modified = db.Column(db.DateTime(timezone=True), nullable=True)
    modified_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def _audit_dict(self) -> dict:
        return {
            "attached_file": self.attached_file,
            "last_modified": _iso(self.last_modified),
            "modified_by": self.modified_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TechnicalApproval(_SubRecordMixin, db.Model):
    """Engineering sign-off. Approved needs an approval number, Rejected a reason."""

    __tablename__ = "technical_approvals"

    proposal_id = db.Column(
        db.Integer, db.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    status = db.Column(db.String(20), nullable=False, default="Pending")
    approval_number = db.Column(db.String(100), nullable=True)
    approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    forwarding_date = db.Column(db.DateTime(timezone=True), nullable=True)
    amount_of_technical_sanction = db.Column(db.Float, nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    attached_images = db.Column(db.JSON, nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    proposal = db.relationship("WorkProposal", back_populates="technical_approval")

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "approval_number": self.approval_number,
            "approval_date": _iso(self.approval_date),
            "forwarding_date": _iso(self.forwarding_date),
            "amount_of_technical_sanction": self.amount_of_technical_sanction,
            "remarks": self.remarks,
            "attached_images": self.attached_images or [],
            "approved_by": self.approved_by,
            "rejection_reason": self.rejection_reason,
            **self._audit_dict(),
        }


class AdministrativeApproval(_SubRecordMixin, db.Model):
    """Spend authorisation. Same approve/reject shape as TechnicalApproval."""

    __tablename__ = "administrative_approvals"

    proposal_id = db.Column(
        db.Integer, db.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    status = db.Column(db.String(20), nullable=False, default="Pending")
    by_govt_district_as = db.Column(
        db.String(200), nullable=True,
        comment="Government / district sanction reference",
    )
    approval_number = db.Column(db.String(100), nullable=True)
    approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_amount = db.Column(db.Float, nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    proposal = db.relationship("WorkProposal", back_populates="administrative_approval")

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "by_govt_district_as": self.by_govt_district_as,
            "approval_number": self.approval_number,
            "approval_date": _iso(self.approval_date),
            "approved_amount": self.approved_amount,
            "remarks": self.remarks,
            "approved_by": self.approved_by,
            "rejection_reason": self.rejection_reason,
            **self._audit_dict(),
        }


class TenderProcess(_SubRecordMixin, db.Model):
    __tablename__ = "tender_processes"

    proposal_id = db.Column(
        db.Integer, db.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    tender_title = db.Column(db.String(500), nullable=True)
    tender_number = db.Column(db.String(100), nullable=True)
    department = db.Column(db.String(200), nullable=True)
    issued_date = db.Column(db.Date, nullable=True)
    remark = db.Column(db.Text, nullable=True)
    tender_status = db.Column(db.String(30), nullable=False, default="Not Started")
    contractor_name = db.Column(db.String(200), nullable=True)
    contractor_contact = db.Column(db.String(200), nullable=True)
    awarded_amount = db.Column(db.Float, nullable=True)
    awarded_by = db.Column(db.String(64), nullable=True)

    proposal = db.relationship("WorkProposal", back_populates="tender_process")

    def to_dict(self):
        contractor = None
        if self.contractor_name:
            contractor = {
                "name": self.contractor_name,
                "contact_info": self.contractor_contact,
                "awarded_amount": self.awarded_amount,
            }
        return {
            "id": self.id,
            "tender_title": self.tender_title,
            "tender_number": self.tender_number,
            "department": self.department,
            "issued_date": _iso(self.issued_date),
            "remark": self.remark,
            "tender_status": self.tender_status,
            "selected_contractor": contractor,
            "awarded_by": self.awarded_by,
            **self._audit_dict(),
        }


class WorkOrder(_SubRecordMixin, db.Model):
    __tablename__ = "work_orders"

    proposal_id = db.Column(
        db.Integer, db.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    work_order_number = db.Column(db.String(100), nullable=False, unique=True)
    date_of_work_order = db.Column(db.Date, nullable=False)
    contractor_or_gram_panchayat = db.Column(db.String(200), nullable=False)
    remark = db.Column(db.Text, nullable=True)
    issued_by = db.Column(db.String(64), nullable=True)

    proposal = db.relationship("WorkProposal", back_populates="work_order")

    def to_dict(self):
        return {
            "id": self.id,
            "work_order_number": self.work_order_number,
            "date_of_work_order": _iso(self.date_of_work_order),
            "contractor_or_gram_panchayat": self.contractor_or_gram_panchayat,
            "remark": self.remark,
            "issued_by": self.issued_by,
            **self._audit_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. WorkProgressEntry
# ═════════════════════════════════════════════════════════════════════════════


class WorkProgressEntry(db.Model):
    """
    One progress/funds snapshot against a work order.

    Entries are appended with an increasing ``position`` and are never
    edited; removal by id leaves the remaining positions untouched.
    ``installments`` is an ordered JSON list of
    {"installment_no": int, "amount": float, "date": "YYYY-MM-DD"}.
    """

    __tablename__ = "work_progress_entries"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("work_proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    sanctioned_amount = db.Column(db.Float, nullable=True)
    total_amount_released_so_far = db.Column(db.Float, nullable=True)
    remaining_balance = db.Column(db.Float, nullable=True)
    installments = db.Column(db.JSON, nullable=False, default=list)
    mb_stage = db.Column(db.String(200), nullable=True, comment="Measurement book stage")
    expenditure_amount = db.Column(db.Float, nullable=True)
    progress_percentage = db.Column(db.Float, nullable=True)
    progress_documents = db.Column(db.JSON, nullable=True)
    progress_images = db.Column(db.JSON, nullable=True)
    last_updated_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    proposal = db.relationship("WorkProposal", back_populates="progress_entries")

    __table_args__ = (
        db.UniqueConstraint("proposal_id", "position", name="uq_work_progress_position"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "position": self.position,
            "description": self.description,
            "sanctioned_amount": self.sanctioned_amount,
            "total_amount_released_so_far": self.total_amount_released_so_far,
            "remaining_balance": self.remaining_balance,
            "installments": self.installments or [],
            "mb_stage": self.mb_stage,
            "expenditure_amount": self.expenditure_amount,
            "progress_percentage": self.progress_percentage,
            "progress_documents": self.progress_documents,
            "progress_images": self.progress_images or [],
            "last_updated_by": self.last_updated_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<WorkProgressEntry {self.id} proposal={self.proposal_id} #{self.position}>"
