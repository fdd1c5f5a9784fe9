"""
Work Proposal Lifecycle Service.

Owns every state-changing operation on a WorkProposal:
  - create / update / delete of the proposal itself
  - technical and administrative approval (approve | reject) + partial edits
  - tender start, tender edits, tender award
  - work order creation (seeds the first progress entry) + edits
  - start of work and work status updates (completion, stop, cancel)
  - progress entries: append / delete

Each operation loads the proposal, validates everything, then mutates and
commits once. Validation always finishes before the first mutation, so a
failed call leaves the stored proposal untouched.

Transitions come from PROPOSAL_TRANSITIONS and sub-record edit windows from
SUBRECORD_EDIT_STATUSES (app.models.work_proposal). Status changes always
write current_status and work_progress_stage together.

Concurrency: WorkProposal.version is a mapper version counter and every
operation touches the proposal row. A writer that loses the race gets a
VersionConflictError (retryable). With PROPOSAL_ROW_LOCK the row is read
with SELECT ... FOR UPDATE so the second writer re-checks its precondition
against the committed state.

Usage:
    from app.services.work_proposal_lifecycle import technical_approval

    proposal = technical_approval(
        proposal_id=42,
        action="approve",
        payload={"approval_number": "TA-2024-17"},
        actor=actor,
    )
"""

import logging
import math
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from app.auth import Actor
from app.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
    VersionConflictError,
)
from app.models import db
from app.models.reference import REFERENCE_KINDS
from app.models.work_proposal import (
    DELETABLE_STATUSES,
    PENDING_TECHNICAL,
    PROPOSAL_STATUSES,
    PROPOSAL_TRANSITIONS,
    SUBRECORD_EDIT_STATUSES,
    TENDER_STATUSES,
    WORK_COMPLETED,
    WORK_EXECUTION_STATUSES,
    AdministrativeApproval,
    TechnicalApproval,
    TenderProcess,
    WorkOrder,
    WorkProgressEntry,
    WorkProposal,
)
from app.utils.helpers import parse_bool, parse_date_input

logger = logging.getLogger(__name__)

# WorkProposal FK column -> reference kind
_REFERENCE_FIELDS = {
    attr: kind
    for kind, (_model, attrs) in REFERENCE_KINDS.items()
    for attr in attrs
}

_TEXT_LIMITS = {
    "name_of_work": 500,
    "work_name": 500,
    "work_description": 2000,
    "financial_year": 20,
    "name_of_jp_dbt": 200,
    "name_of_gp_ward": 200,
    "plan": 200,
    "assembly": 200,
    "map": 200,
    "landmark_number": 100,
    "promise": 200,
    "appointed_engineer_id": 64,
}

PROPOSAL_REQUIRED_FIELDS = (
    "type_of_work_id",
    "name_of_work",
    "work_agency_id",
    "scheme_id",
    "work_description",
    "financial_year",
    "work_department_id",
    "approving_department_id",
    "sanction_amount",
    "type_of_location_id",
    "city_id",
    "ward_id",
    "appointed_engineer_id",
    "appointed_sdo_id",
    "estimated_completion_date",
)

PROPOSAL_CREATE_FIELDS = frozenset(PROPOSAL_REQUIRED_FIELDS) | {
    "work_name", "name_of_jp_dbt", "name_of_gp_ward", "plan", "assembly", "map",
    "landmark_number", "promise", "latitude", "longitude", "work_order_amount",
    "is_dpr", "is_tender_required", "initial_documents", "work_location_image",
}

# Descriptive fields the generic update may touch. current_status is an
# administrative override and is handled separately.
PROPOSAL_UPDATE_FIELDS = frozenset({
    "type_of_work_id", "name_of_work", "work_agency_id", "scheme_id",
    "name_of_jp_dbt", "name_of_gp_ward", "work_description", "financial_year",
    "work_department_id", "approving_department_id", "sanction_amount", "plan",
    "assembly", "longitude", "latitude", "type_of_location_id", "city_id",
    "ward_id", "work_name", "appointed_engineer_id", "appointed_sdo_id",
    "estimated_completion_date", "is_dpr", "is_tender_required", "current_status",
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Field coercion ───────────────────────────────────────────────────────────


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(max_len: int | None = None, required: bool = False):
    def coerce(value, field):
        if _blank(value):
            if required:
                raise ValidationError(f"{field} is required", field=field)
            return None
        text = str(value).strip()
        if max_len and len(text) > max_len:
            raise ValidationError(f"{field} must be at most {max_len} characters", field=field)
        return text
    return coerce


def _amount(required: bool = False):
    def coerce(value, field):
        if _blank(value):
            if required:
                raise ValidationError(f"{field} is required", field=field)
            return None
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be a number", field=field)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a number", field=field) from None
        if not math.isfinite(number):
            raise ValidationError(f"{field} must be a finite number", field=field)
        if number < 0:
            raise ValidationError(f"{field} must not be negative", field=field)
        return number
    return coerce


def _percentage(value, field):
    number = _amount()(value, field)
    if number is not None and number > 100:
        raise ValidationError(f"{field} must be between 0 and 100", field=field)
    return number


def _coordinate(limit: float):
    def coerce(value, field):
        if _blank(value):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a number", field=field) from None
        if not -limit <= number <= limit:
            raise ValidationError(f"{field} must be between -{limit:g} and {limit:g}", field=field)
        return number
    return coerce


def _date(required: bool = False):
    def coerce(value, field):
        if _blank(value):
            if required:
                raise ValidationError(f"{field} is required", field=field)
            return None
        if isinstance(value, datetime):
            return value.date()
        if not isinstance(value, (str, date)):
            raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", field=field)
        try:
            parsed = parse_date_input(value)
        except ValueError:
            raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", field=field) from None
        if parsed is None:
            raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", field=field)
        return parsed
    return coerce


def _flag(value, field):
    try:
        return parse_bool(value)
    except ValueError:
        raise ValidationError(f"{field} must be true or false", field=field) from None


def _attachment(value, field):
    """Validate one object-store reference {key, url, size, checksum, storage_class}."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", field=field)
    if _blank(value.get("key")) or _blank(value.get("url")):
        raise ValidationError(f"{field} requires 'key' and 'url'", field=field)
    size = value.get("size", 0)
    if size is None:
        size = 0
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ValidationError(f"{field}.size must be a non-negative integer", field=field)
    return {
        "key": str(value["key"]),
        "url": str(value["url"]),
        "size": size,
        "checksum": value.get("checksum") or value.get("etag") or value.get("eTag"),
        "storage_class": value.get("storage_class") or value.get("storageClass") or "STANDARD",
    }


def _attachment_list(value, field):
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", field=field)
    refs = []
    for index, item in enumerate(value):
        if item is None:
            raise ValidationError(f"{field}[{index}] must be an object", field=field)
        refs.append(_attachment(item, f"{field}[{index}]"))
    return refs


def _installments(value, field):
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", field=field)
    result = []
    for index, item in enumerate(value):
        label = f"{field}[{index}]"
        if not isinstance(item, dict):
            raise ValidationError(f"{label} must be an object", field=field)
        number = item.get("installment_no")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise ValidationError(f"{label}.installment_no must be an integer >= 1", field=field)
        amount = _amount()(item.get("amount"), f"{label}.amount")
        when = _date()(item.get("date"), f"{label}.date")
        result.append({
            "installment_no": number,
            "amount": amount,
            "date": when.isoformat() if when else None,
        })
    return result


def _reference(value, field):
    kind = _REFERENCE_FIELDS[field]
    model = REFERENCE_KINDS[kind][0]
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id", field=field)
    try:
        ref_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id", field=field) from None
    if db.session.get(model, ref_id) is None:
        raise ValidationError(f"{field}: {kind} id={ref_id} does not exist", field=field)
    return ref_id


_PROPOSAL_COERCERS = {
    "sanction_amount": _amount(required=True),
    "work_order_amount": _amount(),
    "latitude": _coordinate(90),
    "longitude": _coordinate(180),
    "estimated_completion_date": _date(required=True),
    "is_dpr": _flag,
    "is_tender_required": _flag,
    "initial_documents": _attachment,
    "work_location_image": _attachment,
}


def _coerce_proposal_field(field, value):
    if field in _REFERENCE_FIELDS:
        return _reference(value, field)
    if field in _TEXT_LIMITS:
        return _text(_TEXT_LIMITS[field], required=field in PROPOSAL_REQUIRED_FIELDS)(value, field)
    return _PROPOSAL_COERCERS[field](value, field)


def _coerce_changes(fields: dict, coercers: dict) -> dict:
    """Coerce the provided subset of ``fields``; absent keys are left out."""
    return {name: coerce(fields[name], name) for name, coerce in coercers.items() if name in fields}


# ── Sub-record field tables ──────────────────────────────────────────────────

_TECHNICAL_EDITABLE = {
    "Approved": {
        "approval_number": _text(100),
        "amount_of_technical_sanction": _amount(),
        "remarks": _text(),
        "attached_file": _attachment,
        "attached_images": _attachment_list,
    },
    "Rejected": {
        "rejection_reason": _text(),
        "remarks": _text(),
    },
}

_ADMINISTRATIVE_EDITABLE = {
    "Approved": {
        "by_govt_district_as": _text(200),
        "approval_number": _text(100),
        "approved_amount": _amount(),
        "remarks": _text(),
        "attached_file": _attachment,
    },
    "Rejected": {
        "rejection_reason": _text(),
        "remarks": _text(),
    },
}

# Field that must stay non-empty while the approval is in that status
_APPROVAL_REQUIRED = {"Approved": "approval_number", "Rejected": "rejection_reason"}

_TENDER_FIELDS = {
    "tender_title": _text(500),
    "tender_number": _text(100),
    "department": _text(200),
    "issued_date": _date(),
    "remark": _text(),
    "attached_file": _attachment,
}

_WORK_ORDER_FIELDS = {
    "work_order_number": _text(100, required=True),
    "date_of_work_order": _date(required=True),
    "contractor_or_gram_panchayat": _text(200, required=True),
    "remark": _text(),
    "attached_file": _attachment,
}

_PROGRESS_FIELDS = {
    "description": _text(),
    "sanctioned_amount": _amount(),
    "total_amount_released_so_far": _amount(),
    "remaining_balance": _amount(),
    "installments": _installments,
    "mb_stage": _text(200),
    "expenditure_amount": _amount(),
    "progress_percentage": _percentage,
}

_PROGRESS_ATTACHMENTS = {
    "progress_documents": _attachment_list,
    "progress_images": _attachment_list,
}


# ── Loading, state checks, persistence ───────────────────────────────────────


def _load(proposal_id: int, expected_version: int | None = None) -> WorkProposal:
    """Fetch a proposal for writing; optionally check the caller's version."""
    lock = bool(current_app.config.get("PROPOSAL_ROW_LOCK"))
    if lock:
        proposal = db.session.get(
            WorkProposal, proposal_id, with_for_update=True, populate_existing=True,
        )
    else:
        proposal = db.session.get(WorkProposal, proposal_id)
    if proposal is None:
        raise NotFoundError(resource="WorkProposal", resource_id=proposal_id)
    if expected_version is not None and proposal.version != expected_version:
        logger.warning(
            "Stale write rejected for work proposal %s: expected version %s, found %s",
            proposal_id, expected_version, proposal.version,
        )
        raise VersionConflictError(
            "WorkProposal", proposal_id, expected=expected_version, actual=proposal.version,
        )
    return proposal


def _require_transition(proposal: WorkProposal, action: str) -> dict:
    rule = PROPOSAL_TRANSITIONS[action]
    if proposal.current_status not in rule["from"]:
        raise InvalidStateError(action, rule["from"], proposal.current_status)
    return rule


def _require_editable(proposal: WorkProposal, kind: str, action: str):
    """Return the existing sub-record of ``kind`` if the proposal may edit it."""
    allowed = SUBRECORD_EDIT_STATUSES[kind]
    record = getattr(proposal, kind)
    if record is None:
        raise InvalidStateError(
            action, allowed, proposal.current_status,
            reason=f"{kind.replace('_', ' ')} has not been recorded",
        )
    if proposal.current_status not in allowed:
        raise InvalidStateError(action, allowed, proposal.current_status)
    return record


def _set_status(proposal: WorkProposal, status: str) -> None:
    proposal.current_status = status
    proposal.work_progress_stage = status
    proposal.last_status_update = _now()


def _touch(proposal: WorkProposal) -> None:
    # Always dirty the proposal row so the version counter moves
    proposal.updated_at = _now()


def _violates_unique(exc: IntegrityError, field: str) -> bool:
    message = str(exc.orig)
    return "unique" in message.lower() and field in message


def _commit(proposal_id: int | None, *, conflict: ConflictError | None = None) -> None:
    """Commit the session, mapping database failures to service errors.

    An IntegrityError becomes ``conflict`` only when it is a unique violation
    on ``conflict.field``; any other constraint failure is a StorageError.
    """
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent modification of work proposal %s", proposal_id)
        raise VersionConflictError("WorkProposal", proposal_id) from None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on work proposal %s: %s", proposal_id, exc.orig)
        if conflict is not None and _violates_unique(exc, conflict.field):
            raise conflict from exc
        raise StorageError(f"Constraint violation while saving work proposal {proposal_id}") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error while saving work proposal %s", proposal_id)
        raise StorageError(f"Could not save work proposal {proposal_id}") from exc


def _log_transition(proposal_id: int, action: str, previous: str, new: str, actor: Actor) -> None:
    logger.info(
        "WorkProposal %s: %s %s → %s by %s",
        proposal_id, action, previous, new, actor.user_id,
    )


def generate_serial_number() -> str:
    """Next serial for the current year: WP{year}{seq:06d}."""
    prefix = f"WP{_now().year}"
    last = (
        db.session.query(func.max(WorkProposal.serial_number))
        .filter(WorkProposal.serial_number.like(f"{prefix}%"))
        .scalar()
    )
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def _work_order_number_taken(number: str, exclude_proposal_id: int | None = None) -> bool:
    q = WorkOrder.query.filter(WorkOrder.work_order_number == number)
    if exclude_proposal_id is not None:
        q = q.filter(WorkOrder.proposal_id != exclude_proposal_id)
    return db.session.query(q.exists()).scalar()


# ═════════════════════════════════════════════════════════════════════════════
# Proposal CRUD
# ═════════════════════════════════════════════════════════════════════════════


def create_proposal(data: dict, submitted_by: str) -> WorkProposal:
    """Create a proposal in Pending Technical Approval.

    Raises:
        ValidationError: a required field is missing, malformed, or points
            at a reference row that does not exist.
    """
    for field in PROPOSAL_REQUIRED_FIELDS:
        if _blank(data.get(field)):
            raise ValidationError(f"{field} is required", field=field)
    if _blank(submitted_by):
        raise ValidationError("submitted_by is required", field="submitted_by")

    values = {
        field: _coerce_proposal_field(field, data[field])
        for field in PROPOSAL_CREATE_FIELDS if field in data
    }
    values.setdefault("is_dpr", False)
    values.setdefault("is_tender_required", False)

    now = _now()
    serial = generate_serial_number()
    proposal = WorkProposal(
        serial_number=serial,
        submitted_by=str(submitted_by),
        submission_date=now,
        last_status_update=now,
        last_revision=now,
        current_status=PENDING_TECHNICAL,
        work_progress_stage=PENDING_TECHNICAL,
        **values,
    )
    db.session.add(proposal)
    _commit(None, conflict=ConflictError("WorkProposal", "serial_number", serial))
    logger.info("WorkProposal created id=%s serial=%s by %s", proposal.id, serial, submitted_by)
    return proposal


def update_proposal(
    proposal_id: int, fields: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    """Partial update of descriptive fields.

    Keys outside PROPOSAL_UPDATE_FIELDS are ignored. ``current_status`` is an
    administrative override outside the state machine; only a super admin
    may send it, and it moves work_progress_stage with it.
    """
    proposal = _load(proposal_id, expected_version)

    new_status = None
    if "current_status" in fields and fields["current_status"] != proposal.current_status:
        if not actor.is_super_admin:
            raise ValidationError(
                "current_status may only be changed by a super admin", field="current_status",
            )
        new_status = fields["current_status"]
        if new_status not in PROPOSAL_STATUSES:
            raise ValidationError(f"Unknown status: {new_status!r}", field="current_status")

    changes = {
        field: _coerce_proposal_field(field, value)
        for field, value in fields.items()
        if field in PROPOSAL_UPDATE_FIELDS and field != "current_status"
    }

    for field, value in changes.items():
        setattr(proposal, field, value)
    previous = proposal.current_status
    if new_status is not None:
        _set_status(proposal, new_status)
    proposal.last_revision = _now()
    _touch(proposal)
    _commit(proposal_id)

    if new_status is not None:
        logger.warning(
            "WorkProposal %s: status overridden %s → %s by %s",
            proposal_id, previous, new_status, actor.user_id,
        )
    logger.info("WorkProposal updated id=%s fields=%s", proposal_id, sorted(changes))
    return proposal


def delete_proposal(proposal_id: int, actor: Actor, *, expected_version: int | None = None) -> None:
    """Delete a proposal that has not entered, or has left, the pipeline."""
    proposal = _load(proposal_id, expected_version)
    if proposal.current_status not in DELETABLE_STATUSES:
        raise InvalidStateError("delete_proposal", DELETABLE_STATUSES, proposal.current_status)
    db.session.delete(proposal)
    _commit(proposal_id)
    logger.info("WorkProposal deleted id=%s by %s", proposal_id, actor.user_id)


# ═════════════════════════════════════════════════════════════════════════════
# Approvals
# ═════════════════════════════════════════════════════════════════════════════


def _check_decision(action: str) -> None:
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'", field="action")


def technical_approval(
    proposal_id: int, action: str, payload: dict, actor: Actor,
    *, expected_version: int | None = None,
) -> WorkProposal:
    """Approve or reject a proposal waiting for technical approval.

    approve needs ``approval_number``; reject stores ``rejection_reason`` and
    ``remarks`` when given.
    """
    _check_decision(action)
    proposal = _load(proposal_id, expected_version)
    transition = f"{action}_technical"
    rule = _require_transition(proposal, transition)

    now = _now()
    if action == "approve":
        values = _coerce_changes(payload, _TECHNICAL_EDITABLE["Approved"])
        if not values.get("approval_number"):
            raise ValidationError("approval_number is required", field="approval_number")
        values.update(
            status="Approved", approval_date=now, forwarding_date=now,
            rejection_reason=None,
        )
        values.setdefault("attached_images", [])
    else:
        values = _coerce_changes(payload, _TECHNICAL_EDITABLE["Rejected"])
        values["status"] = "Rejected"

    record = proposal.technical_approval or TechnicalApproval()
    for field, value in values.items():
        setattr(record, field, value)
    record.approved_by = actor.user_id
    record.last_modified = now
    record.modified_by = actor.user_id
    proposal.technical_approval = record

    previous = proposal.current_status
    _set_status(proposal, rule["to"])
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, transition, previous, rule["to"], actor)
    return proposal


def _update_approval(proposal, kind, editable, fields, actor, action):
    record = _require_editable(proposal, kind, action)
    coercers = editable.get(record.status, {})
    changes = _coerce_changes(fields, coercers)

    required = _APPROVAL_REQUIRED.get(record.status)
    if required and required in changes and not changes[required]:
        raise ValidationError(f"{required} must not be empty", field=required)

    for field, value in changes.items():
        setattr(record, field, value)
    record.last_modified = _now()
    record.modified_by = actor.user_id
    _touch(proposal)
    return changes


def update_technical_approval(
    proposal_id: int, fields: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    """Edit an existing technical approval without moving the proposal.

    Approved records accept approval_number, amount_of_technical_sanction,
    remarks and attachments; Rejected records accept rejection_reason and
    remarks. Other keys are ignored.
    """
    proposal = _load(proposal_id, expected_version)
    changes = _update_approval(
        proposal, "technical_approval", _TECHNICAL_EDITABLE, fields, actor,
        "update_technical_approval",
    )
    _commit(proposal_id)
    logger.info("TechnicalApproval updated proposal_id=%s fields=%s", proposal_id, sorted(changes))
    return proposal


def administrative_approval(
    proposal_id: int, action: str, payload: dict, actor: Actor,
    *, expected_version: int | None = None,
) -> WorkProposal:
    """Approve or reject a proposal waiting for administrative approval.

    An approved proposal goes to Pending Tender when a tender is required,
    otherwise straight to Pending Work Order.
    """
    _check_decision(action)
    proposal = _load(proposal_id, expected_version)
    transition = f"{action}_administrative"
    rule = _require_transition(proposal, transition)

    now = _now()
    if action == "approve":
        values = _coerce_changes(payload, _ADMINISTRATIVE_EDITABLE["Approved"])
        if not values.get("approval_number"):
            raise ValidationError("approval_number is required", field="approval_number")
        values.update(status="Approved", approval_date=now, rejection_reason=None)
        target = rule["to"] if proposal.is_tender_required else rule["to_without_tender"]
    else:
        values = _coerce_changes(payload, _ADMINISTRATIVE_EDITABLE["Rejected"])
        values["status"] = "Rejected"
        target = rule["to"]

    record = proposal.administrative_approval or AdministrativeApproval()
    for field, value in values.items():
        setattr(record, field, value)
    record.approved_by = actor.user_id
    record.last_modified = now
    record.modified_by = actor.user_id
    proposal.administrative_approval = record

    previous = proposal.current_status
    _set_status(proposal, target)
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, transition, previous, target, actor)
    return proposal


def update_administrative_approval(
    proposal_id: int, fields: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    proposal = _load(proposal_id, expected_version)
    changes = _update_approval(
        proposal, "administrative_approval", _ADMINISTRATIVE_EDITABLE, fields, actor,
        "update_administrative_approval",
    )
    _commit(proposal_id)
    logger.info(
        "AdministrativeApproval updated proposal_id=%s fields=%s", proposal_id, sorted(changes),
    )
    return proposal


# ═════════════════════════════════════════════════════════════════════════════
# Tender
# ═════════════════════════════════════════════════════════════════════════════


def start_tender_process(
    proposal_id: int, payload: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    """Publish the tender notice and move the proposal to Pending Work Order."""
    proposal = _load(proposal_id, expected_version)
    rule = _require_transition(proposal, "start_tender")
    if not proposal.is_tender_required:
        raise InvalidStateError(
            "start_tender", rule["from"], proposal.current_status,
            reason="this proposal does not require a tender",
        )
    values = _coerce_changes(payload, _TENDER_FIELDS)

    now = _now()
    record = proposal.tender_process or TenderProcess()
    for field, value in values.items():
        setattr(record, field, value)
    record.tender_status = "Notice Published"
    record.last_modified = now
    record.modified_by = actor.user_id
    proposal.tender_process = record

    previous = proposal.current_status
    _set_status(proposal, rule["to"])
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, "start_tender", previous, rule["to"], actor)
    return proposal


def _tender_status(value, field):
    if value not in TENDER_STATUSES:
        raise ValidationError(
            f"{field} must be one of: {', '.join(TENDER_STATUSES)}", field=field,
        )
    return value


def _selected_contractor(value, field):
    if value is None:
        return {"contractor_name": None, "contractor_contact": None, "awarded_amount": None}
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", field=field)
    result = {}
    if "name" in value:
        result["contractor_name"] = _text(200)(value["name"], f"{field}.name")
    if "contact_info" in value:
        result["contractor_contact"] = _text(200)(value["contact_info"], f"{field}.contact_info")
    if "awarded_amount" in value:
        result["awarded_amount"] = _amount()(value["awarded_amount"], f"{field}.awarded_amount")
    return result


def update_tender_process(
    proposal_id: int, fields: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    """Partial update of the tender record, including tender_status."""
    proposal = _load(proposal_id, expected_version)
    record = _require_editable(proposal, "tender_process", "update_tender_process")

    changes = _coerce_changes(fields, {**_TENDER_FIELDS, "tender_status": _tender_status})
    if "selected_contractor" in fields:
        changes.update(_selected_contractor(fields["selected_contractor"], "selected_contractor"))

    for field, value in changes.items():
        setattr(record, field, value)
    record.last_modified = _now()
    record.modified_by = actor.user_id
    _touch(proposal)
    _commit(proposal_id)
    logger.info("TenderProcess updated proposal_id=%s fields=%s", proposal_id, sorted(changes))
    return proposal


def award_tender(
    proposal_id: int,
    contractor_name: str,
    contact_info: str | None,
    awarded_amount,
    actor: Actor,
    *,
    expected_version: int | None = None,
) -> WorkProposal:
    """Record the winning contractor; only valid from Tender In Progress."""
    proposal = _load(proposal_id, expected_version)
    rule = _require_transition(proposal, "award_tender")
    name = _text(200, required=True)(contractor_name, "contractor_name")
    contact = _text(200)(contact_info, "contact_info")
    amount = _amount(required=True)(awarded_amount, "awarded_amount")

    now = _now()
    record = proposal.tender_process or TenderProcess()
    record.contractor_name = name
    record.contractor_contact = contact
    record.awarded_amount = amount
    record.awarded_by = actor.user_id
    record.tender_status = "Awarded"
    record.last_modified = now
    record.modified_by = actor.user_id
    proposal.tender_process = record

    previous = proposal.current_status
    _set_status(proposal, rule["to"])
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, "award_tender", previous, rule["to"], actor)
    return proposal


# ═════════════════════════════════════════════════════════════════════════════
# Work order & execution
# ═════════════════════════════════════════════════════════════════════════════


def create_work_order(
    proposal_id: int,
    work_order_number: str,
    date_of_work_order,
    contractor_or_gram_panchayat: str,
    remark: str | None,
    actor: Actor,
    *,
    attached_file: dict | None = None,
    expected_version: int | None = None,
) -> WorkProposal:
    """Issue the work order, start work and seed the first progress entry.

    Raises:
        ConflictError: the work order number is used by another proposal.
    """
    proposal = _load(proposal_id, expected_version)
    rule = _require_transition(proposal, "create_work_order")
    values = _coerce_changes(
        {
            "work_order_number": work_order_number,
            "date_of_work_order": date_of_work_order,
            "contractor_or_gram_panchayat": contractor_or_gram_panchayat,
            "remark": remark,
            "attached_file": attached_file,
        },
        _WORK_ORDER_FIELDS,
    )
    number = values["work_order_number"]
    if _work_order_number_taken(number, exclude_proposal_id=proposal.id):
        raise ConflictError("WorkOrder", "work_order_number", number)

    # Loading progress_entries autoflushes; read it before the work order is attached
    position = _next_position(proposal)

    now = _now()
    record = proposal.work_order or WorkOrder()
    for field, value in values.items():
        setattr(record, field, value)
    record.issued_by = actor.user_id
    record.last_modified = now
    record.modified_by = actor.user_id
    proposal.work_order = record

    proposal.progress_entries.append(WorkProgressEntry(
        position=position,
        sanctioned_amount=proposal.sanction_amount,
        total_amount_released_so_far=0,
        remaining_balance=proposal.sanction_amount,
        installments=[],
        progress_percentage=0,
        last_updated_by=actor.user_id,
    ))

    previous = proposal.current_status
    _set_status(proposal, rule["to"])
    _touch(proposal)
    _commit(proposal_id, conflict=ConflictError("WorkOrder", "work_order_number", number))
    _log_transition(proposal_id, "create_work_order", previous, rule["to"], actor)
    return proposal


def update_work_order(
    proposal_id: int, fields: dict, actor: Actor, *, expected_version: int | None = None,
) -> WorkProposal:
    """Partial update of the work order; a new number must stay unique."""
    proposal = _load(proposal_id, expected_version)
    record = _require_editable(proposal, "work_order", "update_work_order")
    changes = _coerce_changes(fields, _WORK_ORDER_FIELDS)

    number = changes.get("work_order_number")
    if number and number != record.work_order_number and _work_order_number_taken(
        number, exclude_proposal_id=proposal.id,
    ):
        raise ConflictError("WorkOrder", "work_order_number", number)

    for field, value in changes.items():
        setattr(record, field, value)
    record.last_modified = _now()
    record.modified_by = actor.user_id
    _touch(proposal)
    _commit(proposal_id, conflict=ConflictError("WorkOrder", "work_order_number", number))
    logger.info("WorkOrder updated proposal_id=%s fields=%s", proposal_id, sorted(changes))
    return proposal


def start_work(proposal_id: int, actor: Actor, *, expected_version: int | None = None) -> WorkProposal:
    """Move a proposal from Work Order Created to Work In Progress."""
    proposal = _load(proposal_id, expected_version)
    rule = _require_transition(proposal, "start_work")
    previous = proposal.current_status
    _set_status(proposal, rule["to"])
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, "start_work", previous, rule["to"], actor)
    return proposal


def update_work_status(
    proposal_id: int, status: str, payload: dict, actor: Actor,
    *, expected_version: int | None = None,
) -> WorkProposal:
    """Move an executing work between In Progress / Completed / Cancelled /
    Stopped / Not Started.

    Completing a work stamps completion_date (default today), final_cost and
    completion_documents from ``payload``.
    """
    proposal = _load(proposal_id, expected_version)
    _require_transition(proposal, "update_work_status")
    if status not in WORK_EXECUTION_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(WORK_EXECUTION_STATUSES))}",
            field="status",
        )

    completion = {}
    if status == WORK_COMPLETED:
        completion = _coerce_changes(payload, {
            "completion_date": _date(),
            "final_cost": _amount(),
            "completion_documents": _attachment_list,
        })
        if not completion.get("completion_date"):
            completion["completion_date"] = date.today()

    for field, value in completion.items():
        setattr(proposal, field, value)
    previous = proposal.current_status
    if status != previous:
        _set_status(proposal, status)
    _touch(proposal)
    _commit(proposal_id)
    _log_transition(proposal_id, "update_work_status", previous, status, actor)
    return proposal


# ═════════════════════════════════════════════════════════════════════════════
# Progress entries
# ═════════════════════════════════════════════════════════════════════════════


def _next_position(proposal: WorkProposal) -> int:
    positions = [e.position for e in proposal.progress_entries if e.position is not None]
    return max(positions, default=0) + 1


def add_progress(
    proposal_id: int, fields: dict, attachments: dict | None, actor: Actor,
    *, expected_version: int | None = None,
) -> WorkProgressEntry:
    """Append a progress entry and return it."""
    proposal = _load(proposal_id, expected_version)
    values = _coerce_changes(fields, _PROGRESS_FIELDS)
    values.update(_coerce_changes(attachments or {}, _PROGRESS_ATTACHMENTS))
    values.setdefault("installments", [])

    entry = WorkProgressEntry(
        position=_next_position(proposal),
        last_updated_by=actor.user_id,
        **values,
    )
    proposal.progress_entries.append(entry)
    _touch(proposal)
    _commit(proposal_id)
    logger.info(
        "WorkProgressEntry added id=%s proposal_id=%s position=%s",
        entry.id, proposal_id, entry.position,
    )
    return entry


def delete_progress(
    proposal_id: int, entry_id: int, actor: Actor, *, expected_version: int | None = None,
) -> bool:
    """Remove a progress entry. Returns False when it was already gone."""
    proposal = _load(proposal_id, expected_version)
    entry = next((e for e in proposal.progress_entries if e.id == entry_id), None)
    if entry is None:
        return False
    proposal.progress_entries.remove(entry)
    _touch(proposal)
    _commit(proposal_id)
    logger.info(
        "WorkProgressEntry deleted id=%s proposal_id=%s by %s", entry_id, proposal_id, actor.user_id,
    )
    return True


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def get_proposal(proposal_id: int) -> WorkProposal:
    proposal = db.session.get(WorkProposal, proposal_id)
    if proposal is None:
        raise NotFoundError(resource="WorkProposal", resource_id=proposal_id)
    return proposal


def get_appointed_engineer(proposal_id: int) -> str:
    """User id of the engineer allowed to record progress on the proposal."""
    return get_proposal(proposal_id).appointed_engineer_id


def list_progress(proposal_id: int) -> list[WorkProgressEntry]:
    return list(get_proposal(proposal_id).progress_entries)


def find_proposals_referencing(kind: str, ref_id: int) -> list[int]:
    """Ids of proposals that point at reference row ``kind``/``ref_id``."""
    if kind not in REFERENCE_KINDS:
        raise NotFoundError(resource=f"Reference kind '{kind}'")
    _model, attrs = REFERENCE_KINDS[kind]
    clauses = [getattr(WorkProposal, attr) == ref_id for attr in attrs]
    rows = (
        db.session.query(WorkProposal.id)
        .filter(or_(*clauses))
        .order_by(WorkProposal.id)
        .all()
    )
    return [row.id for row in rows]


def list_proposals(
    *,
    status: str | None = None,
    financial_year: str | None = None,
    department_id: int | None = None,
    is_tender_required: bool | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """Filtered, paginated proposals, most recently moved first.

    Returns:
        {"items": [WorkProposal, ...], "total", "page", "pages"}
    """
    if per_page is None:
        per_page = current_app.config.get("PROPOSALS_PER_PAGE", 20)
    per_page = max(1, min(per_page, 100))
    page = max(1, page)

    q = WorkProposal.query
    if status:
        q = q.filter(WorkProposal.current_status == status)
    if financial_year:
        q = q.filter(WorkProposal.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(or_(
            WorkProposal.work_department_id == department_id,
            WorkProposal.approving_department_id == department_id,
        ))
    if is_tender_required is not None:
        q = q.filter(WorkProposal.is_tender_required == is_tender_required)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            WorkProposal.name_of_work.ilike(pattern),
            WorkProposal.work_description.ilike(pattern),
            WorkProposal.serial_number.ilike(pattern),
        ))

    q = q.order_by(WorkProposal.last_status_update.desc(), WorkProposal.id.desc())
    paginated = q.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "items": paginated.items,
        "total": paginated.total,
        "page": page,
        "pages": paginated.pages,
    }
