"""
Work Proposal Blueprint
Request layer over app.services.work_proposal_lifecycle.

Endpoints (/api/v1/work-proposals):
  WorkProposal:            GET/POST /, GET/PUT/DELETE /<id>
  TechnicalApproval:       POST/PUT /<id>/technical-approval
  AdministrativeApproval:  POST/PUT /<id>/administrative-approval
  TenderProcess:           POST /<id>/tender/start, PUT /<id>/tender,
                           POST /<id>/tender/award
  WorkOrder:               POST/PUT /<id>/work-order,
                           POST /<id>/work-order/start-work
  Work status:             PUT  /<id>/status
  WorkProgress:            GET/POST /<id>/progress,
                           DELETE /<id>/progress/<entry_id>

Writes accept an optional ``expected_version`` (body) or ``If-Match``
header; a mismatch is a retryable 409.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import ADMIN, ENGINEER, get_current_actor, require_role
from app.core.exceptions import ValidationError
from app.services import work_proposal_lifecycle as lifecycle
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import parse_bool, query_int

logger = logging.getLogger(__name__)

work_proposal_bp = Blueprint(
    "work_proposal", __name__, url_prefix="/api/v1/work-proposals",
)
register_error_handlers(work_proposal_bp)


def _json_body() -> tuple[dict, int | None]:
    """Request JSON plus the caller's expected version, if any."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    data = dict(payload)
    raw = data.pop("expected_version", None)
    if raw is None:
        raw = request.headers.get("If-Match", "").strip().strip('"') or None
    if raw is None:
        return data, None
    try:
        return data, int(raw)
    except (TypeError, ValueError):
        raise ValidationError("expected_version must be an integer", field="expected_version") from None


def _can_record_progress(proposal_id: int) -> bool:
    actor = get_current_actor()
    if actor.has_role(ADMIN):
        return True
    return actor.user_id == lifecycle.get_appointed_engineer(proposal_id)


# ═════════════════════════════════════════════════════════════════════════════
# WorkProposal CRUD
# ═════════════════════════════════════════════════════════════════════════════


@work_proposal_bp.route("", methods=["GET"])
@work_proposal_bp.route("/", methods=["GET"])
def list_work_proposals():
    """List proposals filtered by status, year, department, tender flag, search."""
    args = request.args
    tender = args.get("is_tender_required")
    try:
        tender_flag = parse_bool(tender) if tender not in (None, "") else None
    except ValueError:
        raise ValidationError("is_tender_required must be true or false",
                              field="is_tender_required") from None
    result = lifecycle.list_proposals(
        status=args.get("status") or None,
        financial_year=args.get("financial_year") or None,
        department_id=query_int(args, "department_id"),
        is_tender_required=tender_flag,
        search=args.get("search") or None,
        page=query_int(args, "page", 1),
        per_page=query_int(args, "per_page"),
    )
    result["items"] = [p.to_dict(include_children=False) for p in result["items"]]
    return jsonify(result)


@work_proposal_bp.route("", methods=["POST"])
@work_proposal_bp.route("/", methods=["POST"])
@require_role(ENGINEER)
def create_work_proposal():
    data, _ = _json_body()
    proposal = lifecycle.create_proposal(data, get_current_actor().user_id)
    return jsonify(proposal.to_dict()), 201


@work_proposal_bp.route("/<int:proposal_id>", methods=["GET"])
def get_work_proposal(proposal_id):
    return jsonify(lifecycle.get_proposal(proposal_id).to_dict())


@work_proposal_bp.route("/<int:proposal_id>", methods=["PUT"])
@require_role(ADMIN)
def update_work_proposal(proposal_id):
    """Edit descriptive fields; current_status is a super-admin override."""
    data, version = _json_body()
    proposal = lifecycle.update_proposal(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>", methods=["DELETE"])
def delete_work_proposal(proposal_id):
    """Delete a proposal; only its submitter or a super admin may."""
    actor = get_current_actor()
    proposal = lifecycle.get_proposal(proposal_id)
    if not actor.is_super_admin and proposal.submitted_by != actor.user_id:
        return api_error(E.FORBIDDEN, "Only the submitter or a super admin can delete this proposal")
    _, version = _json_body()
    lifecycle.delete_proposal(proposal_id, actor, expected_version=version)
    return jsonify({"deleted": True})


# ═════════════════════════════════════════════════════════════════════════════
# Approvals
# ═════════════════════════════════════════════════════════════════════════════


@work_proposal_bp.route("/<int:proposal_id>/technical-approval", methods=["POST"])
@require_role(ADMIN)
def technical_approval(proposal_id):
    """Body: {"action": "approve"|"reject", ...approval fields}."""
    data, version = _json_body()
    action = data.pop("action", None)
    proposal = lifecycle.technical_approval(
        proposal_id, action, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/technical-approval", methods=["PUT"])
@require_role(ADMIN)
def update_technical_approval(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.update_technical_approval(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/administrative-approval", methods=["POST"])
@require_role(ADMIN)
def administrative_approval(proposal_id):
    data, version = _json_body()
    action = data.pop("action", None)
    proposal = lifecycle.administrative_approval(
        proposal_id, action, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/administrative-approval", methods=["PUT"])
@require_role(ADMIN)
def update_administrative_approval(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.update_administrative_approval(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Tender
# ═════════════════════════════════════════════════════════════════════════════


@work_proposal_bp.route("/<int:proposal_id>/tender/start", methods=["POST"])
@require_role(ADMIN)
def start_tender(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.start_tender_process(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/tender", methods=["PUT"])
@require_role(ADMIN)
def update_tender(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.update_tender_process(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/tender/award", methods=["POST"])
@require_role(ADMIN)
def award_tender(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.award_tender(
        proposal_id,
        data.get("contractor_name"),
        data.get("contact_info"),
        data.get("awarded_amount"),
        get_current_actor(),
        expected_version=version,
    )
    return jsonify(proposal.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Work order & execution
# ═════════════════════════════════════════════════════════════════════════════


@work_proposal_bp.route("/<int:proposal_id>/work-order", methods=["POST"])
@require_role(ADMIN)
def create_work_order(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.create_work_order(
        proposal_id,
        data.get("work_order_number"),
        data.get("date_of_work_order"),
        data.get("contractor_or_gram_panchayat"),
        data.get("remark"),
        get_current_actor(),
        attached_file=data.get("attached_file"),
        expected_version=version,
    )
    return jsonify(proposal.to_dict()), 201


@work_proposal_bp.route("/<int:proposal_id>/work-order", methods=["PUT"])
@require_role(ADMIN)
def update_work_order(proposal_id):
    data, version = _json_body()
    proposal = lifecycle.update_work_order(
        proposal_id, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/work-order/start-work", methods=["POST"])
@require_role(ADMIN)
def start_work(proposal_id):
    _, version = _json_body()
    proposal = lifecycle.start_work(proposal_id, get_current_actor(), expected_version=version)
    return jsonify(proposal.to_dict())


@work_proposal_bp.route("/<int:proposal_id>/status", methods=["PUT"])
@require_role(ADMIN)
def update_work_status(proposal_id):
    """Body: {"status": ..., "completion_date", "final_cost", "completion_documents"}."""
    data, version = _json_body()
    status = data.pop("status", None)
    proposal = lifecycle.update_work_status(
        proposal_id, status, data, get_current_actor(), expected_version=version,
    )
    return jsonify(proposal.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Progress
# ═════════════════════════════════════════════════════════════════════════════


@work_proposal_bp.route("/<int:proposal_id>/progress", methods=["GET"])
def list_progress(proposal_id):
    entries = lifecycle.list_progress(proposal_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@work_proposal_bp.route("/<int:proposal_id>/progress", methods=["POST"])
@require_role(ENGINEER)
def add_progress(proposal_id):
    """Append a progress entry (appointed engineer, admin or super admin)."""
    if not _can_record_progress(proposal_id):
        return api_error(E.FORBIDDEN, "Only the appointed engineer or an admin can record progress")
    data, version = _json_body()
    attachments = {
        key: data.pop(key) for key in ("progress_documents", "progress_images") if key in data
    }
    entry = lifecycle.add_progress(
        proposal_id, data, attachments, get_current_actor(), expected_version=version,
    )
    return jsonify(entry.to_dict()), 201


@work_proposal_bp.route("/<int:proposal_id>/progress/<int:entry_id>", methods=["DELETE"])
@require_role(ENGINEER)
def delete_progress(proposal_id, entry_id):
    if not _can_record_progress(proposal_id):
        return api_error(E.FORBIDDEN, "Only the appointed engineer or an admin can delete progress")
    _, version = _json_body()
    deleted = lifecycle.delete_progress(
        proposal_id, entry_id, get_current_actor(), expected_version=version,
    )
    return jsonify({"deleted": deleted})
