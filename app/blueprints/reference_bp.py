"""
Reference Data Blueprint.

Endpoints (/api/v1/admin/<kind>, kind ∈ city, ward, department, scheme,
work_agency, sdo, type_of_work, type_of_location; hyphens accepted):
    GET    /api/v1/admin/<kind>            list (?active=true)
    POST   /api/v1/admin/<kind>            create        (super_admin)
    GET    /api/v1/admin/<kind>/<id>       get
    PUT    /api/v1/admin/<kind>/<id>       update        (super_admin)
    DELETE /api/v1/admin/<kind>/<id>       delete        (super_admin)
"""

from flask import Blueprint, jsonify, request

from app.auth import SUPER_ADMIN, require_role
from app.core.exceptions import ValidationError
from app.services import reference_service
from app.utils.errors import register_error_handlers
from app.utils.helpers import parse_bool

reference_bp = Blueprint("reference", __name__, url_prefix="/api/v1/admin")
register_error_handlers(reference_bp)


def _kind(raw: str) -> str:
    return raw.replace("-", "_").lower()


def _json_object() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    return data


@reference_bp.route("/<kind>", methods=["GET"])
def list_references(kind):
    try:
        active_only = parse_bool(request.args.get("active"))
    except ValueError:
        active_only = False
    items = reference_service.list_references(_kind(kind), active_only=active_only)
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@reference_bp.route("/<kind>", methods=["POST"])
@require_role(SUPER_ADMIN)
def create_reference(kind):
    data = _json_object()
    obj = reference_service.create_reference(_kind(kind), data)
    return jsonify(obj.to_dict()), 201


@reference_bp.route("/<kind>/<int:ref_id>", methods=["GET"])
def get_reference(kind, ref_id):
    return jsonify(reference_service.get_reference(_kind(kind), ref_id).to_dict())


@reference_bp.route("/<kind>/<int:ref_id>", methods=["PUT"])
@require_role(SUPER_ADMIN)
def update_reference(kind, ref_id):
    data = _json_object()
    obj = reference_service.update_reference(_kind(kind), ref_id, data)
    return jsonify(obj.to_dict())


@reference_bp.route("/<kind>/<int:ref_id>", methods=["DELETE"])
@require_role(SUPER_ADMIN)
def delete_reference(kind, ref_id):
    reference_service.delete_reference(_kind(kind), ref_id)
    return jsonify({"deleted": True})
