"""
Reference Data — Service Layer.

CRUD for the eight lookup tables that work proposals point at:
city, ward, department, scheme, work_agency, sdo, type_of_work,
type_of_location.

Rules:
    - name is trimmed, required, at most 200 characters and unique per kind
    - a row still referenced by any work proposal cannot be deleted
      (ReferenceInUseError carries the referencing proposal ids)
    - an unknown kind is a NotFoundError
"""

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ReferenceInUseError,
    StorageError,
    ValidationError,
)
from app.models import db
from app.models.reference import REFERENCE_KINDS, REFERENCE_NAME_MAX
from app.services.work_proposal_lifecycle import find_proposals_referencing
from app.utils.helpers import parse_bool

logger = logging.getLogger(__name__)


def _model_for(kind: str):
    try:
        return REFERENCE_KINDS[kind][0]
    except KeyError:
        raise NotFoundError(resource=f"Reference kind '{kind}'") from None


def _clean_name(value) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        raise ValidationError("name is required", field="name")
    if len(name) > REFERENCE_NAME_MAX:
        raise ValidationError(
            f"name must be at most {REFERENCE_NAME_MAX} characters", field="name",
        )
    return name


def _clean_description(value):
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > 500:
        raise ValidationError("description must be at most 500 characters", field="description")
    return text or None


def _name_taken(model, name: str, exclude_id: int | None = None) -> bool:
    q = model.query.filter(func.lower(model.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def _commit(model, name: str | None = None) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s: %s", model.__name__, exc.orig)
        raise ConflictError(model.__name__, "name", name) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error while saving %s", model.__name__)
        raise StorageError(f"Could not save {model.__name__}") from exc


def list_references(kind: str, *, active_only: bool = False) -> list:
    model = _model_for(kind)
    q = model.query
    if active_only:
        q = q.filter(model.is_active.is_(True))
    return q.order_by(model.name).all()


def get_reference(kind: str, ref_id: int):
    model = _model_for(kind)
    obj = db.session.get(model, ref_id)
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=ref_id)
    return obj


def create_reference(kind: str, data: dict):
    """Create a lookup row.

    Raises:
        ValidationError: blank or over-long name.
        ConflictError: the name already exists for this kind (case-insensitive).
    """
    model = _model_for(kind)
    name = _clean_name(data.get("name"))
    if _name_taken(model, name):
        raise ConflictError(model.__name__, "name", name)

    obj = model(
        name=name,
        description=_clean_description(data.get("description")),
        is_active=_parse_active(data.get("is_active", True)),
    )
    db.session.add(obj)
    _commit(model, name)
    logger.info("%s created id=%s name=%s", model.__name__, obj.id, name)
    return obj


def update_reference(kind: str, ref_id: int, data: dict):
    obj = get_reference(kind, ref_id)
    model = type(obj)

    changes = {}
    if "name" in data:
        changes["name"] = _clean_name(data["name"])
        if _name_taken(model, changes["name"], exclude_id=obj.id):
            raise ConflictError(model.__name__, "name", changes["name"])
    if "description" in data:
        changes["description"] = _clean_description(data["description"])
    if "is_active" in data:
        changes["is_active"] = _parse_active(data["is_active"])

    for field, value in changes.items():
        setattr(obj, field, value)
    _commit(model, changes.get("name"))
    logger.info("%s updated id=%s fields=%s", model.__name__, obj.id, sorted(changes))
    return obj


def delete_reference(kind: str, ref_id: int) -> None:
    """Delete a lookup row that no work proposal uses.

    Raises:
        ReferenceInUseError: proposals still point at the row.
    """
    obj = get_reference(kind, ref_id)
    model = type(obj)
    proposal_ids = find_proposals_referencing(kind, ref_id)
    if proposal_ids:
        logger.warning(
            "%s id=%s delete refused: referenced by %d proposal(s)",
            model.__name__, ref_id, len(proposal_ids),
        )
        raise ReferenceInUseError(model.__name__, ref_id, proposal_ids)

    db.session.delete(obj)
    _commit(model)
    logger.info("%s deleted id=%s", model.__name__, ref_id)


def _parse_active(value) -> bool:
    try:
        return parse_bool(value)
    except ValueError:
        raise ValidationError("is_active must be true or false", field="is_active") from None
