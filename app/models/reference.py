"""
Nirman Works Tracker
Reference (lookup) domain models.

Models:
    - City, Ward, Department, Scheme, WorkAgency, SDO, TypeOfWork,
      TypeOfLocation: named lookup rows referenced by WorkProposal.

All eight share ``ReferenceModel``: a unique trimmed name, an optional
description and an active flag. Rows are never deleted while a work
proposal still points at them; that guard lives in reference_service.
"""

from datetime import datetime, timezone

from app.models import db

REFERENCE_NAME_MAX = 200


class ReferenceModel(db.Model):
    """Abstract base for named lookup tables."""
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(REFERENCE_NAME_MAX), nullable=False, unique=True)
    description = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: {self.name}>"


class City(ReferenceModel):
    __tablename__ = "cities"


class Ward(ReferenceModel):
    __tablename__ = "wards"


class Department(ReferenceModel):
    """Work department; also used as the approving department."""
    __tablename__ = "departments"


class Scheme(ReferenceModel):
    __tablename__ = "schemes"


class WorkAgency(ReferenceModel):
    __tablename__ = "work_agencies"


class SDO(ReferenceModel):
    """Sub-divisional officer appointed to oversee a work."""
    __tablename__ = "sdos"


class TypeOfWork(ReferenceModel):
    __tablename__ = "types_of_work"


class TypeOfLocation(ReferenceModel):
    __tablename__ = "types_of_location"


# kind -> (model, WorkProposal FK attributes that point at it)
REFERENCE_KINDS = {
    "city": (City, ("city_id",)),
    "ward": (Ward, ("ward_id",)),
    "department": (Department, ("work_department_id", "approving_department_id")),
    "scheme": (Scheme, ("scheme_id",)),
    "work_agency": (WorkAgency, ("work_agency_id",)),
    "sdo": (SDO, ("appointed_sdo_id",)),
    "type_of_work": (TypeOfWork, ("type_of_work_id",)),
    "type_of_location": (TypeOfLocation, ("type_of_location_id",)),
}
