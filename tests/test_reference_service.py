"""
Reference data service tests (city, ward, department, scheme, ...).
"""

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ReferenceInUseError, ValidationError
from app.models.reference import REFERENCE_KINDS, City
from app.services import reference_service


class TestCreate:

    @pytest.mark.parametrize("kind", sorted(REFERENCE_KINDS))
    def test_create_each_kind(self, kind):
        obj = reference_service.create_reference(kind, {"name": "  Nagpur  "})
        assert obj.id is not None
        assert obj.name == "Nagpur"
        assert obj.is_active is True
        assert isinstance(obj, REFERENCE_KINDS[kind][0])

    def test_blank_name(self):
        with pytest.raises(ValidationError) as exc_info:
            reference_service.create_reference("city", {"name": "   "})
        assert exc_info.value.field == "name"

    def test_name_too_long(self):
        with pytest.raises(ValidationError, match="at most 200"):
            reference_service.create_reference("ward", {"name": "w" * 201})

    def test_duplicate_name_case_insensitive(self):
        reference_service.create_reference("city", {"name": "Wardha"})
        with pytest.raises(ConflictError) as exc_info:
            reference_service.create_reference("city", {"name": "WARDHA"})
        assert exc_info.value.field == "name"

    def test_same_name_in_other_kind(self):
        reference_service.create_reference("city", {"name": "Central"})
        ward = reference_service.create_reference("ward", {"name": "Central"})
        assert ward.id is not None

    def test_unknown_kind(self):
        with pytest.raises(NotFoundError):
            reference_service.create_reference("planet", {"name": "Mars"})

    def test_bad_active_flag(self):
        with pytest.raises(ValidationError):
            reference_service.create_reference("scheme", {"name": "PMGSY", "is_active": "maybe"})


class TestListAndUpdate:

    def test_list_sorted_and_active_only(self):
        reference_service.create_reference("city", {"name": "Pune"})
        reference_service.create_reference("city", {"name": "Akola", "is_active": False})

        assert [c.name for c in reference_service.list_references("city")] == ["Akola", "Pune"]
        active = reference_service.list_references("city", active_only=True)
        assert [c.name for c in active] == ["Pune"]

    def test_update(self):
        city = reference_service.create_reference("city", {"name": "Amravati"})
        updated = reference_service.update_reference(
            "city", city.id, {"name": "Amravati East", "description": "Zone 2", "is_active": "false"},
        )
        assert updated.name == "Amravati East"
        assert updated.description == "Zone 2"
        assert updated.is_active is False

    def test_rename_to_existing(self):
        reference_service.create_reference("city", {"name": "Latur"})
        other = reference_service.create_reference("city", {"name": "Beed"})
        with pytest.raises(ConflictError):
            reference_service.update_reference("city", other.id, {"name": "latur"})

    def test_rename_to_own_name_in_other_case(self):
        city = reference_service.create_reference("city", {"name": "Solapur"})
        updated = reference_service.update_reference("city", city.id, {"name": "SOLAPUR"})
        assert updated.name == "SOLAPUR"

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            reference_service.get_reference("city", 404)


class TestDelete:

    def test_delete_unused(self):
        city = reference_service.create_reference("city", {"name": "Nanded"})
        reference_service.delete_reference("city", city.id)
        assert City.query.count() == 0

    def test_delete_in_use(self, make_proposal, refs):
        proposal = make_proposal()
        with pytest.raises(ReferenceInUseError) as exc_info:
            reference_service.delete_reference("department", refs["department"])
        assert exc_info.value.proposal_ids == [proposal.id]
        assert reference_service.get_reference("department", refs["department"]) is not None

    def test_delete_after_proposal_removed(self, make_proposal, refs, admin):
        from app.services.work_proposal_lifecycle import delete_proposal

        proposal = make_proposal()
        delete_proposal(proposal.id, admin)
        reference_service.delete_reference("sdo", refs["sdo"])
        with pytest.raises(NotFoundError):
            reference_service.get_reference("sdo", refs["sdo"])
