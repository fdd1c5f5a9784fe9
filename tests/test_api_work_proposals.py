"""
HTTP tests for /api/v1/work-proposals.

Auth is disabled in TestingConfig; the caller's role comes from the
X-User-Role header (super_admin when absent) and the user id from X-User-Id.

Test blocks:
  1. Create / get / list
  2. Update / delete (ownership, status override)
  3. Approval, tender and work order routes
  4. Progress routes (appointed engineer)
  5. Error mapping (404 / 409 / 422 / 415) and optimistic concurrency
"""

import pytest

from app.models.work_proposal import (
    PENDING_ADMINISTRATIVE,
    PENDING_TECHNICAL,
    PENDING_WORK_ORDER,
    WORK_COMPLETED,
    WORK_IN_PROGRESS,
)

BASE = "/api/v1/work-proposals"


def _as(role, user_id="u-1"):
    return {"X-User-Role": role, "X-User-Id": user_id}


ADMIN = _as("admin", "admin-1")
ENGINEER = _as("engineer", "engineer-7")
OTHER_ENGINEER = _as("engineer", "engineer-99")
VIEWER = _as("viewer", "viewer-1")


@pytest.fixture()
def created(client, proposal_data):
    res = client.post(BASE, json=proposal_data, headers=_as("engineer", "submitter-1"))
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Create / get / list
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateAndRead:

    def test_create(self, created):
        assert created["current_status"] == PENDING_TECHNICAL
        assert created["work_progress_stage"] == PENDING_TECHNICAL
        assert created["submitted_by"] == "submitter-1"
        assert created["serial_number"].startswith("WP")
        assert created["version"] == 1
        assert created["technical_approval"] is None
        assert created["work_progress"] == []
        assert created["scheme"]["name"] == "Test scheme"

    def test_create_requires_engineer(self, client, proposal_data):
        res = client.post(BASE, json=proposal_data, headers=VIEWER)
        assert res.status_code == 403

    def test_create_missing_field(self, client, proposal_data):
        del proposal_data["ward_id"]
        res = client.post(BASE, json=proposal_data, headers=ENGINEER)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert "ward_id" in body["details"]

    def test_create_invalid_value(self, client, proposal_data):
        proposal_data["sanction_amount"] = "lots"
        res = client.post(BASE, json=proposal_data, headers=ENGINEER)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    @pytest.mark.parametrize("payload", [[1, 2], "x", 7])
    def test_create_non_object_body(self, client, payload):
        res = client.post(BASE, json=payload, headers=ENGINEER)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "body" in body["details"]

    def test_get(self, client, created):
        res = client.get(f"{BASE}/{created['id']}", headers=VIEWER)
        assert res.status_code == 200
        assert res.get_json()["id"] == created["id"]

    def test_get_missing(self, client):
        res = client.get(f"{BASE}/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list(self, client, created, make_proposal):
        make_proposal(name_of_work="Community hall", is_tender_required=True)

        res = client.get(BASE, headers=VIEWER)
        body = res.get_json()
        assert res.status_code == 200
        assert body["total"] == 2
        assert "technical_approval" not in body["items"][0]

        res = client.get(f"{BASE}?is_tender_required=true&search=hall")
        assert [p["name_of_work"] for p in res.get_json()["items"]] == ["Community hall"]

        res = client.get(f"{BASE}?per_page=1&page=2")
        body = res.get_json()
        assert body["page"] == 2
        assert body["pages"] == 2
        assert len(body["items"]) == 1

    def test_list_bad_flag(self, client):
        res = client.get(f"{BASE}?is_tender_required=sometimes")
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# 2. Update / delete
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdateAndDelete:

    def test_update(self, client, created):
        res = client.put(f"{BASE}/{created['id']}", json={"assembly": "North"}, headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["assembly"] == "North"
        assert res.get_json()["version"] == 2

    def test_update_requires_admin(self, client, created):
        res = client.put(f"{BASE}/{created['id']}", json={"assembly": "North"}, headers=ENGINEER)
        assert res.status_code == 403

    def test_status_override_by_admin_rejected(self, client, created):
        res = client.put(
            f"{BASE}/{created['id']}", json={"current_status": WORK_COMPLETED}, headers=ADMIN,
        )
        assert res.status_code == 422

    def test_status_override_by_super_admin(self, client, created):
        res = client.put(
            f"{BASE}/{created['id']}", json={"current_status": WORK_COMPLETED},
            headers=_as("super_admin", "root-1"),
        )
        assert res.status_code == 200
        assert res.get_json()["work_progress_stage"] == WORK_COMPLETED

    def test_delete_by_submitter(self, client, created):
        res = client.delete(f"{BASE}/{created['id']}", headers=_as("engineer", "submitter-1"))
        assert res.status_code == 200
        assert client.get(f"{BASE}/{created['id']}").status_code == 404

    def test_delete_by_other_user(self, client, created):
        res = client.delete(f"{BASE}/{created['id']}", headers=ADMIN)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_delete_by_super_admin(self, client, created):
        res = client.delete(f"{BASE}/{created['id']}", headers=_as("super_admin", "root-1"))
        assert res.status_code == 200

    def test_delete_wrong_state(self, client, created, advance):
        from app.services.work_proposal_lifecycle import get_proposal

        advance(get_proposal(created["id"]), PENDING_WORK_ORDER)
        res = client.delete(f"{BASE}/{created['id']}", headers=_as("engineer", "submitter-1"))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["actual"] == PENDING_WORK_ORDER


# ═════════════════════════════════════════════════════════════════════════════
# 3. Lifecycle routes
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycleRoutes:

    def test_full_pipeline_with_tender(self, client, make_proposal):
        pid = make_proposal(is_tender_required=True).id

        res = client.post(f"{BASE}/{pid}/technical-approval",
                          json={"action": "approve", "approval_number": "TA-5"}, headers=ADMIN)
        assert res.status_code == 200, res.get_json()
        assert res.get_json()["current_status"] == PENDING_ADMINISTRATIVE

        res = client.put(f"{BASE}/{pid}/technical-approval",
                         json={"remarks": "Site visited"}, headers=ADMIN)
        assert res.get_json()["technical_approval"]["remarks"] == "Site visited"

        res = client.post(f"{BASE}/{pid}/administrative-approval",
                          json={"action": "approve", "approval_number": "AA-5"}, headers=ADMIN)
        assert res.get_json()["current_status"] == "Pending Tender"

        res = client.put(f"{BASE}/{pid}/administrative-approval",
                         json={"approved_amount": 1490000}, headers=ADMIN)
        assert res.get_json()["administrative_approval"]["approved_amount"] == 1490000

        res = client.post(f"{BASE}/{pid}/tender/start",
                          json={"tender_title": "CC road", "tender_number": "T-5"}, headers=ADMIN)
        assert res.get_json()["current_status"] == PENDING_WORK_ORDER
        assert res.get_json()["tender_process"]["tender_status"] == "Notice Published"

        res = client.put(f"{BASE}/{pid}/tender", json={"tender_status": "Awarded"}, headers=ADMIN)
        assert res.get_json()["tender_process"]["tender_status"] == "Awarded"

        res = client.post(f"{BASE}/{pid}/work-order", json={
            "work_order_number": "WO-5", "date_of_work_order": "2024-06-01",
            "contractor_or_gram_panchayat": "Shree Builders",
        }, headers=ADMIN)
        assert res.status_code == 201
        body = res.get_json()
        assert body["current_status"] == WORK_IN_PROGRESS
        assert len(body["work_progress"]) == 1

        res = client.put(f"{BASE}/{pid}/work-order", json={"remark": "Mobilised"}, headers=ADMIN)
        assert res.get_json()["work_order"]["remark"] == "Mobilised"

        res = client.put(f"{BASE}/{pid}/status", json={
            "status": WORK_COMPLETED, "completion_date": "2024-11-30", "final_cost": 1470000,
        }, headers=ADMIN)
        body = res.get_json()
        assert body["current_status"] == WORK_COMPLETED
        assert body["completion_date"] == "2024-11-30"
        assert body["overall_progress"] == 100

    def test_approval_requires_admin(self, client, created):
        res = client.post(f"{BASE}/{created['id']}/technical-approval",
                          json={"action": "approve", "approval_number": "TA-1"}, headers=ENGINEER)
        assert res.status_code == 403

    def test_approval_without_action(self, client, created):
        res = client.post(f"{BASE}/{created['id']}/technical-approval",
                          json={"approval_number": "TA-1"}, headers=ADMIN)
        assert res.status_code == 422

    def test_wrong_state(self, client, created):
        res = client.post(f"{BASE}/{created['id']}/tender/start", json={}, headers=ADMIN)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["action"] == "start_tender"
        assert body["details"]["expected"] == ["Pending Tender"]
        assert body["details"]["actual"] == PENDING_TECHNICAL

    def test_award_route(self, client, created, force_status):
        from app.services.work_proposal_lifecycle import get_proposal

        force_status(get_proposal(created["id"]), "Tender In Progress")
        res = client.post(f"{BASE}/{created['id']}/tender/award", json={
            "contractor_name": "Shree Builders", "contact_info": "98765 43210", "awarded_amount": 1400000,
        }, headers=ADMIN)
        assert res.status_code == 200
        contractor = res.get_json()["tender_process"]["selected_contractor"]
        assert contractor["name"] == "Shree Builders"

    def test_start_work_route(self, client, created, force_status):
        from app.services.work_proposal_lifecycle import get_proposal

        force_status(get_proposal(created["id"]), "Work Order Created")
        res = client.post(f"{BASE}/{created['id']}/work-order/start-work", headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["current_status"] == WORK_IN_PROGRESS

    def test_duplicate_work_order_number(self, client, make_proposal, advance):
        first = advance(make_proposal(), PENDING_WORK_ORDER)
        second = advance(make_proposal(), PENDING_WORK_ORDER)
        payload = {"work_order_number": "WO-DUP", "date_of_work_order": "2024-06-01",
                   "contractor_or_gram_panchayat": "A"}

        assert client.post(f"{BASE}/{first.id}/work-order", json=payload, headers=ADMIN).status_code == 201
        res = client.post(f"{BASE}/{second.id}/work-order", json=payload, headers=ADMIN)

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_DUPLICATE"
        assert body["details"] == {"field": "work_order_number", "retryable": False}


# ═════════════════════════════════════════════════════════════════════════════
# 4. Progress
# ═════════════════════════════════════════════════════════════════════════════


class TestProgressRoutes:

    @pytest.fixture()
    def running_id(self, make_proposal, advance):
        return advance(make_proposal(), WORK_IN_PROGRESS).id

    def test_appointed_engineer_records_progress(self, client, running_id):
        res = client.post(f"{BASE}/{running_id}/progress", json={
            "progress_percentage": 40,
            "installments": [{"installment_no": 1, "amount": 300000, "date": "2024-07-01"}],
            "progress_images": [{"key": "p/1.jpg", "url": "https://files.example.org/p/1.jpg"}],
        }, headers=ENGINEER)
        assert res.status_code == 201, res.get_json()
        entry = res.get_json()
        assert entry["position"] == 2
        assert entry["last_updated_by"] == "engineer-7"
        assert entry["progress_images"][0]["storage_class"] == "STANDARD"

        res = client.get(f"{BASE}/{running_id}/progress", headers=VIEWER)
        assert res.get_json()["total"] == 2

    def test_other_engineer_forbidden(self, client, running_id):
        res = client.post(f"{BASE}/{running_id}/progress", json={"progress_percentage": 40},
                          headers=OTHER_ENGINEER)
        assert res.status_code == 403

    def test_admin_may_record_progress(self, client, running_id):
        res = client.post(f"{BASE}/{running_id}/progress", json={}, headers=ADMIN)
        assert res.status_code == 201

    def test_delete_progress(self, client, running_id):
        entry_id = client.post(f"{BASE}/{running_id}/progress", json={},
                               headers=ENGINEER).get_json()["id"]

        res = client.delete(f"{BASE}/{running_id}/progress/{entry_id}", headers=ENGINEER)
        assert res.get_json() == {"deleted": True}
        res = client.delete(f"{BASE}/{running_id}/progress/{entry_id}", headers=ENGINEER)
        assert res.status_code == 200
        assert res.get_json() == {"deleted": False}

    def test_progress_for_missing_proposal(self, client):
        res = client.post(f"{BASE}/4040/progress", json={}, headers=ENGINEER)
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 5. Guards and concurrency over HTTP
# ═════════════════════════════════════════════════════════════════════════════


class TestGuards:

    def test_non_json_write_rejected(self, client, created):
        res = client.put(f"{BASE}/{created['id']}", data="assembly=North",
                         content_type="application/x-www-form-urlencoded", headers=ADMIN)
        assert res.status_code == 415

    def test_stale_expected_version(self, client, created):
        pid = created["id"]
        client.put(f"{BASE}/{pid}", json={"assembly": "North"}, headers=ADMIN)

        res = client.put(f"{BASE}/{pid}", json={"assembly": "South", "expected_version": 1},
                         headers=ADMIN)

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_VERSION"
        assert body["details"]["retryable"] is True

    def test_if_match_header(self, client, created):
        pid = created["id"]
        headers = {**ADMIN, "If-Match": '"1"'}
        res = client.post(f"{BASE}/{pid}/technical-approval",
                          json={"action": "approve", "approval_number": "TA-1"}, headers=headers)
        assert res.status_code == 200
        res = client.put(f"{BASE}/{pid}", json={"assembly": "x"}, headers=headers)
        assert res.status_code == 409

    def test_bad_expected_version(self, client, created):
        res = client.put(f"{BASE}/{created['id']}", json={"expected_version": "latest"},
                         headers=ADMIN)
        assert res.status_code == 422

    def test_request_id_header(self, client, created):
        res = client.get(f"{BASE}/{created['id']}", headers={"X-Request-ID": "req-42"})
        assert res.headers["X-Request-ID"] == "req-42"
        assert "X-Request-Duration-Ms" in res.headers
