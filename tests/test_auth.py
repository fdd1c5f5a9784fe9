"""
Auth middleware tests.

Tests cover:
  - Role hierarchy and the Actor value object
  - API_KEYS parsing
  - API key authentication when API_AUTH_ENABLED=true
  - Actor headers (X-User-Id / X-User-Department) reaching the services
  - Health routes exempt from auth
"""

import pytest

from app.auth import (
    ADMIN,
    ENGINEER,
    SUPER_ADMIN,
    VIEWER,
    Actor,
    _parse_api_keys,
)

BASE = "/api/v1/work-proposals"


# ═══════════════════════════════════════════════════════════════
# Unit
# ═══════════════════════════════════════════════════════════════


class TestActor:

    @pytest.mark.parametrize("role,minimum,allowed", [
        (SUPER_ADMIN, ADMIN, True),
        (ADMIN, ADMIN, True),
        (ADMIN, SUPER_ADMIN, False),
        (ENGINEER, VIEWER, True),
        (ENGINEER, ADMIN, False),
        (VIEWER, ENGINEER, False),
        ("intern", VIEWER, False),
    ])
    def test_has_role(self, role, minimum, allowed):
        assert Actor("u", role).has_role(minimum) is allowed

    def test_is_super_admin(self):
        assert Actor("u", SUPER_ADMIN).is_super_admin
        assert not Actor("u", ADMIN).is_super_admin


class TestParseApiKeys:

    def test_empty(self, monkeypatch):
        monkeypatch.setenv("API_KEYS", "  ")
        assert _parse_api_keys() == {}

    def test_roles(self, monkeypatch):
        monkeypatch.setenv("API_KEYS", "k1:super_admin, k2:Engineer ,k3,k4:janitor")
        assert _parse_api_keys() == {
            "k1": SUPER_ADMIN,
            "k2": ENGINEER,
            "k3": VIEWER,
            "k4": VIEWER,
        }


# ═══════════════════════════════════════════════════════════════
# Middleware
# ═══════════════════════════════════════════════════════════════


@pytest.fixture()
def auth_on(monkeypatch):
    monkeypatch.setenv("API_AUTH_ENABLED", "true")
    monkeypatch.setenv("API_KEYS", "root-key:super_admin,eng-key:engineer,view-key:viewer")


class TestApiKeyAuth:

    def test_missing_key(self, client, auth_on):
        res = client.get(BASE)
        assert res.status_code == 401

    def test_invalid_key(self, client, auth_on):
        res = client.get(BASE, headers={"X-API-Key": "nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid API key"

    def test_query_param_key(self, client, auth_on):
        res = client.get(f"{BASE}?api_key=view-key")
        assert res.status_code == 200

    def test_key_decides_role(self, client, auth_on, proposal_data):
        headers = {"X-API-Key": "view-key", "X-User-Role": "super_admin"}
        res = client.post(BASE, json=proposal_data, headers=headers)
        assert res.status_code == 403

    def test_engineer_key_creates(self, client, auth_on, proposal_data):
        headers = {"X-API-Key": "eng-key", "X-User-Id": "eng-12", "X-User-Department": "PWD"}
        res = client.post(BASE, json=proposal_data, headers=headers)
        assert res.status_code == 201
        assert res.get_json()["submitted_by"] == "eng-12"

    def test_keys_not_configured(self, client, monkeypatch):
        monkeypatch.setenv("API_AUTH_ENABLED", "true")
        monkeypatch.delenv("API_KEYS", raising=False)
        res = client.get(BASE, headers={"X-API-Key": "anything"})
        assert res.status_code == 500

    def test_health_exempt(self, client, auth_on):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/ready").status_code == 200


class TestDevMode:

    def test_default_role_is_super_admin(self, client, proposal_data):
        res = client.post(BASE, json=proposal_data)
        assert res.status_code == 201
        assert res.get_json()["submitted_by"] == "anonymous"

    def test_unknown_role_header_falls_back(self, client):
        res = client.post("/api/v1/admin/city", json={"name": "Thane"},
                          headers={"X-User-Role": "wizard"})
        assert res.status_code == 201
