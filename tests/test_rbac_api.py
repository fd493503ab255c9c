"""
HTTP surface: authentication, the permission guard and the RBAC endpoints.
"""

import logging
import uuid

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.core.database import get_db
from app.core.permission_cache import get_permission_cache
from app.dependencies import authz
from app.dependencies.authz import require_permission, require_super_admin
from app.models.user import User
from app.services.rbac_errors import PermissionBackendError
from conftest import HOSPITAL_A, auth_headers, grant_role

API = "/api/v1"


@pytest.fixture
def guarded_client(db, cache):
    """A small app whose routes are protected by the permission guard."""
    guarded = FastAPI()

    @guarded.get("/patients")
    def list_patients(current_user: User = Depends(require_permission("hospital.patients", "view"))):
        return {"user": str(current_user.id)}

    @guarded.put("/patients/history")
    def edit_history(
        current_user: User = Depends(require_permission("hospital.patients", "edit", field="medicalHistory")),
    ):
        return {"ok": True}

    @guarded.post("/platform")
    def platform_only(current_user: User = Depends(require_super_admin())):
        return {"ok": True}

    def override_get_db():
        yield db

    guarded.dependency_overrides[get_db] = override_get_db
    guarded.dependency_overrides[get_permission_cache] = lambda: cache
    return TestClient(guarded)


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get(f"{API}/rbac/my-permissions")
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get(f"{API}/rbac/my-permissions", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_me(self, client, doctor):
        response = client.get(f"{API}/auth/me", headers=auth_headers(doctor))
        assert response.status_code == 200
        body = response.json()
        assert body["email"] == doctor.email
        assert body["memberships"] == [{"hospital_id": str(HOSPITAL_A), "role": "DOCTOR", "status": "ACTIVE"}]

    def test_invalid_hospital_header(self, client, doctor):
        headers = auth_headers(doctor)
        headers["X-Hospital-ID"] = "not-a-uuid"
        response = client.get(f"{API}/rbac/my-permissions", headers=headers)
        assert response.status_code == 400


class TestPermissionGuard:
    def test_allows_granted_action(self, guarded_client, db, catalog, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view"])
        response = guarded_client.get("/patients", headers=auth_headers(doctor, HOSPITAL_A))
        assert response.status_code == 200
        assert response.json() == {"user": str(doctor.id)}

    def test_denies_with_reason(self, guarded_client, db, catalog, doctor):
        response = guarded_client.get("/patients", headers=auth_headers(doctor, HOSPITAL_A))
        assert response.status_code == 403
        assert response.json()["detail"] == "No permission for this resource"

    def test_denial_is_logged(self, guarded_client, catalog, doctor, caplog):
        with caplog.at_level(logging.WARNING, logger="app.dependencies.authz"):
            response = guarded_client.get("/patients", headers=auth_headers(doctor, HOSPITAL_A))

        assert response.status_code == 403
        assert f"Permission denied for user {doctor.id} on hospital.patients:view" in caplog.text

    def test_denies_without_hospital_context(self, guarded_client, db, catalog, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view"])
        response = guarded_client.get("/patients", headers=auth_headers(doctor))
        assert response.status_code == 403

    def test_field_level_guard(self, guarded_client, db, catalog, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view", "edit"], editable=["demographics"])
        response = guarded_client.put("/patients/history", headers=auth_headers(doctor, HOSPITAL_A))
        assert response.status_code == 403
        assert response.json()["detail"] == "Field 'medicalHistory' not accessible"

    def test_super_admin_passes_every_guard(self, guarded_client, catalog, super_admin):
        assert guarded_client.get("/patients", headers=auth_headers(super_admin)).status_code == 200
        assert guarded_client.put("/patients/history", headers=auth_headers(super_admin)).status_code == 200
        assert guarded_client.post("/platform", headers=auth_headers(super_admin)).status_code == 200

    def test_require_super_admin_rejects_others(self, guarded_client, doctor):
        assert guarded_client.post("/platform", headers=auth_headers(doctor, HOSPITAL_A)).status_code == 403

    def test_backend_failure_fails_closed(self, guarded_client, db, catalog, doctor, monkeypatch):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view"])

        def broken(*args, **kwargs):
            raise PermissionBackendError("database unavailable")

        monkeypatch.setattr(authz, "check_permission", broken)
        response = guarded_client.get("/patients", headers=auth_headers(doctor, HOSPITAL_A))
        assert response.status_code == 403
        assert "database unavailable" not in response.text


class TestCallerEndpoints:
    def test_my_permissions(self, client, db, catalog, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view", "add"], viewable=["demographics"])

        response = client.get(f"{API}/rbac/my-permissions", headers=auth_headers(doctor, HOSPITAL_A))

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "DOCTOR"
        assert body["is_super_admin"] is False
        [permission] = body["permissions"]
        assert permission["resource_code"] == "hospital.patients"
        assert permission["allowed_actions"] == ["view", "add"]
        assert permission["field_permissions"] == {"viewable": ["demographics"], "editable": []}
        assert permission["source"] == "role_default"

    def test_check(self, client, db, catalog, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view"])
        headers = auth_headers(doctor, HOSPITAL_A)

        allowed = client.post(
            f"{API}/rbac/check", json={"resource_code": "hospital.patients", "action": "view"}, headers=headers
        )
        denied = client.post(
            f"{API}/rbac/check", json={"resource_code": "hospital.patients", "action": "delete"}, headers=headers
        )

        assert allowed.json() == {"allowed": True, "reason": None}
        assert denied.status_code == 200
        assert denied.json() == {"allowed": False, "reason": "Action 'delete' not allowed"}

    def test_catalog_reads(self, client, catalog, doctor):
        headers = auth_headers(doctor)
        resources = client.get(f"{API}/rbac/resources", headers=headers)
        tree = client.get(f"{API}/rbac/resources/tree", headers=headers)
        roles = client.get(f"{API}/rbac/roles", headers=headers)

        assert resources.status_code == 200
        assert {r["code"] for r in resources.json()} == set(catalog)
        assert [n["code"] for n in tree.json()["admin"]] == ["admin.rbac"]
        assert len(roles.json()) == 9


class TestAdminEndpoints:
    def test_writes_require_super_admin(self, client, catalog, doctor):
        response = client.put(
            f"{API}/rbac/roles/DOCTOR/permissions",
            json={"resource_id": str(catalog["hospital.patients"].id), "allowed_actions": ["view"]},
            headers=auth_headers(doctor, HOSPITAL_A),
        )
        assert response.status_code == 403

    def test_update_and_read_role_permissions(self, client, catalog, super_admin, doctor):
        admin_headers = auth_headers(super_admin)
        response = client.put(
            f"{API}/rbac/roles/DOCTOR/permissions",
            json={
                "resource_id": str(catalog["hospital.patients"].id),
                "allowed_actions": ["EDIT", "view"],
                "field_permissions": {"viewable": ["*"], "editable": ["medicalHistory"]},
            },
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["allowed_actions"] == ["view", "edit"]

        listed = client.get(f"{API}/rbac/roles/DOCTOR/permissions", headers=admin_headers).json()
        assert [p["resource_code"] for p in listed] == ["hospital.patients"]

        check = client.post(
            f"{API}/rbac/check",
            json={"resource_code": "hospital.patients", "action": "edit", "field": "medicalHistory"},
            headers=auth_headers(doctor, HOSPITAL_A),
        )
        assert check.json()["allowed"] is True

    def test_invalid_writes_map_to_400(self, client, catalog, super_admin):
        headers = auth_headers(super_admin)
        body = {"resource_id": str(catalog["hospital.doctors.list"].id), "allowed_actions": ["delete"]}

        assert client.put(f"{API}/rbac/roles/DOCTOR/permissions", json=body, headers=headers).status_code == 400
        assert client.put(f"{API}/rbac/roles/SUPER_ADMIN/permissions", json=body, headers=headers).status_code == 400

        unknown_action = {"resource_id": str(catalog["hospital.doctors"].id), "allowed_actions": ["fly"]}
        response = client.put(f"{API}/rbac/roles/DOCTOR/permissions", json=unknown_action, headers=headers)
        assert response.status_code == 422

    def test_unknown_resource_maps_to_404(self, client, catalog, super_admin):
        response = client.put(
            f"{API}/rbac/roles/DOCTOR/permissions",
            json={"resource_id": str(uuid.uuid4()), "allowed_actions": ["view"]},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 404

    def test_bulk_failure_reports_saved_count(self, client, catalog, super_admin):
        response = client.put(
            f"{API}/rbac/roles/HOSPITAL_STAFF/permissions/bulk",
            json={
                "permissions": [
                    {"resource_id": str(catalog["hospital.patients"].id), "allowed_actions": ["view"]},
                    {"resource_id": str(catalog["hospital.doctors.list"].id), "allowed_actions": ["delete"]},
                ]
            },
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["updated"] == 1
        assert detail["failed_index"] == 1

    def test_hospital_override_lifecycle(self, client, db, catalog, super_admin, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view", "edit"])
        admin_headers = auth_headers(super_admin)
        doctor_headers = auth_headers(doctor, HOSPITAL_A)
        edit_check = {"resource_code": "hospital.patients", "action": "edit"}

        created = client.put(
            f"{API}/rbac/hospitals/{HOSPITAL_A}/roles/DOCTOR",
            json={"resource_id": str(catalog["hospital.patients"].id), "allowed_actions": ["view"]},
            headers=admin_headers,
        )
        assert created.status_code == 200
        assert client.post(f"{API}/rbac/check", json=edit_check, headers=doctor_headers).json()["allowed"] is False

        overrides = client.get(f"{API}/rbac/hospitals/{HOSPITAL_A}/overrides", headers=admin_headers).json()
        assert [o["id"] for o in overrides] == [created.json()["id"]]

        deleted = client.delete(
            f"{API}/rbac/hospitals/{HOSPITAL_A}/overrides/{created.json()['id']}", headers=admin_headers
        )
        assert deleted.status_code == 204
        assert client.post(f"{API}/rbac/check", json=edit_check, headers=doctor_headers).json()["allowed"] is True

        missing = client.delete(
            f"{API}/rbac/hospitals/{HOSPITAL_A}/overrides/{created.json()['id']}", headers=admin_headers
        )
        assert missing.status_code == 404

    def test_user_override_lifecycle(self, client, db, catalog, super_admin, doctor):
        grant_role(db, "DOCTOR", catalog["hospital.patients"], ["view", "edit"])
        admin_headers = auth_headers(super_admin)

        created = client.put(
            f"{API}/rbac/users/{doctor.id}/overrides",
            json={
                "resource_id": str(catalog["hospital.patients"].id),
                "hospital_id": str(HOSPITAL_A),
                "allowed_actions": ["view", "edit"],
                "denied_actions": ["edit"],
            },
            headers=admin_headers,
        )
        assert created.status_code == 200
        assert created.json()["denied_actions"] == ["edit"]

        listed = client.get(f"{API}/rbac/users/{doctor.id}/overrides", headers=admin_headers).json()
        assert len(listed) == 1

        deleted = client.delete(
            f"{API}/rbac/users/{doctor.id}/overrides/{created.json()['id']}", headers=admin_headers
        )
        assert deleted.status_code == 204

    def test_permission_tree_and_toggle(self, client, catalog, super_admin):
        headers = auth_headers(super_admin)

        toggled = client.post(
            f"{API}/rbac/roles/DOCTOR/toggle",
            json={"resource_code": "hospital.doctors", "action": "VIEW"},
            headers=headers,
        )
        assert toggled.status_code == 200
        assert toggled.json() == {"success": True, "updated": 3}

        tree = client.get(f"{API}/rbac/roles/DOCTOR/tree", headers=headers).json()
        doctors = next(n for n in tree["hospital"] if n["code"] == "hospital.doctors")
        assert doctors["granted"] == ["view"]
        assert doctors["states"]["view"] == "checked"
        assert doctors["states"]["add"] == "unchecked"

    def test_resource_deactivation(self, client, catalog, super_admin):
        headers = auth_headers(super_admin)
        response = client.patch(f"{API}/rbac/resources/hospital.patients", json={"is_active": False}, headers=headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        codes = {r["code"] for r in client.get(f"{API}/rbac/resources", headers=headers).json()}
        assert "hospital.patients" not in codes

        missing = client.patch(f"{API}/rbac/resources/hospital.nope", json={"is_active": False}, headers=headers)
        assert missing.status_code == 404
