"""
Keyed grant stores: get, upsert and delete against the grant tables.
"""

from app.services.permission_resolver import FieldAccess, HospitalOverride, RoleDefault, UserOverride
from app.services.rbac_store_service import (
    HospitalGrantKey,
    HospitalOverrideStore,
    RoleGrantKey,
    RolePermissionStore,
    UserGrantKey,
    UserOverrideStore,
)
from conftest import HOSPITAL_A, HOSPITAL_B


class TestRolePermissionStore:
    def test_get_missing_key(self, db, catalog):
        store = RolePermissionStore(db)
        assert store.get(RoleGrantKey("DOCTOR", catalog["hospital.patients"].id)) is None

    def test_upsert_then_get(self, db, catalog):
        store = RolePermissionStore(db)
        key = RoleGrantKey("DOCTOR", catalog["hospital.patients"].id)

        store.upsert(
            key,
            RoleDefault(
                role="DOCTOR",
                resource_id=key.resource_id,
                allowed_actions=frozenset({"edit", "view"}),
                field_access=FieldAccess(viewable=("demographics",)),
            ),
        )
        db.commit()

        grant = store.get(key)
        assert grant.allowed_actions == frozenset({"view", "edit"})
        assert grant.field_access.viewable == ("demographics",)
        assert grant.id is not None

    def test_upsert_replaces_existing_row(self, db, catalog):
        store = RolePermissionStore(db)
        key = RoleGrantKey("DOCTOR", catalog["hospital.patients"].id)
        first = store.upsert(key, RoleDefault(role="DOCTOR", resource_id=key.resource_id, allowed_actions=frozenset({"view"})))
        second = store.upsert(key, RoleDefault(role="DOCTOR", resource_id=key.resource_id, allowed_actions=frozenset({"add"})))
        db.commit()

        assert first.id == second.id
        assert second.allowed_actions == ["add"]
        assert len(store.list_for_role("DOCTOR")) == 1

    def test_delete(self, db, catalog):
        store = RolePermissionStore(db)
        key = RoleGrantKey("DOCTOR", catalog["hospital.patients"].id)
        store.upsert(key, RoleDefault(role="DOCTOR", resource_id=key.resource_id, allowed_actions=frozenset({"view"})))
        db.commit()

        assert store.delete(key) is True
        db.commit()
        assert store.get(key) is None
        assert store.delete(key) is False


class TestHospitalOverrideStore:
    def test_keys_are_scoped_by_hospital(self, db, catalog):
        store = HospitalOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        key_a = HospitalGrantKey(HOSPITAL_A, "DOCTOR", resource_id)

        store.upsert(
            key_a,
            HospitalOverride(
                hospital_id=HOSPITAL_A, role="DOCTOR", resource_id=resource_id, allowed_actions=frozenset({"view"})
            ),
        )
        db.commit()

        assert store.get(key_a).allowed_actions == frozenset({"view"})
        assert store.get(HospitalGrantKey(HOSPITAL_B, "DOCTOR", resource_id)) is None
        assert store.get(HospitalGrantKey(HOSPITAL_A, "HOSPITAL_STAFF", resource_id)) is None

    def test_delete(self, db, catalog):
        store = HospitalOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        key = HospitalGrantKey(HOSPITAL_A, "DOCTOR", resource_id)
        store.upsert(
            key,
            HospitalOverride(hospital_id=HOSPITAL_A, role="DOCTOR", resource_id=resource_id, allowed_actions=frozenset()),
        )
        db.commit()

        assert store.delete(key) is True
        assert store.get(key) is None


class TestUserOverrideStore:
    def _grant(self, user_id, resource_id, hospital_id, allowed, denied=frozenset()):
        return UserOverride(
            user_id=user_id,
            resource_id=resource_id,
            hospital_id=hospital_id,
            allowed_actions=frozenset(allowed),
            denied_actions=frozenset(denied),
        )

    def test_global_and_scoped_rows_are_distinct_keys(self, db, catalog, doctor):
        store = UserOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        global_key = UserGrantKey(doctor.id, resource_id, None)
        scoped_key = UserGrantKey(doctor.id, resource_id, HOSPITAL_A)

        store.upsert(global_key, self._grant(doctor.id, resource_id, None, {"view"}))
        store.upsert(scoped_key, self._grant(doctor.id, resource_id, HOSPITAL_A, {"view", "edit"}, {"edit"}))
        db.commit()

        global_grant = store.get(global_key)
        scoped_grant = store.get(scoped_key)
        assert global_grant.hospital_id is None
        assert global_grant.allowed_actions == frozenset({"view"})
        assert scoped_grant.hospital_id == HOSPITAL_A
        assert scoped_grant.denied_actions == frozenset({"edit"})
        assert store.get(UserGrantKey(doctor.id, resource_id, HOSPITAL_B)) is None
        assert len(store.list_for_user(doctor.id)) == 2

    def test_upsert_on_global_key_updates_in_place(self, db, catalog, doctor):
        store = UserOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        key = UserGrantKey(doctor.id, resource_id, None)

        store.upsert(key, self._grant(doctor.id, resource_id, None, {"view"}))
        store.upsert(key, self._grant(doctor.id, resource_id, None, {"view", "add"}))
        db.commit()

        assert len(store.list_for_user(doctor.id)) == 1
        assert store.get(key).allowed_actions == frozenset({"view", "add"})

    def test_applicable_grants_include_global_rows(self, db, catalog, doctor):
        store = UserOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        store.upsert(UserGrantKey(doctor.id, resource_id, None), self._grant(doctor.id, resource_id, None, {"view"}))
        store.upsert(
            UserGrantKey(doctor.id, resource_id, HOSPITAL_B), self._grant(doctor.id, resource_id, HOSPITAL_B, {"add"})
        )
        db.commit()

        assert {g.hospital_id for g in store.applicable_grants(doctor.id, HOSPITAL_A)} == {None}
        assert {g.hospital_id for g in store.applicable_grants(doctor.id, HOSPITAL_B)} == {None, HOSPITAL_B}

    def test_delete_only_removes_matching_scope(self, db, catalog, doctor):
        store = UserOverrideStore(db)
        resource_id = catalog["hospital.patients"].id
        global_key = UserGrantKey(doctor.id, resource_id, None)
        scoped_key = UserGrantKey(doctor.id, resource_id, HOSPITAL_A)
        store.upsert(global_key, self._grant(doctor.id, resource_id, None, {"view"}))
        store.upsert(scoped_key, self._grant(doctor.id, resource_id, HOSPITAL_A, {"view"}))
        db.commit()

        assert store.delete(global_key) is True
        db.commit()
        assert store.get(global_key) is None
        assert store.get(scoped_key) is not None
