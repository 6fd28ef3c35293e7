"""
HTTP boundary tests: guards on real routes, denial body shape, mirror
payload and the audited mutation endpoint.
"""
import uuid

import pytest
from fastapi import APIRouter, Depends, status

from app.auth.guards import require_permission
from app.auth.mirror import PermissionMirror
from app.auth.roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults
from app.dependencies import get_role_defaults
from app.models.audit_record import AuditKind

from authz_helpers import audit_records, create_principal, load_principal, principal_headers

# Stand-in for the CRUD collaborators that live outside this package
events_router = APIRouter(prefix="/api/events")


@events_router.get("/{event_id}")
async def get_event(event_id: int, _=Depends(require_permission("events.view"))):
    return {"id": event_id}


@events_router.delete("/{event_id}")
async def delete_event(event_id: int, _=Depends(require_permission("events.delete"))):
    return {"deleted": event_id}


@events_router.delete("/financial/{entry_id}")
async def delete_financial_entry(entry_id: int, _=Depends(require_permission("financial.delete"))):
    return {"deleted": entry_id}


@events_router.get("/members/{member_id}")
async def get_member(member_id: int, _=Depends(require_permission("members.view"))):
    return {"id": member_id}


@events_router.delete("/members/{member_id}")
async def delete_member(member_id: int, _=Depends(require_permission("members.delete"))):
    return {"deleted": member_id}


@pytest.fixture
def collaborator_app(app):
    app.include_router(events_router)
    return app


class TestEndToEnd:
    @pytest.mark.anyio
    async def test_leader_scenario(self, collaborator_app, client, session_factory):
        collaborator_app.dependency_overrides[get_role_defaults] = lambda: RoleDefaults(
            {Role.LEADER: {"events.view", "events.create"}}
        )
        leader = await create_principal(session_factory, Role.LEADER, added={"events.delete"})
        headers = principal_headers(leader)

        me = await client.get("/api/me/permissions", headers=headers)
        assert me.status_code == status.HTTP_200_OK
        assert me.json()["permissions"] == ["events.create", "events.delete", "events.view"]

        allowed = await client.delete("/api/events/7", headers=headers)
        assert allowed.status_code == status.HTTP_200_OK
        assert allowed.json() == {"deleted": 7}

        denied = await client.delete("/api/events/financial/3", headers=headers)
        assert denied.status_code == status.HTTP_403_FORBIDDEN
        body = denied.json()
        assert body["required"] == "financial.delete"
        assert body["role"] == "leader"
        assert body["error"]["code"] == "PERMISSION_DENIED"
        assert body["error"]["details"] == {"required": "financial.delete", "role": "leader"}

        records = await audit_records(session_factory, kind=AuditKind.ACCESS_DENIED.value)
        assert [r.required_permission for r in records] == ["financial.delete"]

    @pytest.mark.anyio
    async def test_guard_correctness(self, collaborator_app, client, session_factory):
        member = await create_principal(session_factory, Role.MEMBER)
        headers = principal_headers(member)

        assert (await client.get("/api/events/members/1", headers=headers)).status_code == 200
        response = await client.delete("/api/events/members/1", headers=headers)
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["required"] == "members.delete"

    @pytest.mark.anyio
    async def test_denial_never_discloses_the_catalog(self, collaborator_app, client, session_factory):
        volunteer = await create_principal(session_factory, Role.VOLUNTEER)
        response = await client.delete("/api/events/1", headers=principal_headers(volunteer))

        text = response.text
        assert response.status_code == status.HTTP_403_FORBIDDEN
        for name in DEFAULT_ROLE_DEFAULTS.defaults_for(Role.VOLUNTEER):
            assert name not in text
        assert set(response.json()) == {"error", "required", "role"}

    @pytest.mark.anyio
    async def test_unprovisioned_principal_is_denied(self, collaborator_app, client):
        response = await client.get("/api/events/1", headers=principal_headers(uuid.uuid4()))
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["role"] == "unknown"

    @pytest.mark.anyio
    @pytest.mark.parametrize("header", [None, "", "not-a-uuid"])
    async def test_missing_or_invalid_principal_is_unauthenticated(self, collaborator_app, client, header):
        headers = {} if header is None else {"X-Principal-Id": header}
        response = await client.get("/api/events/1", headers=headers)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "AUTH_ERROR"


class TestMirrorPayload:
    @pytest.mark.anyio
    async def test_first_contact_provisions_member(self, client, session_factory):
        principal_id = uuid.uuid4()

        response = await client.get("/api/me/permissions", headers=principal_headers(principal_id))

        assert response.status_code == status.HTTP_200_OK
        payload = response.json()
        assert payload["role"] == "member"
        assert payload["version"] == 1
        assert payload["max_age_seconds"] == 300
        stored = await load_principal(session_factory, principal_id)
        assert stored is not None

    @pytest.mark.anyio
    async def test_mirror_agrees_with_server(self, client, session_factory):
        principal_id = await create_principal(
            session_factory, Role.TREASURER, added={"members.export"}, removed={"financial.delete"}
        )

        payload = (await client.get("/api/me/permissions", headers=principal_headers(principal_id))).json()
        mirror = PermissionMirror(payload)

        assert not mirror.drifted()
        assert mirror.permissions == frozenset(payload["permissions"])
        assert mirror.has("members.export")
        assert not mirror.has("financial.delete")


class TestPermissionAdministration:
    @pytest.mark.anyio
    async def test_catalog_and_roles_require_users_view(self, client, session_factory):
        member = await create_principal(session_factory, Role.MEMBER)
        pastor = await create_principal(session_factory, Role.PASTOR, added={"users.view"})

        assert (await client.get("/api/permissions", headers=principal_headers(member))).status_code == 403

        catalog = await client.get("/api/permissions", headers=principal_headers(pastor))
        assert catalog.status_code == 200
        assert catalog.json()["total"] == len(catalog.json()["items"])
        assert {"name": "financial.export", "module": "financial", "action": "export"}.items() <= next(
            item for item in catalog.json()["items"] if item["name"] == "financial.export"
        ).items()

        roles = await client.get("/api/roles", headers=principal_headers(pastor))
        assert [role["name"] for role in roles.json()] == [
            "administrator", "pastor", "leader", "treasurer", "volunteer", "member"
        ]

        treasurer = await client.get("/api/roles/Tesoureiro/permissions", headers=principal_headers(pastor))
        assert treasurer.json()["role"] == "treasurer"
        assert "financial.export" in treasurer.json()["permissions"]

        missing = await client.get("/api/roles/bishop/permissions", headers=principal_headers(pastor))
        assert missing.status_code == 404

    @pytest.mark.anyio
    async def test_update_is_audited_and_versioned(self, client, session_factory):
        admin = await create_principal(session_factory, Role.ADMINISTRATOR)
        target = await create_principal(session_factory, Role.MEMBER)
        headers = principal_headers(admin)

        current = (await client.get(f"/api/users/{target}/permissions", headers=headers)).json()
        response = await client.put(
            f"/api/users/{target}/permissions",
            headers=headers,
            json={
                "role": "leader",
                "added": ["events.delete"],
                "removed": [],
                "expected_version": current["version"],
                "reason": "Youth ministry lead",
            },
        )

        assert response.status_code == 200
        assert response.json()["role"] == "leader"
        assert response.json()["version"] == current["version"] + 1
        assert "events.delete" in response.json()["permissions"]

        stale = await client.put(
            f"/api/users/{target}/permissions",
            headers=headers,
            json={"role": "member", "expected_version": current["version"]},
        )
        assert stale.status_code == status.HTTP_409_CONFLICT

        history = await client.get(f"/api/users/{target}/audit", headers=headers)
        assert history.status_code == 200
        items = history.json()["items"]
        assert [item["kind"] for item in items] == ["role_changed"]
        assert items[0]["actor_id"] == str(admin)
        assert items[0]["reason"] == "Youth ministry lead"

    @pytest.mark.anyio
    async def test_conflicting_update_is_rejected(self, client, session_factory):
        admin = await create_principal(session_factory, Role.ADMINISTRATOR)
        target = await create_principal(session_factory, Role.MEMBER)

        response = await client.put(
            f"/api/users/{target}/permissions",
            headers=principal_headers(admin),
            json={"role": "member", "added": ["members.edit"], "removed": ["members.edit"]},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["details"] == {"conflicts": ["members.edit"]}
        assert await audit_records(session_factory, target_id=target) == []

    @pytest.mark.anyio
    async def test_unknown_permission_is_rejected(self, client, session_factory):
        admin = await create_principal(session_factory, Role.ADMINISTRATOR)
        target = await create_principal(session_factory, Role.MEMBER)

        response = await client.put(
            f"/api/users/{target}/permissions",
            headers=principal_headers(admin),
            json={"role": "member", "added": ["members.fly"]},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "UNKNOWN_PERMISSION"

    @pytest.mark.anyio
    async def test_review_is_advisory(self, client, session_factory):
        admin = await create_principal(session_factory, Role.ADMINISTRATOR)
        target = await create_principal(session_factory, Role.TREASURER)

        response = await client.post(
            f"/api/users/{target}/permissions/review",
            headers=principal_headers(admin),
            json={"role": "treasurer", "removed": ["financial.view"]},
        )

        assert response.status_code == 200
        review = response.json()
        assert review["is_valid"] is False
        assert "financial.view" not in review["permissions"]
        stored = await load_principal(session_factory, target)
        assert stored.overrides_removed == []

    @pytest.mark.anyio
    async def test_audit_listing_requires_users_permissions(self, client, session_factory):
        pastor = await create_principal(session_factory, Role.PASTOR, added={"users.view"})
        response = await client.get("/api/audit/users", headers=principal_headers(pastor))
        assert response.status_code == 403
        assert response.json()["required"] == "users.permissions"

    @pytest.mark.anyio
    async def test_audit_listing_filters_by_kind(self, client, session_factory):
        admin = await create_principal(session_factory, Role.ADMINISTRATOR)
        member = await create_principal(session_factory, Role.MEMBER)
        await client.get("/api/audit/users", headers=principal_headers(member))

        response = await client.get(
            "/api/audit/users",
            headers=principal_headers(admin),
            params={"kind": ["access_denied"], "window": "24h"},
        )

        assert response.status_code == 200
        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["actor_id"] == str(member)
        assert items[0]["required_permission"] == "users.permissions"

        both = await client.get(
            "/api/audit/users",
            headers=principal_headers(admin),
            params={"window": "7d", "since": "2026-01-01T00:00:00Z"},
        )
        assert both.status_code == 400
