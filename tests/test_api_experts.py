"""
tests/test_api_experts.py -- Integration tests for experts, slots, voting and the confirmation flow.

Coverage:
  - Expert CRUD by the owning workspace; status cannot be written directly
  - Cross-tenant access: other workspace's token 403, other workspace's expert 404
  - Full flow: slots -> start-polling -> votes -> confirm -> expert login -> select
  - Expert tokens are bound to one expert; a decline and a reset reopen voting
  - Voter passwords: establish on first use, verify afterwards, lockout 429
  - Public expert view never exposes voter names or credentials

Fixtures used (from conftest.py):
  - api_client, make_tenant, headers
"""

from __future__ import annotations

import pytest

from workspace.models import Expert

BASE = "/api/v1"


def _ip(n: int) -> dict[str, str]:
    return {"X-Forwarded-For": f"192.0.2.{n}"}


def _url(slug: str, *parts: str) -> str:
    return "/".join((f"{BASE}/workspaces/{slug}/experts", *parts)).rstrip("/")


@pytest.fixture
def workspace(api_client, make_tenant, request):
    """A fresh workspace per test, named after the test to keep lockout keys apart."""
    slug = request.node.name.lower().replace("_", "-").replace("[", "-").replace("]", "")[:50].strip("-")
    return make_tenant(api_client.store, slug)


def _create_expert(api_client, headers, tenant, **body):
    payload = {"name": "Dr. Kim", **body}
    resp = api_client.client.post(_url(tenant.slug), json=payload, headers=headers.tenant(tenant))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _add_slots(api_client, headers, tenant, expert_id, n=2):
    ids = []
    for i in range(n):
        resp = api_client.client.post(
            _url(tenant.slug, expert_id, "slots"),
            json={"date": f"2026-11-0{i + 1}", "time": "14:00-16:00"},
            headers=headers.tenant(tenant),
        )
        assert resp.status_code == 201, resp.text
        ids.append(resp.json()["id"])
    return ids


def _polling_expert(api_client, headers, tenant, n=2, **body):
    expert = _create_expert(api_client, headers, tenant, **body)
    slot_ids = _add_slots(api_client, headers, tenant, expert["id"], n)
    resp = api_client.client.post(_url(tenant.slug, expert["id"], "start-polling"), headers=headers.tenant(tenant))
    assert resp.status_code == 200, resp.text
    return expert["id"], slot_ids


def _vote(api_client, tenant, expert_id, voter, password, slot_ids, ip=1):
    return api_client.client.post(
        _url(tenant.slug, expert_id, "vote"),
        json={"voter_name": voter, "password": password, "slot_ids": slot_ids},
        headers=_ip(ip),
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


class TestExpertCrud:
    def test_create_list_update_delete(self, api_client, headers, workspace) -> None:
        client = api_client.client
        created = _create_expert(api_client, headers, workspace, organization="KAIST", fee="500000", password="exp-pass")
        assert created["status"] == "none"
        assert created["has_password"] is True
        assert "password" not in created

        listing = client.get(_url(workspace.slug), headers=headers.tenant(workspace)).json()
        assert [e["id"] for e in listing] == [created["id"]]

        updated = client.put(
            _url(workspace.slug, created["id"]), json={"position": "Professor"}, headers=headers.tenant(workspace)
        )
        assert updated.status_code == 200
        assert updated.json()["position"] == "Professor"

        deleted = client.delete(_url(workspace.slug, created["id"]), headers=headers.tenant(workspace))
        assert deleted.status_code == 200
        assert client.get(_url(workspace.slug, created["id"])).status_code == 404

    @pytest.mark.parametrize("field", ["status", "confirmed_slots", "selected_slot"])
    def test_scheduling_fields_not_writable(self, api_client, headers, workspace, field) -> None:
        expert = _create_expert(api_client, headers, workspace)
        value = "registered" if field == "status" else []
        resp = api_client.client.put(
            _url(workspace.slug, expert["id"]), json={field: value}, headers=headers.tenant(workspace)
        )
        assert resp.status_code == 400
        assert api_client.store.get_expert(workspace.id, expert["id"]).status.value == "none"

    def test_create_rejects_status(self, api_client, headers, workspace) -> None:
        resp = api_client.client.post(
            _url(workspace.slug), json={"name": "X", "status": "registered"}, headers=headers.tenant(workspace)
        )
        assert resp.status_code == 400

    def test_delete_cascades_slots_and_votes(self, api_client, headers, workspace) -> None:
        store = api_client.store
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "vpass", slot_ids)

        resp = api_client.client.delete(_url(workspace.slug, expert_id), headers=headers.tenant(workspace))
        assert resp.status_code == 200
        assert store.count_slots(expert_id) == 0
        assert store.count_votes(expert_id) == 0
        assert store.count_voter_passwords(expert_id) == 0


class TestCrossTenant:
    def test_other_workspace_token_is_403(self, api_client, headers, workspace, make_tenant) -> None:
        intruder = make_tenant(api_client.store, f"{workspace.slug[:40]}-x")
        expert = _create_expert(api_client, headers, workspace)
        client = api_client.client
        assert client.get(_url(workspace.slug), headers=headers.tenant(intruder)).status_code == 403
        assert client.delete(_url(workspace.slug, expert["id"]), headers=headers.tenant(intruder)).status_code == 403
        assert api_client.store.get_expert(workspace.id, expert["id"]) is not None

    def test_expert_of_other_workspace_is_404(self, api_client, headers, workspace, make_tenant) -> None:
        other = make_tenant(api_client.store, f"{workspace.slug[:40]}-y")
        foreign_id = api_client.store.create_expert(Expert(tenant_id=other.id, name="Foreign"))
        client = api_client.client
        assert client.get(_url(workspace.slug, foreign_id)).status_code == 404
        assert client.put(
            _url(workspace.slug, foreign_id), json={"name": "Taken"}, headers=headers.tenant(workspace)
        ).status_code == 404
        assert client.delete(_url(workspace.slug, foreign_id), headers=headers.tenant(workspace)).status_code == 404
        assert api_client.store.get_expert(other.id, foreign_id).name == "Foreign"


# ---------------------------------------------------------------------------
# Scheduling flow
# ---------------------------------------------------------------------------


class TestSchedulingFlow:
    def test_full_flow(self, api_client, headers, workspace) -> None:
        client = api_client.client
        tenant_headers = headers.tenant(workspace)
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace, n=3, password="exp-pass")

        assert _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[:2]).status_code == 200
        assert _vote(api_client, workspace, expert_id, "park", "park-pass", slot_ids[1:]).status_code == 200

        listing = client.get(_url(workspace.slug), headers=tenant_headers).json()
        tallies = {s["id"]: (s["votes"], s["voters"]) for s in listing[0]["slots"]}
        assert tallies[slot_ids[1]] == (2, ["lee", "park"])
        assert tallies[slot_ids[0]] == (1, ["lee"])

        confirm = client.post(
            _url(workspace.slug, expert_id, "confirm"), json={"slot_ids": slot_ids[:2]}, headers=tenant_headers
        )
        assert confirm.status_code == 200
        assert confirm.json()["status"] == "confirmed"
        assert [s["id"] for s in confirm.json()["confirmed_slots"]] == slot_ids[:2]

        # Candidate slots are frozen and voting is closed.
        frozen = client.post(
            _url(workspace.slug, expert_id, "slots"), json={"date": "2026-12-01", "time": "10:00"}, headers=tenant_headers
        )
        assert frozen.status_code == 400
        assert _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[:1]).status_code == 400

        login = client.post(_url(workspace.slug, expert_id, "auth"), json={"password": "exp-pass"}, headers=_ip(2))
        assert login.status_code == 200
        expert_headers = {"X-Expert-Token": login.json()["token"]}

        outside = client.post(
            _url(workspace.slug, expert_id, "select-slot"), json={"slot_id": slot_ids[2]}, headers=expert_headers
        )
        assert outside.status_code == 400

        selected = client.post(
            _url(workspace.slug, expert_id, "select-slot"), json={"slot_id": slot_ids[1]}, headers=expert_headers
        )
        assert selected.status_code == 200
        data = selected.json()
        assert data["status"] == "registered"
        assert data["selected_slot"]["id"] == slot_ids[1]
        assert data["voting_open"] is False

    def test_confirm_requires_slots(self, api_client, headers, workspace) -> None:
        expert_id, _ = _polling_expert(api_client, headers, workspace)
        resp = api_client.client.post(
            _url(workspace.slug, expert_id, "confirm"), json={"slot_ids": []}, headers=headers.tenant(workspace)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_start_polling_without_slots_is_400(self, api_client, headers, workspace) -> None:
        expert = _create_expert(api_client, headers, workspace)
        resp = api_client.client.post(
            _url(workspace.slug, expert["id"], "start-polling"), headers=headers.tenant(workspace)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_transition"

    def test_decline_then_reset_reopens_voting(self, api_client, headers, workspace) -> None:
        client = api_client.client
        tenant_headers = headers.tenant(workspace)
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[:1])
        client.post(_url(workspace.slug, expert_id, "confirm"), json={"slot_ids": slot_ids}, headers=tenant_headers)

        declined = client.post(
            _url(workspace.slug, expert_id, "no-available-schedule"), headers=headers.expert(workspace, expert_id)
        )
        assert declined.status_code == 200
        assert declined.json()["status"] == "unavailable"
        assert _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids).status_code == 400

        reset = client.post(_url(workspace.slug, expert_id, "reset-confirmation"), headers=tenant_headers)
        assert reset.status_code == 200
        body = reset.json()
        assert body["status"] == "polling"
        assert body["confirmed_slots"] == []
        assert body["selected_slot"] is None
        assert len(body["slots"]) == 2
        assert body["slots"][0]["voters"] == ["lee"]

        assert _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids).status_code == 200

    def test_reset_from_polling_is_400(self, api_client, headers, workspace) -> None:
        expert_id, _ = _polling_expert(api_client, headers, workspace)
        resp = api_client.client.post(
            _url(workspace.slug, expert_id, "reset-confirmation"), headers=headers.tenant(workspace)
        )
        assert resp.status_code == 400

    def test_remove_slot_removes_votes(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids)
        resp = api_client.client.delete(
            _url(workspace.slug, expert_id, "slots", slot_ids[0]), headers=headers.tenant(workspace)
        )
        assert resp.status_code == 200
        assert api_client.store.get_votes(expert_id, "lee") == {slot_ids[1]}


# ---------------------------------------------------------------------------
# Expert principal
# ---------------------------------------------------------------------------


class TestExpertToken:
    def _confirmed(self, api_client, headers, workspace):
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace, password="exp-pass")
        api_client.client.post(
            _url(workspace.slug, expert_id, "confirm"), json={"slot_ids": slot_ids}, headers=headers.tenant(workspace)
        )
        return expert_id, slot_ids

    def test_token_for_other_expert_is_403(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = self._confirmed(api_client, headers, workspace)
        other = _create_expert(api_client, headers, workspace, name="Other")
        resp = api_client.client.post(
            _url(workspace.slug, expert_id, "select-slot"),
            json={"slot_id": slot_ids[0]},
            headers=headers.expert(workspace, other["id"]),
        )
        assert resp.status_code == 403

    def test_tenant_token_cannot_act_as_expert(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = self._confirmed(api_client, headers, workspace)
        token = headers.tenant(workspace)["X-Workspace-Token"]
        resp = api_client.client.post(
            _url(workspace.slug, expert_id, "select-slot"),
            json={"slot_id": slot_ids[0]},
            headers={"X-Expert-Token": token},
        )
        assert resp.status_code == 401

    def test_expert_token_cannot_manage_workspace(self, api_client, headers, workspace) -> None:
        expert_id, _ = self._confirmed(api_client, headers, workspace)
        token = headers.expert(workspace, expert_id)["X-Expert-Token"]
        resp = api_client.client.get(_url(workspace.slug), headers={"X-Workspace-Token": token})
        assert resp.status_code == 401

    def test_expert_without_password_cannot_log_in(self, api_client, headers, workspace) -> None:
        expert = _create_expert(api_client, headers, workspace)
        resp = api_client.client.post(_url(workspace.slug, expert["id"], "auth"), json={"password": "x"}, headers=_ip(3))
        assert resp.status_code == 401

    def test_expert_login_lockout(self, api_client, headers, workspace) -> None:
        expert = _create_expert(api_client, headers, workspace, password="exp-pass")
        url = _url(workspace.slug, expert["id"], "auth")
        codes = [api_client.client.post(url, json={"password": "bad"}, headers=_ip(4)).status_code for _ in range(5)]
        assert codes == [401, 401, 401, 401, 429]
        blocked = api_client.client.post(url, json={"password": "exp-pass"}, headers=_ip(4))
        assert blocked.status_code == 429

    def test_expert_password_kept_exactly_as_typed(self, api_client, headers, workspace) -> None:
        expert = _create_expert(api_client, headers, workspace, name=" Dr. Oh ", password=" exp-pass ")
        assert expert["name"] == "Dr. Oh"
        url = _url(workspace.slug, expert["id"], "auth")
        assert api_client.client.post(url, json={"password": " exp-pass "}, headers=_ip(6)).status_code == 200
        assert api_client.client.post(url, json={"password": "exp-pass"}, headers=_ip(6)).status_code == 401

    def test_legacy_expert_password_migrated(self, api_client, workspace) -> None:
        store = api_client.store
        expert_id = store.create_expert(Expert(tenant_id=workspace.id, name="Legacy", password="old-plain"))
        resp = api_client.client.post(
            _url(workspace.slug, expert_id, "auth"), json={"password": "old-plain"}, headers=_ip(5)
        )
        assert resp.status_code == 200
        assert store.get_expert(workspace.id, expert_id).password.startswith("pbkdf2$")


# ---------------------------------------------------------------------------
# Voters
# ---------------------------------------------------------------------------


class TestVoters:
    def test_establish_then_verify(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        url = _url(workspace.slug, expert_id, "verify-password")

        first = api_client.client.post(url, json={"voter_name": "lee", "password": "lee-pass"}, headers=_ip(10))
        assert first.status_code == 200
        assert first.json() == {"voter_name": "lee", "established": True, "slot_ids": []}
        assert api_client.store.get_voter_password(expert_id, "lee").startswith("pbkdf2$")

        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[:1], ip=10)
        second = api_client.client.post(url, json={"voter_name": "lee", "password": "lee-pass"}, headers=_ip(10))
        assert second.json() == {"voter_name": "lee", "established": False, "slot_ids": [slot_ids[0]]}

        wrong = api_client.client.post(url, json={"voter_name": "lee", "password": "guess"}, headers=_ip(10))
        assert wrong.status_code == 401

    def test_vote_with_wrong_password_changes_nothing(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[:1], ip=11)
        resp = _vote(api_client, workspace, expert_id, "lee", "stolen", slot_ids, ip=11)
        assert resp.status_code == 401
        assert api_client.store.get_votes(expert_id, "lee") == {slot_ids[0]}

    def test_vote_replaces_previous_selection(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids, ip=12)
        resp = _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids[1:], ip=12)
        assert resp.status_code == 200
        assert resp.json()["slot_ids"] == sorted(slot_ids[1:])
        assert api_client.store.get_votes(expert_id, "lee") == {slot_ids[1]}

    def test_vote_for_foreign_slot_is_400(self, api_client, headers, workspace) -> None:
        expert_id, _ = _polling_expert(api_client, headers, workspace)
        _, other_slots = _polling_expert(api_client, headers, workspace, n=1)
        resp = _vote(api_client, workspace, expert_id, "lee", "lee-pass", other_slots, ip=13)
        assert resp.status_code == 400
        assert api_client.store.get_votes(expert_id, "lee") == set()

    def test_rejected_first_vote_does_not_establish_password(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        rejected = _vote(api_client, workspace, expert_id, "kim", "typo-pass", ["not-a-slot"], ip=17)
        assert rejected.status_code == 400
        assert api_client.store.get_voter_password(expert_id, "kim") is None

        retry = _vote(api_client, workspace, expert_id, "kim", "real-pass", slot_ids[:1], ip=17)
        assert retry.status_code == 200
        assert retry.json()["established"] is True
        assert api_client.store.get_votes(expert_id, "kim") == {slot_ids[0]}

    def test_vote_on_confirmed_expert_does_not_establish_password(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        api_client.client.post(
            _url(workspace.slug, expert_id, "confirm"), json={"slot_ids": slot_ids}, headers=headers.tenant(workspace)
        )
        resp = _vote(api_client, workspace, expert_id, "kim", "kim-pass", slot_ids, ip=18)
        assert resp.status_code == 400
        assert api_client.store.get_voter_password(expert_id, "kim") is None

    def test_voter_lockout(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids, ip=14)
        codes = [_vote(api_client, workspace, expert_id, "lee", "bad", [], ip=14).status_code for _ in range(5)]
        assert codes == [401, 401, 401, 401, 429]

        blocked = _vote(api_client, workspace, expert_id, "lee", "lee-pass", [], ip=14)
        assert blocked.status_code == 429
        assert int(blocked.headers["Retry-After"]) > 0
        assert api_client.store.get_votes(expert_id, "lee") == set(slot_ids)

        # Another voter name on the same expert is unaffected.
        assert _vote(api_client, workspace, expert_id, "park", "park-pass", slot_ids, ip=14).status_code == 200

    def test_legacy_voter_password_migrated(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace)
        api_client.store.create_voter_password(expert_id, "kim", "plain-voter")
        resp = _vote(api_client, workspace, expert_id, "kim", "plain-voter", slot_ids[:1], ip=15)
        assert resp.status_code == 200
        assert api_client.store.get_voter_password(expert_id, "kim").startswith("pbkdf2$")

    def test_public_view_hides_voters(self, api_client, headers, workspace) -> None:
        expert_id, slot_ids = _polling_expert(api_client, headers, workspace, email="kim@example.com", password="p-1234")
        _vote(api_client, workspace, expert_id, "lee", "lee-pass", slot_ids, ip=16)

        resp = api_client.client.get(_url(workspace.slug, expert_id))
        assert resp.status_code == 200
        data = resp.json()
        assert data["voting_open"] is True
        assert all(s["voters"] is None for s in data["slots"])
        assert [s["votes"] for s in data["slots"]] == [1, 1]
        assert "email" not in data
        assert "has_password" not in data
        assert "lee" not in resp.text
