"""HTTP surface tests: routing, identity headers and error mapping."""
from datetime import timedelta

from labcal.models.time_slot import TimeSlot
from labcal.timeutils import utcnow
from tests.conftest import OTHER, OWNER, PROPOSER, VALIDATOR, auth_headers, create_event_via_api, slot


class TestEventRoutes:

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_create_event(self, client):
        resp = client.post("/api/events/", json={
            "title": "TP Titrage",
            "discipline": "chimie",
            "time_slots": [slot("2030-03-04", "11:00", "09:00"), {"date": "2030-03-05"}],
        }, headers=auth_headers(OWNER))

        assert resp.status_code == 201
        data = resp.json()
        event = data["event"]
        assert event["owner_id"] == OWNER.id
        assert event["state"] == "PENDING"
        assert event["version"] == 1
        assert len(event["time_slots"]) == 1
        assert event["actuel_time_slots"][0]["start_date"] == "2030-03-04T08:00:00.000Z"
        assert event["actuel_time_slots"][0]["end_date"] == "2030-03-04T10:00:00.000Z"
        assert event["time_slots"][0]["modified_by"][0]["action"] == "created"
        assert [w["index"] for w in data["warnings"]] == [1]

    def test_create_without_valid_slots(self, client):
        resp = client.post("/api/events/", json={
            "title": "TP", "discipline": "chimie", "time_slots": [{"date": "2030-03-05"}],
        }, headers=auth_headers(OWNER))
        assert resp.status_code == 422
        assert resp.json()["error"] == "VALIDATION_ERROR"

    def test_identity_required(self, client):
        resp = client.post("/api/events/", json={
            "title": "TP", "discipline": "chimie", "time_slots": [slot("2030-03-04", "09:00", "11:00")],
        })
        assert resp.status_code == 401

    def test_get_and_list(self, client):
        event = create_event_via_api(client)
        create_event_via_api(client, title="Second")

        assert client.get(f"/api/events/{event['event_id']}").json()["title"] == "TP Chimie"
        assert len(client.get("/api/events/").json()) == 2
        assert len(client.get("/api/events/", params={"discipline": "physique"}).json()) == 0
        assert len(client.get("/api/events/", params={"state": "PENDING"}).json()) == 2

    def test_list_with_unknown_state(self, client):
        assert client.get("/api/events/", params={"state": "ARCHIVED"}).status_code == 422

    def test_unknown_event(self, client):
        resp = client.get("/api/events/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["details"]["event_id"] == "does-not-exist"

    def test_import(self, client):
        resp = client.post("/api/events/import", json={
            "id": "legacy-9",
            "title": "TP Ancien",
            "discipline": "physique",
            "createdBy": "prof-1",
            "startDate": "2024-10-01T08:00:00.000Z",
            "endDate": "2024-10-01T10:00:00.000Z",
        }, headers=auth_headers(OWNER))
        assert resp.status_code == 201
        assert len(resp.json()["actuel_time_slots"]) == 1


class TestModificationRoutes:

    def _propose(self, client, event, user=PROPOSER, action="MOVE", slots=None):
        return client.post(f"/api/events/{event['event_id']}/modifications", json={
            "action": action,
            "reason": "salle occupée",
            "time_slots": slots if slots is not None else [slot("2030-03-05", "14:00", "16:00")],
        }, headers=auth_headers(user))

    def test_propose_list_confirm(self, client):
        event = create_event_via_api(client)

        resp = self._propose(client, event)
        assert resp.status_code == 201
        modification = resp.json()["modification"]
        assert resp.json()["applied"] is False

        pending = client.get(f"/api/events/{event['event_id']}/modifications").json()
        assert [p["modification_id"] for p in pending] == [modification["modification_id"]]
        assert pending[0]["legacy_key"] == modification["legacy_key"]

        resp = client.put(f"/api/events/{event['event_id']}/modifications", json={
            "modification_id": modification["modification_id"],
            "action": "confirm",
        }, headers=auth_headers(OWNER))
        assert resp.status_code == 200
        updated = resp.json()["event"]
        assert updated["state"] == "MOVED"
        assert updated["event_modifying"] == []
        assert [s["start_date"] for s in updated["actuel_time_slots"]] == ["2030-03-05T13:00:00.000Z"]
        assert updated["last_state_change"]["to_state"] == "MOVED"

    def test_non_owner_decision_forbidden(self, client):
        event = create_event_via_api(client)
        modification = self._propose(client, event).json()["modification"]

        resp = client.put(f"/api/events/{event['event_id']}/modifications", json={
            "modification_id": modification["modification_id"],
            "action": "confirm",
        }, headers=auth_headers(OTHER))

        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "FORBIDDEN"
        assert body["details"]["event_id"] == event["event_id"]
        assert body["details"]["modification_id"] == modification["modification_id"]

    def test_reject_twice(self, client):
        event = create_event_via_api(client)
        modification = self._propose(client, event, action="CANCEL", slots=[]).json()["modification"]
        decision = {"modification_id": modification["legacy_key"], "action": "reject"}

        first = client.put(f"/api/events/{event['event_id']}/modifications", json=decision, headers=auth_headers(OWNER))
        second = client.put(f"/api/events/{event['event_id']}/modifications", json=decision, headers=auth_headers(OWNER))

        assert first.status_code == 200
        assert first.json()["event"]["state"] == "PENDING"
        assert second.status_code == 404

    def test_missing_modification_id(self, client):
        event = create_event_via_api(client)
        resp = client.put(
            f"/api/events/{event['event_id']}/modifications", json={"action": "confirm"}, headers=auth_headers(OWNER),
        )
        assert resp.status_code == 422

    def test_stale_version(self, client):
        event = create_event_via_api(client)
        resp = client.post(f"/api/events/{event['event_id']}/modifications", json={
            "action": "CANCEL", "reason": "x", "version": event["version"] + 1,
        }, headers=auth_headers(PROPOSER))
        assert resp.status_code == 409
        assert resp.json()["error"] == "CONCURRENT_MODIFICATION"


class TestOwnerEditRoutes:

    def test_owner_modify_restore_validate(self, client):
        event = create_event_via_api(client)
        event_id = event["event_id"]
        slot_id = event["time_slots"][0]["slot_id"]

        resp = client.post(f"/api/events/{event_id}/owner-modify", json={
            "action": "SLOT_MODIFY", "slot_id": slot_id, "reason": "annulé",
        }, headers=auth_headers(OWNER))
        assert resp.status_code == 200
        assert resp.json()["event"]["validation_state"] == "ownerPending"
        assert resp.json()["event"]["actuel_time_slots"] == []

        resp = client.post(f"/api/events/{event_id}/slots/{slot_id}/restore", json={}, headers=auth_headers(OWNER))
        assert resp.status_code == 200
        restored = resp.json()["event"]["actuel_time_slots"]
        assert restored[0]["parent_slot_id"] == slot_id

        resp = client.post(f"/api/events/{event_id}/validation", json={"approve": True}, headers=auth_headers(OWNER))
        assert resp.status_code == 403

        resp = client.post(f"/api/events/{event_id}/validation", json={"approve": True}, headers=auth_headers(VALIDATOR))
        assert resp.status_code == 200
        assert resp.json()["event"]["state"] == "VALIDATED"
        assert resp.json()["event"]["validation_state"] == "validated"

    def test_owner_modify_by_stranger(self, client):
        event = create_event_via_api(client)
        resp = client.post(f"/api/events/{event['event_id']}/owner-modify", json={
            "action": "GLOBAL_MODIFY", "proposed_time_slots": [slot("2030-03-06", "09:00", "11:00")],
        }, headers=auth_headers(PROPOSER))
        assert resp.status_code == 403

    def test_state_change_route(self, client):
        event = create_event_via_api(client)
        url = f"/api/events/{event['event_id']}/state"

        assert client.put(url, json={"state": "IN_PROGRESS"}, headers=auth_headers(PROPOSER)).status_code == 403
        assert client.put(url, json={"state": "DONE"}, headers=auth_headers(OWNER)).status_code == 422

        resp = client.put(url, json={"state": "IN_PROGRESS", "reason": "started"}, headers=auth_headers(OWNER))
        assert resp.status_code == 200
        body = resp.json()["event"]
        assert body["state"] == "IN_PROGRESS"
        assert body["last_state_change"]["from_state"] == "PENDING"
        assert body["state_changer"][0][0] == OWNER.id

    def test_slot_decision_route(self, client):
        event = create_event_via_api(client)
        url = f"/api/events/{event['event_id']}/slots/{event['time_slots'][0]['slot_id']}/decision"

        assert client.post(url, json={"approve": True}, headers=auth_headers(OWNER)).status_code == 403

        resp = client.post(url, json={"approve": True}, headers=auth_headers(VALIDATOR))
        assert resp.status_code == 200
        assert resp.json()["event"]["state"] == "VALIDATED"
        assert resp.json()["event"]["actuel_time_slots"][0]["state"] == "approved"

        missing = f"/api/events/{event['event_id']}/slots/nope/decision"
        assert client.post(missing, json={"approve": True}, headers=auth_headers(VALIDATOR)).status_code == 404


class TestMaintenanceRoutes:

    def test_cleanup_requires_staff(self, client):
        assert client.post("/api/maintenance/cleanup", json={}, headers=auth_headers(OWNER)).status_code == 403
        assert client.get("/api/maintenance/timeslot-stats", headers=auth_headers(OWNER)).status_code == 403

    def test_cleanup_and_stats(self, client, db):
        event = create_event_via_api(client)
        slot_id = event["time_slots"][0]["slot_id"]
        client.post(f"/api/events/{event['event_id']}/owner-modify", json={
            "action": "SLOT_MODIFY", "slot_id": slot_id,
        }, headers=auth_headers(OWNER))
        db.query(TimeSlot).filter(TimeSlot.slot_id == slot_id).update(
            {"updated_at": utcnow() - timedelta(days=100)}, synchronize_session=False,
        )
        db.commit()

        stats = client.get("/api/maintenance/timeslot-stats", headers=auth_headers(VALIDATOR)).json()
        assert stats["total"] == 1

        preview = client.post("/api/maintenance/cleanup", json={}, headers=auth_headers(VALIDATOR)).json()
        assert preview["dry_run"] is True
        assert preview["deleted_timeslots"] == 1

        done = client.post(
            "/api/maintenance/cleanup", json={"dry_run": False}, headers=auth_headers(VALIDATOR),
        ).json()
        assert done["deleted_timeslots"] == 1
        assert client.get("/api/maintenance/timeslot-stats", headers=auth_headers(VALIDATOR)).json()["total"] == 0
