"""Integration tests for guardian pickup codes, verification and logs."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import delete, func, select, update

from app.core.errors import InvalidOrExpiredError, RenderError
from app.models.pickup import PickupCode, PickupLog
from app.services.pickup_service import verify_pickup


def _code_url(student_id: str, guardian_id: str) -> str:
    return f"/api/v1/students/{student_id}/guardians/{guardian_id}/pickup-code"


async def _verify(client, headers, qr_data: str):
    return await client.post(
        "/api/v1/verify-pickup", headers=headers, json={"qr_data": qr_data},
    )


@pytest_asyncio.fixture()
async def family(user_factory, student_factory):
    """A guardian linked to one student."""
    guardian = await user_factory("guardian", "Jordan Parent")
    student = await student_factory([guardian["user_id"]], first_name="Mia", last_name="Lee")
    return {"guardian": guardian, "student": student}


class TestIssueCode:
    async def test_guardian_issues_own_code(self, client, family):
        guardian, student = family["guardian"], family["student"]

        before = datetime.now(timezone.utc)
        resp = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()

        assert data["qr_code"].startswith("data:image/png;base64,")
        payload = json.loads(data["payload"])
        assert payload["student_id"] == student["id"]
        assert payload["guardian_id"] == guardian["user_id"]
        assert payload["code"] == data["code"]
        assert "authorized_pickup_id" not in payload

        expires_at = datetime.fromisoformat(data["expires_at"])
        assert before + timedelta(hours=23, minutes=59) < expires_at
        assert expires_at < before + timedelta(hours=24, minutes=1)

    async def test_each_request_issues_a_new_code(self, client, family):
        guardian, student = family["guardian"], family["student"]
        url = _code_url(student["id"], guardian["user_id"])

        first = await client.post(url, headers=guardian["headers"])
        second = await client.post(url, headers=guardian["headers"])
        assert first.json()["code"] != second.json()["code"]

    async def test_admin_issues_for_guardian(self, client, admin, family):
        resp = await client.post(
            _code_url(family["student"]["id"], family["guardian"]["user_id"]),
            headers=admin["headers"],
        )
        assert resp.status_code == 201

    async def test_unlinked_guardian_forbidden(self, client, user_factory, family):
        stranger = await user_factory("guardian")
        resp = await client.post(
            _code_url(family["student"]["id"], stranger["user_id"]),
            headers=stranger["headers"],
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    async def test_co_guardian_issues_for_linked_guardian(
        self, client, user_factory, student_factory,
    ):
        a = await user_factory("guardian")
        b = await user_factory("guardian")
        student = await student_factory([a["user_id"], b["user_id"]])

        resp = await client.post(_code_url(student["id"], b["user_id"]), headers=a["headers"])
        assert resp.status_code == 201
        assert json.loads(resp.json()["payload"])["guardian_id"] == b["user_id"]

    async def test_staff_issues_for_linked_guardian(self, client, staff, family):
        resp = await client.post(
            _code_url(family["student"]["id"], family["guardian"]["user_id"]),
            headers=staff["headers"],
        )
        assert resp.status_code == 201

    async def test_staff_cannot_issue_for_unlinked_user(self, client, staff, family):
        resp = await client.post(
            _code_url(family["student"]["id"], staff["user_id"]), headers=staff["headers"],
        )
        assert resp.status_code == 403

    async def test_unknown_student(self, client, admin, family):
        resp = await client.post(
            _code_url(str(uuid.uuid4()), family["guardian"]["user_id"]),
            headers=admin["headers"],
        )
        assert resp.status_code == 404

    async def test_unknown_guardian(self, client, admin, family):
        resp = await client.post(
            _code_url(family["student"]["id"], str(uuid.uuid4())),
            headers=admin["headers"],
        )
        assert resp.status_code == 404

    async def test_requires_auth(self, client, family):
        resp = await client.post(
            _code_url(family["student"]["id"], family["guardian"]["user_id"]),
        )
        assert resp.status_code == 401


class TestVerifyPickup:
    async def test_verify_consumes_code(self, client, db_session, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        qr_data = issued.json()["payload"]

        resp = await _verify(client, staff["headers"], qr_data)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["student"]["id"] == student["id"]
        assert data["student"]["name"] == "Mia Lee"
        assert data["student"]["grade"] == "3"
        assert data["guardian"]["id"] == guardian["user_id"]
        assert data["guardian"]["name"] == "Jordan Parent"
        assert data["verified_by"] == "Gate Staff"

        remaining = await db_session.execute(
            select(PickupCode).where(PickupCode.code == issued.json()["code"])
        )
        assert remaining.first() is None

    async def test_replay_rejected(self, client, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        qr_data = issued.json()["payload"]

        assert (await _verify(client, staff["headers"], qr_data)).status_code == 200

        replay = await _verify(client, staff["headers"], qr_data)
        assert replay.status_code == 400
        assert replay.json() == {
            "detail": "Invalid or expired QR code",
            "error": "invalid_or_expired",
        }

    async def test_other_codes_survive(self, client, staff, family):
        guardian, student = family["guardian"], family["student"]
        url = _code_url(student["id"], guardian["user_id"])
        first = await client.post(url, headers=guardian["headers"])
        second = await client.post(url, headers=guardian["headers"])

        assert (await _verify(client, staff["headers"], first.json()["payload"])).status_code == 200
        assert (await _verify(client, staff["headers"], second.json()["payload"])).status_code == 200

    async def test_expired_code_rejected(self, client, db_session, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        await db_session.execute(
            update(PickupCode)
            .where(PickupCode.code == issued.json()["code"])
            .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        )

        resp = await _verify(client, staff["headers"], issued.json()["payload"])
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_or_expired"

    async def test_tampered_code_rejected(self, client, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        payload = json.loads(issued.json()["payload"])
        payload["code"] = "not-the-code"

        resp = await _verify(client, staff["headers"], json.dumps(payload))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_or_expired"

    async def test_code_bound_to_its_guardian(self, client, staff, user_factory, student_factory):
        a = await user_factory("guardian")
        b = await user_factory("guardian")
        student = await student_factory([a["user_id"], b["user_id"]])
        issued = await client.post(_code_url(student["id"], a["user_id"]), headers=a["headers"])

        payload = json.loads(issued.json()["payload"])
        payload["guardian_id"] = b["user_id"]

        resp = await _verify(client, staff["headers"], json.dumps(payload))
        assert resp.status_code == 400

    async def test_non_guardian_in_payload(self, client, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        payload = json.loads(issued.json()["payload"])
        payload["guardian_id"] = staff["user_id"]

        resp = await _verify(client, staff["headers"], json.dumps(payload))
        assert resp.status_code == 404

    async def test_unknown_student_in_payload(self, client, staff, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        payload = json.loads(issued.json()["payload"])
        payload["student_id"] = str(uuid.uuid4())

        resp = await _verify(client, staff["headers"], json.dumps(payload))
        assert resp.status_code == 404

    async def test_malformed_payload(self, client, staff):
        resp = await _verify(client, staff["headers"], "not json at all")
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    async def test_payload_missing_code(self, client, staff, family):
        resp = await _verify(client, staff["headers"], json.dumps({
            "student_id": family["student"]["id"],
            "guardian_id": family["guardian"]["user_id"],
        }))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    async def test_guardian_cannot_verify(self, client, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        resp = await _verify(client, guardian["headers"], issued.json()["payload"])
        assert resp.status_code == 403

    async def test_admin_can_verify(self, client, admin, family):
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        resp = await _verify(client, admin["headers"], issued.json()["payload"])
        assert resp.status_code == 200
        assert resp.json()["verified_by"] == "Admin User"


class TestPickupLogs:
    async def _pickup(self, client, staff, guardian, student) -> None:
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        resp = await _verify(client, staff["headers"], issued.json()["payload"])
        assert resp.status_code == 200

    async def test_guardian_without_children_sees_nothing(
        self, client, staff, registered_guardian, family,
    ):
        await self._pickup(client, staff, family["guardian"], family["student"])

        resp = await client.get("/api/v1/logs", headers=registered_guardian["headers"])
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_guardian_sees_only_own_children(
        self, client, staff, user_factory, student_factory, family,
    ):
        other_guardian = await user_factory("guardian")
        other_student = await student_factory([other_guardian["user_id"]])
        await self._pickup(client, staff, family["guardian"], family["student"])
        await self._pickup(client, staff, other_guardian, other_student)

        resp = await client.get("/api/v1/logs", headers=family["guardian"]["headers"])
        assert resp.status_code == 200
        logs = resp.json()
        assert len(logs) == 1
        assert logs[0]["student"] == {"id": family["student"]["id"], "name": "Mia Lee"}
        assert logs[0]["guardian"]["name"] == "Jordan Parent"
        assert logs[0]["guardian"]["email"] == family["guardian"]["email"]
        assert logs[0]["verified_by"] == "Gate Staff"

    async def test_staff_see_all_newest_first(
        self, client, staff, user_factory, student_factory, family,
    ):
        other_guardian = await user_factory("guardian")
        other_student = await student_factory([other_guardian["user_id"]])
        await self._pickup(client, staff, family["guardian"], family["student"])
        await self._pickup(client, staff, other_guardian, other_student)

        resp = await client.get("/api/v1/logs", headers=staff["headers"])
        assert resp.status_code == 200
        logs = resp.json()
        student_ids = [log["student"]["id"] for log in logs]
        assert family["student"]["id"] in student_ids
        assert other_student["id"] in student_ids

        timestamps = [datetime.fromisoformat(log["timestamp"]) for log in logs]
        assert timestamps == sorted(timestamps, reverse=True)

    async def test_requires_auth(self, client):
        resp = await client.get("/api/v1/logs")
        assert resp.status_code == 401


class TestConcurrentVerification:
    async def test_code_consumed_by_another_verifier(
        self, client, db_session, monkeypatch, staff, family,
    ):
        """A code removed between the match and the delete is rejected unlogged."""
        guardian, student = family["guardian"], family["student"]
        issued = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        code = issued.json()["code"]

        execute = db_session.execute
        raced = []

        async def execute_after_other_verifier(statement, *args, **kwargs):
            if getattr(statement, "is_delete", False) and not raced:
                raced.append(statement)
                await execute(delete(PickupCode).where(PickupCode.code == code))
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", execute_after_other_verifier)

        with pytest.raises(InvalidOrExpiredError):
            await verify_pickup(db_session, issued.json()["payload"], staff["user"])

        monkeypatch.undo()
        assert raced
        logs = await db_session.scalar(
            select(func.count()).select_from(PickupLog)
            .where(PickupLog.student_id == uuid.UUID(student["id"]))
        )
        assert logs == 0


class TestRenderFailure:
    async def test_render_failure_is_502_and_stores_nothing(
        self, client, db_session, monkeypatch, family,
    ):
        from app.services import pickup_service

        def _fail(payload: str) -> str:
            raise RenderError()

        monkeypatch.setattr(pickup_service, "render_qr_data_url", _fail)

        guardian, student = family["guardian"], family["student"]
        resp = await client.post(
            _code_url(student["id"], guardian["user_id"]), headers=guardian["headers"],
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "render_failed"

        codes = await db_session.scalar(
            select(func.count()).select_from(PickupCode)
            .where(PickupCode.student_id == uuid.UUID(student["id"]))
        )
        assert codes == 0
