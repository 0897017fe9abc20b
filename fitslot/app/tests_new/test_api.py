import hashlib
import hmac
import json

import httpx
import pytest
import pytest_asyncio

from fitslot.api.app import create_app, issue_jwt, verify_signature
from fitslot.app.domain.models import Plan, Role
from fitslot.config import SETTINGS

from fitslot.app.tests_new.helpers import BOOKING_DAY, PROGRAM, at

WEBHOOK_SECRET = "whsec_test"


class RecordingSender:
    def __init__(self):
        self.results = []

    async def send(self, result):
        self.results.append(result)
        return len(result.targets)


@pytest.fixture(autouse=True)
def _api_settings(monkeypatch):
    monkeypatch.setitem(SETTINGS, "jwt_secret", "fitslot-test-secret-0123456789abcdef")
    monkeypatch.setitem(SETTINGS, "payment_webhook_secret", WEBHOOK_SECRET)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest_asyncio.fixture
async def client(db, controller, sender):
    app = create_app(db, admission=controller, sender=sender)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _auth(user, role=None) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_jwt(user.id, role or user.role)}"}


def _signed(payload: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    sig = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Signature": sig, "Content-Type": "application/json"}


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requests_without_valid_token_are_rejected(client, make_studio):
    studio = await make_studio()
    url = f"/api/studios/{studio.id}/slots?date={BOOKING_DAY.isoformat()}"

    resp = await client.get(url)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "missing_authorization"

    resp = await client.get(url, headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_slots_endpoint(client, make_studio, make_user, add_booking):
    studio = await make_studio()
    member = await make_user(studio)
    await add_booking(member, studio, at(9))

    resp = await client.get(f"/api/studios/{studio.id}/slots", params={"date": "2031-03-04"}, headers=_auth(member))

    assert resp.status_code == 200
    data = resp.json()
    assert data["target_date"] == "2031-03-04"
    assert len(data["slots"]) == 36
    nine = next(s for s in data["slots"] if s["booked_count"] == 1)
    assert nine["available_spots"] == 5
    assert nine["is_full"] is False

    resp = await client.get("/api/studios/999/slots", params={"date": "2031-03-04"}, headers=_auth(member))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "studio_not_found"


@pytest.mark.asyncio
async def test_book_list_and_cancel(client, make_studio, make_user):
    studio = await make_studio()
    member = await make_user(studio)
    payload = {"studio_id": studio.id, "start_time": at(9).isoformat(), "program": "Hyrox"}

    resp = await client.post("/api/book", json=payload, headers=_auth(member))
    assert resp.status_code == 200
    booked = resp.json()
    assert booked["ok"] is True and booked["status"] == "CONFIRMED"

    resp = await client.post("/api/book", json=payload, headers=_auth(member))
    assert resp.json() == {"ok": False, "booking_id": None, "status": None, "error": "already_booked_today"}

    resp = await client.get("/api/bookings", headers=_auth(member))
    [item] = resp.json()
    assert item["id"] == booked["booking_id"]
    assert item["program_used"] == "Hyrox"
    assert item["can_cancel"] is True

    resp = await client.post("/api/cancel", json={"booking_id": booked["booking_id"]}, headers=_auth(member))
    assert resp.json()["ok"] is True
    assert resp.json()["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_digital_member_is_sent_to_drop_in(client, make_studio, make_user):
    studio = await make_studio()
    member = await make_user(studio, plan=Plan.DIGITAL)
    resp = await client.post(
        "/api/book",
        json={"studio_id": studio.id, "start_time": at(9).isoformat(), "program": PROGRAM},
        headers=_auth(member),
    )
    assert resp.json()["error"] == "drop_in_required"


@pytest.mark.asyncio
async def test_book_requires_program(client, make_studio, make_user):
    studio = await make_studio()
    member = await make_user(studio)
    payload = {"studio_id": studio.id, "start_time": at(9).isoformat()}

    resp = await client.post("/api/book", json=payload, headers=_auth(member))
    assert resp.status_code == 422

    resp = await client.post("/api/book", json={**payload, "program": "  "}, headers=_auth(member))
    assert resp.status_code == 200
    assert resp.json()["error"] == "missing_fields"

    resp = await client.get("/api/bookings", headers=_auth(member))
    assert resp.json() == []


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking(client, controller, make_studio, make_user):
    studio = await make_studio()
    owner = await make_user(studio)
    other = await make_user(studio)
    booking_id = await controller.admit(owner.id, studio.id, at(9), PROGRAM)

    resp = await client.post("/api/cancel", json={"booking_id": booking_id}, headers=_auth(other))
    assert resp.json()["ok"] is False
    assert resp.json()["error"] == "not_booking_owner"


@pytest.mark.asyncio
async def test_schedule_and_check_in_need_staff(client, controller, make_studio, make_user):
    studio = await make_studio()
    member = await make_user(studio, first_name="Louis", last_name="Martin")
    coach = await make_user(studio, role=Role.COACH, plan=None)
    booking_id = await controller.admit(member.id, studio.id, at(9), PROGRAM)

    resp = await client.get(f"/api/studios/{studio.id}/schedule", params={"date": "2031-03-04"}, headers=_auth(member))
    assert resp.status_code == 403

    resp = await client.get(f"/api/studios/{studio.id}/schedule", params={"date": "2031-03-04"}, headers=_auth(coach))
    assert resp.status_code == 200
    [row] = resp.json()
    assert row["booking_id"] == booking_id
    assert row["member_name"] == "Louis Martin"

    resp = await client.post("/api/check_in", json={"booking_id": booking_id}, headers=_auth(member))
    assert resp.status_code == 403

    resp = await client.post("/api/check_in", json={"booking_id": booking_id}, headers=_auth(coach))
    assert resp.json() == {"ok": True, "booking_id": booking_id, "status": "ATTENDED", "error": None}

    resp = await client.post("/api/check_in", json={"booking_id": booking_id}, headers=_auth(coach))
    assert resp.json()["error"] == "booking_already_attended"


@pytest.mark.asyncio
async def test_admin_yield_runs_for_home_studio(client, sender, make_studio, make_user):
    studio = await make_studio()
    owner = await make_user(studio, role=Role.FRANCHISE_OWNER, plan=None)
    await make_user(studio, plan=Plan.DIGITAL)
    member = await make_user(studio)

    resp = await client.post("/api/admin/yield", headers=_auth(member))
    assert resp.status_code == 403

    resp = await client.post("/api/admin/yield", params={"date": "2031-03-04"}, headers=_auth(owner))
    assert resp.status_code == 200
    data = resp.json()
    assert data["studio_id"] == studio.id
    assert data["empty_slots_found"] == 36
    assert data["targets"] == 1
    assert data["promotions_sent"] == 1
    assert len(sender.results) == 1


@pytest.mark.asyncio
async def test_admin_without_home_studio(client, make_user):
    admin = await make_user(None, role=Role.SUPER_ADMIN, plan=None)
    resp = await client.post("/api/admin/yield", headers=_auth(admin))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "no_home_studio"


@pytest.mark.asyncio
async def test_payment_webhook_creates_drop_in_once(client, make_studio, make_user):
    studio = await make_studio()
    buyer = await make_user(studio, plan=Plan.DIGITAL)
    body, headers = _signed(
        {
            "type": "DROP_IN",
            "user_id": buyer.id,
            "studio_id": studio.id,
            "start_time": at(9).isoformat(),
            "payment_reference": "cs_live_42",
        }
    )

    first = (await client.post("/api/webhooks/payment", content=body, headers=headers)).json()
    second = (await client.post("/api/webhooks/payment", content=body, headers=headers)).json()

    assert first["ok"] is True and first["created"] is True
    assert second["booking_id"] == first["booking_id"]
    assert second["created"] is False


@pytest.mark.asyncio
async def test_payment_webhook_signature_and_filtering(client, monkeypatch):
    body, headers = _signed({"type": "SUBSCRIPTION", "user_id": 1})

    resp = await client.post("/api/webhooks/payment", content=body, headers={"X-Signature": "0" * 64})
    assert resp.status_code == 401

    resp = await client.post("/api/webhooks/payment", content=body, headers=headers)
    assert resp.json()["ignored"] is True

    body, headers = _signed({"type": "DROP_IN", "user_id": 1})
    resp = await client.post("/api/webhooks/payment", content=body, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "missing_fields"

    monkeypatch.setitem(SETTINGS, "payment_webhook_secret", "")
    resp = await client.post("/api/webhooks/payment", content=body, headers=headers)
    assert resp.status_code == 503


def test_verify_signature():
    body = b'{"type":"DROP_IN"}'
    good = hmac.new(b"k", body, hashlib.sha256).hexdigest()
    assert verify_signature(body, good, "k")
    assert verify_signature(body, good.upper(), "k")
    assert not verify_signature(body, good, "other")
    assert not verify_signature(body, None, "k")
