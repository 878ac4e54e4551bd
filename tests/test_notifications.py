"""
tests/test_notifications.py
Templated send (simulated email), idempotent redelivery, inbox reads,
mark-as-read, and delivery stats.
"""

from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from config.database import notifications_db
from shared.models.models import Notification, NotificationStatus
from tests.conftest import auth_headers, service_headers

DELIVERED = 0.99
BOUNCED = 0.0


async def _send(
    client: AsyncClient,
    account_id: int = 7,
    type: str = "booking_created",
    roll: float = DELIVERED,
    headers: dict = None,
    **extra,
):
    payload = {"account_id": account_id, "type": type, "message": "Your booking is in.", **extra}
    with patch("shared.utils.simulation.roll", return_value=roll):
        return await client.post("/send", headers=headers or service_headers("bookings"), json=payload)


# ── Send ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_send_notification(notifications_client: AsyncClient):
    response = await _send(notifications_client, booking_id=3, amount="599.99")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["type"] == "booking_created"
    assert data["recipient"] == "user7@example.com"

    async with notifications_db.session() as db:
        notification = await db.get(Notification, data["notification_id"])
    assert notification.subject == "🎉 Booking Confirmation"
    assert notification.status == NotificationStatus.SENT
    assert "Your booking is in." in notification.body
    assert "#3" in notification.body
    assert "$599.99" in notification.body


@pytest.mark.asyncio
async def test_send_failure_is_still_recorded(notifications_client: AsyncClient):
    response = await _send(notifications_client, type="payment_failed", roll=BOUNCED)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["message"] == "Failed to send notification"

    async with notifications_db.session() as db:
        notification = await db.get(Notification, data["notification_id"])
    assert notification.status == NotificationStatus.FAILED
    assert notification.subject == "❌ Payment Failed"


@pytest.mark.asyncio
async def test_send_unknown_type_rejected(notifications_client: AsyncClient):
    response = await _send(notifications_client, type="birthday_card")
    assert response.status_code == 400

    async with notifications_db.session() as db:
        assert await db.scalar(select(func.count(Notification.id))) == 0


@pytest.mark.asyncio
async def test_account_can_only_notify_itself(notifications_client: AsyncClient):
    own = await _send(notifications_client, account_id=7, headers=auth_headers(7))
    assert own.status_code == 200

    other = await _send(notifications_client, account_id=8, headers=auth_headers(7))
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_send_requires_auth(notifications_client: AsyncClient):
    response = await notifications_client.post(
        "/send", json={"account_id": 7, "type": "booking_created", "message": "hi"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_repeated_idempotency_key_sends_once(notifications_client: AsyncClient):
    headers = {**service_headers("payments"), "Idempotency-Key": "outbox-msg-1"}
    first = await _send(notifications_client, type="payment_success", headers=headers)
    second = await _send(notifications_client, type="payment_success", headers=headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["notification_id"] == second.json()["notification_id"]

    async with notifications_db.session() as db:
        assert await db.scalar(select(func.count(Notification.id))) == 1


# ── Inbox ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_my_notifications_paginated(notifications_client: AsyncClient):
    for _ in range(3):
        await _send(notifications_client, account_id=7)
    await _send(notifications_client, account_id=8)

    response = await notifications_client.get("/notifications", headers=auth_headers(7))
    assert response.status_code == 200
    ids = [n["id"] for n in response.json()]
    assert len(ids) == 3
    assert ids == sorted(ids, reverse=True)

    page = await notifications_client.get(
        "/notifications", headers=auth_headers(7), params={"limit": 2, "offset": 2}
    )
    assert [n["id"] for n in page.json()] == ids[2:]


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(notifications_client: AsyncClient):
    notification_id = (await _send(notifications_client, account_id=7)).json()["notification_id"]

    first = await notifications_client.put(
        f"/notifications/{notification_id}/read", headers=auth_headers(7)
    )
    assert first.status_code == 200
    read_at = first.json()["read_at"]
    assert read_at is not None

    second = await notifications_client.put(
        f"/notifications/{notification_id}/read", headers=auth_headers(7)
    )
    assert second.status_code == 200
    assert second.json()["read_at"] == read_at


@pytest.mark.asyncio
async def test_mark_read_not_found_and_forbidden(notifications_client: AsyncClient):
    notification_id = (await _send(notifications_client, account_id=7)).json()["notification_id"]

    missing = await notifications_client.put("/notifications/9999/read", headers=auth_headers(7))
    assert missing.status_code == 404

    other = await notifications_client.put(
        f"/notifications/{notification_id}/read", headers=auth_headers(8)
    )
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_unread_count(notifications_client: AsyncClient):
    first_id = (await _send(notifications_client, account_id=7)).json()["notification_id"]
    await _send(notifications_client, account_id=7)

    response = await notifications_client.get("/notifications/unread-count", headers=auth_headers(7))
    assert response.json() == {"unread_count": 2}

    await notifications_client.put(f"/notifications/{first_id}/read", headers=auth_headers(7))
    response = await notifications_client.get("/notifications/unread-count", headers=auth_headers(7))
    assert response.json() == {"unread_count": 1}


# ── Stats ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stats(notifications_client: AsyncClient):
    await _send(notifications_client, type="booking_created", roll=DELIVERED)
    await _send(notifications_client, type="booking_created", roll=BOUNCED)
    await _send(notifications_client, type="payment_success", roll=DELIVERED)

    response = await notifications_client.get("/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["sent"] == 2
    assert data["failed"] == 1
    assert {row["type"]: row["count"] for row in data["by_type"]} == {
        "booking_created": 2,
        "payment_success": 1,
    }
