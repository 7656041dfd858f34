from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from booking_service import auto_complete, config
from booking_service.db import SessionLocal
from booking_service.models import Notification

CRON = {"Authorization": "Bearer test-cron-secret"}


def lapsed(now=None, **extra):
    now = now or datetime.now(timezone.utc)
    values = dict(
        status="accepted",
        completion_confirmed_by_provider=True,
        completion_requested_at=now - timedelta(days=8),
        auto_complete_at=now - timedelta(days=1),
        completion_status="pending_confirmation",
    )
    values.update(extra)
    return values


async def test_sweep_completes_lapsed_booking_once(make_booking, load_booking):
    booking = await make_booking(**lapsed())

    assert await auto_complete.auto_complete_due_bookings() == 1

    b = await load_booking(booking.booking_id)
    assert b.status == "completed"
    assert b.completion_confirmed_by_customer is True
    assert b.completion_status == "auto_completed"

    assert await auto_complete.auto_complete_due_bookings() == 0


async def test_sweep_notifies_both_parties(make_booking):
    booking = await make_booking(**lapsed())
    await auto_complete.auto_complete_due_bookings()

    async with SessionLocal() as s:
        res = await s.execute(select(Notification.user_id).where(Notification.title == "Booking completed"))
        recipients = set(res.scalars().all())
    assert recipients == {booking.user_id, booking.provider_id}


async def test_sweep_skips_customer_confirmed_booking(make_booking, load_booking):
    confirmed = await make_booking(**lapsed(completion_confirmed_by_customer=True))

    assert await auto_complete.auto_complete_due_bookings() == 0

    b = await load_booking(confirmed.booking_id)
    assert b.status == "accepted"
    assert b.completion_status == "pending_confirmation"
    assert b.version == confirmed.version


async def test_sweep_ignores_bookings_inside_window(make_booking, load_booking):
    now = datetime.now(timezone.utc)
    pending = await make_booking(**lapsed(now, auto_complete_at=now + timedelta(days=3)))

    assert await auto_complete.auto_complete_due_bookings() == 0
    assert (await load_booking(pending.booking_id)).status == "accepted"

    assert await auto_complete.auto_complete_due_bookings(now + timedelta(days=4)) == 1


async def test_sweep_ignores_cancelled_bookings(make_booking):
    await make_booking(**lapsed(status="cancelled"))
    assert await auto_complete.auto_complete_due_bookings() == 0


async def test_sweep_continues_past_failing_row(make_booking, load_booking, monkeypatch):
    first = await make_booking(**lapsed())
    second = await make_booking(**lapsed())

    real = auto_complete._complete_one

    async def flaky(booking_id, now):
        if booking_id == first.booking_id:
            raise RuntimeError("boom")
        return await real(booking_id, now)

    monkeypatch.setattr(auto_complete, "_complete_one", flaky)

    assert await auto_complete.auto_complete_due_bookings() == 1
    assert (await load_booking(first.booking_id)).status == "accepted"
    assert (await load_booking(second.booking_id)).status == "completed"


async def test_cron_endpoint_requires_token(booking_client, make_booking, load_booking):
    booking = await make_booking(**lapsed())

    r = await booking_client.post("/cron/auto-complete-bookings")
    assert r.status_code == 401

    r = await booking_client.post("/cron/auto-complete-bookings", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert (await load_booking(booking.booking_id)).status == "accepted"


async def test_cron_endpoint_rejects_non_ascii_token(booking_client, make_booking, load_booking):
    booking = await make_booking(**lapsed())

    r = await booking_client.post("/cron/auto-complete-bookings", headers={"Authorization": b"Bearer caf\xe9"})
    assert r.status_code == 401

    r = await booking_client.post("/cron/auto-complete-bookings", headers={"Authorization": "Bearer test-cron-secret\xe9".encode("latin-1")})
    assert r.status_code == 401
    assert (await load_booking(booking.booking_id)).status == "accepted"


async def test_cron_endpoint_without_server_secret(booking_client, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET_TOKEN", None)

    r = await booking_client.post("/cron/auto-complete-bookings", headers=CRON)
    assert r.status_code == 500
    assert r.json()["detail"] == "Server misconfiguration"


async def test_cron_endpoint_runs_sweep(booking_client, make_booking):
    await make_booking(**lapsed())
    await make_booking(**lapsed())

    r = await booking_client.post("/cron/auto-complete-bookings", headers=CRON)
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Auto-completed 2 bookings", "count": 2}


async def test_cron_endpoint_reports_sweep_failure(booking_client, monkeypatch):
    async def broken(now=None):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(auto_complete, "auto_complete_due_bookings", broken)

    r = await booking_client.post("/cron/auto-complete-bookings", headers=CRON)
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "database unavailable"}
