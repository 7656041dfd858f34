import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select

from . import db as booking_db
from . import lifecycle
from .models import Booking
from .notifications import notify, publish_booking_event

logger = logging.getLogger(__name__)


def due_bookings_query(now: datetime):
    return select(Booking.booking_id).where(
        Booking.status == lifecycle.ACCEPTED,
        Booking.completion_confirmed_by_provider.is_(True),
        or_(
            Booking.completion_confirmed_by_customer.is_(None),
            Booking.completion_confirmed_by_customer.is_(False),
        ),
        Booking.auto_complete_at <= now,
    )


async def _complete_one(booking_id: str, now: datetime) -> Booking | None:
    async with booking_db.SessionLocal() as db:
        res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
        booking = res.scalar_one_or_none()
        # another sweep or the customer may have finished it since selection
        if booking is None or not lifecycle.is_due_for_auto_complete(booking, now):
            return None

        lifecycle.auto_complete(booking, now)
        notify(
            db,
            booking.user_id,
            "Booking completed",
            "Your booking was marked completed automatically after the 7-day confirmation window. "
            "You can now leave a review.",
            "completion",
        )
        notify(
            db,
            booking.provider_id,
            "Booking completed",
            "The booking was auto-completed after the customer confirmation window elapsed.",
            "completion",
        )
        await db.commit()
        return booking


async def auto_complete_due_bookings(now: datetime | None = None) -> int:
    """
    Finalize bookings whose confirmation window has lapsed. Each booking is
    completed in its own transaction; a failing row is logged and skipped.
    Returns the number of bookings completed by this sweep.
    """
    now = now or datetime.now(timezone.utc)

    async with booking_db.SessionLocal() as db:
        res = await db.execute(due_bookings_query(now))
        candidates = list(res.scalars().all())

    logger.info("Found %d bookings to auto-complete", len(candidates))

    completed = 0
    for booking_id in candidates:
        try:
            booking = await _complete_one(booking_id, now)
        except Exception:
            logger.exception("Error auto-completing booking %s", booking_id)
            continue

        if booking is None:
            continue

        completed += 1
        logger.info("Auto-completed booking %s", booking_id)
        await publish_booking_event("booking.completed", booking)

    return completed


async def auto_complete_loop(stop_event: asyncio.Event, interval_seconds: int):
    while not stop_event.is_set():
        try:
            await auto_complete_due_bookings()
        except Exception:
            logger.exception("Auto-complete sweep failed")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
