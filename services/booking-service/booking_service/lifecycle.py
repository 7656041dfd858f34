"""
Booking state machine and completion-confirmation protocol.

    pending  --accept-->  accepted  --request_completion-->  accepted (completion pending)
    accepted (completion pending)  --confirm / 7 days elapse-->  completed
    pending  --reject-->  rejected
    pending | accepted  --cancel-->  cancelled

completed, rejected and cancelled are terminal. Functions here mutate a
loaded Booking in memory; persisting is the caller's job.
"""
from datetime import datetime, timedelta, timezone

PENDING = "pending"
ACCEPTED = "accepted"
COMPLETED = "completed"
CANCELLED = "cancelled"
REJECTED = "rejected"

ACTIVE_STATUSES = (PENDING, ACCEPTED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED, REJECTED)

BOOKING_TRANSITIONS = {
    PENDING: {ACCEPTED, REJECTED, CANCELLED},
    ACCEPTED: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
    REJECTED: set(),
}

AUTO_COMPLETE_WINDOW = timedelta(days=7)

COMPLETION_PENDING = "pending_confirmation"
COMPLETION_CONFIRMED = "confirmed"
COMPLETION_AUTO = "auto_completed"


class BookingTransitionError(Exception):
    pass


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def assert_booking_transition(current: str, target: str) -> None:
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise BookingTransitionError(f"Invalid booking transition: {current} -> {target}")


def accept(booking) -> None:
    assert_booking_transition(booking.status, ACCEPTED)
    booking.status = ACCEPTED


def reject(booking, reason: str | None = None) -> None:
    assert_booking_transition(booking.status, REJECTED)
    booking.status = REJECTED
    booking.rejection_reason = reason or None


def cancel(booking, reason: str | None = None, now: datetime | None = None) -> None:
    assert_booking_transition(booking.status, CANCELLED)
    booking.status = CANCELLED
    booking.cancellation_reason = reason or None
    booking.cancelled_at = now or datetime.now(timezone.utc)
    # a cancelled booking must not be picked up by the sweep
    booking.auto_complete_at = None


def completion_requested(booking) -> bool:
    return bool(booking.completion_confirmed_by_provider)


def request_completion(booking, now: datetime | None = None) -> None:
    if booking.status != ACCEPTED:
        raise BookingTransitionError(
            f"Completion can only be requested for accepted bookings, got {booking.status}"
        )
    if completion_requested(booking):
        raise BookingTransitionError("Completion has already been requested for this booking")

    now = now or datetime.now(timezone.utc)
    booking.completion_confirmed_by_provider = True
    booking.completion_requested_at = now
    booking.auto_complete_at = now + AUTO_COMPLETE_WINDOW
    booking.completion_status = COMPLETION_PENDING


def confirm_completion(booking) -> bool:
    """
    Customer confirmation. Returns False when the booking was already
    completed (no change), True when this call completed it.
    """
    if booking.status == COMPLETED:
        return False

    assert_booking_transition(booking.status, COMPLETED)
    booking.status = COMPLETED
    booking.completion_confirmed_by_customer = True
    booking.completion_status = COMPLETION_CONFIRMED
    return True


def is_due_for_auto_complete(booking, now: datetime) -> bool:
    if booking.status != ACCEPTED:
        return False
    if not booking.completion_confirmed_by_provider:
        return False
    if booking.completion_confirmed_by_customer:
        return False
    deadline = as_utc(booking.auto_complete_at)
    return deadline is not None and deadline <= as_utc(now)


def auto_complete(booking, now: datetime) -> None:
    if not is_due_for_auto_complete(booking, now):
        raise BookingTransitionError(f"Booking {booking.booking_id} is not due for auto-completion")

    booking.status = COMPLETED
    booking.completion_confirmed_by_customer = True
    booking.completion_status = COMPLETION_AUTO
