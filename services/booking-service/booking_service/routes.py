import uuid
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from shared.rbac import has_role, require_role
from shared.security import get_current_user
from . import availability, lifecycle
from .db import get_db
from .lifecycle import BookingTransitionError
from .models import Booking, CompletionDetails, Notification, Review
from .notifications import notify, publish_booking_event
from .schemas import (
    BookingResponse,
    CancelBookingRequest,
    CompletionDetailsResponse,
    CompletionRequest,
    CompletionRequestedResponse,
    CreateBookingRequest,
    CreateReviewRequest,
    NotificationResponse,
    RejectBookingRequest,
    ReviewResponse,
)

router = APIRouter()


def booking_response(b: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=b.booking_id,
        status=b.status,
        user_id=b.user_id,
        provider_id=b.provider_id,
        service_date=b.service_date,
        service_time=b.service_time,
        start_date=b.start_date,
        end_date=b.end_date,
        message=b.message,
        special_requirements=b.special_requirements,
        rejection_reason=b.rejection_reason,
        cancellation_reason=b.cancellation_reason,
        cancelled_at=b.cancelled_at,
        completion_confirmed_by_provider=bool(b.completion_confirmed_by_provider),
        completion_confirmed_by_customer=b.completion_confirmed_by_customer,
        completion_requested_at=b.completion_requested_at,
        auto_complete_at=b.auto_complete_at,
        completion_status=b.completion_status,
        provider_payment_requested=bool(b.provider_payment_requested),
        version=b.version,
    )


def completion_response(d: CompletionDetails) -> CompletionDetailsResponse:
    return CompletionDetailsResponse(
        booking_id=d.booking_id,
        service_description=d.service_description,
        amount_charged=float(d.amount_charged),
        completion_days=d.completion_days,
        additional_notes=d.additional_notes,
        customer_verified_at=d.customer_verified_at,
        created_at=d.created_at,
    )


async def load_booking(db: AsyncSession, booking_id: str) -> Booking:
    res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
    booking = res.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def ensure_participant(user: dict, booking: Booking):
    if has_role(user, "admin"):
        return
    if user["sub"] not in (booking.user_id, booking.provider_id):
        raise HTTPException(status_code=403, detail="Not a participant of this booking")


def ensure_provider(user: dict, booking: Booking):
    if has_role(user, "admin"):
        return
    if user["sub"] != booking.provider_id:
        raise HTTPException(status_code=403, detail="Only the booking's provider can do this")


def ensure_customer(user: dict, booking: Booking):
    if has_role(user, "admin"):
        return
    if user["sub"] != booking.user_id:
        raise HTTPException(status_code=403, detail="Only the booking's customer can do this")


def apply_transition(fn, *args):
    try:
        return fn(*args)
    except BookingTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


async def commit_or_conflict(db: AsyncSession, conflict_detail: str = "Conflicting update"):
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail="Booking was modified concurrently; reload and retry",
        )
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=conflict_detail)


# ================= BOOKINGS =================

@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(user, ["user", "admin"])

    if data.provider_id == user["sub"]:
        raise HTTPException(status_code=400, detail="You cannot book your own services")

    today = availability.service_today()
    if data.service_date < today:
        raise HTTPException(status_code=400, detail="service_date must not be in the past")

    if (data.start_date is None) != (data.end_date is None):
        raise HTTPException(status_code=400, detail="start_date and end_date must be given together")
    if data.start_date and data.end_date:
        if data.end_date < data.start_date:
            raise HTTPException(status_code=400, detail="end_date must not be before start_date")
        if data.start_date < today:
            raise HTTPException(status_code=400, detail="start_date must not be in the past")

    requested = availability.booking_dates(data.service_date, data.start_date, data.end_date)
    unavailable = await availability.unavailable_dates(db, data.provider_id, requested)
    if unavailable:
        raise HTTPException(
            status_code=409,
            detail="Provider is not available on: " + ", ".join(d.isoformat() for d in unavailable),
        )

    booking = Booking(
        booking_id=str(uuid.uuid4()),
        user_id=user["sub"],
        provider_id=data.provider_id,
        service_date=data.service_date,
        service_time=data.service_time,
        start_date=data.start_date,
        end_date=data.end_date,
        message=data.message,
        special_requirements=data.special_requirements,
        status=lifecycle.PENDING,
        completion_confirmed_by_provider=False,
        provider_payment_requested=False,
    )
    db.add(booking)
    notify(
        db,
        booking.provider_id,
        "New booking request",
        f"You have a new booking request for {booking.service_date.isoformat()}.",
        "booking",
    )
    await commit_or_conflict(db)

    await publish_booking_event("booking.requested", booking)
    return booking_response(booking)


@router.get("/bookings", response_model=List[BookingResponse])
async def list_bookings(
    as_: str = Query("customer", alias="as", pattern="^(customer|provider)$"),
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    column = Booking.user_id if as_ == "customer" else Booking.provider_id
    res = await db.execute(
        select(Booking).where(column == user["sub"]).order_by(Booking.service_date.desc())
    )
    return [booking_response(b) for b in res.scalars().all()]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await load_booking(db, booking_id)
    ensure_participant(user, booking)
    return booking_response(booking)


@router.post("/bookings/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(booking_id: str, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await load_booking(db, booking_id)
    ensure_provider(user, booking)

    apply_transition(lifecycle.accept, booking)
    notify(db, booking.user_id, "Booking accepted", "Your booking request has been accepted.", "booking")
    await commit_or_conflict(db)

    await publish_booking_event("booking.accepted", booking)
    return booking_response(booking)


@router.post("/bookings/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str,
    data: RejectBookingRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    booking = await load_booking(db, booking_id)
    ensure_provider(user, booking)

    apply_transition(lifecycle.reject, booking, data.reason)
    message = "Your booking request has been declined."
    if booking.rejection_reason:
        message += f" Reason: {booking.rejection_reason}"
    notify(db, booking.user_id, "Booking rejected", message, "booking")
    await commit_or_conflict(db)

    await publish_booking_event("booking.rejected", booking)
    return booking_response(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    data: CancelBookingRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    booking = await load_booking(db, booking_id)
    ensure_participant(user, booking)

    apply_transition(lifecycle.cancel, booking, data.reason)
    other = booking.provider_id if user["sub"] == booking.user_id else booking.user_id
    notify(db, other, "Booking cancelled", "A booking has been cancelled.", "booking")
    await commit_or_conflict(db)

    await publish_booking_event("booking.cancelled", booking)
    return booking_response(booking)


# ================= COMPLETION =================

@router.post("/bookings/{booking_id}/completion", response_model=CompletionRequestedResponse, status_code=201)
async def request_completion(
    booking_id: str,
    data: CompletionRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    booking = await load_booking(db, booking_id)
    ensure_provider(user, booking)

    res = await db.execute(select(CompletionDetails).where(CompletionDetails.booking_id == booking_id))
    if res.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Completion details already submitted for this booking")

    apply_transition(lifecycle.request_completion, booking)

    details = CompletionDetails(
        booking_id=booking.booking_id,
        service_description=data.service_description,
        amount_charged=data.amount_charged,
        completion_days=data.completion_days,
        additional_notes=data.additional_notes or None,
    )
    db.add(details)
    notify(
        db,
        booking.user_id,
        "Service completion requested",
        "Your provider marked the service as completed. Please verify the details; "
        "the booking will be completed automatically in 7 days.",
        "completion",
    )
    # details row and booking deadline land together or not at all
    await commit_or_conflict(db, "Completion details already submitted for this booking")

    await publish_booking_event(
        "booking.completion_requested",
        booking,
        auto_complete_at=booking.auto_complete_at.isoformat(),
    )
    return CompletionRequestedResponse(
        booking=booking_response(booking),
        completion=completion_response(details),
    )


@router.get("/bookings/{booking_id}/completion", response_model=CompletionDetailsResponse)
async def get_completion(booking_id: str, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await load_booking(db, booking_id)
    ensure_participant(user, booking)

    res = await db.execute(select(CompletionDetails).where(CompletionDetails.booking_id == booking_id))
    details = res.scalar_one_or_none()
    if not details:
        raise HTTPException(status_code=404, detail="No completion details for this booking")
    return completion_response(details)


@router.post("/bookings/{booking_id}/completion/confirm", response_model=BookingResponse)
async def confirm_completion(booking_id: str, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await load_booking(db, booking_id)
    ensure_customer(user, booking)

    changed = apply_transition(lifecycle.confirm_completion, booking)
    if not changed:
        return booking_response(booking)

    res = await db.execute(select(CompletionDetails).where(CompletionDetails.booking_id == booking_id))
    details = res.scalar_one_or_none()
    if details and details.customer_verified_at is None:
        details.customer_verified_at = datetime.now(timezone.utc)

    notify(
        db,
        booking.provider_id,
        "Service completion confirmed",
        "The customer confirmed the service as completed.",
        "completion",
    )
    await commit_or_conflict(db)

    await publish_booking_event("booking.completed", booking)
    return booking_response(booking)


# ================= REVIEWS =================

@router.post("/bookings/{booking_id}/reviews", response_model=ReviewResponse, status_code=201)
async def create_review(
    booking_id: str,
    data: CreateReviewRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    booking = await load_booking(db, booking_id)
    if user["sub"] != booking.user_id:
        raise HTTPException(status_code=403, detail="Only the booking's customer can review it")

    if booking.status != lifecycle.COMPLETED:
        raise HTTPException(status_code=409, detail="Only completed bookings can be reviewed")

    res = await db.execute(select(Review).where(Review.booking_id == booking_id))
    if res.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="This booking has already been reviewed")

    review = Review(
        booking_id=booking.booking_id,
        user_id=booking.user_id,
        provider_id=booking.provider_id,
        rating=data.rating,
        review_text=(data.review_text or "").strip() or None,
    )
    db.add(review)
    notify(db, booking.provider_id, "New review", f"You received a {data.rating}-star review.", "review")
    await commit_or_conflict(db, "This booking has already been reviewed")

    return ReviewResponse(
        booking_id=review.booking_id,
        user_id=review.user_id,
        provider_id=review.provider_id,
        rating=review.rating,
        review_text=review.review_text,
        created_at=review.created_at,
    )


# ================= NOTIFICATIONS =================

@router.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    q = select(Notification).where(Notification.user_id == user["sub"])
    if unread_only:
        q = q.where(or_(Notification.read.is_(False), Notification.read.is_(None)))
    res = await db.execute(q.order_by(Notification.created_at.desc(), Notification.id.desc()))
    return [
        NotificationResponse(id=n.id, title=n.title, message=n.message, type=n.type, read=bool(n.read), created_at=n.created_at)
        for n in res.scalars().all()
    ]


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    res = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user["sub"])
    )
    n = res.scalar_one_or_none()
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")

    n.read = True
    await db.commit()
    return NotificationResponse(id=n.id, title=n.title, message=n.message, type=n.type, read=True, created_at=n.created_at)
