import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.audit import audit
from shared.breaker import CircuitBreakerOpen
from shared.security import get_current_user
from . import config, lifecycle, razorpay
from .db import get_db
from .models import Booking, Payment, SecurityAuditLog
from .notifications import notify, publisher
from .routes import ensure_participant, ensure_provider, load_booking
from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    PaymentResponse,
    RequestPaymentRequest,
    VerifyPaymentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PAYABLE_STATUSES = ("pending", "processing", "failed")


def payment_response(p: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=p.payment_id,
        booking_id=p.booking_id,
        amount=float(p.amount),
        currency=p.currency,
        payment_type=p.payment_type,
        is_provider_requested=bool(p.is_provider_requested),
        payment_description=p.payment_description,
        gateway_order_id=p.gateway_order_id,
        status=p.status,
    )


async def load_payment(db: AsyncSession, payment_id: str) -> Payment:
    res = await db.execute(select(Payment).where(Payment.payment_id == payment_id))
    payment = res.scalar_one_or_none()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.post("/bookings/{booking_id}/payments", response_model=PaymentResponse, status_code=201)
async def request_payment(
    booking_id: str,
    data: RequestPaymentRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    booking = await load_booking(db, booking_id)
    ensure_provider(user, booking)

    if booking.status not in (lifecycle.ACCEPTED, lifecycle.COMPLETED):
        raise HTTPException(status_code=409, detail="Payments can only be requested for accepted or completed bookings")

    payment = Payment(
        payment_id=str(uuid.uuid4()),
        booking_id=booking.booking_id,
        amount=data.amount,
        currency="INR",
        payment_type=data.payment_type,
        is_provider_requested=True,
        payment_description=data.description,
        status="pending",
    )
    db.add(payment)
    booking.provider_payment_requested = True
    notify(
        db,
        booking.user_id,
        "Payment requested",
        f"Your provider requested a payment of INR {data.amount:.2f}.",
        "payment",
    )
    await db.commit()

    return payment_response(payment)


@router.get("/bookings/{booking_id}/payments", response_model=List[PaymentResponse])
async def list_payments(booking_id: str, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await load_booking(db, booking_id)
    ensure_participant(user, booking)

    res = await db.execute(
        select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at.desc())
    )
    return [payment_response(p) for p in res.scalars().all()]


@router.post("/payments/create-order", response_model=CreateOrderResponse)
async def create_order(data: CreateOrderRequest, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    if not data.payment_id or data.amount is None:
        raise HTTPException(status_code=400, detail="Missing required fields")

    if not config.RAZORPAY_KEY_SECRET:
        logger.error("RAZORPAY_KEY_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Payment gateway not configured")

    payment = await load_payment(db, data.payment_id)
    res = await db.execute(select(Booking).where(Booking.booking_id == payment.booking_id))
    booking = res.scalar_one()
    if booking.user_id != user["sub"]:
        raise HTTPException(status_code=403, detail="This payment does not belong to you")

    if payment.status == "completed":
        raise HTTPException(status_code=409, detail="Payment already completed")
    if payment.status not in PAYABLE_STATUSES:
        raise HTTPException(status_code=409, detail=f"Payment cannot be paid in status {payment.status}")

    if razorpay.to_paise(data.amount) != razorpay.to_paise(payment.amount):
        raise HTTPException(status_code=400, detail="Amount does not match the requested payment")

    notes = dict(data.notes or {})
    notes.update({"payment_id": payment.payment_id, "user_id": user["sub"]})

    try:
        order = await razorpay.create_order(
            amount=float(payment.amount),
            currency=data.currency,
            receipt=f"payment_{payment.payment_id}",
            notes=notes,
        )
    except CircuitBreakerOpen:
        raise HTTPException(status_code=503, detail="Payment gateway temporarily unavailable")
    except razorpay.PaymentGatewayError:
        raise HTTPException(status_code=500, detail="Failed to create payment order")

    payment.gateway_order_id = order["id"]
    payment.currency = data.currency
    payment.status = "processing"
    await db.commit()

    return CreateOrderResponse(
        orderId=order["id"],
        amount=int(order.get("amount", razorpay.to_paise(payment.amount))),
        currency=order.get("currency", data.currency),
        keyId=config.RAZORPAY_KEY_ID,
    )


@router.post("/payments/verify")
async def verify_payment(
    data: VerifyPaymentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    if not (data.razorpay_order_id and data.razorpay_payment_id and data.razorpay_signature and data.payment_id):
        raise HTTPException(status_code=400, detail="Missing required fields")

    if not config.RAZORPAY_KEY_SECRET:
        logger.error("RAZORPAY_KEY_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Payment gateway not configured")

    payment = await load_payment(db, data.payment_id)
    res = await db.execute(select(Booking).where(Booking.booking_id == payment.booking_id))
    booking = res.scalar_one()
    if booking.user_id != user["sub"]:
        raise HTTPException(status_code=403, detail="This payment does not belong to you")

    if payment.status == "completed":
        raise HTTPException(status_code=409, detail="Payment already completed")

    valid = razorpay.verify_signature(
        data.razorpay_order_id,
        data.razorpay_payment_id,
        data.razorpay_signature,
        config.RAZORPAY_KEY_SECRET,
    )
    if valid and payment.gateway_order_id and payment.gateway_order_id != data.razorpay_order_id:
        valid = False

    if not valid:
        logger.warning("Payment %s failed signature verification", payment.payment_id)
        payment.status = "failed"
        audit(
            db, SecurityAuditLog, request, user["sub"],
            "payment_verification_failed", "payment", payment.payment_id,
            {"razorpay_order_id": data.razorpay_order_id},
        )
        await db.commit()
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid payment signature"})

    payment.status = "completed"
    payment.gateway_order_id = data.razorpay_order_id
    payment.gateway_payment_id = data.razorpay_payment_id

    notify(
        db,
        booking.provider_id,
        "Payment Received",
        f"Payment of INR {float(payment.amount):.2f} received for your booking.",
        "payment",
    )
    audit(
        db, SecurityAuditLog, request, user["sub"],
        "payment_verified", "payment", payment.payment_id,
        {"razorpay_order_id": data.razorpay_order_id, "razorpay_payment_id": data.razorpay_payment_id},
    )
    await db.commit()

    await publisher.publish_event(
        "payment.completed",
        {
            "payment_id": payment.payment_id,
            "booking_id": payment.booking_id,
            "amount": float(payment.amount),
            "currency": payment.currency,
        },
    )
    return {"success": True, "message": "Payment verified successfully", "paymentId": payment.payment_id}
