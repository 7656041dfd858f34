from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from shared.audit import SecurityAuditColumns
from .db import Base


def utcnow():
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)

    service_date = Column(Date, nullable=False, index=True)
    service_time = Column(String, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    message = Column(Text, nullable=True)
    special_requirements = Column(Text, nullable=True)

    status = Column(String, nullable=False, index=True)  # pending/accepted/completed/cancelled/rejected
    rejection_reason = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    completion_confirmed_by_provider = Column(Boolean, nullable=False, default=False)
    completion_confirmed_by_customer = Column(Boolean, nullable=True)
    completion_requested_at = Column(DateTime(timezone=True), nullable=True)
    auto_complete_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completion_status = Column(String, nullable=True)  # pending_confirmation/confirmed/auto_completed

    provider_payment_requested = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CompletionDetails(Base):
    __tablename__ = "booking_completion_details"
    __table_args__ = (
        CheckConstraint("amount_charged > 0", name="ck_completion_amount_positive"),
        CheckConstraint("completion_days >= 1", name="ck_completion_days_min"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, ForeignKey("bookings.booking_id"), unique=True, nullable=False)

    service_description = Column(Text, nullable=False)
    amount_charged = Column(Numeric(12, 2), nullable=False)
    completion_days = Column(Integer, nullable=False)
    additional_notes = Column(Text, nullable=True)

    customer_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AvailabilityBlock(Base):
    __tablename__ = "provider_availability_blocks"
    __table_args__ = (
        CheckConstraint(
            "(specific_date IS NULL) <> (day_of_week IS NULL)",
            name="ck_block_date_xor_weekday",
        ),
        UniqueConstraint("provider_id", "specific_date", name="uq_block_provider_date"),
        UniqueConstraint("provider_id", "day_of_week", name="uq_block_provider_weekday"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)

    specific_date = Column(Date, nullable=True)
    day_of_week = Column(Integer, nullable=True)  # 0=Sunday .. 6=Saturday
    is_blocked = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    payment_id = Column(String, unique=True, nullable=False, index=True)
    booking_id = Column(String, ForeignKey("bookings.booking_id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    payment_type = Column(String, nullable=False, default="advance")
    is_provider_requested = Column(Boolean, nullable=False, default=False)
    payment_description = Column(String, nullable=True)

    gateway_order_id = Column(String, nullable=True, index=True)
    gateway_payment_id = Column(String, nullable=True)

    status = Column(String, nullable=False, index=True)  # pending/processing/completed/failed

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, ForeignKey("bookings.booking_id"), unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    review_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SecurityAuditLog(SecurityAuditColumns, Base):
    pass
