from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreateBookingRequest(BaseModel):
    provider_id: str
    service_date: date
    service_time: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    message: Optional[str] = None
    special_requirements: Optional[str] = None


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    user_id: str
    provider_id: str
    service_date: date
    service_time: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    message: Optional[str] = None
    special_requirements: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completion_confirmed_by_provider: bool = False
    completion_confirmed_by_customer: Optional[bool] = None
    completion_requested_at: Optional[datetime] = None
    auto_complete_at: Optional[datetime] = None
    completion_status: Optional[str] = None
    provider_payment_requested: bool = False
    version: int


class RejectBookingRequest(BaseModel):
    reason: Optional[str] = None


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = None


# ---- Completion ----

class CompletionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_description: str = Field(alias="serviceDescription")
    amount_charged: float = Field(alias="amountCharged", gt=0)
    completion_days: int = Field(alias="completionDays", ge=1)
    additional_notes: Optional[str] = Field(default=None, alias="additionalNotes")

    @field_validator("service_description")
    @classmethod
    def _description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("serviceDescription must not be empty")
        return v


class CompletionDetailsResponse(BaseModel):
    booking_id: str
    service_description: str
    amount_charged: float
    completion_days: int
    additional_notes: Optional[str] = None
    customer_verified_at: Optional[datetime] = None
    created_at: datetime


class CompletionRequestedResponse(BaseModel):
    booking: BookingResponse
    completion: CompletionDetailsResponse


# ---- Reviews / notifications ----

class CreateReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    review_text: Optional[str] = None


class ReviewResponse(BaseModel):
    booking_id: str
    user_id: str
    provider_id: str
    rating: int
    review_text: Optional[str] = None
    created_at: datetime


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    read: bool
    created_at: datetime


# ---- Availability ----

class AvailabilityOverlay(BaseModel):
    provider_id: str
    year: int
    month: int
    booked: List[date]
    blocked: List[date]
    available: List[date]


class AvailabilityBlockResponse(BaseModel):
    id: int
    specific_date: Optional[date] = None
    day_of_week: Optional[int] = None
    is_blocked: bool


class ToggleDateResponse(BaseModel):
    date: date
    blocked: bool


class ToggleWeekdayResponse(BaseModel):
    day_of_week: int
    blocked: bool


class BlockDatesRequest(BaseModel):
    dates: List[date] = Field(min_length=1)


class SetWeekdaysRequest(BaseModel):
    days: List[int] = Field(default_factory=list)

    @field_validator("days")
    @classmethod
    def _valid_weekdays(cls, v: List[int]) -> List[int]:
        for d in v:
            if d < 0 or d > 6:
                raise ValueError(f"Invalid day_of_week: {d}. Allowed: 0 (Sunday) .. 6 (Saturday)")
        return sorted(set(v))


# ---- Payments ----

class RequestPaymentRequest(BaseModel):
    amount: float = Field(gt=0)
    description: Optional[str] = None
    payment_type: str = "advance"


class PaymentResponse(BaseModel):
    payment_id: str
    booking_id: str
    amount: float
    currency: str
    payment_type: str
    is_provider_requested: bool
    payment_description: Optional[str] = None
    gateway_order_id: Optional[str] = None
    status: str


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    amount: Optional[float] = None
    currency: str = "INR"
    notes: dict = Field(default_factory=dict)


class CreateOrderResponse(BaseModel):
    orderId: str
    amount: int
    currency: str
    keyId: str


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    payment_id: Optional[str] = Field(default=None, alias="paymentId")


# ---- Cron ----

class AutoCompleteResponse(BaseModel):
    success: bool
    message: str
    count: int
