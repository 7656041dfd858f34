import logging

from shared.rabbitmq import RabbitPublisher
from .config import RABBIT_URL
from .models import Notification

logger = logging.getLogger(__name__)

publisher = RabbitPublisher("booking-service", RABBIT_URL)


def notify(db, user_id: str, title: str, message: str, type_: str) -> Notification:
    """Stage an in-app notification in the caller's session (committed with it)."""
    n = Notification(user_id=user_id, title=title, message=message, type=type_, read=False)
    db.add(n)
    return n


def booking_event_data(booking) -> dict:
    return {
        "booking_id": booking.booking_id,
        "user_id": booking.user_id,
        "provider_id": booking.provider_id,
        "status": booking.status,
        "service_date": booking.service_date.isoformat() if booking.service_date else None,
        "completion_status": booking.completion_status,
    }


async def publish_booking_event(event_type: str, booking, **extra):
    data = booking_event_data(booking)
    data.update(extra)
    await publisher.publish_event(event_type, data)
    logger.debug("published %s for booking %s", event_type, booking.booking_id)
