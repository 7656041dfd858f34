import logging

import aio_pika

from .events import build_event, to_json

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "domain_events"


class RabbitPublisher:
    """
    Publishes domain events to the topic exchange, routed by event type.

    With no broker URL every call is a no-op. A broker outage is logged and
    dropped; callers never see it, and the next publish reconnects.
    """

    def __init__(self, service_name: str, rabbit_url: str | None):
        self.service_name = service_name
        self.rabbit_url = rabbit_url
        self.enabled = bool(rabbit_url)
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    def _forget(self):
        self._connection = None
        self._exchange = None

    async def connect(self):
        """Open the connection and declare the exchange; raises on failure."""
        if not self.enabled or self.connected:
            return

        try:
            self._connection = await aio_pika.connect_robust(
                self.rabbit_url,
                client_properties={"connection_name": self.service_name},
            )
            channel = await self._connection.channel()
            self._exchange = await channel.declare_exchange(
                EXCHANGE_NAME,
                aio_pika.ExchangeType.TOPIC,
                durable=True,
            )
        except Exception as e:
            logger.warning("[%s] RabbitMQ connect failed: %s", self.service_name, e)
            self._forget()
            raise

    async def _exchange_or_none(self) -> aio_pika.abc.AbstractExchange | None:
        try:
            await self.connect()
        except Exception:
            return None
        return self._exchange

    async def publish_event(self, event_type: str, data: dict) -> str | None:
        """Publish one event; returns its event_id, or None when it was dropped."""
        if not self.enabled:
            return None

        exchange = await self._exchange_or_none()
        if exchange is None:
            return None

        event = build_event(event_type, data)
        message = aio_pika.Message(
            body=to_json(event).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=event["event_id"],
            type=event_type,
            app_id=self.service_name,
        )
        try:
            await exchange.publish(message, routing_key=event_type)
        except Exception as e:
            logger.warning("[%s] dropped %s event: %s", self.service_name, event_type, e)
            return None
        return event["event_id"]

    async def close(self):
        connection = self._connection
        self._forget()
        if connection is not None and not connection.is_closed:
            await connection.close()
