import json
import logging

import aio_pika
from tenacity import retry, stop_after_attempt, wait_exponential

from app.config import settings

logger = logging.getLogger(__name__)

connection = None
channel = None


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
async def _connect(url: str):
    return await aio_pika.connect_robust(url)


async def setup_rabbitmq():
    global connection, channel
    if not settings.rabbitmq_url:
        logger.info("RABBITMQ_URL not set; reservation events are disabled.")
        return
    try:
        connection = await _connect(settings.rabbitmq_url)
        channel = await connection.channel()
        await channel.declare_exchange(settings.reservation_exchange, aio_pika.ExchangeType.TOPIC, durable=True)
        logger.info("RabbitMQ setup complete.")
    except Exception as e:
        logger.error(f"Error setting up RabbitMQ: {e}")
        connection = channel = None


async def close_rabbitmq():
    global connection, channel
    if connection is not None:
        await connection.close()
    connection = channel = None


async def publish_event(exchange_name: str, routing_key: str, message_data: dict):
    if not channel:
        logger.debug(f"RabbitMQ channel not available. Dropping {message_data['event_type']}.")
        return

    message = aio_pika.Message(
        json.dumps(message_data, default=str).encode("utf-8"),
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )

    try:
        exchange = await channel.get_exchange(exchange_name)
        await exchange.publish(message, routing_key=routing_key)
        logger.info(f"Published event to {routing_key}: {message_data['event_type']}")
    except Exception as e:
        # Transition is already committed; log and carry on
        logger.error(f"Error publishing event {message_data['event_type']}: {e}")
