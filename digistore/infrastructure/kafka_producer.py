import json
import logging
from aiokafka import AIOKafkaProducer

from digistore.application.interfaces import KafkaProducer

logger = logging.getLogger(__name__)


class KafkaProducerClient(KafkaProducer):
    def __init__(self, bootstrap_servers: str, topic: str = "digistore.order-events"):
        self._bootstrap_servers = bootstrap_servers
        self._producer: AIOKafkaProducer | None = None
        self._topic = topic

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers
            )
            await self._producer.start()
            logger.info("Kafka producer started")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def publish_order_completed(self, order_id: str, event_data: dict) -> bool:
        if not self._producer:
            logger.error("Kafka producer not started")
            return False

        try:
            event = {"event_type": "order.completed", **event_data, "order_id": order_id}

            await self._producer.send_and_wait(
                topic=self._topic,
                key=order_id.encode(),
                value=json.dumps(event).encode()
            )
            logger.info(f"Published order.completed for order {order_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish order.completed: {e}")
            return False
