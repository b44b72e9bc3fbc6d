import asyncio
import logging

from digistore.database import AsyncSessionLocal
from digistore.infrastructure.unit_of_work import UnitOfWork
from digistore.infrastructure.kafka_producer import KafkaProducerClient
from digistore.application.process_outbox import ProcessOutboxEventsUseCase
from digistore.config import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def outbox_worker(poll_interval: float = 3.0):
    """Worker для публикации outbox событий"""
    logger.info("Outbox worker запущен")

    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.KAFKA_TOPIC)
    await kafka_producer.start()

    try:
        while True:
            try:
                use_case = ProcessOutboxEventsUseCase(
                    unit_of_work=UnitOfWork(AsyncSessionLocal),
                    kafka_producer=kafka_producer
                )

                processed = await use_case(limit=10)
                if processed:
                    logger.info(f"Опубликовано {processed} outbox events")

                await asyncio.sleep(poll_interval)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_producer.stop()


async def main():
    await outbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
