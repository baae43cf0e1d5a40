import asyncio
import json
from typing import Optional, Set

from aiokafka import AIOKafkaProducer  # type: ignore
from aiokafka.admin import AIOKafkaAdminClient, NewTopic  # type: ignore
from aiokafka.errors import KafkaConnectionError, KafkaError  # type: ignore

from ...utils.logging import setup_order_logging
from . import BaseEvent, EventPublisher

logger = setup_order_logging("order_service.events.kafka")


class KafkaEventPublisher(EventPublisher):
    """
    Forwards order events to Kafka for services outside this process.

    With graceful degradation enabled an unreachable broker only produces a
    log line; otherwise publish raises and the caller's retry policy applies.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        default_topic: str = "order.events",
        max_retries: int = 5,
        retry_delay: float = 2.0,
        enable_graceful_degradation: bool = True,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.default_topic = default_topic
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.enable_graceful_degradation = enable_graceful_degradation
        self.producer: Optional[AIOKafkaProducer] = None
        self.is_connected = False
        self._known_topics: Set[str] = set()
        self._connection_lock = asyncio.Lock()

    async def ensure_topic_exists(self, topic_name: str) -> None:
        """Create the topic once per process if the cluster lacks it."""
        if topic_name in self._known_topics:
            return
        admin_client = AIOKafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
        await admin_client.start()  # type: ignore
        try:
            topics = await admin_client.list_topics()
            if topic_name not in topics:
                await admin_client.create_topics(
                    [NewTopic(name=topic_name, num_partitions=1, replication_factor=1)]
                )
                logger.info("Created Kafka topic", extra={"topic_name": topic_name})
            self._known_topics.add(topic_name)
        except Exception as e:
            logger.warning(
                "Error ensuring Kafka topic exists",
                extra={"topic_name": topic_name, "error": str(e)},
            )
        finally:
            await admin_client.close()  # type: ignore

    async def start(self, timeout: float = 30.0) -> None:
        """Start the producer, retrying with exponential backoff"""
        async with self._connection_lock:
            if self.producer and self.is_connected:
                return

            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                client_id=self.client_id,
                value_serializer=lambda x: json.dumps(x, default=str).encode("utf-8"),
                key_serializer=lambda x: x.encode("utf-8") if x else None,
                retry_backoff_ms=1000,
                request_timeout_ms=30000,
            )

            for attempt in range(self.max_retries):
                try:
                    await asyncio.wait_for(self.producer.start(), timeout=timeout)
                    self.is_connected = True
                    logger.info(
                        "Connected to Kafka",
                        extra={"bootstrap_servers": self.bootstrap_servers},
                    )
                    return
                except (KafkaConnectionError, asyncio.TimeoutError) as e:
                    delay = self.retry_delay * (2**attempt)
                    logger.warning(
                        f"Kafka connection attempt {attempt + 1} failed: {e}",
                        extra={"attempt": attempt + 1, "retry_in_seconds": delay},
                    )
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(delay)

            logger.error(
                f"Failed to connect to Kafka after {self.max_retries} attempts, "
                "running in degraded mode"
            )
            self.is_connected = False

    async def stop(self) -> None:
        async with self._connection_lock:
            if self.producer:
                try:
                    await self.producer.stop()
                    logger.info("Kafka producer stopped")
                except Exception as e:
                    logger.warning(
                        "Error stopping Kafka producer", extra={"error": str(e)}
                    )
                finally:
                    self.producer = None
                    self.is_connected = False

    async def publish(  # type: ignore[override]
        self, event: BaseEvent, topic: Optional[str] = None
    ) -> None:
        if not self.is_connected or not self.producer:
            if self.enable_graceful_degradation:
                logger.warning(
                    f"Kafka not available, logging event instead: {event.event_type}",
                    extra={
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "event_data": event.model_dump(mode="json"),
                    },
                )
                return
            raise KafkaConnectionError("Kafka producer not connected")

        topic = topic or self.default_topic
        await self.ensure_topic_exists(topic)

        try:
            await self.producer.send_and_wait(
                topic=topic,
                value=event.model_dump(mode="json"),
                key=event.correlation_id,
            )
            logger.info(
                "Published event to Kafka topic",
                extra={
                    "event_type": event.event_type,
                    "topic": topic,
                    "event_id": event.event_id,
                    "correlation_id": event.correlation_id,
                },
            )
        except KafkaError as e:
            logger.error(
                "Failed to publish event to Kafka",
                extra={
                    "event_type": event.event_type,
                    "topic": topic,
                    "event_id": event.event_id,
                    "error": str(e),
                },
            )
            if not self.enable_graceful_degradation:
                raise

    async def health_check(self) -> bool:
        try:
            if not self.producer or not self.is_connected:
                return False
            metadata = await self.producer.client.fetch_all_metadata()
            return len(metadata.brokers()) > 0
        except Exception as e:
            logger.warning("Kafka health check failed", extra={"error": str(e)})
            return False
