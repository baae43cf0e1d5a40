"""
In-process fan-out publisher for order lifecycle events.

Every subscription owns an ``asyncio.Queue`` drained by its own worker task,
so a slow or failing subscriber never blocks the producer or its siblings.
Delivery is at least once per subscription: a handler is retried under its
``RetryPolicy`` and, once the budget is spent, the message is parked in the
``DeadLetterQueue``.
"""

import asyncio
from typing import Callable, Dict, List, NamedTuple, Optional, Set

from ..core.exceptions import PublishFailure
from ..utils.logging import setup_order_logging
from .base import BaseEvent, BatchEventHandler, EventHandler, EventPublisher
from .dead_letter import DeadLetterEntry, DeadLetterQueue

logger = setup_order_logging("order_service.broker")

FilterPolicy = Callable[[Optional[str]], bool]


class QueuedMessage(NamedTuple):
    event: BaseEvent
    event_type_tag: Optional[str]


class RetryPolicy:
    """Bounded retry with exponential backoff"""

    def __init__(
        self, max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 30.0
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def event_type_filter(*allowed: str) -> FilterPolicy:
    """Accept only messages whose event type tag is one of ``allowed``"""
    allowed_tags = frozenset(str(getattr(tag, "value", tag)) for tag in allowed)

    def _accepts(event_type_tag: Optional[str]) -> bool:
        return event_type_tag in allowed_tags

    return _accepts


class Subscription:
    """One consumer of the publisher with its own queue, filter and retry policy"""

    def __init__(
        self,
        name: str,
        handler: EventHandler,
        filter_policy: Optional[FilterPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.name = name
        self.handler = handler
        self.filter_policy = filter_policy
        self.retry_policy = retry_policy or RetryPolicy()
        self.queue: "asyncio.Queue[QueuedMessage]" = asyncio.Queue()
        self.dead_letters: Optional[DeadLetterQueue] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def accepts(self, event_type_tag: Optional[str]) -> bool:
        return self.filter_policy is None or self.filter_policy(event_type_tag)

    def enqueue(self, message: QueuedMessage) -> None:
        self.queue.put_nowait(message)

    async def _invoke(self, messages: List[QueuedMessage]) -> None:
        await self.handler.handle(messages[0].event)

    async def deliver(self, messages: List[QueuedMessage]) -> bool:
        """Run the handler under the retry policy; dead-letter on exhaustion."""
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._invoke(messages)
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self.retry_policy.max_attempts:
                    self._dead_letter(messages, PublishFailure(self.name, attempt, e))
                    return False
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"Delivery to {self.name} failed, retrying",
                    extra={
                        "subscription": self.name,
                        "attempt": attempt,
                        "retry_in_seconds": delay,
                        "error": str(e),
                    },
                )
                await asyncio.sleep(delay)

    def _dead_letter(self, messages: List[QueuedMessage], failure: PublishFailure):
        if self.dead_letters is None:
            logger.error(
                f"Dropping message for {self.name}: no dead letter queue",
                extra={"subscription": self.name, "error": failure.message},
            )
            return
        for message in messages:
            self.dead_letters.send(
                DeadLetterEntry.from_failure(
                    failure, message.event, message.event_type_tag
                )
            )

    async def run(self) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self.deliver([message])
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    f"Subscription worker {self.name} hit an unexpected error",
                    extra={"subscription": self.name},
                )
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(
                self.run(), name=f"subscription-{self.name}"
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None


class BatchingSubscription(Subscription):
    """
    Buffered subscription that hands the handler batches of messages.

    A batch is dispatched once ``batch_size`` messages are buffered or
    ``max_batching_window`` seconds have passed since its first message.
    At most ``max_concurrent_batches`` batches are processed at a time.
    """

    handler: BatchEventHandler

    def __init__(
        self,
        name: str,
        handler: BatchEventHandler,
        filter_policy: Optional[FilterPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 5,
        max_batching_window: float = 60.0,
        max_concurrent_batches: int = 2,
    ):
        super().__init__(name, handler, filter_policy, retry_policy)  # type: ignore[arg-type]
        self.batch_size = batch_size
        self.max_batching_window = max_batching_window
        self.max_concurrent_batches = max_concurrent_batches
        self._semaphore = asyncio.Semaphore(max_concurrent_batches)
        self._inflight: Set[asyncio.Task] = set()

    async def _invoke(self, messages: List[QueuedMessage]) -> None:
        await self.handler.handle_batch([message.event for message in messages])

    async def _collect_batch(self) -> List[QueuedMessage]:
        loop = asyncio.get_running_loop()
        batch = [await self.queue.get()]
        deadline = loop.time() + self.max_batching_window
        while len(batch) < self.batch_size:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                batch.append(await asyncio.wait_for(self.queue.get(), remaining))
            except asyncio.TimeoutError:
                break
        return batch

    async def _process_batch(self, batch: List[QueuedMessage]) -> None:
        try:
            delivered = await self.deliver(batch)
            logger.info(
                f"Batch processed for {self.name}",
                extra={
                    "subscription": self.name,
                    "batch_size": len(batch),
                    "delivered": delivered,
                },
            )
        except Exception:
            logger.exception(
                f"Batch worker {self.name} hit an unexpected error",
                extra={"subscription": self.name},
            )
        finally:
            self._semaphore.release()
            for _ in batch:
                self.queue.task_done()

    async def run(self) -> None:
        while True:
            batch = await self._collect_batch()
            await self._semaphore.acquire()
            task = asyncio.create_task(self._process_batch(batch))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def stop(self) -> None:
        await super().stop()
        for task in list(self._inflight):
            task.cancel()
        await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()


class OrderEventPublisher(EventPublisher):
    """Fan-out broker delivering each event to every matching subscription"""

    def __init__(self, dead_letters: Optional[DeadLetterQueue] = None):
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self._subscriptions: Dict[str, Subscription] = {}
        self._started = False

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    @property
    def started(self) -> bool:
        return self._started

    def subscribe(self, subscription: Subscription) -> Subscription:
        if subscription.name in self._subscriptions:
            raise ValueError(f"Subscription '{subscription.name}' already exists")
        subscription.dead_letters = self.dead_letters
        self._subscriptions[subscription.name] = subscription
        if self._started:
            subscription.start()
        logger.info(
            "Subscription registered",
            extra={
                "subscription": subscription.name,
                "filtered": subscription.filter_policy is not None,
                "max_attempts": subscription.retry_policy.max_attempts,
            },
        )
        return subscription

    async def start(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.start()
        self._started = True
        logger.info(
            "Order event publisher started",
            extra={"subscriptions": list(self._subscriptions)},
        )

    async def publish(
        self, event: BaseEvent, event_type_tag: Optional[str] = None
    ) -> List[str]:
        """
        Queue ``event`` on every subscription whose filter accepts the tag.

        Returns the names of the subscriptions the event was routed to.
        Handlers run later on the subscription workers.
        """
        tag = event_type_tag or event.event_type
        message = QueuedMessage(event=event, event_type_tag=tag)
        routed = []
        for subscription in self._subscriptions.values():
            if subscription.accepts(tag):
                subscription.enqueue(message)
                routed.append(subscription.name)
        logger.info(
            "Event published",
            extra={
                "event_id": event.event_id,
                "event_type": tag,
                "correlation_id": event.correlation_id,
                "routed_to": routed,
            },
        )
        return routed

    async def join(self) -> None:
        """Wait until every queued message has been handled or dead-lettered."""
        await asyncio.gather(
            *(subscription.queue.join() for subscription in self._subscriptions.values())
        )

    async def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        if drain and self._started:
            try:
                await asyncio.wait_for(self.join(), timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Publisher drain timed out, pending messages are dropped",
                    extra={
                        "pending": {
                            s.name: s.queue.qsize() for s in self._subscriptions.values()
                        }
                    },
                )
        for subscription in self._subscriptions.values():
            await subscription.stop()
        self._started = False
        logger.info("Order event publisher stopped")

    async def redrive(self, entry_id: str) -> DeadLetterEntry:
        """Put a dead-lettered message back on its subscription's queue."""
        entry = self.dead_letters.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        subscription = self._subscriptions.get(entry.subscription)
        if subscription is None:
            raise KeyError(entry.subscription)
        self.dead_letters.pop(entry_id)
        subscription.enqueue(
            QueuedMessage(event=entry.event, event_type_tag=entry.event_type_tag)
        )
        logger.info(
            "Dead letter redriven",
            extra={"entry_id": entry_id, "subscription": entry.subscription},
        )
        return entry

    async def __aenter__(self) -> "OrderEventPublisher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop(drain=exc_type is None)
