"""
Unit tests for the order event fan-out publisher.
"""

import asyncio

import pytest

from order_service.app.events.base import BaseEvent
from order_service.app.events.broker import (
    BatchingSubscription,
    OrderEventPublisher,
    RetryPolicy,
    Subscription,
    event_type_filter,
)
from order_service.app.events.schemas import OrderEventType

NO_DELAY = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


def make_event(event_type="ORDER_CREATED", **data):
    return BaseEvent(event_type=event_type, correlation_id="req-1", data=data)


class TestRetryPolicy:
    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0)

        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 3.0
        assert policy.delay_for(4) == 3.0

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestEventTypeFilter:
    def test_accepts_enum_and_string_tags(self):
        accepts = event_type_filter(OrderEventType.ORDER_CREATED)

        assert accepts("ORDER_CREATED") is True
        assert accepts("ORDER_DELETED") is False
        assert accepts(None) is False


class TestOrderEventPublisher:
    """Test cases for fan-out delivery."""

    @pytest.mark.asyncio
    async def test_fan_out_to_every_subscription(self, publisher, make_handler):
        first, second = make_handler(), make_handler()
        publisher.subscribe(Subscription("first", first, retry_policy=NO_DELAY))
        publisher.subscribe(Subscription("second", second, retry_policy=NO_DELAY))

        event = make_event()
        routed = await publisher.publish(event)
        await publisher.join()

        assert routed == ["first", "second"]
        assert [e.event_id for e in first.events] == [event.event_id]
        assert [e.event_id for e in second.events] == [event.event_id]

    @pytest.mark.asyncio
    async def test_filter_policy_skips_other_types(self, publisher, make_handler):
        billing = make_handler()
        log = make_handler()
        publisher.subscribe(
            Subscription(
                "billing",
                billing,
                event_type_filter(OrderEventType.ORDER_CREATED),
                NO_DELAY,
            )
        )
        publisher.subscribe(Subscription("log", log, retry_policy=NO_DELAY))

        routed = await publisher.publish(make_event("ORDER_DELETED"))
        await publisher.join()

        assert routed == ["log"]
        assert billing.events == []
        assert len(log.events) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, publisher, make_handler):
        flaky = make_handler(failures=2)
        publisher.subscribe(Subscription("flaky", flaky, retry_policy=NO_DELAY))

        await publisher.publish(make_event())
        await publisher.join()

        assert flaky.calls == 3
        assert len(flaky.events) == 1
        assert len(publisher.dead_letters) == 0

    @pytest.mark.asyncio
    async def test_exhausted_message_is_dead_lettered(self, publisher, make_handler):
        billing = make_handler(failures=100)
        log = make_handler()
        publisher.subscribe(Subscription("billing", billing, retry_policy=NO_DELAY))
        publisher.subscribe(Subscription("log", log, retry_policy=NO_DELAY))

        event = make_event(orderId="o1")
        await publisher.publish(event)
        await publisher.join()

        assert billing.calls == 3
        assert len(log.events) == 1

        entries = publisher.dead_letters.entries("billing")
        assert len(entries) == 1
        entry = entries[0]
        assert entry.event.event_id == event.event_id
        assert entry.event_type_tag == "ORDER_CREATED"
        assert entry.attempts == 3
        assert entry.error_type == "RuntimeError"
        assert publisher.dead_letters.entries("log") == []

    @pytest.mark.asyncio
    async def test_publish_does_not_wait_for_handlers(self, publisher):
        gate = asyncio.Event()

        class SlowHandler:
            async def handle(self, event):
                await gate.wait()

        publisher.subscribe(Subscription("slow", SlowHandler(), retry_policy=NO_DELAY))

        routed = await asyncio.wait_for(publisher.publish(make_event()), timeout=1)

        assert routed == ["slow"]
        gate.set()
        await publisher.join()

    @pytest.mark.asyncio
    async def test_redrive_requeues_dead_letter(self, publisher, make_handler):
        handler = make_handler(failures=3)
        publisher.subscribe(Subscription("billing", handler, retry_policy=NO_DELAY))

        event = make_event()
        await publisher.publish(event)
        await publisher.join()
        entry = publisher.dead_letters.entries()[0]

        redriven = await publisher.redrive(entry.entry_id)
        await publisher.join()

        assert redriven.entry_id == entry.entry_id
        assert len(publisher.dead_letters) == 0
        assert [e.event_id for e in handler.events] == [event.event_id]

    @pytest.mark.asyncio
    async def test_redrive_unknown_entry(self, publisher):
        with pytest.raises(KeyError):
            await publisher.redrive("missing")

    def test_duplicate_subscription_name_rejected(self, make_handler):
        publisher = OrderEventPublisher()
        publisher.subscribe(Subscription("log", make_handler()))

        with pytest.raises(ValueError):
            publisher.subscribe(Subscription("log", make_handler()))

    @pytest.mark.asyncio
    async def test_stop_drains_pending_messages(self, make_handler):
        handler = make_handler()
        publisher = OrderEventPublisher()
        publisher.subscribe(Subscription("log", handler, retry_policy=NO_DELAY))

        async with publisher:
            for _ in range(5):
                await publisher.publish(make_event())

        assert len(handler.events) == 5
        assert publisher.started is False
        assert all(not s.running for s in publisher.subscriptions)


class TestBatchingSubscription:
    """Test cases for buffered batch delivery."""

    @pytest.mark.asyncio
    async def test_full_batch_is_dispatched(self, publisher, make_batch_handler):
        handler = make_batch_handler()
        publisher.subscribe(
            BatchingSubscription(
                "email",
                handler,
                retry_policy=NO_DELAY,
                batch_size=3,
                max_batching_window=10.0,
            )
        )

        for _ in range(3):
            await publisher.publish(make_event())
        await asyncio.wait_for(publisher.join(), timeout=5)

        assert [len(batch) for batch in handler.batches] == [3]

    @pytest.mark.asyncio
    async def test_window_flushes_partial_batch(self, publisher, make_batch_handler):
        handler = make_batch_handler()
        publisher.subscribe(
            BatchingSubscription(
                "email",
                handler,
                retry_policy=NO_DELAY,
                batch_size=5,
                max_batching_window=0.05,
            )
        )

        await publisher.publish(make_event())
        await publisher.publish(make_event())
        await asyncio.wait_for(publisher.join(), timeout=5)

        assert [len(batch) for batch in handler.batches] == [2]

    @pytest.mark.asyncio
    async def test_failed_batch_dead_letters_each_message(
        self, publisher, make_batch_handler
    ):
        handler = make_batch_handler(failures=100)
        publisher.subscribe(
            BatchingSubscription(
                "email",
                handler,
                retry_policy=NO_DELAY,
                batch_size=2,
                max_batching_window=1.0,
            )
        )

        await publisher.publish(make_event())
        await publisher.publish(make_event())
        await asyncio.wait_for(publisher.join(), timeout=5)

        assert handler.calls == 3
        assert len(publisher.dead_letters.entries("email")) == 2
