"""Tests for KafkaConsumer."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from kafka_messaging.common.exceptions import (
    CommitError,
    ConfigurationError,
    EndOfStream,
    NotConnectedError,
    TransportError,
)
from kafka_messaging.config import KafkaConfig
from kafka_messaging.consumer import KafkaConsumer
from kafka_messaging.drivers.base import BrokerDriver, ReadSession
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions


def _msg(topic: str, offset: int, partition: int = 0) -> Message:
    return Message(topic=topic, key=f"k{offset}", value=b"v", partition=partition, offset=offset)


async def _block_forever():
    await asyncio.Event().wait()


def _scripted_driver(*fetch_results) -> MagicMock:
    """Driver whose read session yields fetch_results then ends the stream."""
    session = MagicMock(spec=ReadSession)
    session.fetch = AsyncMock(side_effect=[*fetch_results, EndOfStream("done")])
    session.commit = AsyncMock()
    session.close = AsyncMock()

    driver = MagicMock(spec=BrokerDriver)
    driver.open_reader = AsyncMock(return_value=session)
    driver.session = session
    return driver


@pytest.fixture
def consumer_factory(kafka_config, fast_options):
    def factory(driver, options=None, config=None):
        consumer = KafkaConsumer(config or kafka_config, options or fast_options, driver=driver)
        if not consumer.topics:
            consumer.subscribe("t1")
        return consumer

    return factory


class TestSubscribe:
    def test_zero_topics_rejected(self, kafka_config):
        consumer = KafkaConsumer(kafka_config, driver=MagicMock(spec=BrokerDriver))

        with pytest.raises(ConfigurationError):
            consumer.subscribe()

    def test_subscribe_before_connect(self, kafka_config):
        consumer = KafkaConsumer(kafka_config, driver=MagicMock(spec=BrokerDriver))

        consumer.subscribe("a", "b", "a")

        assert consumer.topics == ["a", "b"]

    def test_topics_from_config(self):
        config = KafkaConfig(brokers=["b:9092"], consumer_topics=["raw", "enriched"])

        consumer = KafkaConsumer(config, driver=MagicMock(spec=BrokerDriver))

        assert consumer.topics == ["raw", "enriched"]

    @pytest.mark.asyncio
    async def test_subscribe_after_connect_rejected(self, consumer_factory, broker):
        consumer = consumer_factory(broker)
        task = asyncio.create_task(consumer.consume(lambda m: None))
        while not consumer.is_connected:
            await asyncio.sleep(0.001)

        with pytest.raises(ConfigurationError):
            consumer.subscribe("t2")

        await consumer.close()
        assert task.done()

    @pytest.mark.asyncio
    async def test_consume_without_subscription(self, kafka_config):
        consumer = KafkaConsumer(kafka_config, driver=MagicMock(spec=BrokerDriver))

        with pytest.raises(ConfigurationError, match="subscribe"):
            await consumer.consume(lambda m: None)


class TestConsumeLoop:
    @pytest.mark.asyncio
    async def test_handler_success_commits_exact_offset(self, consumer_factory):
        """With auto-commit off, each handled record is committed exactly once."""
        driver = _scripted_driver(_msg("t1", 7, partition=2))
        consumer = consumer_factory(driver)
        handler = AsyncMock()

        await consumer.consume(handler)

        handler.assert_awaited_once()
        driver.session.commit.assert_awaited_once_with("t1", 2, 7)

    @pytest.mark.asyncio
    async def test_handler_error_skips_commit_and_continues(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0), _msg("t1", 1))
        consumer = consumer_factory(driver)
        handler = AsyncMock(side_effect=[RuntimeError("bad payload"), None])

        await consumer.consume(handler)

        assert handler.await_count == 2
        driver.session.commit.assert_awaited_once_with("t1", 0, 1)

    @pytest.mark.asyncio
    async def test_sync_handler(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0), _msg("t1", 1))
        consumer = consumer_factory(driver)
        seen = []

        await consumer.consume(lambda m: seen.append(m.offset))

        assert seen == [0, 1]

    @pytest.mark.asyncio
    async def test_auto_commit_skips_explicit_commit(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0))
        options = KafkaOptions(enable_auto_commit=True, reconnect_backoff_ms=1)
        consumer = consumer_factory(driver, options=options)

        await consumer.consume(AsyncMock())

        driver.session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_failure_is_not_fatal(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0), _msg("t1", 1))
        driver.session.commit.side_effect = [CommitError("rebalance"), None]
        consumer = consumer_factory(driver)
        handler = AsyncMock()

        await consumer.consume(handler)

        assert handler.await_count == 2
        assert driver.session.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_foreign_commit_error_is_not_fatal(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0), _msg("t1", 1), _msg("t1", 2))
        driver.session.commit.side_effect = [RuntimeError("coordinator gone"), None, None]
        consumer = consumer_factory(driver)
        handled = []

        await consumer.consume(lambda m: handled.append(m.offset))

        assert handled == [0, 1, 2]
        assert driver.session.commit.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_fetch_error_backs_off_and_continues(self, consumer_factory):
        driver = _scripted_driver(TransportError("fetch failed"), _msg("t1", 0))
        consumer = consumer_factory(driver)
        handler = AsyncMock()

        await consumer.consume(handler)

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_multi_topic_fan_in(self, consumer_factory):
        driver = _scripted_driver(_msg("a", 0), _msg("b", 0))
        consumer = consumer_factory(driver)
        consumer.subscribe("a", "b")
        seen = []

        await consumer.consume(lambda m: seen.append(m.topic))

        assert seen == ["a", "b"]
        assert driver.open_reader.await_args.args[2] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_connect_uses_consumer_group(self, consumer_factory):
        driver = _scripted_driver()
        consumer = consumer_factory(driver)

        await consumer.consume(AsyncMock())

        assert driver.open_reader.await_args.args[3] == "test-group"

    @pytest.mark.asyncio
    async def test_connect_retries_exhaust(self, consumer_factory):
        driver = MagicMock(spec=BrokerDriver)
        driver.open_reader = AsyncMock(side_effect=TransportError("refused"))
        consumer = consumer_factory(driver)

        with pytest.raises(TransportError):
            await consumer.consume(AsyncMock())

        assert driver.open_reader.await_count == 6


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_paused_topic_never_reaches_handler(self, consumer_factory):
        driver = _scripted_driver(_msg("a", 0), _msg("b", 0), _msg("a", 1))
        consumer = consumer_factory(driver)
        consumer.subscribe("a", "b")
        consumer.pause("b")
        seen = []

        await consumer.consume(lambda m: seen.append((m.topic, m.offset)))

        assert seen == [("a", 0), ("a", 1)]
        # Discarded records are not committed either
        assert driver.session.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_resume_applies_to_subsequent_records(self, consumer_factory):
        driver = _scripted_driver(_msg("b", 0), _msg("a", 0), _msg("b", 1))
        consumer = consumer_factory(driver)
        consumer.subscribe("a", "b")
        consumer.pause("b")
        seen = []

        def handler(m):
            seen.append((m.topic, m.offset))
            consumer.resume("b")

        await consumer.consume(handler)

        assert seen == [("a", 0), ("b", 1)]

    def test_paused_topics_snapshot(self, kafka_config):
        consumer = KafkaConsumer(kafka_config, driver=MagicMock(spec=BrokerDriver))

        consumer.pause("a", "b")
        snapshot = consumer.paused_topics()
        consumer.resume("a", "never-paused")

        assert snapshot == frozenset({"a", "b"})
        assert consumer.paused_topics() == frozenset({"b"})


class TestCommit:
    @pytest.mark.asyncio
    async def test_commit_before_connect(self, consumer_factory):
        consumer = consumer_factory(_scripted_driver())

        with pytest.raises(NotConnectedError):
            await consumer.commit(_msg("t1", 0))

    @pytest.mark.asyncio
    async def test_driver_failure_surfaces_as_commit_error(self, consumer_factory):
        driver = _scripted_driver()
        driver.session.commit.side_effect = TransportError("coordinator moved")
        driver.session.fetch.side_effect = _block_forever
        consumer = consumer_factory(driver)
        task = asyncio.create_task(consumer.consume(AsyncMock()))
        while not consumer.is_connected:
            await asyncio.sleep(0.001)

        with pytest.raises(CommitError):
            await consumer.commit(_msg("t1", 0))

        await consumer.close()
        assert task.done()

    @pytest.mark.asyncio
    async def test_foreign_driver_failure_wrapped_as_commit_error(self, consumer_factory):
        driver = _scripted_driver()
        driver.session.commit.side_effect = RuntimeError("coordinator gone")
        driver.session.fetch.side_effect = _block_forever
        consumer = consumer_factory(driver)
        task = asyncio.create_task(consumer.consume(AsyncMock()))
        while not consumer.is_connected:
            await asyncio.sleep(0.001)

        with pytest.raises(CommitError) as exc_info:
            await consumer.commit(_msg("t1", 0))

        assert isinstance(exc_info.value.cause, RuntimeError)
        await consumer.close()
        assert task.done()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_cancels_blocked_consume(self, consumer_factory, broker):
        consumer = consumer_factory(broker)
        task = asyncio.create_task(consumer.consume(AsyncMock()))
        while not consumer.is_connected:
            await asyncio.sleep(0.001)

        start = time.monotonic()
        await consumer.close()

        assert time.monotonic() - start < 1.0
        assert task.cancelled()
        assert not consumer.is_connected

    @pytest.mark.asyncio
    async def test_close_from_handler_ends_loop(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0), _msg("t1", 1))
        consumer = consumer_factory(driver)
        seen = []

        async def handler(m):
            seen.append(m.offset)
            await consumer.close()

        await consumer.consume(handler)

        assert seen == [0]
        driver.session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_double_close(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0))
        consumer = consumer_factory(driver)
        await consumer.consume(AsyncMock())

        await consumer.close()
        await consumer.close()

        driver.session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_consume_after_close_rejected(self, consumer_factory):
        consumer = consumer_factory(_scripted_driver())
        await consumer.close()

        with pytest.raises(ConfigurationError, match="closed"):
            await consumer.consume(AsyncMock())

    @pytest.mark.asyncio
    async def test_async_context_manager(self, consumer_factory):
        driver = _scripted_driver(_msg("t1", 0))

        async with consumer_factory(driver) as consumer:
            await consumer.consume(AsyncMock())

        driver.session.close.assert_awaited_once()
