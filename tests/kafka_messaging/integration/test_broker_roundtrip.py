"""Producer/consumer round trip against a real Kafka broker."""

import asyncio
from typing import List

import pytest

from kafka_messaging.consumer import KafkaConsumer
from kafka_messaging.drivers.aiokafka_driver import AIOKafkaDriver
from kafka_messaging.message import Message
from kafka_messaging.producer import KafkaProducer


async def _consume_n(consumer: KafkaConsumer, count: int, timeout: float = 60.0) -> List[Message]:
    received: List[Message] = []
    done = asyncio.Event()

    async def handler(msg: Message) -> None:
        received.append(msg)
        if len(received) >= count:
            done.set()

    task = asyncio.create_task(consumer.consume(handler))
    try:
        await asyncio.wait_for(done.wait(), timeout)
    finally:
        await consumer.close()
    assert task.done()
    return received


@pytest.mark.integration
@pytest.mark.asyncio
async def test_round_trip(kafka_config, broker_options, unique_topic_prefix):
    topic = f"{unique_topic_prefix}.t1"

    async with KafkaProducer(kafka_config, broker_options, driver=AIOKafkaDriver()) as producer:
        acked = await producer.send(topic, "k1", '{"id":"1"}', {"source": "x"})
    assert acked.offset >= 0

    consumer = KafkaConsumer(kafka_config, broker_options, driver=AIOKafkaDriver())
    consumer.subscribe(topic)
    [received] = await _consume_n(consumer, 1)

    assert received.topic == topic
    assert received.key == b"k1"
    assert received.value == b'{"id":"1"}'
    assert received.headers == {"source": "x"}
    assert received.partition >= 0
    assert received.offset >= 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_restart_resumes_after_commit(kafka_config, broker_options, unique_topic_prefix):
    topic = f"{unique_topic_prefix}.raw"

    async with KafkaProducer(kafka_config, broker_options, driver=AIOKafkaDriver()) as producer:
        for i in range(5):
            await producer.send(topic, "same-key", f"value-{i}")

    first = KafkaConsumer(kafka_config, broker_options, driver=AIOKafkaDriver())
    first.subscribe(topic)
    received = await _consume_n(first, 5)
    offsets = [m.offset for m in received]
    assert offsets == sorted(offsets)

    async with KafkaProducer(kafka_config, broker_options, driver=AIOKafkaDriver()) as producer:
        await producer.send(topic, "same-key", "value-5")

    restarted = KafkaConsumer(kafka_config, broker_options, driver=AIOKafkaDriver())
    restarted.subscribe(topic)
    [next_record] = await _consume_n(restarted, 1)

    assert next_record.value == b"value-5"
