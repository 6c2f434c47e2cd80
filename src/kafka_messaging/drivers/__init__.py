"""
Broker drivers.

- AIOKafkaDriver: production driver on top of aiokafka
- InMemoryBroker: in-process broker for tests and local development
"""

from kafka_messaging.drivers.aiokafka_driver import AIOKafkaDriver
from kafka_messaging.drivers.base import BrokerDriver, ReadSession, WriteSession
from kafka_messaging.drivers.memory import InMemoryBroker

__all__ = [
    "AIOKafkaDriver",
    "BrokerDriver",
    "InMemoryBroker",
    "ReadSession",
    "WriteSession",
]
