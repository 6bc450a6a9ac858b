import json

import aio_pika
import pytest

from doc_worker import publisher as publisher_module
from doc_worker.publisher import OutcomePublisher


class FakeExchange:
    def __init__(self) -> None:
        self.published: list[tuple[aio_pika.Message, str]] = []

    async def publish(self, message: aio_pika.Message, routing_key: str) -> None:
        self.published.append((message, routing_key))


class FakeChannel:
    def __init__(self) -> None:
        self.default_exchange = FakeExchange()
        self.declared: list[tuple[str, bool]] = []

    async def declare_queue(self, name: str, durable: bool = False) -> None:
        self.declared.append((name, durable))


class FakeConnection:
    def __init__(self) -> None:
        self.channel_obj = FakeChannel()
        self.closed = False

    async def channel(self) -> FakeChannel:
        return self.channel_obj

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, *exc) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_publishes_persistent_json_outcome(monkeypatch: pytest.MonkeyPatch) -> None:
    connection = FakeConnection()

    async def fake_connect(url: str) -> FakeConnection:
        assert url == "amqp://rabbit/"
        return connection

    monkeypatch.setattr(publisher_module.aio_pika, "connect", fake_connect)

    ok = await OutcomePublisher("amqp://rabbit/", "outcomes").publish("a1", True)

    assert ok
    assert connection.closed
    assert connection.channel_obj.declared == [("outcomes", True)]
    [(message, routing_key)] = connection.channel_obj.default_exchange.published
    assert routing_key == "outcomes"
    assert json.loads(message.body) == {"uuid": "a1", "success": True}
    assert message.content_type == "application/json"
    assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT


@pytest.mark.anyio
async def test_no_queue_configured_skips_broker(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail_connect(url: str):
        raise AssertionError("should not connect")

    monkeypatch.setattr(publisher_module.aio_pika, "connect", fail_connect)

    assert await OutcomePublisher("amqp://rabbit/", None).publish("a1", False) is False


@pytest.mark.anyio
async def test_broker_failure_is_swallowed(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_connect(url: str):
        raise ConnectionError("broker down")

    monkeypatch.setattr(publisher_module.aio_pika, "connect", broken_connect)

    assert await OutcomePublisher("amqp://rabbit/", "outcomes").publish("a1", True) is False
