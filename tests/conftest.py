"""Shared fixtures: an in-memory stand-in for the MQTT broker client."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import pytest
from asyncio_mqtt import MqttError


@dataclass
class FakeMessage:
    topic: str
    payload: bytes


class FakeBrokerClient:
    def __init__(self, broker: "FakeBroker", url: str, credentials: Any) -> None:
        self._broker = broker
        self.url = url
        self.credentials = credentials

    def _call(self, op: str, *args: Any) -> None:
        self._broker.calls.append((self.url, op, *args))
        if op in self._broker.failures.get(self.url, set()):
            raise MqttError(f"{op} refused by fake broker")

    async def connect(self, *, timeout: float | None = None) -> None:
        self.connect_timeout = timeout
        self._call("connect")

    async def disconnect(self) -> None:
        self._call("disconnect")

    async def publish(self, topic: str, payload: bytes, qos: int) -> None:
        self._call("publish", topic, payload, qos)

    async def subscribe(self, topic: str, qos: int) -> None:
        self._call("subscribe", topic, qos)

    @asynccontextmanager
    async def unfiltered_messages(self):
        yield self._stream()

    async def _stream(self):
        for message in self._broker.inbox.get(self.url, []):
            yield message
        if not self._broker.close_stream:
            await asyncio.Event().wait()


class FakeBroker:
    """Client factory recording every operation in ``calls``."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[str, set[str]] = {}
        self.inbox: dict[str, list[FakeMessage]] = {}
        self.close_stream = False
        self.clients: list[FakeBrokerClient] = []

    def fail(self, url: str, op: str) -> None:
        self.failures.setdefault(url, set()).add(op)

    def deliver(self, url: str, topic: str, payload: bytes) -> None:
        self.inbox.setdefault(url, []).append(FakeMessage(topic, payload))

    def ops(self, url: str | None = None) -> list[str]:
        return [c[1] for c in self.calls if url is None or c[0] == url]

    def __call__(self, url: str, credentials: Any) -> FakeBrokerClient:
        if "create" in self.failures.get(url, set()):
            raise ValueError(f"cannot build client for {url}")
        client = FakeBrokerClient(self, url, credentials)
        self.clients.append(client)
        return client


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
