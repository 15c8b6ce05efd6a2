from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from asyncio_mqtt import MqttError

from .broker import BrokerClient, ClientFactory, create_client
from .config import settings
from .errors import ErrorKind, GatewayError
from .payload import resolve
from .schemas import DEFAULT_QOS, BrokerTarget, ConnectInfo, Credentials, PublishRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ReceivedMessage:
    topic: str
    payload: bytes


class _BrokerSession:
    """Connect, run one operation, disconnect.

    Once connected the client is always disconnected. When the operation
    failed, a disconnect failure is logged and the original error is kept.
    """

    def __init__(self, client_factory: ClientFactory = create_client):
        self._client_factory = client_factory

    async def _run(
        self,
        url: str,
        credentials: Credentials | None,
        operation: Callable[[BrokerClient], Awaitable[T]],
    ) -> T:
        try:
            client = self._client_factory(url, credentials)
        except (ValueError, OSError) as e:
            logger.warning("Unusable broker client configuration", extra={"broker": url, "error": str(e)})
            raise GatewayError(ErrorKind.CLIENT_INFORMATION) from e

        try:
            await client.connect(timeout=settings.mqtt_connect_timeout)
        except MqttError as e:
            logger.warning("Broker connection failed", extra={"broker": url, "error": str(e)})
            raise GatewayError(ErrorKind.BROKER_CONNECTION) from e
        logger.info("Connected to MQTT broker", extra={"broker": url, "authenticated": credentials is not None})

        try:
            result = await operation(client)
        except BaseException:
            try:
                await client.disconnect()
            except MqttError as e:
                logger.warning("Disconnect after failure also failed", extra={"broker": url, "error": str(e)})
            raise

        try:
            await client.disconnect()
        except MqttError as e:
            logger.warning("Broker disconnection failed", extra={"broker": url, "error": str(e)})
            raise GatewayError(ErrorKind.DISCONNECT) from e
        logger.info("Disconnected from MQTT broker", extra={"broker": url})
        return result


class PublishService(_BrokerSession):
    async def publish(self, request: PublishRequest) -> int:
        """Publish every message of every target, in order.

        The first failure aborts the request; messages already sent stay sent.
        Returns the number of messages published.
        """
        published = 0
        for target in request.targets:
            published += await self._run(target.url, target.credentials, self._publisher(target))
        return published

    @staticmethod
    def _publisher(target: BrokerTarget) -> Callable[[BrokerClient], Awaitable[int]]:
        async def publish_all(client: BrokerClient) -> int:
            for message in target.messages:
                payload = resolve(message.payload)
                try:
                    await client.publish(message.topic, payload=payload, qos=message.qos)
                except MqttError as e:
                    logger.warning(
                        "Publish failed",
                        extra={"broker": target.url, "topic": message.topic, "qos": message.qos, "error": str(e)},
                    )
                    raise GatewayError(ErrorKind.PUBLISH) from e
                logger.debug(
                    "Published message",
                    extra={"broker": target.url, "topic": message.topic, "qos": message.qos, "bytes": len(payload)},
                )
            return len(target.messages)

        return publish_all


class SubscribeService(_BrokerSession):
    def __init__(self, client_factory: ClientFactory = create_client, timeout: float | None = None):
        super().__init__(client_factory)
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return settings.subscribe_timeout if self._timeout is None else self._timeout

    async def receive(self, info: ConnectInfo, topic: str) -> ReceivedMessage:
        """Wait for the first message published on ``topic``."""
        return await self._run(info.url, info.credentials, self._receiver(info.url, topic))

    def _receiver(self, url: str, topic: str) -> Callable[[BrokerClient], Awaitable[ReceivedMessage]]:
        timeout = self.timeout

        async def first_message(client: BrokerClient) -> ReceivedMessage:
            async with client.unfiltered_messages() as messages:
                try:
                    await client.subscribe(topic, qos=DEFAULT_QOS)
                except MqttError as e:
                    logger.warning("Subscription failed", extra={"broker": url, "topic": topic, "error": str(e)})
                    raise GatewayError(ErrorKind.SUBSCRIPTION) from e
                logger.info("Subscribed topic", extra={"broker": url, "topic": topic})

                try:
                    msg = await asyncio.wait_for(messages.__anext__(), timeout=timeout)
                except asyncio.TimeoutError as e:
                    logger.info("No message before timeout", extra={"broker": url, "topic": topic, "timeout": timeout})
                    raise GatewayError(ErrorKind.TIMEOUT) from e
                except StopAsyncIteration as e:
                    logger.warning("MQTT message stream ended", extra={"broker": url, "topic": topic})
                    raise GatewayError(ErrorKind.MESSAGE_RECEPTION) from e
                except MqttError as e:
                    logger.warning("Message reception failed", extra={"broker": url, "topic": topic, "error": str(e)})
                    raise GatewayError(ErrorKind.MESSAGE_RECEPTION) from e

            return ReceivedMessage(topic=str(msg.topic), payload=bytes(msg.payload))

        return first_message
