from __future__ import annotations

import uuid
from contextlib import AbstractAsyncContextManager
from typing import Any, AsyncIterator, Callable, Protocol
from urllib.parse import urlsplit

from asyncio_mqtt import Client

from .config import Settings, settings
from .schemas import Credentials

# scheme -> (transport, tls, default port)
SCHEMES: dict[str, tuple[str, bool, int]] = {
    "tcp": ("tcp", False, 1883),
    "mqtt": ("tcp", False, 1883),
    "ssl": ("tcp", True, 8883),
    "tls": ("tcp", True, 8883),
    "mqtts": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}


class BrokerClient(Protocol):
    """The subset of ``asyncio_mqtt.Client`` the gateway sessions drive."""

    async def connect(self, *, timeout: float | None = None) -> None: ...

    async def disconnect(self) -> None: ...

    async def publish(self, topic: str, payload: bytes, qos: int) -> Any: ...

    async def subscribe(self, topic: str, qos: int) -> Any: ...

    def unfiltered_messages(self) -> AbstractAsyncContextManager[AsyncIterator[Any]]: ...


ClientFactory = Callable[[str, "Credentials | None"], BrokerClient]


def create_client(url: str, credentials: Credentials | None, cfg: Settings = settings) -> Client:
    """Build an unconnected client for the broker at ``url``.

    Raises ``ValueError`` for a URL the client cannot be configured from.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in SCHEMES:
        raise ValueError(f"unsupported broker scheme {parts.scheme!r}")
    if not parts.hostname:
        raise ValueError(f"broker url {url!r} has no host")
    transport, tls, default_port = SCHEMES[scheme]

    websocket_path = None
    if transport == "websockets":
        websocket_path = parts.path or cfg.mqtt_websocket_path

    return Client(
        hostname=parts.hostname,
        port=parts.port or default_port,
        username=credentials.username if credentials else None,
        password=credentials.password if credentials else None,
        client_id=f"{cfg.mqtt_client_id_prefix}-{uuid.uuid4().hex}",
        tls_context=cfg.mqtt_ssl_context() if tls else None,
        transport=transport,
        keepalive=cfg.mqtt_keepalive,
        websocket_path=websocket_path,
    )
