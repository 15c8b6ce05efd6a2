"""Turn raw HTTP request parts into the values the broker sessions consume.

Each step either returns its value or raises ``GatewayError``; handlers run
them in order before any broker work starts.
"""
from __future__ import annotations

import logging
from typing import Mapping

from starlette.requests import Request

from .config import Settings
from .errors import ErrorKind, GatewayError
from .schemas import (
    DEFAULT_QOS,
    BrokerTarget,
    ConnectInfo,
    Credentials,
    Message,
    MessageGroup,
    PayloadSpec,
    PublishRequest,
    normalize_broker_url,
    parse_publish_document,
)

logger = logging.getLogger(__name__)

BROKER_HEADER = "X-Broker"
USERNAME_HEADER = "X-Username"
PASSWORD_HEADER = "X-Password"
JSON_MEDIA_TYPE = "application/json"


def connect_info_from_headers(headers: Mapping[str, str]) -> ConnectInfo:
    broker = headers.get(BROKER_HEADER)
    if broker is None:
        raise GatewayError(ErrorKind.HEADER)
    try:
        url = normalize_broker_url(broker)
    except ValueError as e:
        logger.info("Rejected broker header", extra={"error": str(e)})
        raise GatewayError(ErrorKind.BROKER_URL) from e

    username, password = headers.get(USERNAME_HEADER), headers.get(PASSWORD_HEADER)
    credentials = None
    if username is not None and password is not None:
        credentials = Credentials(username=username, password=password)
    return ConnectInfo(url=url, credentials=credentials)


def topic_from_path(path: str) -> str:
    topic = path.lstrip("/")
    if not topic:
        raise GatewayError(ErrorKind.TOPIC)
    return topic


def is_json(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == JSON_MEDIA_TYPE


async def read_body(request: Request, limit: int, kind: ErrorKind) -> bytes:
    """Read the request body, failing with ``kind`` once it exceeds ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            oversized = int(declared) > limit
        except ValueError as e:
            raise GatewayError(kind) from e
        if oversized:
            logger.info("Rejected oversized body", extra={"content_length": declared, "limit": limit})
            raise GatewayError(kind)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            logger.info("Rejected oversized body", extra={"limit": limit})
            raise GatewayError(kind)
    return bytes(body)


async def publish_request_from_http(request: Request, cfg: Settings) -> PublishRequest:
    """Build a publish request from a JSON document or from headers + raw body."""
    if is_json(request.headers.get("content-type")):
        body = await read_body(request, cfg.max_body_size, ErrorKind.JSON_FORMAT)
        return parse_publish_document(body)

    info = connect_info_from_headers(request.headers)
    topic = topic_from_path(request.scope["path"])
    body = await read_body(request, cfg.max_body_size, ErrorKind.BODY_SIZE)
    message = Message(topic=topic, payload=PayloadSpec(kind="raw", value=body), qos=DEFAULT_QOS)
    return PublishRequest(
        BrokerTarget(
            url=info.url,
            credentials=info.credentials,
            group=MessageGroup(shape="flat", items=[message]),
        )
    )
