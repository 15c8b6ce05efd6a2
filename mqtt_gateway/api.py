from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse

from .config import settings
from .errors import ErrorKind, GatewayError
from .extract import connect_info_from_headers, publish_request_from_http, topic_from_path
from .services import PublishService, SubscribeService

logger = logging.getLogger(__name__)

TOPIC_HEADER = "X-Topic"
TEXT_MEDIA_TYPE = "text/plain"

router = APIRouter()
publisher = PublishService()
subscriber = SubscribeService()


def get_publish_service() -> PublishService:
    return publisher


def get_subscribe_service() -> SubscribeService:
    return subscriber


@router.post("/{topic:path}")
async def publish(request: Request, service: PublishService = Depends(get_publish_service)):
    publish_request = await publish_request_from_http(request, settings)
    count = await service.publish(publish_request)
    logger.info("Publish request completed", extra={"targets": len(publish_request.targets), "messages": count})
    return Response(status_code=200)


@router.get("/{topic:path}")
async def subscribe(request: Request, service: SubscribeService = Depends(get_subscribe_service)):
    info = connect_info_from_headers(request.headers)
    topic = topic_from_path(request.scope["path"])
    received = await service.receive(info, topic)

    headers = {TOPIC_HEADER: received.topic}
    if request.headers.get("accept") == TEXT_MEDIA_TYPE:
        try:
            text = received.payload.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("Received payload is not UTF-8 text", extra={"topic": received.topic})
            raise GatewayError(ErrorKind.MESSAGE_RECEPTION) from e
        return PlainTextResponse(text, headers=headers)
    return Response(received.payload, media_type="application/octet-stream", headers=headers)
