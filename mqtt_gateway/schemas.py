from __future__ import annotations

import logging
from typing import Any, Callable, Literal, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, RootModel, StrictInt, StrictStr, ValidationError, field_validator, model_validator

from .errors import ErrorKind, GatewayError

logger = logging.getLogger(__name__)

DEFAULT_QOS = 2
DEFAULT_SCHEME = "tcp"
URL_KEYS = ("url", "broker", "host", "hostname")


def normalize_broker_url(text: str) -> str:
    """Return ``text`` as a broker URL, prefixing ``tcp://`` for a bare host.

    Raises ``ValueError`` naming the offending input when no usable host (or a
    malformed port) remains.
    """
    candidate = text if "://" in text else f"{DEFAULT_SCHEME}://{text}"
    if any(c.isspace() for c in candidate):
        raise ValueError(f"invalid broker url {text!r}: contains whitespace")
    try:
        parts = urlsplit(candidate)
        parts.port  # raises on a non-numeric or out of range port
    except ValueError as e:
        raise ValueError(f"invalid broker url {text!r}: {e}") from e
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"invalid broker url {text!r}: no host")
    return candidate


class Credentials(BaseModel):
    username: str
    password: str


class PayloadSpec(BaseModel):
    # kind is None for an untyped (bare string) payload
    kind: StrictStr | None = None
    value: Any = None

    @property
    def typed(self) -> bool:
        return self.kind is not None


def classify_payload(fields: dict[str, Any]) -> PayloadSpec | None:
    """Pick the payload shape of a message document.

    Shapes are tried in this order, first match wins:

    1. typed: a ``payloadType`` key is present; ``payload`` is its value
    2. untyped: ``payload`` is a string
    3. absent: ``payload`` is missing or null

    The typed shape has to come first since every typed document that
    carries a string payload also looks untyped.
    """
    if "payloadType" in fields:
        return PayloadSpec(kind=fields["payloadType"], value=fields.get("payload"))
    payload = fields.get("payload")
    if isinstance(payload, str):
        return PayloadSpec(value=payload)
    if payload is None:
        return None
    raise ValueError("an untyped payload must be a string")


class Message(BaseModel):
    topic: StrictStr = Field(min_length=1)
    payload: PayloadSpec | None = None
    qos: StrictInt = Field(default=DEFAULT_QOS, ge=0, le=2)

    @model_validator(mode="before")
    @classmethod
    def _resolve_payload_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict) or isinstance(data.get("payload"), PayloadSpec):
            return data
        data = dict(data)
        data["payload"] = classify_payload(data)
        data.pop("payloadType", None)
        return data


GroupShape = Literal["flat", "wrapped", "list"]


class MessageGroup(BaseModel):
    shape: GroupShape
    items: list[Message]


def _flat(fields: dict[str, Any]) -> list[Message]:
    return [Message.model_validate(fields)]


def _wrapped(fields: dict[str, Any]) -> list[Message]:
    message = fields.get("message")
    if not isinstance(message, dict):
        raise ValueError("'message' is not an object")
    return [Message.model_validate(message)]


def _listed(fields: dict[str, Any]) -> list[Message]:
    messages = fields["messages"] if "messages" in fields else fields.get("message")
    if not isinstance(messages, list):
        raise ValueError("'messages' is not an array")
    return [Message.model_validate(m) for m in messages]


_GROUP_SHAPES: tuple[tuple[GroupShape, Callable[[dict[str, Any]], list[Message]]], ...] = (
    ("flat", _flat),
    ("wrapped", _wrapped),
    ("list", _listed),
)


def classify_message_group(fields: dict[str, Any]) -> MessageGroup:
    """Pick the message-group shape of a broker document.

    Shapes are tried in this order, first one that validates wins:

    1. flat: the broker object itself is a message (``topic`` etc.)
    2. wrapped: ``message`` holds one message object
    3. list: ``messages`` (or ``message``) holds an array of messages

    All shapes execute the same way; the shape is only recorded.
    """
    failures = []
    for shape, build in _GROUP_SHAPES:
        try:
            return MessageGroup(shape=shape, items=build(fields))
        except ValueError as e:
            failures.append(f"{shape}: {e}")
    raise ValueError("no message group shape matched (" + "; ".join(failures) + ")")


class BrokerTarget(BaseModel):
    url: str
    credentials: Credentials | None = None
    group: MessageGroup

    @property
    def messages(self) -> list[Message]:
        return self.group.items

    @model_validator(mode="before")
    @classmethod
    def _from_document(cls, data: Any) -> Any:
        if not isinstance(data, dict) or isinstance(data.get("group"), MessageGroup):
            return data

        present = [k for k in URL_KEYS if k in data]
        if len(present) > 1:
            raise ValueError(f"broker url given more than once: {present}")
        username, password = data.get("username"), data.get("password")
        credentials = None
        if isinstance(username, str) and isinstance(password, str):
            credentials = Credentials(username=username, password=password)

        return {
            "url": data[present[0]] if present else None,
            "credentials": credentials,
            "group": classify_message_group(data),
        }

    @field_validator("url", mode="before")
    @classmethod
    def _normalize_url(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("broker url must be a string")
        return normalize_broker_url(v)


class PublishRequest(RootModel[Union[BrokerTarget, list[BrokerTarget]]]):
    """One broker target, or an ordered list of them."""

    @property
    def targets(self) -> list[BrokerTarget]:
        if isinstance(self.root, BrokerTarget):
            return [self.root]
        return list(self.root)

    @property
    def is_multiple(self) -> bool:
        return isinstance(self.root, list)


def parse_publish_document(body: bytes) -> PublishRequest:
    try:
        return PublishRequest.model_validate_json(body)
    except ValidationError as e:
        logger.info(
            "Rejected publish document",
            extra={"error_count": e.error_count(), "errors": str(e)},
        )
        raise GatewayError(ErrorKind.JSON_FORMAT) from e


class ConnectInfo(BaseModel):
    """Broker address and optional credentials taken from request headers."""

    url: str
    credentials: Credentials | None = None
