from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CLIENT_INFORMATION = "invalid mqtt client information"
    BROKER_CONNECTION = "broker connection failed"
    SUBSCRIPTION = "topic subscription failed"
    TIMEOUT = "no message received before timeout"
    MESSAGE_RECEPTION = "message reception failed"
    PAYLOAD = "invalid message payload"
    PUBLISH = "publish failed"
    DISCONNECT = "disconnection failure"
    HEADER = "missing or invalid header"
    BROKER_URL = "invalid broker url"
    JSON_FORMAT = "invalid json format or payload too large"
    BODY_SIZE = "body too large"
    TOPIC = "invalid topic path"

    @property
    def message(self) -> str:
        return self.value


_STATUS: dict[ErrorKind, int] = {
    ErrorKind.CLIENT_INFORMATION: 400,
    ErrorKind.BROKER_CONNECTION: 502,
    ErrorKind.SUBSCRIPTION: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.MESSAGE_RECEPTION: 502,
    ErrorKind.PAYLOAD: 400,
    ErrorKind.PUBLISH: 502,
    ErrorKind.DISCONNECT: 502,
    ErrorKind.HEADER: 400,
    ErrorKind.BROKER_URL: 400,
    ErrorKind.JSON_FORMAT: 400,
    ErrorKind.BODY_SIZE: 413,
    ErrorKind.TOPIC: 400,
}

_missing = set(ErrorKind) - set(_STATUS)
if _missing:
    raise RuntimeError(f"No status mapped for error kinds: {sorted(k.name for k in _missing)}")


def status_for(kind: ErrorKind) -> int:
    return _STATUS[kind]


class GatewayError(Exception):
    """A request failure reported to the caller as one taxonomy kind.

    Only ``kind`` reaches the HTTP response; the chained exception is kept for
    logging.
    """

    def __init__(self, kind: ErrorKind):
        super().__init__(kind.message)
        self.kind = kind

    @property
    def status_code(self) -> int:
        return status_for(self.kind)
