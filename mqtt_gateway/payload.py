from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Callable

from .errors import ErrorKind, GatewayError
from .schemas import PayloadSpec

logger = logging.getLogger(__name__)


def _string(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError("string payload must be a JSON string")
    return value.encode("utf-8")


def _json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False, allow_nan=False).encode("utf-8")


def _base64(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError("base64 payload must be a JSON string")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64: {e}") from e


def _raw(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list) and all(isinstance(b, int) and not isinstance(b, bool) for b in value):
        # bytes() rejects values outside 0..255
        return bytes(value)
    raise ValueError("raw payload must be an array of byte values")


DECODERS: dict[str, Callable[[Any], bytes]] = {
    "string": _string,
    "json": _json,
    "base64": _base64,
    "raw": _raw,
}


def resolve(spec: PayloadSpec | None) -> bytes:
    """Turn a payload spec into the bytes to publish.

    Unknown ``payloadType`` tags fail like any other undecodable payload.
    """
    if spec is None:
        return b""
    try:
        if not spec.typed:
            return _string(spec.value)
        decoder = DECODERS.get(spec.kind)
        if decoder is None:
            raise ValueError(f"unsupported payload type {spec.kind!r}")
        return decoder(spec.value)
    except ValueError as e:
        logger.info("Payload could not be decoded", extra={"payload_type": spec.kind, "error": str(e)})
        raise GatewayError(ErrorKind.PAYLOAD) from e
