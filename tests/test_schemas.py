from __future__ import annotations

import json

import pytest

from mqtt_gateway.errors import ErrorKind, GatewayError
from mqtt_gateway.schemas import (
    BrokerTarget,
    Credentials,
    Message,
    PayloadSpec,
    PublishRequest,
    classify_message_group,
    classify_payload,
    normalize_broker_url,
    parse_publish_document,
)


def parse(doc) -> PublishRequest:
    return parse_publish_document(json.dumps(doc).encode())


def single(doc) -> BrokerTarget:
    request = parse(doc)
    assert not request.is_multiple
    return request.targets[0]


def assert_rejected(doc) -> None:
    with pytest.raises(GatewayError) as exc_info:
        parse(doc)
    assert exc_info.value.kind is ErrorKind.JSON_FORMAT


@pytest.mark.parametrize("host", ["broker.com", "localhost", "10.0.0.7", "broker.com:1884"])
def test_bare_host_gets_tcp_scheme(host: str) -> None:
    assert normalize_broker_url(host) == f"tcp://{host}"


@pytest.mark.parametrize("url", ["tcp://broker.com", "ws://broker.com", "wss://broker.com:8884/mqtt", "ssl://broker.com"])
def test_explicit_scheme_is_kept(url: str) -> None:
    assert normalize_broker_url(url) == url


@pytest.mark.parametrize("bad", ["", "tcp://", "broker.com:99999", "broker.com:port", "bro ker.com"])
def test_unusable_broker_url_names_input(bad: str) -> None:
    with pytest.raises(ValueError) as exc_info:
        normalize_broker_url(bad)
    assert repr(bad) in str(exc_info.value)


def test_single_simple() -> None:
    target = single({"hostname": "broker.com", "topic": "door"})

    assert target.url == "tcp://broker.com"
    assert target.credentials is None
    assert target.group.shape == "flat"
    assert target.messages == [Message(topic="door", payload=None, qos=2)]


def test_multiple_keeps_order() -> None:
    request = parse([
        {"hostname": "one.example", "topic": "door"},
        {"hostname": "two.example", "topic": "light"},
    ])

    assert request.is_multiple
    assert [t.url for t in request.targets] == ["tcp://one.example", "tcp://two.example"]


def test_scheme_in_document_is_kept() -> None:
    assert single({"hostname": "ws://broker.com", "topic": "door"}).url == "ws://broker.com"
    assert single({"hostname": "tcp://broker.com", "topic": "door"}).url == "tcp://broker.com"


def test_url_key_aliases_are_equivalent() -> None:
    targets = [single({key: "broker.com", "topic": "door"}) for key in ("broker", "host", "hostname", "url")]

    assert all(t == targets[0] for t in targets)


def test_url_given_twice_is_rejected() -> None:
    assert_rejected({"host": "a.example", "hostname": "b.example", "topic": "door"})


def test_missing_url_is_rejected() -> None:
    assert_rejected({"topic": "door"})


def test_malformed_url_is_rejected() -> None:
    assert_rejected({"hostname": "broker.com:notaport", "topic": "door"})


def test_credentials() -> None:
    target = single({"hostname": "broker.com", "username": "user_1", "password": "qwerty123", "topic": "door"})

    assert target.credentials == Credentials(username="user_1", password="qwerty123")


@pytest.mark.parametrize("partial", [{"username": "user_1"}, {"password": "qwerty123"}])
def test_partial_credentials_mean_anonymous(partial: dict) -> None:
    target = single({"hostname": "broker.com", "topic": "door", **partial})

    assert target.credentials is None


def test_message_group_shapes_execute_identically() -> None:
    flat = single({"hostname": "broker.com", "topic": "door"})
    wrapped = single({"hostname": "broker.com", "message": {"topic": "door"}})
    listed = single({"hostname": "broker.com", "messages": [{"topic": "door"}]})

    assert (flat.group.shape, wrapped.group.shape, listed.group.shape) == ("flat", "wrapped", "list")
    assert flat.messages == wrapped.messages == listed.messages == [Message(topic="door")]
    assert flat.messages[0].qos == 2
    assert flat.messages[0].payload is None


def test_message_array() -> None:
    target = single({"hostname": "broker.com", "messages": [{"topic": "door"}, {"topic": "light", "qos": 0}]})

    assert [(m.topic, m.qos) for m in target.messages] == [("door", 2), ("light", 0)]


def test_message_key_accepts_array() -> None:
    target = single({"hostname": "broker.com", "message": [{"topic": "door"}, {"topic": "light"}]})

    assert target.group.shape == "list"
    assert [m.topic for m in target.messages] == ["door", "light"]


def test_flat_shape_wins_over_wrapped() -> None:
    group = classify_message_group({"topic": "door", "message": {"topic": "light"}})

    assert group.shape == "flat"
    assert group.items[0].topic == "door"


def test_no_message_shape_is_rejected() -> None:
    assert_rejected({"hostname": "broker.com"})
    assert_rejected({"hostname": "broker.com", "messages": {"topic": "door"}})


@pytest.mark.parametrize("qos", [0, 1, 2])
def test_valid_qos(qos: int) -> None:
    assert single({"hostname": "broker.com", "topic": "door", "qos": qos}).messages[0].qos == qos


@pytest.mark.parametrize("qos", [3, -1, "1", 1.5, True])
def test_invalid_qos_rejects_document(qos) -> None:
    assert_rejected({"hostname": "broker.com", "topic": "door", "qos": qos})


def test_invalid_qos_in_list_rejects_document() -> None:
    assert_rejected([
        {"hostname": "broker.com", "topic": "door"},
        {"hostname": "broker.com", "messages": [{"topic": "light", "qos": 3}]},
    ])


def test_empty_topic_is_rejected() -> None:
    assert_rejected({"hostname": "broker.com", "topic": ""})


def test_payload_untyped() -> None:
    message = single({"hostname": "broker.com", "topic": "door", "payload": "open"}).messages[0]

    assert message.payload == PayloadSpec(kind=None, value="open")
    assert not message.payload.typed


def test_payload_typed() -> None:
    message = single({"hostname": "broker.com", "topic": "door", "payload": "open", "payloadType": "string"}).messages[0]

    assert message.payload == PayloadSpec(kind="string", value="open")


def test_typed_shape_takes_precedence() -> None:
    spec = classify_payload({"payload": "AAEC", "payloadType": "base64"})

    assert spec.kind == "base64"


def test_unknown_payload_type_still_parses() -> None:
    message = single({"hostname": "broker.com", "topic": "door", "payload": "open", "payloadType": "unknown"}).messages[0]

    assert message.payload.kind == "unknown"


def test_null_payload_is_absent() -> None:
    assert single({"hostname": "broker.com", "topic": "door", "payload": None}).messages[0].payload is None


def test_non_string_untyped_payload_is_rejected() -> None:
    assert_rejected({"hostname": "broker.com", "topic": "door", "payload": {"open": True}})


@pytest.mark.parametrize("body", [b"", b"{", b"not json", b"42", b"\xff\xfe"])
def test_malformed_json_is_rejected(body: bytes) -> None:
    with pytest.raises(GatewayError) as exc_info:
        parse_publish_document(body)
    assert exc_info.value.kind is ErrorKind.JSON_FORMAT
