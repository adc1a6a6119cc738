"""Riemann wire protocol: protobuf messages behind a 4-byte length prefix.

Frame layout (both directions):
  [4-byte BE uint32 length][serialized Msg]

The message schema mirrors Riemann's ``proto.proto`` (proto2). It is
registered in a private descriptor pool so it never collides with other
Riemann bindings loaded in the same process.
"""

from __future__ import annotations

import datetime
import struct

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, EncodeError

from riemann_shipper.models import RiemannRecord

HEADER_SIZE = 4
HEADER_FORMAT = "!I"
MAX_FRAME_SIZE = 64 * 1024 * 1024

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
_MICROSECOND = datetime.timedelta(microseconds=1)

_FD = descriptor_pb2.FieldDescriptorProto
_OPTIONAL = _FD.LABEL_OPTIONAL
_REQUIRED = _FD.LABEL_REQUIRED
_REPEATED = _FD.LABEL_REPEATED

# (number, name, type, label, message type)
_SCHEMA: dict[str, list[tuple]] = {
    "State": [
        (1, "time", _FD.TYPE_INT64, _OPTIONAL, None),
        (2, "state", _FD.TYPE_STRING, _OPTIONAL, None),
        (3, "service", _FD.TYPE_STRING, _OPTIONAL, None),
        (4, "host", _FD.TYPE_STRING, _OPTIONAL, None),
        (5, "description", _FD.TYPE_STRING, _OPTIONAL, None),
        (6, "once", _FD.TYPE_BOOL, _OPTIONAL, None),
        (7, "tags", _FD.TYPE_STRING, _REPEATED, None),
        (8, "ttl", _FD.TYPE_FLOAT, _OPTIONAL, None),
    ],
    "Attribute": [
        (1, "key", _FD.TYPE_STRING, _REQUIRED, None),
        (2, "value", _FD.TYPE_STRING, _OPTIONAL, None),
    ],
    "Event": [
        (1, "time", _FD.TYPE_INT64, _OPTIONAL, None),
        (2, "state", _FD.TYPE_STRING, _OPTIONAL, None),
        (3, "service", _FD.TYPE_STRING, _OPTIONAL, None),
        (4, "host", _FD.TYPE_STRING, _OPTIONAL, None),
        (5, "description", _FD.TYPE_STRING, _OPTIONAL, None),
        (7, "tags", _FD.TYPE_STRING, _REPEATED, None),
        (8, "ttl", _FD.TYPE_FLOAT, _OPTIONAL, None),
        (9, "attributes", _FD.TYPE_MESSAGE, _REPEATED, "Attribute"),
        (10, "time_micros", _FD.TYPE_INT64, _OPTIONAL, None),
        (13, "metric_sint64", _FD.TYPE_SINT64, _OPTIONAL, None),
        (14, "metric_d", _FD.TYPE_DOUBLE, _OPTIONAL, None),
        (15, "metric_f", _FD.TYPE_FLOAT, _OPTIONAL, None),
    ],
    "Query": [
        (1, "string", _FD.TYPE_STRING, _OPTIONAL, None),
    ],
    "Msg": [
        (2, "ok", _FD.TYPE_BOOL, _OPTIONAL, None),
        (3, "error", _FD.TYPE_STRING, _OPTIONAL, None),
        (4, "states", _FD.TYPE_MESSAGE, _REPEATED, "State"),
        (5, "query", _FD.TYPE_MESSAGE, _OPTIONAL, "Query"),
        (6, "events", _FD.TYPE_MESSAGE, _REPEATED, "Event"),
    ],
}

_PACKAGE = "riemann"


class ProtocolError(Exception):
    """Raised when a frame or message cannot be encoded or decoded."""


def _build_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="riemann_shipper/riemann.proto",
        package=_PACKAGE,
        syntax="proto2",
    )
    for message_name, fields in _SCHEMA.items():
        message = file_proto.message_type.add(name=message_name)
        for number, name, field_type, label, type_name in fields:
            field = message.field.add(
                name=name, number=number, type=field_type, label=label,
            )
            if type_name:
                field.type_name = f".{_PACKAGE}.{type_name}"

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_POOL = _build_pool()


def _message_class(name: str):
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


Msg = _message_class("Msg")
Event = _message_class("Event")
Attribute = _message_class("Attribute")


# ---------------------------------------------------------------------------
# Record <-> protobuf
# ---------------------------------------------------------------------------


def _clean_text(value: str) -> str:
    """Replace lone surrogates, which protobuf refuses to encode as UTF-8."""
    return value.encode("utf-8", "surrogatepass").decode("utf-8", "replace")


def _epoch_micros(ts: datetime.datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return (ts - _EPOCH) // _MICROSECOND


def record_to_event(record: RiemannRecord):
    """Convert a :class:`RiemannRecord` into a protobuf ``Event``."""
    event = Event()
    event.service = _clean_text(record.service)
    event.host = _clean_text(record.host)
    event.state = _clean_text(record.state)
    event.description = _clean_text(record.description)
    event.tags.extend(sorted(_clean_text(tag) for tag in record.tags))

    if isinstance(record.metric, bool):
        event.metric_sint64 = int(record.metric)
    elif isinstance(record.metric, int):
        event.metric_sint64 = record.metric
    else:
        event.metric_d = float(record.metric)

    if record.time is not None:
        micros = _epoch_micros(record.time)
        event.time = micros // 1_000_000
        event.time_micros = micros
    if record.ttl is not None:
        event.ttl = record.ttl
    return event


def encode_record(record: RiemannRecord) -> bytes:
    """Serialize *record* as a single-event ``Msg`` body (no length prefix).

    Raises:
        ProtocolError: If a field value cannot be represented on the wire.
    """
    try:
        msg = Msg()
        msg.events.append(record_to_event(record))
        return msg.SerializeToString()
    except (ValueError, TypeError, EncodeError) as exc:
        raise ProtocolError(f"Failed to encode Riemann event: {exc}") from exc


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


def encode_frame(body: bytes) -> bytes:
    """Prepend the 4-byte big-endian length header to *body*."""
    return struct.pack(HEADER_FORMAT, len(body)) + body


def recv_exact(sock, n: int) -> bytes:
    """Read exactly n bytes from a socket.

    Raises:
        ConnectionError: If the connection is closed before n bytes are read.
    """
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            raise ConnectionError("Connection closed before all data received")
        data += chunk
    return data


def read_frame(sock) -> bytes:
    """Read one length-prefixed frame from *sock* and return its body."""
    header = recv_exact(sock, HEADER_SIZE)
    (length,) = struct.unpack(HEADER_FORMAT, header)
    if length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame of {length} bytes exceeds limit of {MAX_FRAME_SIZE}")
    return recv_exact(sock, length)


def decode_msg(body: bytes):
    """Parse a ``Msg`` body."""
    msg = Msg()
    try:
        msg.ParseFromString(body)
    except DecodeError as exc:
        raise ProtocolError(f"Malformed Riemann message: {exc}") from exc
    return msg


def decode_response(body: bytes) -> None:
    """Check a server acknowledgment; raise :class:`ProtocolError` unless ``ok``."""
    msg = decode_msg(body)
    if not msg.ok:
        raise ProtocolError(f"Riemann rejected event: {msg.error or 'no error given'}")
