"""Wire messages exchanged between publishers, the server and subscribers."""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar

CLIENT_ID_SIZE = 10
_FRAME_LENGTH = struct.Struct("<Q")


class PayloadType(IntEnum):
    """Kinds of payload a publisher can send."""

    INT = 0
    SHORT_REAL = 1
    FLOAT = 2
    STRING = 3
    CLOSE = 4


class CommandType(IntEnum):
    """Requests a subscriber sends to the server."""

    EXIT = 0
    SUBSCRIBE = 1
    UNSUBSCRIBE = 2


def _fixed_text(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _encode_text(text: str, size: int, what: str) -> bytes:
    data = text.encode("utf-8")
    if len(data) > size:
        raise ValueError(f"{what} is longer than {size} bytes")
    return data


@dataclass(frozen=True)
class SubscriberMessage:
    """A subscribe, unsubscribe or exit request from a subscriber."""

    type: CommandType
    client_id: str
    topic: str = ""

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<i100s12s")
    SIZE: ClassVar[int] = _STRUCT.size

    def encode(self) -> bytes:
        """Return the fixed-size wire form of the message."""
        return self._STRUCT.pack(
            int(self.type),
            _encode_text(self.topic, 100, "topic"),
            _encode_text(self.client_id, 12, "client id"),
        )

    @classmethod
    def decode(cls, data: bytes) -> SubscriberMessage:
        """Parse a message produced by :meth:`encode`."""
        if len(data) != cls.SIZE:
            raise ValueError(f"expected {cls.SIZE} bytes, got {len(data)}")
        kind, topic, client_id = cls._STRUCT.unpack(data)
        try:
            command = CommandType(kind)
        except ValueError:
            raise ValueError(f"unknown command type {kind}") from None
        return cls(command, _fixed_text(client_id), _fixed_text(topic))


@dataclass(frozen=True)
class UdpMessage:
    """A datagram sent by a publisher."""

    topic: str
    type: int
    payload: bytes

    TOPIC_SIZE: ClassVar[int] = 50
    PAYLOAD_SIZE: ClassVar[int] = 1500
    SIZE: ClassVar[int] = TOPIC_SIZE + 1 + PAYLOAD_SIZE

    @classmethod
    def decode(cls, data: bytes) -> UdpMessage:
        """Parse a datagram; short ones are zero-padded, long ones cut."""
        data = data[: cls.SIZE].ljust(cls.SIZE, b"\0")
        topic = _fixed_text(data[: cls.TOPIC_SIZE])
        return cls(topic, data[cls.TOPIC_SIZE], data[cls.TOPIC_SIZE + 1 :])


@dataclass(frozen=True)
class TcpMessage:
    """A notification forwarded from the server to a subscriber."""

    type: int
    port: int = 0
    ip: str = ""
    topic: str = ""
    payload: bytes = field(default=b"")

    _HEADER: ClassVar[struct.Struct] = struct.Struct("!BxH16s51s")
    HEADER_SIZE: ClassVar[int] = _HEADER.size

    @classmethod
    def from_udp(cls, udp_message: UdpMessage, address: tuple[str, int]) -> TcpMessage:
        """Wrap a publisher's datagram together with its sender address."""
        host, port = address[0], address[1]
        return cls(udp_message.type, port, host, udp_message.topic, udp_message.payload)

    @classmethod
    def closing(cls) -> TcpMessage:
        """Return the message that tells a subscriber the server is closing."""
        return cls(PayloadType.CLOSE)

    def payload_size(self) -> int:
        """Number of payload bytes that go on the wire."""
        if self.type == PayloadType.INT:
            return 5
        if self.type == PayloadType.SHORT_REAL:
            return 2
        if self.type == PayloadType.FLOAT:
            return 6
        if self.type == PayloadType.CLOSE:
            return 0
        return len(self.payload.split(b"\0", 1)[0])

    def encode(self) -> bytes:
        """Return the wire form: header followed by the used payload."""
        header = self._HEADER.pack(
            self.type,
            self.port,
            _encode_text(self.ip, 15, "ip address"),
            _encode_text(self.topic, 50, "topic"),
        )
        size = self.payload_size()
        return header + self.payload[:size].ljust(size, b"\0")

    @classmethod
    def decode(cls, data: bytes) -> TcpMessage:
        """Parse a message produced by :meth:`encode`."""
        if len(data) < cls.HEADER_SIZE:
            raise ValueError(
                f"message needs at least {cls.HEADER_SIZE} bytes, got {len(data)}"
            )
        kind, port, ip, topic = cls._HEADER.unpack(data[: cls.HEADER_SIZE])
        return cls(kind, port, _fixed_text(ip), _fixed_text(topic), data[cls.HEADER_SIZE :])

    def _value(self) -> tuple[str, str]:
        payload = self.payload
        if self.type == PayloadType.INT:
            payload = payload.ljust(5, b"\0")
            number = int.from_bytes(payload[1:5], "big")
            return "INT", str(-number if payload[0] else number)
        if self.type == PayloadType.SHORT_REAL:
            number = int.from_bytes(payload[:2].ljust(2, b"\0"), "big") / 100
            return "SHORT_REAL", f"{number:.2f}"
        if self.type == PayloadType.FLOAT:
            payload = payload.ljust(6, b"\0")
            number = int.from_bytes(payload[1:5], "big") / 10 ** payload[5]
            if payload[0]:
                number = -number
            return "FLOAT", strip_trailing_zeroes(f"{number:f}")
        return "STRING", _fixed_text(payload)

    def format(self) -> str:
        """Return the line a subscriber prints for this notification."""
        kind, value = self._value()
        return f"{self.ip}:{self.port} - {self.topic} - {kind} - {value}"


def strip_trailing_zeroes(number: str) -> str:
    """Drop trailing fractional zeroes, and the point if nothing follows it."""
    if "." not in number:
        return number
    number = number.rstrip("0")
    return number[:-1] if number.endswith(".") else number


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes, raising ConnectionError on early close."""
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ConnectionError(
                f"connection closed after {len(buffer)} of {size} bytes"
            )
        buffer.extend(chunk)
    return bytes(buffer)


def send_frame(sock: socket.socket, payload: bytes) -> None:
    """Send ``payload`` preceded by its length."""
    sock.sendall(_FRAME_LENGTH.pack(len(payload)) + payload)


def recv_frame(sock: socket.socket) -> bytes:
    """Receive one length-prefixed frame."""
    (length,) = _FRAME_LENGTH.unpack(recv_exact(sock, _FRAME_LENGTH.size))
    return recv_exact(sock, length)