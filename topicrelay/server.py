"""Relay server: forwards publisher datagrams to subscribed TCP clients."""

from __future__ import annotations

import os
import selectors
import socket
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .messages import (
    CLIENT_ID_SIZE,
    CommandType,
    SubscriberMessage,
    TcpMessage,
    UdpMessage,
    recv_exact,
    send_frame,
)
from .topics import match_topic

LISTEN_BACKLOG = 2
USAGE = "Usage: exit"


@dataclass
class SubscriberInfo:
    """What the server knows about one subscriber."""

    sock: socket.socket | None
    online: bool = True
    topics: set[str] = field(default_factory=set)


class _LineReader:
    """Reads whole lines from a file descriptor without hidden buffering."""

    def __init__(self, stream: Any) -> None:
        self.fd = stream if isinstance(stream, int) else stream.fileno()
        self._pending = b""

    def read(self) -> list[str] | None:
        """Return the complete lines now available, or None at end of input."""
        chunk = os.read(self.fd, 4096)
        if not chunk:
            return None
        self._pending += chunk
        *lines, self._pending = self._pending.split(b"\n")
        return [line.decode("utf-8", errors="replace") + "\n" for line in lines]


def _send_quietly(sock: socket.socket, payload: bytes) -> None:
    try:
        send_frame(sock, payload)
    except OSError:
        print("send failed", file=sys.stderr, flush=True)


def _decode_id(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _clean_topic(topic: str) -> str:
    return topic.removesuffix("\n")


def send_notification(
    subscribers: Mapping[str, SubscriberInfo], message: TcpMessage
) -> None:
    """Send ``message`` to every online subscriber with a matching topic."""
    frame = message.encode()
    for info in subscribers.values():
        if not info.online or info.sock is None:
            continue
        if match_topic(info.topics, message.topic) is not None:
            _send_quietly(info.sock, frame)


def send_closing_notification(subscribers: Mapping[str, SubscriberInfo]) -> None:
    """Tell every online subscriber that the server is shutting down."""
    frame = TcpMessage.closing().encode()
    for info in subscribers.values():
        if info.online and info.sock is not None:
            _send_quietly(info.sock, frame)


class Server:
    """A TCP listener and a UDP socket bound to the same port."""

    def __init__(self, port: int, host: str = "") -> None:
        self.subscribers: dict[str, SubscriberInfo] = {}
        self._tcp = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._tcp.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._tcp.bind((host, port))
            self._udp.bind((host, self._tcp.getsockname()[1]))
            self._tcp.listen(LISTEN_BACKLOG)
        except OSError:
            self.close()
            raise

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def address(self) -> tuple[str, int]:
        """The host and port the server listens on."""
        host, port = self._tcp.getsockname()[:2]
        return host, port

    def handle_datagram(self, data: bytes, address: tuple[str, int]) -> TcpMessage:
        """Forward a publisher's datagram to the matching subscribers."""
        message = TcpMessage.from_udp(UdpMessage.decode(data), address)
        send_notification(self.subscribers, message)
        return message

    def handle_client_message(
        self, sock: socket.socket, message: SubscriberMessage
    ) -> None:
        """Apply a subscriber's request; raises KeyError for unknown clients."""
        info = self.subscribers[message.client_id]
        if message.type is CommandType.EXIT:
            print(f"Client {message.client_id} disconnected.", flush=True)
            info.online = False
            sock.close()
        elif message.type is CommandType.SUBSCRIBE:
            info.topics.add(_clean_topic(message.topic))
        elif message.type is CommandType.UNSUBSCRIBE:
            info.topics.discard(_clean_topic(message.topic))

    def handle_stdin_line(self, line: str) -> bool:
        """Handle an operator command; return False when the server must stop."""
        if line.removesuffix("\n") == "exit":
            send_closing_notification(self.subscribers)
            return False
        print(USAGE, file=sys.stderr, flush=True)
        return True

    def _accept(self) -> socket.socket | None:
        conn, peer = self._tcp.accept()
        conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        try:
            client_id = _decode_id(recv_exact(conn, CLIENT_ID_SIZE))
        except OSError:
            conn.close()
            return None

        info = self.subscribers.get(client_id)
        if info is None:
            self.subscribers[client_id] = SubscriberInfo(conn)
        elif info.online:
            print(f"Client {client_id} already connected.", flush=True)
            _send_quietly(conn, TcpMessage.closing().encode())
            conn.close()
            return None
        else:
            info.online = True
            info.sock = conn
        print(f"New client {client_id} connected from {peer[0]}:{peer[1]}.", flush=True)
        return conn

    def _drop(self, sock: socket.socket) -> None:
        for client_id, info in self.subscribers.items():
            if info.sock is sock and info.online:
                print(f"Client {client_id} disconnected.", flush=True)
                info.online = False
        sock.close()

    def _client_ready(self, selector: selectors.BaseSelector, sock: socket.socket) -> None:
        try:
            message = SubscriberMessage.decode(recv_exact(sock, SubscriberMessage.SIZE))
        except (OSError, ValueError):
            selector.unregister(sock)
            self._drop(sock)
            return
        if message.type is CommandType.EXIT:
            selector.unregister(sock)
        try:
            self.handle_client_message(sock, message)
        except KeyError:
            print(f"Unknown client {message.client_id}", file=sys.stderr, flush=True)
            if message.type is CommandType.EXIT:
                sock.close()

    def serve_forever(self, stdin: Any = None) -> None:
        """Serve until ``exit`` is read from ``stdin`` or it reaches its end."""
        lines = _LineReader(sys.stdin if stdin is None else stdin)
        with selectors.DefaultSelector() as selector:
            selector.register(self._tcp, selectors.EVENT_READ, "accept")
            selector.register(self._udp, selectors.EVENT_READ, "datagram")
            selector.register(lines.fd, selectors.EVENT_READ, "stdin")

            running = True
            while running:
                for key, _ in selector.select():
                    if key.data == "accept":
                        conn = self._accept()
                        if conn is not None:
                            selector.register(conn, selectors.EVENT_READ, "client")
                    elif key.data == "datagram":
                        data, peer = self._udp.recvfrom(UdpMessage.SIZE)
                        self.handle_datagram(data, peer)
                    elif key.data == "stdin":
                        batch = lines.read()
                        if batch is None:
                            running = self.handle_stdin_line("exit\n")
                        for line in batch or ():
                            if not self.handle_stdin_line(line):
                                running = False
                                break
                    else:
                        self._client_ready(selector, key.fileobj)
                    if not running:
                        break

            for key in list(selector.get_map().values()):
                if key.data == "client":
                    key.fileobj.close()
        self.close()

    def close(self) -> None:
        """Close the listening sockets and every subscriber connection."""
        for info in self.subscribers.values():
            if info.sock is not None:
                info.sock.close()
        self._tcp.close()
        self._udp.close()


def _parse_port(text: str) -> int:
    port = int(text)
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port {port} out of range")
    return port


def main(argv: list[str] | None = None) -> int:
    """Run the server on the port given on the command line."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("\n Usage: server <PORT>", file=sys.stderr)
        return 1
    try:
        port = _parse_port(args[0])
    except ValueError:
        print("Given port is invalid", file=sys.stderr)
        return 1
    try:
        server = Server(port)
    except OSError as exc:
        print(f"bind failed: {exc}", file=sys.stderr)
        return 1
    with server:
        server.serve_forever(sys.stdin)
    return 0


if __name__ == "__main__":
    sys.exit(main())