"""Subscriber client: sends commands to the server and prints notifications."""

from __future__ import annotations

import os
import selectors
import socket
import sys
from typing import Any

from .messages import (
    CLIENT_ID_SIZE,
    CommandType,
    PayloadType,
    SubscriberMessage,
    TcpMessage,
    recv_frame,
)

USAGE = "Usage:\nsubscribe <TOPIC> \nunsubscribe <TOPIC> \nexit \n"


def parse_command(line: str) -> tuple[CommandType, str]:
    """Parse a line typed by the user into a command and its topic."""
    if line.removesuffix("\n") == "exit":
        return CommandType.EXIT, ""
    if line.startswith("subscribe"):
        command, topic = CommandType.SUBSCRIBE, line[10:]
    elif line.startswith("unsubscribe"):
        command, topic = CommandType.UNSUBSCRIBE, line[12:]
    else:
        raise ValueError(USAGE)
    topic = topic.removesuffix("\n")
    if not topic:
        raise ValueError(USAGE)
    return command, topic


class _LineReader:
    """Reads whole lines from a file descriptor without hidden buffering."""

    def __init__(self, stream: Any) -> None:
        self.fd = stream if isinstance(stream, int) else stream.fileno()
        self._pending = b""

    def read(self) -> list[str] | None:
        chunk = os.read(self.fd, 4096)
        if not chunk:
            return None
        self._pending += chunk
        *lines, self._pending = self._pending.split(b"\n")
        return [line.decode("utf-8", errors="replace") + "\n" for line in lines]


class Subscriber:
    """One connection to the server, identified by a client id."""

    def __init__(self, sock: socket.socket, client_id: str) -> None:
        encoded = client_id.encode("utf-8")
        if not encoded or len(encoded) > CLIENT_ID_SIZE:
            raise ValueError(f"client id must be 1 to {CLIENT_ID_SIZE} bytes")
        self.sock = sock
        self.client_id = client_id
        self._id_bytes = encoded.ljust(CLIENT_ID_SIZE, b"\0")

    def handle_command(self, line: str) -> bool:
        """Act on one input line; return False once the client has exited."""
        try:
            command, topic = parse_command(line)
        except ValueError:
            print(USAGE, end="", file=sys.stderr, flush=True)
            return True
        try:
            payload = SubscriberMessage(command, self.client_id, topic).encode()
        except ValueError as exc:
            print(exc, file=sys.stderr, flush=True)
            return True
        self.sock.sendall(payload)
        if command is CommandType.EXIT:
            self.sock.close()
            return False
        if command is CommandType.SUBSCRIBE:
            print(f"Subscribed to topic {topic}.", flush=True)
        else:
            print(f"Unsubscribed from topic {topic}.", flush=True)
        return True

    def handle_server_frame(self) -> bool:
        """Receive one notification; return False when the server is closing."""
        try:
            message = TcpMessage.decode(recv_frame(self.sock))
        except (OSError, ValueError):
            return False
        if message.type == PayloadType.CLOSE:
            return False
        print(message.format(), flush=True)
        return True

    def run(self, stdin: Any = None) -> None:
        """Register with the server and serve until exit or server shutdown."""
        self.sock.sendall(self._id_bytes)
        lines = _LineReader(sys.stdin if stdin is None else stdin)
        with selectors.DefaultSelector() as selector:
            selector.register(self.sock, selectors.EVENT_READ, "server")
            selector.register(lines.fd, selectors.EVENT_READ, "stdin")
            while True:
                ready = {key.data for key, _ in selector.select()}
                if "stdin" in ready:
                    batch = lines.read()
                    if batch is None:
                        self.handle_command("exit\n")
                        return
                    for line in batch:
                        if not self.handle_command(line):
                            return
                elif "server" in ready:
                    if not self.handle_server_frame():
                        return


def _parse_port(text: str) -> int:
    port = int(text)
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port {port} out of range")
    return port


def main(argv: list[str] | None = None) -> int:
    """Connect to the server named on the command line and run the client."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 3:
        print("\n Usage: subscriber <ID_CLIENT> <IP_SERVER> <PORT_SERVER> ", file=sys.stderr)
        return 1
    client_id, host, port_text = args
    try:
        port = _parse_port(port_text)
    except ValueError:
        print("Given port is invalid", file=sys.stderr)
        return 1

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        client = Subscriber(sock, client_id)
        sock.connect((host, port))
        client.run(sys.stdin)
    except (OSError, ValueError) as exc:
        print(exc, file=sys.stderr)
        return 1
    finally:
        sock.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())