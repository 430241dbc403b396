import os
import socket
import threading
import time

import pytest

from topicrelay.messages import (
    CLIENT_ID_SIZE,
    CommandType,
    PayloadType,
    SubscriberMessage,
    TcpMessage,
    recv_frame,
)
from topicrelay.server import (
    Server,
    SubscriberInfo,
    main,
    send_closing_notification,
    send_notification,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    b.settimeout(5)
    yield a, b
    a.close()
    b.close()


@pytest.fixture
def server():
    srv = Server(0, "127.0.0.1")
    yield srv
    srv.close()


def _assert_nothing_pending(sock):
    sock.setblocking(False)
    with pytest.raises(BlockingIOError):
        sock.recv(1)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _datagram(topic, kind, payload):
    return topic.encode().ljust(50, b"\0") + bytes([kind]) + payload


def test_send_notification_reaches_matching_online_subscriber(pair):
    a, b = pair
    subscribers = {"c1": SubscriberInfo(a, topics={"a/+"})}
    message = TcpMessage(PayloadType.STRING, 1234, "127.0.0.1", "a/b", b"hi")
    send_notification(subscribers, message)
    received = TcpMessage.decode(recv_frame(b))
    assert received.topic == "a/b"
    assert received.payload == b"hi"
    assert received.port == 1234


def test_send_notification_skips_offline_and_unmatched():
    a, b = socket.socketpair()
    c, d = socket.socketpair()
    e, f = socket.socketpair()
    f.settimeout(5)
    try:
        subscribers = {
            "off": SubscriberInfo(a, online=False, topics={"a/b"}),
            "other": SubscriberInfo(c, topics={"x/y"}),
            "on": SubscriberInfo(e, topics={"a/b"}),
        }
        message = TcpMessage(PayloadType.STRING, 1, "1.2.3.4", "a/b", b"z")
        send_notification(subscribers, message)
        received = TcpMessage.decode(recv_frame(f))
        assert received.topic == "a/b"
        assert received.payload == b"z"
        assert received.ip == "1.2.3.4"
        _assert_nothing_pending(b)
        _assert_nothing_pending(d)
    finally:
        for s in (a, b, c, d, e, f):
            s.close()


def test_send_closing_notification(pair):
    a, b = pair
    send_closing_notification({"c1": SubscriberInfo(a)})
    assert TcpMessage.decode(recv_frame(b)).type == PayloadType.CLOSE


def test_handle_client_message_subscribe_and_unsubscribe(server, pair):
    a, _ = pair
    server.subscribers["c1"] = SubscriberInfo(a)
    server.handle_client_message(a, SubscriberMessage(CommandType.SUBSCRIBE, "c1", "a/b\n"))
    server.handle_client_message(a, SubscriberMessage(CommandType.SUBSCRIBE, "c1", "x/+"))
    assert server.subscribers["c1"].topics == {"a/b", "x/+"}
    server.handle_client_message(a, SubscriberMessage(CommandType.UNSUBSCRIBE, "c1", "a/b"))
    server.handle_client_message(a, SubscriberMessage(CommandType.UNSUBSCRIBE, "c1", "none"))
    assert server.subscribers["c1"].topics == {"x/+"}


def test_handle_client_message_exit(server, pair, capsys):
    a, _ = pair
    server.subscribers["c1"] = SubscriberInfo(a)
    server.handle_client_message(a, SubscriberMessage(CommandType.EXIT, "c1"))
    assert server.subscribers["c1"].online is False
    assert a.fileno() == -1
    assert capsys.readouterr().out == "Client c1 disconnected.\n"


def test_handle_client_message_unknown_client(server, pair):
    a, _ = pair
    with pytest.raises(KeyError):
        server.handle_client_message(a, SubscriberMessage(CommandType.SUBSCRIBE, "ghost", "t"))


def test_handle_datagram_forwards_string(server, pair):
    a, b = pair
    server.subscribers["c1"] = SubscriberInfo(a, topics={"a/b"})
    result = server.handle_datagram(_datagram("a/b", 3, b"hello"), ("10.0.0.1", 4242))
    received = TcpMessage.decode(recv_frame(b))
    assert received == TcpMessage(PayloadType.STRING, 4242, "10.0.0.1", "a/b", b"hello")
    assert received.format() == "10.0.0.1:4242 - a/b - STRING - hello"
    assert result.topic == "a/b"


def test_handle_datagram_forwards_int(server, pair):
    a, b = pair
    server.subscribers["c1"] = SubscriberInfo(a, topics={"num/*"})
    server.handle_datagram(_datagram("num/x", 0, bytes([1]) + (42).to_bytes(4, "big")), ("10.0.0.1", 7))
    received = TcpMessage.decode(recv_frame(b))
    assert received.format().endswith("INT - -42")


def test_handle_stdin_line(server, pair, capsys):
    a, b = pair
    server.subscribers["c1"] = SubscriberInfo(a)
    assert server.handle_stdin_line("quit\n") is True
    assert "Usage: exit" in capsys.readouterr().err
    assert server.handle_stdin_line("exit\n") is False
    assert TcpMessage.decode(recv_frame(b)).type == PayloadType.CLOSE


def test_server_binds_tcp_and_udp_on_same_port(server):
    host, port = server.address
    assert host == "127.0.0.1"
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        with pytest.raises(OSError):
            probe.bind(("127.0.0.1", port))
    finally:
        probe.close()


def test_serve_forever_relays_and_shuts_down(capsys):
    server = Server(0, "127.0.0.1")
    read_fd, write_fd = os.pipe()
    stdin = os.fdopen(read_fd, "rb")
    thread = threading.Thread(target=server.serve_forever, args=(stdin,), daemon=True)
    thread.start()
    client = dup = None
    try:
        client = socket.create_connection(server.address, timeout=5)
        client.sendall(b"c1".ljust(CLIENT_ID_SIZE, b"\0"))
        client.sendall(SubscriberMessage(CommandType.SUBSCRIBE, "c1", "news/+").encode())
        assert _wait_for(
            lambda: "c1" in server.subscribers and "news/+" in server.subscribers["c1"].topics
        )

        publisher = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        publisher.sendto(_datagram("news/today", 3, b"sunny"), server.address)
        publisher.close()
        received = TcpMessage.decode(recv_frame(client))
        assert received.topic == "news/today"
        assert received.payload == b"sunny"
        assert received.ip == "127.0.0.1"

        dup = socket.create_connection(server.address, timeout=5)
        dup.sendall(b"c1".ljust(CLIENT_ID_SIZE, b"\0"))
        assert TcpMessage.decode(recv_frame(dup)).type == PayloadType.CLOSE

        os.write(write_fd, b"exit\n")
        assert TcpMessage.decode(recv_frame(client)).type == PayloadType.CLOSE
        thread.join(5)
        assert not thread.is_alive()
    finally:
        if thread.is_alive():
            os.write(write_fd, b"exit\n")
            thread.join(5)
        for s in (client, dup):
            if s is not None:
                s.close()
        os.close(write_fd)
        stdin.close()
        server.close()
    out = capsys.readouterr().out
    assert "New client c1 connected from 127.0.0.1:" in out
    assert "Client c1 already connected." in out


@pytest.mark.parametrize("argv", [[], ["abc"], ["70000"], ["1", "2"]])
def test_main_rejects_bad_arguments(argv):
    assert main(argv) == 1