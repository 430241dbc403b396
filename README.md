# topicrelay

A small publish/subscribe relay. Publishers send datagrams over UDP, each
carrying a topic and a typed value. Subscribers connect over TCP, subscribe to
topics (with `+` and `*` wildcards), and print every matching message as a
readable line. Only IPv4 is used.

## Installation

```
pip install .
```

## Running the server

```
topicrelay-server <PORT>
```

The server listens on the given port for both TCP subscribers and UDP
publishers. Typing `exit` on its standard input, or closing its standard
input, tells every connected subscriber that it is shutting down and stops
the server. Any other line prints `Usage: exit` on standard error.

Lines printed by the server:

```
New client <ID> connected from <IP>:<PORT>.
Client <ID> already connected.
Client <ID> disconnected.
```

## Running a subscriber

```
topicrelay-subscriber <ID_CLIENT> <IP_SERVER> <PORT_SERVER>
```

The client id must be 1 to 10 bytes long. Commands on standard input:

```
subscribe <TOPIC>
unsubscribe <TOPIC>
exit
```

The subscriber confirms with `Subscribed to topic <TOPIC>.` or
`Unsubscribed from topic <TOPIC>.`; an unrecognised line prints a usage
message on standard error. Closing standard input acts like `exit`. The
subscriber also stops when the server announces that it is closing.

A client id that is already online is refused: the new connection is sent a
closing message and dropped. Disconnecting and reconnecting with the same id
keeps the topics it subscribed to.

## Topics and wildcards

Topics are levels separated by `/`, such as `upb/precis/100/temperature`.

- An exact subscription matches only that topic.
- `+` matches exactly one level: `upb/+/100/temperature`
- `*` matches one or more levels, up to the level that follows it in the
  pattern: `upb/*/temperature`. A subscription of just `*` matches every
  topic.

## Publisher datagrams

Each UDP datagram is a 50-byte topic (NUL padded), one type byte, then up to
1500 bytes of content. Shorter datagrams are padded with zero bytes.

| Type | Name        | Content                                                       |
|------|-------------|---------------------------------------------------------------|
| 0    | INT         | sign byte, then a 32-bit unsigned integer, network order       |
| 1    | SHORT_REAL  | 16-bit unsigned integer, network order, divided by 100        |
| 2    | FLOAT       | sign byte, 32-bit unsigned integer, then a power-of-ten byte  |
| 3    | STRING      | NUL-terminated text                                           |

Any other type byte except 4 is shown as a string. Subscribers print each
message as:

```
<IP>:<PORT> - <TOPIC> - <TYPE> - <VALUE>
```

For example `127.0.0.1:40000 - a/b - SHORT_REAL - 23.50` or
`127.0.0.1:40000 - a/b - FLOAT - -1.5`.

## Using it as a library

```python
from topicrelay.topics import match_topic, split_topic
from topicrelay.messages import TcpMessage, UdpMessage, SubscriberMessage
from topicrelay.server import Server
from topicrelay.subscriber import Subscriber, parse_command

match_topic({"upb/+/temperature"}, "upb/precis/temperature")
# -> "upb/+/temperature"

message = TcpMessage.from_udp(UdpMessage.decode(datagram), ("127.0.0.1", 40000))
print(message.format())
```

- `topics.match_topic(patterns, topic)` returns the subscription pattern a
  topic matches, or `None`.
- `messages.UdpMessage.decode` parses a publisher datagram;
  `TcpMessage.encode`/`decode` give the server-to-subscriber wire form and
  `TcpMessage.format` the printed line. Frames on the TCP connection are
  prefixed with their length as an 8-byte little-endian integer
  (`send_frame`, `recv_frame`).
- `server.Server(port, host="")` binds both sockets; `serve_forever(stdin)`
  runs it, `address` gives the bound address, and it can be used as a context
  manager.
- `subscriber.Subscriber(sock, client_id).run(stdin)` drives a connected
  client socket.

## What it does not include

There is no publisher program. Publishers are any program that sends
datagrams in the format above to the server's UDP port.