# parchisnet

The networking and game-setup side of a two-player Parchís game, with no
dependencies outside the standard library (Python 3.10 or later):

- `parchisnet.packet` — a binary packet format of signed 32-bit big-endian
  integers and length-prefixed UTF-8 strings, framed for TCP;
- `parchisnet.messages` — the message protocol spoken between game clients,
  ninja game servers and the master server;
- `parchisnet.remote` — a TCP connection that sends and receives whole
  messages;
- `parchisnet.master` — the master server that assigns clients to ninja
  servers;
- `parchisnet.ninja` — the ninja server that hosts games for the clients the
  master sends it;
- `parchisnet.textbox` and `parchisnet.selector` — the model of the start-up
  menu: game modes, the choices each one enables, and the input fields.

## Packets

```python
from parchisnet.packet import Packet

packet = Packet(b"")
packet.append_int(301).append_str("hello")

copy = Packet(bytes(packet))
assert copy.read_int() == 301
assert copy.read_str() == "hello"
assert copy.at_end()
```

`append_int` accepts only integers in the signed 32-bit range. Reading past
the end of a packet, or reading a string that is not valid UTF-8, raises
`PacketError` (a `ValueError`). `copy()` gives an independent packet with the
same bytes and read position.

`send_packet(sock, packet)` sends a packet preceded by its 32-bit size;
`receive_packet(sock)` reads one such packet and raises `ConnectionError` if
the peer closes the socket.

## Messages

`MessageKind` lists the numeric codes that open every packet: 1xx requests
(`HELLO`, `GAME_PARAMETERS`, `RESERVE_IP`, …), 2xx acknowledgements (`OK`,
`NINJA_STATUS`, `ACCEPTED`, …), 3xx game traffic (`TEST_MESSAGE`, `MOVED`) and
4xx errors (`ERROR_DISCONNECTED`, `ERR_UPDATE`, `ERR_FULL_ROOM`, …);
`kind.is_error` is true for the 4xx codes.

Messages that carry data are frozen dataclasses: `Hello`, `GameParameters`,
`HelloMaster`, `Queued`, `ReserveIp`, `RandomGame`, `PrivateGame`,
`NinjaStatus`, `Accepted`, `OkStartGame`, `OkRandomPrivateStart`,
`TestMessage` and `Moved`. `ErrorMessage(kind, text)` takes any error kind;
`Signal(kind)` covers the kinds with no payload (`TEST_ALIVE`, `HOW_R_U`,
`OK_RESERVED`, `WAITING_FOR_PLAYERS`, …). Both raise `ValueError` for a kind
that does not fit.

```python
from parchisnet.messages import Moved, decode, describe, encode

packet = encode(Moved(turn=3, color=1, piece_id=2, dice=5))
assert decode(packet) == Moved(3, 1, 2, 5)
assert describe(301) == "301 MOVED"
```

`decode` leaves the packet's own read cursor where it was, and raises
`PacketError` for an unknown kind or a short payload.

## Connections

`RemoteConnection` wraps a connected socket. Use
`RemoteConnection.connect(host, port, timeout)` on the client side and
`RemoteConnection.accept(listener)` on a listening socket; both raise
`ConnectionError` on failure. `send(message)` and `receive()` exchange message
objects; if the socket fails the connection closes itself and raises
`ConnectionClosed`. `is_connected()`, `remote_address()` and `close()` do what
their names say, and the connection works as a context manager.

## Master server

```python
from parchisnet.master import MasterServer

master = MasterServer(port=8888, online_version=1, ninja_version=1, max_ninja_games=10)
master.add_allowed_ninja("192.0.2.10")
master.start()          # blocks until master.stop() is called from another thread
```

For each new connection the master waits for a greeting:

- a `HelloMaster` registers a ninja server if both versions match and its
  contact IP was allowed; otherwise it gets an `ERR_UPDATE` or
  `ERR_UNAUTHORIZED` error;
- a `Hello` with the current version asks for a game mode:
  `("ninjagame",)`, `("randomgame",)` or `("privateroom", name)`.

A ninja game goes to the ninja with the fewest ninja games; when even that one
holds `max_ninja_games` or more, the client is queued and told its position. A
random game goes to the ninja with the fewest random games, and the next random
client is sent to the same ninja so the two meet there. The first client of a
private room opens it on the ninja with the fewest private games; the second
one is sent to that ninja. The client receives `Accepted(ip, port)` with the
ninja's address, or `ERR_NO_NINJAS` / `ERR_COULDNT_RESERVE`.

While running, the master calls `revise_step()` every 10 seconds: it asks
every ninja for its status, drops the ones it has lost, and hands the first
queued client to a ninja with room, updating everyone's queue position.

## Ninja server

```python
from parchisnet.ninja import NinjaServer, PlayerSeat

def play(board_config: int, first: PlayerSeat, second: PlayerSeat) -> None:
    ...  # run the game; a seat with no connection is the server's AI (seat.ai_id)

ninja = NinjaServer(port=8889, contact_ip="192.0.2.10", game_runner=play,
                    online_version=1, ninja_version=1)
ninja.set_master("192.0.2.1", 8888)
ninja.start()           # blocks until ninja.stop()
```

`start()` listens, registers with the master (`connect_to_master()` raises
`ConnectionError` if the master rejects it) and then answers the master's
`RESERVE_IP` and `HOW_R_U` messages. Only clients whose host was reserved are
admitted; others get `ERR_UNAUTHORIZED`. An admitted client then sends:

- `GameParameters` — a game against the server's AI, seated by `player`;
  the client gets `OkStartGame` with the AI seat's name (`"J1"` or `"J2"`);
- `RandomGame` — paired with the last waiting random client, or told
  `WAITING_FOR_PLAYERS`;
- `PrivateGame` — joins the named room, opens it, or gets `ERR_FULL_ROOM`.

Paired clients receive `OkRandomPrivateStart` with their seat, the rival's name
and `NinjaServer.SHARED_BOARD_CONFIG`, then `game_runner` is called.
`status()` returns a `NinjaStatus` with the games held; `revise_step()` probes
every client and drops lost games.

## Game selection

`TextBox(text, max_size, allow_typing, only_numeric)` is an input field.
`press(key, shift, now_ms)` types the key's character (see `key_character`
for key names such as `"a"`, `"7"`, `"numpad3"`, `"comma"`, `"space"`, or
`"backspace"`), honouring the length limit, numeric-only mode and key-repeat
timing (500 ms before a held key repeats, then 50 ms). `increment(step)` adds
to the number in the field; `fill` gives its background colour.

`GameSelector` holds the menu state. `select(mode)` picks a `GameMode`
(two players, against a heuristic, against ninja 1–3, heuristic against
heuristic or ninja, online client or server, random pairing, private room) and
sets player types, enabled fields and captions. `toggle_player_id()` swaps the
local player's seat and `toggle_gui()` switches the board display; each
returns `False` when the current mode locks that choice. `labels()` returns the
field captions, and `start(playground)` reads the fields and returns the
resulting `GameParameters`, raising `ValueError` for a non-numeric AI id or
port.

## What this package does not do

There are no commands to run: the servers are started from your own code.
The package does not contain the game itself — no board, rules, dice or AI
players; `NinjaServer` hands both seats to the `game_runner` you supply. The
selector is a state model only and draws no window.