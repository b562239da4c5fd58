"""Messages of the online game protocol and their packet encoding."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, ClassVar, Union

from .packet import Packet, PacketError


class MessageKind(IntEnum):
    """Numeric codes that open every protocol packet."""

    NOP = 0
    HELLO = 100
    GAME_PARAMETERS = 101
    TEST_ALIVE = 102
    HELLO_MASTER = 103
    HOW_R_U = 104
    QUEUED = 105
    RESERVE_IP = 106
    KILL = 107
    RANDOM_GAME = 108
    PRIVATE_GAME = 109
    WAITING_FOR_PLAYERS = 110
    OK = 200
    OK_MOVED = 201
    NINJA_STATUS = 202
    NINJA_ACCEPTED = 203
    ACCEPTED = 204
    OK_RESERVED = 205
    OK_START_GAME = 206
    OK_RANDOM_PRIVATE_START = 209
    TEST_MESSAGE = 300
    MOVED = 301
    ERROR_DISCONNECTED = 400
    ERR_INVALID_MESSAGE = 401
    ERR_COULDNT_RESERVE = 402
    ERR_NO_NINJAS = 403
    ERR_UNAUTHORIZED = 404
    ERR_UPDATE = 405
    ERR_FULL_ROOM = 406

    @property
    def is_error(self) -> bool:
        return self.value >= 400


_SIGNAL_KINDS = frozenset(
    {
        MessageKind.NOP,
        MessageKind.TEST_ALIVE,
        MessageKind.HOW_R_U,
        MessageKind.KILL,
        MessageKind.WAITING_FOR_PLAYERS,
        MessageKind.OK,
        MessageKind.OK_MOVED,
        MessageKind.NINJA_ACCEPTED,
        MessageKind.OK_RESERVED,
    }
)


@dataclass(frozen=True)
class Hello:
    """Client greeting: protocol version and requested game mode arguments."""

    version: int
    args: tuple[str, ...] = ()
    kind: ClassVar[MessageKind] = MessageKind.HELLO

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.version).append_int(len(self.args))
        for arg in self.args:
            packet.append_str(arg)

    @classmethod
    def _read(cls, packet: Packet) -> Hello:
        version = packet.read_int()
        count = packet.read_int()
        if count < 0:
            raise PacketError(f"negative argument count: {count}")
        return cls(version, tuple(packet.read_str() for _ in range(count)))


@dataclass(frozen=True)
class GameParameters:
    """Parameters of a game against a ninja."""

    player: int
    name: str
    board_config: int
    ai_id: int
    kind: ClassVar[MessageKind] = MessageKind.GAME_PARAMETERS

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.player).append_str(self.name)
        packet.append_int(self.board_config).append_int(self.ai_id)

    @classmethod
    def _read(cls, packet: Packet) -> GameParameters:
        return cls(packet.read_int(), packet.read_str(), packet.read_int(), packet.read_int())


@dataclass(frozen=True)
class HelloMaster:
    """Greeting of a ninja server to the master."""

    ip: str
    port: int
    online_version: int
    ninja_version: int
    kind: ClassVar[MessageKind] = MessageKind.HELLO_MASTER

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.ip).append_int(self.port)
        packet.append_int(self.online_version).append_int(self.ninja_version)

    @classmethod
    def _read(cls, packet: Packet) -> HelloMaster:
        return cls(packet.read_str(), packet.read_int(), packet.read_int(), packet.read_int())


@dataclass(frozen=True)
class Queued:
    """Position of a client in the waiting queue."""

    position: int
    kind: ClassVar[MessageKind] = MessageKind.QUEUED

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.position)

    @classmethod
    def _read(cls, packet: Packet) -> Queued:
        return cls(packet.read_int())


@dataclass(frozen=True)
class ReserveIp:
    """Request to a ninja to admit a client address."""

    ip: str
    port: int
    kind: ClassVar[MessageKind] = MessageKind.RESERVE_IP

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.ip).append_int(self.port)

    @classmethod
    def _read(cls, packet: Packet) -> ReserveIp:
        return cls(packet.read_str(), packet.read_int())


@dataclass(frozen=True)
class RandomGame:
    """Request to be paired with a random rival."""

    name: str
    kind: ClassVar[MessageKind] = MessageKind.RANDOM_GAME

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.name)

    @classmethod
    def _read(cls, packet: Packet) -> RandomGame:
        return cls(packet.read_str())


@dataclass(frozen=True)
class PrivateGame:
    """Request to join a named private room."""

    room_name: str
    name: str
    kind: ClassVar[MessageKind] = MessageKind.PRIVATE_GAME

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.room_name).append_str(self.name)

    @classmethod
    def _read(cls, packet: Packet) -> PrivateGame:
        return cls(packet.read_str(), packet.read_str())


@dataclass(frozen=True)
class NinjaStatus:
    """Number of games a ninja server is running, by mode."""

    ninja_games: int
    random_games: int
    private_games: int
    kind: ClassVar[MessageKind] = MessageKind.NINJA_STATUS

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.ninja_games).append_int(self.random_games)
        packet.append_int(self.private_games)

    @classmethod
    def _read(cls, packet: Packet) -> NinjaStatus:
        return cls(packet.read_int(), packet.read_int(), packet.read_int())


@dataclass(frozen=True)
class Accepted:
    """Address of the ninja server a client was assigned to."""

    ip: str
    port: int
    kind: ClassVar[MessageKind] = MessageKind.ACCEPTED

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.ip).append_int(self.port)

    @classmethod
    def _read(cls, packet: Packet) -> Accepted:
        return cls(packet.read_str(), packet.read_int())


@dataclass(frozen=True)
class OkStartGame:
    """Game start confirmation carrying the rival's name."""

    name: str
    kind: ClassVar[MessageKind] = MessageKind.OK_START_GAME

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.name)

    @classmethod
    def _read(cls, packet: Packet) -> OkStartGame:
        return cls(packet.read_str())


@dataclass(frozen=True)
class OkRandomPrivateStart:
    """Start of a random or private game: own seat, rival name, board."""

    player: int
    rival_name: str
    board_config: int
    kind: ClassVar[MessageKind] = MessageKind.OK_RANDOM_PRIVATE_START

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.player).append_str(self.rival_name)
        packet.append_int(self.board_config)

    @classmethod
    def _read(cls, packet: Packet) -> OkRandomPrivateStart:
        return cls(packet.read_int(), packet.read_str(), packet.read_int())


@dataclass(frozen=True)
class TestMessage:
    """Free text used to probe a connection."""

    __test__: ClassVar[bool] = False

    text: str
    kind: ClassVar[MessageKind] = MessageKind.TEST_MESSAGE

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.text)

    @classmethod
    def _read(cls, packet: Packet) -> TestMessage:
        return cls(packet.read_str())


@dataclass(frozen=True)
class Moved:
    """A move: turn number, piece colour, piece index and dice value."""

    turn: int
    color: int
    piece_id: int
    dice: int
    kind: ClassVar[MessageKind] = MessageKind.MOVED

    def _write(self, packet: Packet) -> None:
        packet.append_int(self.turn).append_int(self.color)
        packet.append_int(self.piece_id).append_int(self.dice)

    @classmethod
    def _read(cls, packet: Packet) -> Moved:
        return cls(packet.read_int(), packet.read_int(), packet.read_int(), packet.read_int())


@dataclass(frozen=True)
class ErrorMessage:
    """An error code with a human-readable explanation."""

    kind: MessageKind
    text: str

    def __post_init__(self) -> None:
        kind = MessageKind(self.kind)
        if not kind.is_error:
            raise ValueError(f"{kind.name} is not an error kind")
        object.__setattr__(self, "kind", kind)

    def _write(self, packet: Packet) -> None:
        packet.append_str(self.text)


@dataclass(frozen=True)
class Signal:
    """A message that carries nothing but its kind."""

    kind: MessageKind

    def __post_init__(self) -> None:
        kind = MessageKind(self.kind)
        if kind not in _SIGNAL_KINDS:
            raise ValueError(f"{kind.name} carries a payload")
        object.__setattr__(self, "kind", kind)

    def _write(self, packet: Packet) -> None:
        pass


Message = Union[
    Hello,
    GameParameters,
    HelloMaster,
    Queued,
    ReserveIp,
    RandomGame,
    PrivateGame,
    NinjaStatus,
    Accepted,
    OkStartGame,
    OkRandomPrivateStart,
    TestMessage,
    Moved,
    ErrorMessage,
    Signal,
]

_PAYLOAD_CLASSES = (
    Hello,
    GameParameters,
    HelloMaster,
    Queued,
    ReserveIp,
    RandomGame,
    PrivateGame,
    NinjaStatus,
    Accepted,
    OkStartGame,
    OkRandomPrivateStart,
    TestMessage,
    Moved,
)
_MESSAGE_CLASSES = _PAYLOAD_CLASSES + (ErrorMessage, Signal)


def _signal_reader(kind: MessageKind) -> Callable[[Packet], Message]:
    return lambda packet: Signal(kind)


def _error_reader(kind: MessageKind) -> Callable[[Packet], Message]:
    return lambda packet: ErrorMessage(kind, packet.read_str())


_READERS: dict[MessageKind, Callable[[Packet], Message]] = {
    cls.kind: cls._read for cls in _PAYLOAD_CLASSES
}
_READERS.update({kind: _signal_reader(kind) for kind in _SIGNAL_KINDS})
_READERS.update({kind: _error_reader(kind) for kind in MessageKind if kind.is_error})


def encode(message: Message) -> Packet:
    """Build the packet for a message."""
    if not isinstance(message, _MESSAGE_CLASSES):
        raise TypeError(f"not a protocol message: {message!r}")
    packet = Packet().append_int(int(message.kind))
    message._write(packet)
    return packet


def decode(packet: Packet) -> Message:
    """Read a message from a packet without moving the packet's own cursor."""
    reader = packet.copy()
    raw = reader.read_int()
    try:
        kind = MessageKind(raw)
    except ValueError:
        raise PacketError(f"unknown message kind: {raw}") from None
    return _READERS[kind](reader)


def describe(kind: int) -> str:
    """Code and name of a message kind, as used in log lines."""
    try:
        known = MessageKind(kind)
    except ValueError:
        return f"unknown message {kind}"
    return f"{known.value} {known.name}"