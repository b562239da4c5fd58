"""Ninja game server: hosts games for clients that the master sends to it."""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Callable

from .messages import (
    ErrorMessage,
    GameParameters,
    HelloMaster,
    Message,
    MessageKind,
    NinjaStatus,
    OkRandomPrivateStart,
    OkStartGame,
    PrivateGame,
    RandomGame,
    ReserveIp,
    Signal,
)
from .packet import PacketError
from .remote import ConnectionClosed, RemoteConnection

logger = logging.getLogger(__name__)

_TEXT_INTERNAL = "Problemas internos."
_TEXT_UNAUTHORIZED = "Esta máquina no ha sido autorizada para jugar."
_TEXT_FULL_ROOM = (
    "La sala indicada ya existe y está completa. Por favor, indica otro nombre de sala."
)


@dataclass(frozen=True)
class PlayerSeat:
    """One side of a game: a remote client, or the server's own AI when there is no connection."""

    name: str
    connection: RemoteConnection | None = None
    ai_id: int | None = None

    @property
    def is_remote(self) -> bool:
        return self.connection is not None


GameRunner = Callable[[int, PlayerSeat, PlayerSeat], None]


@dataclass(eq=False)
class _NinjaGame:
    connection: RemoteConnection
    thread: threading.Thread


@dataclass(eq=False)
class _SharedGame:
    connection_p1: RemoteConnection
    name_p1: str
    waiting_thread: threading.Thread
    connection_p2: RemoteConnection | None = None
    name_p2: str = ""
    thread: threading.Thread | None = None

    @property
    def waiting(self) -> bool:
        return self.connection_p2 is None

    def connections(self) -> list[RemoteConnection]:
        return [c for c in (self.connection_p1, self.connection_p2) if c is not None]

    def threads(self) -> list[threading.Thread]:
        return [t for t in (self.waiting_thread, self.thread) if t is not None]


class NinjaServer:
    """Runs games against its AI and between paired clients, on the master's behalf."""

    REVISE_INTERVAL = 10.0
    SHARED_BOARD_CONFIG = 0
    """Board configuration used for random and private games."""
    _ACCEPT_POLL = 0.5
    _JOIN_TIMEOUT = 5.0

    def __init__(
        self,
        port: int,
        contact_ip: str,
        game_runner: GameRunner,
        online_version: int,
        ninja_version: int,
        host: str = "",
    ) -> None:
        self.port = port
        self.contact_ip = contact_ip
        self.host = host
        self.online_version = online_version
        self.ninja_version = ninja_version
        self._run_game = game_runner

        self._master_ip: str | None = None
        self._master_port: int | None = None
        self._master: RemoteConnection | None = None

        self._reserved: list[tuple[str, int]] = []
        self._ninja_games: list[_NinjaGame] = []
        self._random_games: list[_SharedGame] = []
        self._private_rooms: dict[str, _SharedGame] = {}
        self._dead_threads: list[threading.Thread] = []

        self._reserved_lock = threading.Lock()
        self._ninja_lock = threading.Lock()
        self._random_lock = threading.Lock()
        self._private_lock = threading.Lock()
        self._dead_lock = threading.Lock()

        self._running = False
        self._stop_event = threading.Event()
        self._reviser: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    def set_master(self, master_ip: str, master_port: int) -> None:
        """Set the address of the master server to register with."""
        self._master_ip = master_ip
        self._master_port = master_port

    # ------------------------------------------------------------------ serving

    def start(self) -> None:
        """Listen, register with the master and serve clients until stopped."""
        try:
            listener = socket.create_server((self.host, self.port))
        except OSError as exc:
            raise OSError(f"could not listen on port {self.port}") from exc
        self.port = listener.getsockname()[1]
        listener.settimeout(self._ACCEPT_POLL)
        logger.info("Listening on port %s", self.port)

        self._running = True
        self._stop_event.clear()
        try:
            self.connect_to_master()
            self._reviser = threading.Thread(target=self._reviser_loop, daemon=True)
            self._reviser.start()
            threading.Thread(target=self._master_loop, daemon=True).start()
            while self._running:
                try:
                    sock, address = listener.accept()
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._running:
                        break
                    raise ConnectionError("could not accept connection") from exc
                sock.setblocking(True)
                logger.info("Accepted connection from %s:%s", address[0], address[1])
                threading.Thread(
                    target=self._serve, args=(RemoteConnection(sock),), daemon=True
                ).start()
        finally:
            self._running = False
            self._stop_event.set()
            listener.close()

    def stop(self) -> None:
        """Stop serving, tell every ninja game's client and wait for their threads."""
        self._running = False
        self._stop_event.set()
        with self._ninja_lock:
            games = list(self._ninja_games)
        for game in games:
            self._send(game.connection, ErrorMessage(MessageKind.ERROR_DISCONNECTED, _TEXT_INTERNAL))
            self._join(game.thread)
        self._join(self._reviser)
        if self._master is not None:
            self._master.close()

    def _serve(self, connection: RemoteConnection) -> None:
        try:
            self.handle_connection(connection)
        except Exception:
            logger.exception("Game connection failed")

    def _reviser_loop(self) -> None:
        while self._running:
            self.revise_step()
            self._stop_event.wait(self.REVISE_INTERVAL)

    # ------------------------------------------------------------------- master

    def connect_to_master(self) -> None:
        """Register with the master; raise ConnectionError if it rejects this server."""
        if self._master_ip is None or self._master_port is None:
            raise RuntimeError("master address not set")
        master = RemoteConnection.connect(self._master_ip, self._master_port)
        self._master = master
        master.send(HelloMaster(self.contact_ip, self.port, self.online_version, self.ninja_version))
        try:
            reply = master.receive()
        except PacketError as exc:
            raise ConnectionError("unexpected message received from master") from exc
        if isinstance(reply, Signal) and reply.kind is MessageKind.NINJA_ACCEPTED:
            logger.info("Ninja accepted by master")
            return
        if isinstance(reply, ErrorMessage):
            raise ConnectionError(f"ninja rejected by master: {reply.text}")
        raise ConnectionError(f"unexpected message received from master: {reply.kind.name}")

    def _master_loop(self) -> None:
        while self._running:
            master = self._master
            if master is None:
                return
            try:
                message: Message = master.receive()
            except ConnectionClosed:
                message = ErrorMessage(MessageKind.ERROR_DISCONNECTED, "")
            except PacketError:
                logger.error("Invalid message from master")
                continue
            self.handle_master_message(message)

    def handle_master_message(self, message: Message) -> None:
        """Act on one message from the master."""
        if isinstance(message, ReserveIp):
            self.reserve(message.ip, message.port)
            self._send(self._require_master(), Signal(MessageKind.OK_RESERVED))
        elif isinstance(message, Signal) and message.kind is MessageKind.HOW_R_U:
            self._send(self._require_master(), self.status())
        elif isinstance(message, ErrorMessage) and message.kind is MessageKind.ERROR_DISCONNECTED:
            logger.error("Master disconnected")
            self.stop()
        else:
            logger.error("Unexpected message from master: %s", message.kind.name)

    def _require_master(self) -> RemoteConnection:
        if self._master is None:
            raise RuntimeError("not connected to a master")
        return self._master

    def reserve(self, ip: str, port: int) -> None:
        """Admit one future connection from this client address."""
        with self._reserved_lock:
            self._reserved.append((ip, port))
        logger.info("Reserved IP: %s:%s", ip, port)

    def status(self) -> NinjaStatus:
        """How many ninja, random and private games are held."""
        with self._ninja_lock:
            ninja = len(self._ninja_games)
        with self._random_lock:
            random = len(self._random_games)
        with self._private_lock:
            private = len(self._private_rooms)
        return NinjaStatus(ninja, random, private)

    def _take_reservation(self, ip: str) -> bool:
        # The client reaches this server on a new connection, so only its host can match.
        with self._reserved_lock:
            for entry in self._reserved:
                if entry[0] == ip:
                    self._reserved.remove(entry)
                    return True
        return False

    # -------------------------------------------------------------------- games

    def handle_connection(self, connection: RemoteConnection) -> None:
        """Check a client was reserved, then serve the game mode it asks for."""
        try:
            ip, port = connection.remote_address()
        except ConnectionClosed:
            return
        if not self._take_reservation(ip):
            logger.error("Connection from %s:%s is not allowed", ip, port)
            self._send(connection, ErrorMessage(MessageKind.ERR_UNAUTHORIZED, _TEXT_UNAUTHORIZED))
            return
        while True:
            try:
                message = connection.receive()
            except ConnectionClosed:
                return
            except PacketError:
                continue
            if isinstance(message, GameParameters):
                self.new_ninja_game(connection, message)
                return
            if isinstance(message, RandomGame):
                self.queue_random_match_game(connection, message)
                return
            if isinstance(message, PrivateGame):
                self.queue_private_room_game(connection, message)
                return

    def new_ninja_game(self, connection: RemoteConnection, params: GameParameters) -> None:
        """Play a game between the client and this server's AI."""
        with self._ninja_lock:
            self._ninja_games.append(_NinjaGame(connection, threading.current_thread()))
        remote = PlayerSeat(params.name, connection)
        if params.player == 0:
            ninja = PlayerSeat("J2", ai_id=params.ai_id)
            first, second = remote, ninja
        else:
            ninja = PlayerSeat("J1", ai_id=params.ai_id)
            first, second = ninja, remote
        if not self._send(connection, OkStartGame(ninja.name)):
            return
        self._run_game(params.board_config, first, second)

    def queue_random_match_game(self, connection: RemoteConnection, request: RandomGame) -> None:
        """Pair the client with the waiting random client, or make it wait."""
        board = self.SHARED_BOARD_CONFIG
        with self._random_lock:
            last = self._random_games[-1] if self._random_games else None
            if last is None or not last.waiting:
                self._random_games.append(
                    _SharedGame(connection, request.name, threading.current_thread())
                )
                seats = None
            else:
                last.connection_p2 = connection
                last.name_p2 = request.name
                last.thread = threading.current_thread()
                seats = self._start_shared(last, board)
        if seats is None:
            self._send(connection, Signal(MessageKind.WAITING_FOR_PLAYERS))
            return
        self._run_game(board, *seats)

    def queue_private_room_game(self, connection: RemoteConnection, request: PrivateGame) -> None:
        """Join the named room, open it if new, or refuse if it is full."""
        board = self.SHARED_BOARD_CONFIG
        with self._private_lock:
            room = self._private_rooms.get(request.room_name)
            if room is None:
                self._private_rooms[request.room_name] = _SharedGame(
                    connection, request.name, threading.current_thread()
                )
                seats = None
                full = False
            elif room.waiting:
                room.connection_p2 = connection
                room.name_p2 = request.name
                room.thread = threading.current_thread()
                seats = self._start_shared(room, board)
                full = False
            else:
                seats = None
                full = True
        if full:
            self._send(connection, ErrorMessage(MessageKind.ERR_FULL_ROOM, _TEXT_FULL_ROOM))
            with self._dead_lock:
                self._dead_threads.append(threading.current_thread())
            return
        if seats is None:
            self._send(connection, Signal(MessageKind.WAITING_FOR_PLAYERS))
            return
        self._run_game(board, *seats)

    def _start_shared(self, game: _SharedGame, board: int) -> tuple[PlayerSeat, PlayerSeat]:
        assert game.connection_p2 is not None
        first = PlayerSeat(game.name_p1, game.connection_p1)
        second = PlayerSeat(game.name_p2, game.connection_p2)
        self._send(game.connection_p1, OkRandomPrivateStart(0, second.name, board))
        self._send(game.connection_p2, OkRandomPrivateStart(1, first.name, board))
        return first, second

    # ----------------------------------------------------------------- revision

    def revise_step(self) -> int:
        """Probe every game's clients and drop lost games; return how many were dropped."""
        removed = 0

        with self._ninja_lock:
            ninja_games = list(self._ninja_games)
        for game in ninja_games:
            if not self._alive(game.connection):
                self._join(game.thread)
                with self._ninja_lock:
                    if game in self._ninja_games:
                        self._ninja_games.remove(game)
                removed += 1

        with self._random_lock:
            random_games = list(self._random_games)
        for shared in random_games:
            if self._shared_lost(shared):
                with self._random_lock:
                    if shared in self._random_games:
                        self._random_games.remove(shared)
                removed += 1

        with self._private_lock:
            rooms = list(self._private_rooms.items())
        for name, shared in rooms:
            if self._shared_lost(shared):
                with self._private_lock:
                    if self._private_rooms.get(name) is shared:
                        del self._private_rooms[name]
                removed += 1

        with self._dead_lock:
            dead, self._dead_threads = self._dead_threads, []
        for thread in dead:
            self._join(thread)

        logger.info("Current games: %s (%d removed)", self.status(), removed)
        return removed

    def _shared_lost(self, game: _SharedGame) -> bool:
        lost = not self._alive(game.connection_p1)
        if not lost and not game.waiting:
            assert game.connection_p2 is not None
            lost = not self._alive(game.connection_p2)
        if lost:
            for connection in game.connections():
                connection.close()
            for thread in game.threads():
                self._join(thread)
        return lost

    # ------------------------------------------------------------------ helpers

    def _alive(self, connection: RemoteConnection) -> bool:
        self._send(connection, Signal(MessageKind.TEST_ALIVE))
        return connection.is_connected()

    def _send(self, connection: RemoteConnection, message: Message) -> bool:
        try:
            connection.send(message)
        except ConnectionClosed:
            logger.error("Could not send %s", message.kind.name)
            return False
        return True

    def _join(self, thread: threading.Thread | None) -> None:
        if thread is None or thread is threading.current_thread() or not thread.is_alive():
            return
        thread.join(self._JOIN_TIMEOUT)