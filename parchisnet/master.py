"""Master server that assigns game clients to ninja game servers."""

from __future__ import annotations

import logging
import socket
import threading
from collections import deque
from dataclasses import dataclass
from operator import attrgetter
from typing import Callable

from .messages import (
    Accepted,
    ErrorMessage,
    Hello,
    HelloMaster,
    Message,
    MessageKind,
    NinjaStatus,
    Queued,
    ReserveIp,
    Signal,
)
from .packet import PacketError
from .remote import ConnectionClosed, RemoteConnection

logger = logging.getLogger(__name__)

_NO_OCCUPATION = 999999

_TEXT_UNEXPECTED = "Mensaje inesperado."
_TEXT_UPDATE_NINJA = (
    "Hay una versión más reciente del servidor ninja. Es necesario actualizar el repositorio."
)
_TEXT_UPDATE_ONLINE = (
    "Hay una actualización disponible del juego y del modo online. "
    "Es necesario actualizar el repositorio."
)
_TEXT_UPDATE_CLIENT = (
    "Hay una versión más reciente del juego. Es necesario actualizar el repositorio para "
    "jugar online, y también recomendable para el juego local. Recuerda: git pull upstream "
    "master (tras haber seguido los pasos del tutorial)."
)
_TEXT_NOT_A_NINJA = "Este servidor no está autorizado para ser un ninja."
_TEXT_UNKNOWN_MODE = "No entendí el modo de juego que me enviaste."
_TEXT_COULDNT_RESERVE_NINJA = (
    "No se ha podido asignar un servidor ninja. Inténtalo de nuevo, por favor. "
    "Si el problema persiste avisa a tus profesores."
)
_TEXT_COULDNT_RESERVE = (
    "No se ha podido asignar un servidor. Inténtalo de nuevo, por favor. "
    "Si el problema persiste avisa a tus profesores."
)
_TEXT_NO_NINJAS = "No hay servidores ninja disponibles. Avisa a tus profesores."


@dataclass(eq=False)
class NinjaConnection:
    """A registered ninja server: its connection and the address clients reach it on."""

    connection: RemoteConnection
    ip: str
    port: int


class MasterServer:
    """Accepts ninja servers and game clients, and sends each client to a ninja."""

    REVISE_INTERVAL = 10.0
    _ACCEPT_POLL = 0.5

    def __init__(
        self,
        port: int,
        online_version: int,
        ninja_version: int,
        max_ninja_games: int,
        host: str = "",
    ) -> None:
        self.port = port
        self.host = host
        self.online_version = online_version
        self.ninja_version = ninja_version
        self.max_ninja_games = max_ninja_games

        self._allowed_ninja_ips: set[str] = set()
        self._ninjas: list[NinjaConnection] = []
        self._queue: deque[RemoteConnection] = deque()
        self._last_random: NinjaConnection | None = None
        self._private_rooms: dict[str, NinjaConnection] = {}

        self._ninjas_lock = threading.Lock()
        self._exchange_lock = threading.RLock()
        self._queue_lock = threading.Lock()
        self._random_lock = threading.Lock()
        self._private_lock = threading.Lock()

        self._running = False
        self._stop_event = threading.Event()

    @property
    def ninjas(self) -> tuple[NinjaConnection, ...]:
        """The ninja servers currently registered."""
        with self._ninjas_lock:
            return tuple(self._ninjas)

    def add_allowed_ninja(self, ip: str) -> None:
        """Allow a ninja server announcing this contact address to register."""
        self._allowed_ninja_ips.add(ip)

    # ------------------------------------------------------------------ serving

    def start(self) -> None:
        """Listen for connections and serve them until stop() is called."""
        try:
            listener = socket.create_server((self.host, self.port))
        except OSError as exc:
            raise OSError(f"could not listen on port {self.port}") from exc
        self.port = listener.getsockname()[1]
        listener.settimeout(self._ACCEPT_POLL)
        logger.info("Listening on port %s", self.port)

        self._running = True
        self._stop_event.clear()
        reviser = threading.Thread(target=self._reviser_loop, daemon=True)
        reviser.start()
        try:
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
                    target=self.handle_connection,
                    args=(RemoteConnection(sock),),
                    daemon=True,
                ).start()
        finally:
            self._running = False
            self._stop_event.set()
            listener.close()

    def stop(self) -> None:
        """Make start() return and end the periodic revision."""
        self._running = False
        self._stop_event.set()

    def _reviser_loop(self) -> None:
        while self._running:
            self.revise_step()
            self._stop_event.wait(self.REVISE_INTERVAL)

    # ---------------------------------------------------------------- greetings

    def handle_connection(self, connection: RemoteConnection) -> None:
        """Wait for the greeting of a new connection and dispatch on it."""
        try:
            greeting: Message | None = connection.receive()
        except ConnectionClosed:
            logger.warning("Connection closed before greeting")
            return
        except PacketError:
            greeting = None

        if isinstance(greeting, Hello):
            self.handle_client(connection, greeting)
        elif isinstance(greeting, HelloMaster):
            self.handle_ninja(connection, greeting)
        else:
            self._send(connection, ErrorMessage(MessageKind.ERR_INVALID_MESSAGE, _TEXT_UNEXPECTED))

    def handle_ninja(
        self, connection: RemoteConnection, hello: HelloMaster
    ) -> NinjaConnection | None:
        """Register a ninja server if its versions and address are acceptable."""
        if hello.ninja_version != self.ninja_version:
            self._send(connection, ErrorMessage(MessageKind.ERR_UPDATE, _TEXT_UPDATE_NINJA))
            return None
        if hello.online_version != self.online_version:
            self._send(connection, ErrorMessage(MessageKind.ERR_UPDATE, _TEXT_UPDATE_ONLINE))
            return None
        if hello.ip not in self._allowed_ninja_ips:
            self._send(connection, ErrorMessage(MessageKind.ERR_UNAUTHORIZED, _TEXT_NOT_A_NINJA))
            return None
        if not self._send(connection, Signal(MessageKind.NINJA_ACCEPTED)):
            return None
        ninja = NinjaConnection(connection, hello.ip, hello.port)
        with self._ninjas_lock:
            self._ninjas.append(ninja)
        logger.info("New ninja added: %s:%s", hello.ip, hello.port)
        return ninja

    def handle_client(self, connection: RemoteConnection, hello: Hello) -> NinjaConnection | None:
        """Serve a game client's request for the mode named in its greeting."""
        if hello.version != self.online_version:
            self._send(connection, ErrorMessage(MessageKind.ERR_UPDATE, _TEXT_UPDATE_CLIENT))
            return None
        args = hello.args
        if args == ("ninjagame",):
            return self.reserve_ninja_game(connection)
        if args == ("randomgame",):
            return self.reserve_random_game(connection)
        if len(args) == 2 and args[0] == "privateroom":
            return self.reserve_private_game(connection, args[1])
        self._send(connection, ErrorMessage(MessageKind.ERR_INVALID_MESSAGE, _TEXT_UNKNOWN_MODE))
        return None

    # ------------------------------------------------------------- reservations

    def reserve_ninja_game(self, connection: RemoteConnection) -> NinjaConnection | None:
        """Send the client to the ninja with fewest ninja games, or queue it."""
        address = self._client_address(connection)
        if address is None:
            return None
        best, lowest = self._least_occupied(attrgetter("ninja_games"))
        if best is None:
            self._send(connection, ErrorMessage(MessageKind.ERR_NO_NINJAS, _TEXT_NO_NINJAS))
            return None
        if lowest < self.max_ninja_games:
            if self._assign(connection, best, address, _TEXT_COULDNT_RESERVE_NINJA):
                return best
            return None
        with self._queue_lock:
            self._queue.append(connection)
            position = len(self._queue)
        self._send(connection, Queued(position))
        return None

    def reserve_random_game(self, connection: RemoteConnection) -> NinjaConnection | None:
        """Pair the client with the previous random client, or open a new pairing."""
        address = self._client_address(connection)
        if address is None:
            return None
        with self._random_lock:
            pending = self._last_random
            if pending is not None:
                self._last_random = None
                if self._assign(connection, pending, address, _TEXT_COULDNT_RESERVE):
                    return pending
                return None
            best, _ = self._least_occupied(attrgetter("random_games"))
            if best is None:
                self._send(connection, ErrorMessage(MessageKind.ERR_NO_NINJAS, _TEXT_NO_NINJAS))
                return None
            if not self._reserve_on(best, address):
                self._send(
                    connection,
                    ErrorMessage(MessageKind.ERR_COULDNT_RESERVE, _TEXT_COULDNT_RESERVE_NINJA),
                )
                return None
            self._last_random = best
            self._send(connection, Accepted(best.ip, best.port))
            return best

    def reserve_private_game(
        self, connection: RemoteConnection, room_name: str
    ) -> NinjaConnection | None:
        """Send the client to the ninja hosting the room, or open the room on one."""
        address = self._client_address(connection)
        if address is None:
            return None
        with self._private_lock:
            host = self._private_rooms.pop(room_name, None)
            if host is not None:
                if self._assign(connection, host, address, _TEXT_COULDNT_RESERVE_NINJA):
                    return host
                return None
            best, _ = self._least_occupied(attrgetter("private_games"))
            if best is None:
                self._send(connection, ErrorMessage(MessageKind.ERR_NO_NINJAS, _TEXT_NO_NINJAS))
                return None
            if not self._reserve_on(best, address):
                self._send(
                    connection,
                    ErrorMessage(MessageKind.ERR_COULDNT_RESERVE, _TEXT_COULDNT_RESERVE_NINJA),
                )
                return None
            self._private_rooms[room_name] = best
            self._send(connection, Accepted(best.ip, best.port))
            return best

    # ----------------------------------------------------------------- revision

    def revise_step(self) -> int:
        """Probe every ninja, drop lost ones and serve the queue; return how many were dropped."""
        removed = 0
        for ninja in self.ninjas:
            status = self._query_status(ninja)
            if not ninja.connection.is_connected():
                self._remove_ninja(ninja)
                removed += 1
                logger.error("Lost connection with ninja %s:%s", ninja.ip, ninja.port)
                continue
            if status is not None and status.ninja_games < self.max_ninja_games:
                self._serve_queue(ninja)
        logger.info("Current ninjas: %d (%d removed)", len(self.ninjas), removed)
        return removed

    def _serve_queue(self, ninja: NinjaConnection) -> None:
        with self._queue_lock:
            while self._queue:
                front = self._queue[0]
                address = self._client_address(front)
                if address is not None:
                    break
                self._queue.popleft()
            else:
                return
        if not self._reserve_on(ninja, address):
            logger.error("Could not assign a ninja to the queued client")
            return
        with self._queue_lock:
            if self._queue and self._queue[0] is front:
                self._queue.popleft()
            self._send(front, Accepted(ninja.ip, ninja.port))
            for position, waiting in enumerate(self._queue, start=1):
                self._send(waiting, Queued(position))

    def _remove_ninja(self, ninja: NinjaConnection) -> None:
        with self._ninjas_lock:
            if ninja in self._ninjas:
                self._ninjas.remove(ninja)
        with self._random_lock:
            if self._last_random is ninja:
                self._last_random = None
        with self._private_lock:
            for room in [name for name, host in self._private_rooms.items() if host is ninja]:
                del self._private_rooms[room]
        ninja.connection.close()

    # ------------------------------------------------------------------ helpers

    def _send(self, connection: RemoteConnection, message: Message) -> bool:
        try:
            connection.send(message)
        except ConnectionClosed:
            logger.error("Could not send %s", message.kind.name)
            return False
        return True

    @staticmethod
    def _client_address(connection: RemoteConnection) -> tuple[str, int] | None:
        try:
            return connection.remote_address()
        except ConnectionClosed:
            logger.warning("Client connection lost")
            return None

    def _query_status(self, ninja: NinjaConnection) -> NinjaStatus | None:
        with self._exchange_lock:
            try:
                ninja.connection.send(Signal(MessageKind.HOW_R_U))
                reply = ninja.connection.receive()
            except ConnectionClosed:
                logger.error("Lost connection with ninja %s:%s", ninja.ip, ninja.port)
                return None
            except PacketError:
                reply = None
        if isinstance(reply, NinjaStatus):
            return reply
        logger.error("Ninja %s:%s sent an unexpected message", ninja.ip, ninja.port)
        return None

    def _least_occupied(
        self, load_of: Callable[[NinjaStatus], int]
    ) -> tuple[NinjaConnection | None, int]:
        best: NinjaConnection | None = None
        lowest = _NO_OCCUPATION
        for ninja in self.ninjas:
            status = self._query_status(ninja)
            if status is None:
                continue
            load = load_of(status)
            if load < lowest:
                best, lowest = ninja, load
        return best, lowest

    def _reserve_on(self, ninja: NinjaConnection, address: tuple[str, int]) -> bool:
        with self._exchange_lock:
            try:
                ninja.connection.send(ReserveIp(address[0], address[1]))
                reply = ninja.connection.receive()
            except (ConnectionClosed, PacketError):
                return False
        return isinstance(reply, Signal) and reply.kind is MessageKind.OK_RESERVED

    def _assign(
        self,
        connection: RemoteConnection,
        ninja: NinjaConnection,
        address: tuple[str, int],
        failure_text: str,
    ) -> bool:
        if self._reserve_on(ninja, address):
            self._send(connection, Accepted(ninja.ip, ninja.port))
            return True
        self._send(connection, ErrorMessage(MessageKind.ERR_COULDNT_RESERVE, failure_text))
        return False