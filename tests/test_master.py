import socket
import threading
import time

import pytest

from parchisnet.master import MasterServer, NinjaConnection
from parchisnet.messages import (
    Accepted,
    Hello,
    HelloMaster,
    MessageKind,
    NinjaStatus,
    Queued,
    ReserveIp,
    Signal,
    TestMessage,
)
from parchisnet.packet import PacketError
from parchisnet.remote import ConnectionClosed, RemoteConnection

ONLINE = 7
NINJA = 3
MAX_GAMES = 2


class FakeNinja:
    def __init__(self, connection, status, reserve_ok=True):
        self.connection = connection
        self.status = status
        self.reserve_ok = reserve_ok
        self.reservations = []
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _run(self):
        try:
            while True:
                message = self.connection.receive()
                if isinstance(message, Signal) and message.kind is MessageKind.HOW_R_U:
                    self.connection.send(self.status)
                elif isinstance(message, ReserveIp):
                    self.reservations.append(message)
                    kind = MessageKind.OK_RESERVED if self.reserve_ok else MessageKind.OK
                    self.connection.send(Signal(kind))
        except (ConnectionClosed, PacketError):
            return


@pytest.fixture
def make_pair():
    opened = []

    def factory(timeout=5.0):
        with socket.create_server(("127.0.0.1", 0)) as listener:
            client = socket.create_connection(listener.getsockname())
            server, _ = listener.accept()
        server.settimeout(5.0)
        client.settimeout(timeout)
        pair = RemoteConnection(server), RemoteConnection(client)
        opened.extend(pair)
        return pair

    yield factory
    for connection in opened:
        connection.close()


@pytest.fixture
def master():
    return MasterServer(0, ONLINE, NINJA, MAX_GAMES)


def add_ninja(master, make_pair, ip, port, status, reserve_ok=True):
    master.add_allowed_ninja(ip)
    master_end, ninja_end = make_pair(timeout=None)
    ninja = master.handle_ninja(master_end, HelloMaster(ip, port, ONLINE, NINJA))
    assert ninja_end.receive() == Signal(MessageKind.NINJA_ACCEPTED)
    return ninja, FakeNinja(ninja_end, status, reserve_ok)


def test_client_with_old_version_is_told_to_update(master, make_pair):
    master_end, client_end = make_pair()
    master.handle_client(master_end, Hello(ONLINE - 1, ("ninjagame",)))
    assert client_end.receive().kind is MessageKind.ERR_UPDATE


@pytest.mark.parametrize(
    "args", [(), ("privateroom",), ("ninjagame", "extra"), ("chess",)]
)
def test_unknown_game_mode_is_rejected(master, make_pair, args):
    master_end, client_end = make_pair()
    assert master.handle_client(master_end, Hello(ONLINE, args)) is None
    assert client_end.receive().kind is MessageKind.ERR_INVALID_MESSAGE


@pytest.mark.parametrize("args", [("ninjagame",), ("randomgame",), ("privateroom", "sala")])
def test_no_ninjas_available(master, make_pair, args):
    master_end, client_end = make_pair()
    master.handle_client(master_end, Hello(ONLINE, args))
    assert client_end.receive().kind is MessageKind.ERR_NO_NINJAS


def test_allowed_ninja_is_registered(master, make_pair):
    ninja, _ = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(0, 0, 0))
    assert isinstance(ninja, NinjaConnection)
    assert (ninja.ip, ninja.port) == ("10.0.0.5", 8001)
    assert master.ninjas == (ninja,)


def test_unlisted_ninja_is_unauthorized(master, make_pair):
    master_end, ninja_end = make_pair()
    result = master.handle_ninja(master_end, HelloMaster("10.0.0.9", 8001, ONLINE, NINJA))
    assert result is None
    assert ninja_end.receive().kind is MessageKind.ERR_UNAUTHORIZED
    assert master.ninjas == ()


@pytest.mark.parametrize("online, ninja_version", [(ONLINE, NINJA + 1), (ONLINE + 1, NINJA)])
def test_ninja_with_other_version_must_update(master, make_pair, online, ninja_version):
    master.add_allowed_ninja("10.0.0.5")
    master_end, ninja_end = make_pair()
    assert master.handle_ninja(master_end, HelloMaster("10.0.0.5", 8001, online, ninja_version)) is None
    assert ninja_end.receive().kind is MessageKind.ERR_UPDATE
    assert master.ninjas == ()


def test_handle_connection_dispatches_ninja_greeting(master, make_pair):
    master.add_allowed_ninja("10.0.0.5")
    master_end, ninja_end = make_pair()
    ninja_end.send(HelloMaster("10.0.0.5", 8001, ONLINE, NINJA))
    master.handle_connection(master_end)
    assert ninja_end.receive() == Signal(MessageKind.NINJA_ACCEPTED)
    assert len(master.ninjas) == 1


def test_handle_connection_rejects_unexpected_greeting(master, make_pair):
    master_end, client_end = make_pair()
    client_end.send(TestMessage("hola"))
    master.handle_connection(master_end)
    assert client_end.receive().kind is MessageKind.ERR_INVALID_MESSAGE


def test_ninja_game_is_assigned_to_least_busy_ninja(master, make_pair):
    busy, _ = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(1, 0, 0))
    idle, fake = add_ninja(master, make_pair, "10.0.0.6", 8002, NinjaStatus(0, 0, 0))
    master_end, client_end = make_pair()
    assert master.reserve_ninja_game(master_end) is idle
    assert client_end.receive() == Accepted("10.0.0.6", 8002)
    assert fake.reservations == [ReserveIp(*master_end.remote_address())]


def test_failed_reservation_is_reported(master, make_pair):
    add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(0, 0, 0), reserve_ok=False)
    master_end, client_end = make_pair()
    assert master.reserve_ninja_game(master_end) is None
    assert client_end.receive().kind is MessageKind.ERR_COULDNT_RESERVE


def test_full_ninjas_queue_clients_until_revision(master, make_pair):
    _, fake = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(MAX_GAMES, 0, 0))
    first_master, first_client = make_pair()
    second_master, second_client = make_pair()
    master.reserve_ninja_game(first_master)
    master.reserve_ninja_game(second_master)
    assert first_client.receive() == Queued(1)
    assert second_client.receive() == Queued(2)

    fake.status = NinjaStatus(MAX_GAMES - 1, 0, 0)
    assert master.revise_step() == 0
    assert first_client.receive() == Accepted("10.0.0.5", 8001)
    assert second_client.receive() == Queued(1)
    assert fake.reservations == [ReserveIp(*first_master.remote_address())]


def test_random_game_pairs_consecutive_clients(master, make_pair):
    ninja_a, fake_a = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(0, 3, 0))
    ninja_b, fake_b = add_ninja(master, make_pair, "10.0.0.6", 8002, NinjaStatus(0, 1, 0))

    first_master, first_client = make_pair()
    assert master.reserve_random_game(first_master) is ninja_b
    assert first_client.receive() == Accepted("10.0.0.6", 8002)

    fake_b.status = NinjaStatus(0, 5, 0)
    second_master, second_client = make_pair()
    assert master.reserve_random_game(second_master) is ninja_b
    assert second_client.receive() == Accepted("10.0.0.6", 8002)

    third_master, third_client = make_pair()
    assert master.reserve_random_game(third_master) is ninja_a
    assert third_client.receive() == Accepted("10.0.0.5", 8001)
    assert fake_a.reservations == [ReserveIp(*third_master.remote_address())]


def test_private_room_is_hosted_by_one_ninja(master, make_pair):
    ninja_a, fake_a = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(0, 0, 0))
    ninja_b, _ = add_ninja(master, make_pair, "10.0.0.6", 8002, NinjaStatus(0, 0, 4))

    first_master, first_client = make_pair()
    assert master.handle_client(first_master, Hello(ONLINE, ("privateroom", "sala"))) is ninja_a
    assert first_client.receive() == Accepted("10.0.0.5", 8001)

    fake_a.status = NinjaStatus(0, 0, 9)
    second_master, second_client = make_pair()
    assert master.reserve_private_game(second_master, "sala") is ninja_a
    assert second_client.receive() == Accepted("10.0.0.5", 8001)

    third_master, third_client = make_pair()
    assert master.reserve_private_game(third_master, "sala") is ninja_b
    assert third_client.receive() == Accepted("10.0.0.6", 8002)


def test_revision_drops_lost_ninjas(master, make_pair):
    _, fake = add_ninja(master, make_pair, "10.0.0.5", 8001, NinjaStatus(0, 0, 0))
    fake.connection.close()
    fake.thread.join(5)
    assert master.revise_step() == 1
    assert master.ninjas == ()


def test_server_answers_over_tcp_and_stops():
    server = MasterServer(0, ONLINE, NINJA, MAX_GAMES, "127.0.0.1")
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while server.port == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    with RemoteConnection.connect("127.0.0.1", server.port, timeout=5) as client:
        client.send(Hello(ONLINE, ("ninjagame",)))
        reply = client.receive()
    server.stop()
    thread.join(5)
    assert reply.kind is MessageKind.ERR_NO_NINJAS
    assert not thread.is_alive()