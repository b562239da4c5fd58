import socket
import threading

import pytest

from parchisnet.messages import (
    ErrorMessage,
    GameParameters,
    HelloMaster,
    MessageKind,
    NinjaStatus,
    OkRandomPrivateStart,
    OkStartGame,
    PrivateGame,
    RandomGame,
    ReserveIp,
    Signal,
    TestMessage,
)
from parchisnet.ninja import NinjaServer, PlayerSeat
from parchisnet.remote import RemoteConnection

ONLINE = 3
NINJA = 2


@pytest.fixture
def tcp_pair():
    listener = socket.create_server(("127.0.0.1", 0))
    created = []

    def make():
        client = RemoteConnection.connect("127.0.0.1", listener.getsockname()[1], timeout=5)
        server = RemoteConnection.accept(listener)
        created.extend([client, server])
        return client, server

    yield make
    for conn in created:
        conn.close()
    listener.close()


@pytest.fixture
def games():
    return []


@pytest.fixture
def ninja(games):
    def runner(board, first, second):
        games.append((board, first, second))

    return NinjaServer(0, "127.0.0.1", runner, ONLINE, NINJA)


def _fake_master(reply):
    listener = socket.create_server(("127.0.0.1", 0))
    got = {}

    def run():
        conn = RemoteConnection.accept(listener)
        got["hello"] = conn.receive()
        conn.send(reply)
        got["conn"] = conn

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return listener, thread, got


def test_initial_status_is_empty(ninja):
    assert ninja.status() == NinjaStatus(0, 0, 0)


def test_player_seat_remote_flag(tcp_pair):
    _, server = tcp_pair()
    assert PlayerSeat("Ana", server).is_remote
    assert not PlayerSeat("J1", ai_id=1).is_remote


def test_unreserved_client_is_refused(ninja, games, tcp_pair):
    client, server = tcp_pair()
    client.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(server)
    reply = client.receive()
    assert reply.kind is MessageKind.ERR_UNAUTHORIZED
    assert reply.text == "Esta máquina no ha sido autorizada para jugar."
    assert games == []


def test_ninja_game_as_first_player(ninja, games, tcp_pair):
    client, server = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    client.send(GameParameters(0, "Ana", 5, 7))
    ninja.handle_connection(server)
    assert client.receive() == OkStartGame("J2")
    assert games == [(5, PlayerSeat("Ana", server), PlayerSeat("J2", ai_id=7))]
    assert ninja.status() == NinjaStatus(1, 0, 0)


def test_ninja_game_as_second_player(ninja, games, tcp_pair):
    client, server = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    client.send(GameParameters(1, "Bea", 4, 2))
    ninja.handle_connection(server)
    assert client.receive() == OkStartGame("J1")
    assert games == [(4, PlayerSeat("J1", ai_id=2), PlayerSeat("Bea", server))]


def test_other_messages_are_skipped_before_the_mode(ninja, games, tcp_pair):
    client, server = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    client.send(TestMessage("hola"))
    client.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(server)
    assert client.receive() == OkStartGame("J2")
    assert ninja.status() == NinjaStatus(1, 0, 0)
    assert len(games) == 1
    assert games[0][1].name == "Ana"


def test_reservation_is_used_once(ninja, games, tcp_pair):
    ninja.reserve("127.0.0.1", 1)
    first_client, first_server = tcp_pair()
    first_client.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(first_server)
    second_client, second_server = tcp_pair()
    second_client.send(GameParameters(0, "Bea", 0, 1))
    ninja.handle_connection(second_server)
    assert second_client.receive().kind is MessageKind.ERR_UNAUTHORIZED
    assert len(games) == 1


def test_random_game_pairs_two_clients(ninja, games, tcp_pair):
    board = NinjaServer.SHARED_BOARD_CONFIG
    c1, s1 = tcp_pair()
    c2, s2 = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    ninja.reserve("127.0.0.1", 2)
    c1.send(RandomGame("Ana"))
    ninja.handle_connection(s1)
    assert c1.receive() == Signal(MessageKind.WAITING_FOR_PLAYERS)
    assert ninja.status() == NinjaStatus(0, 1, 0)
    assert games == []

    c2.send(RandomGame("Bea"))
    ninja.handle_connection(s2)
    assert c1.receive() == OkRandomPrivateStart(0, "Bea", board)
    assert c2.receive() == OkRandomPrivateStart(1, "Ana", board)
    assert games == [(board, PlayerSeat("Ana", s1), PlayerSeat("Bea", s2))]
    assert ninja.status() == NinjaStatus(0, 1, 0)


def test_private_room_pairs_and_then_is_full(ninja, games, tcp_pair):
    board = NinjaServer.SHARED_BOARD_CONFIG
    pairs = [tcp_pair() for _ in range(3)]
    for port in range(3):
        ninja.reserve("127.0.0.1", port)
    (c1, s1), (c2, s2), (c3, s3) = pairs

    c1.send(PrivateGame("sala", "Ana"))
    ninja.handle_connection(s1)
    assert c1.receive() == Signal(MessageKind.WAITING_FOR_PLAYERS)

    c2.send(PrivateGame("sala", "Bea"))
    ninja.handle_connection(s2)
    assert c1.receive() == OkRandomPrivateStart(0, "Bea", board)
    assert c2.receive() == OkRandomPrivateStart(1, "Ana", board)
    assert games == [(board, PlayerSeat("Ana", s1), PlayerSeat("Bea", s2))]

    c3.send(PrivateGame("sala", "Carla"))
    ninja.handle_connection(s3)
    reply = c3.receive()
    assert reply.kind is MessageKind.ERR_FULL_ROOM
    assert len(games) == 1
    assert ninja.status() == NinjaStatus(0, 0, 1)


def test_distinct_private_rooms_wait_separately(ninja, tcp_pair):
    c1, s1 = tcp_pair()
    c2, s2 = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    ninja.reserve("127.0.0.1", 2)
    c1.send(PrivateGame("uno", "Ana"))
    ninja.handle_connection(s1)
    c2.send(PrivateGame("dos", "Bea"))
    ninja.handle_connection(s2)
    assert ninja.status() == NinjaStatus(0, 0, 2)


def test_revise_keeps_live_games_and_probes_them(ninja, tcp_pair):
    client, server = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    client.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(server)
    client.receive()
    assert ninja.revise_step() == 0
    assert client.receive() == Signal(MessageKind.TEST_ALIVE)
    assert ninja.status() == NinjaStatus(1, 0, 0)


def test_revise_drops_lost_games(ninja, tcp_pair):
    c1, s1 = tcp_pair()
    c2, s2 = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    ninja.reserve("127.0.0.1", 2)
    c1.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(s1)
    c2.send(RandomGame("Bea"))
    ninja.handle_connection(s2)
    s1.close()
    s2.close()
    assert ninja.revise_step() == 2
    assert ninja.status() == NinjaStatus(0, 0, 0)


def test_stop_notifies_ninja_game_clients(ninja, tcp_pair):
    client, server = tcp_pair()
    ninja.reserve("127.0.0.1", 1)
    client.send(GameParameters(0, "Ana", 0, 1))
    ninja.handle_connection(server)
    client.receive()
    ninja.stop()
    assert not ninja.running
    assert client.receive() == ErrorMessage(MessageKind.ERROR_DISCONNECTED, "Problemas internos.")


def test_master_reply_without_master_raises(ninja):
    with pytest.raises(RuntimeError):
        ninja.handle_master_message(ReserveIp("10.0.0.5", 4000))


def test_connect_to_master_without_address_raises(ninja):
    with pytest.raises(RuntimeError):
        ninja.connect_to_master()


def test_connect_to_master_and_answer_it(ninja):
    listener, thread, got = _fake_master(Signal(MessageKind.NINJA_ACCEPTED))
    try:
        ninja.set_master("127.0.0.1", listener.getsockname()[1])
        ninja.connect_to_master()
        thread.join(5)
        assert got["hello"] == HelloMaster("127.0.0.1", ninja.port, ONLINE, NINJA)
        master = got["conn"]

        ninja.handle_master_message(ReserveIp("10.0.0.5", 4000))
        assert master.receive() == Signal(MessageKind.OK_RESERVED)

        ninja.handle_master_message(Signal(MessageKind.HOW_R_U))
        assert master.receive() == NinjaStatus(0, 0, 0)
        master.close()
    finally:
        listener.close()


def test_master_rejection_raises(ninja):
    listener, thread, _ = _fake_master(ErrorMessage(MessageKind.ERR_UPDATE, "actualiza"))
    try:
        ninja.set_master("127.0.0.1", listener.getsockname()[1])
        with pytest.raises(ConnectionError, match="rejected"):
            ninja.connect_to_master()
    finally:
        thread.join(5)
        listener.close()


def test_unexpected_master_reply_raises(ninja):
    listener, thread, _ = _fake_master(Signal(MessageKind.OK))
    try:
        ninja.set_master("127.0.0.1", listener.getsockname()[1])
        with pytest.raises(ConnectionError, match="unexpected"):
            ninja.connect_to_master()
    finally:
        thread.join(5)
        listener.close()


def test_master_disconnect_message_stops_server(ninja):
    ninja.handle_master_message(ErrorMessage(MessageKind.ERROR_DISCONNECTED, "bye"))
    assert not ninja.running


def test_full_server_flow():
    played = threading.Event()
    calls = []

    def runner(board, first, second):
        calls.append((board, first.name, second.name))
        played.set()

    server = NinjaServer(0, "127.0.0.1", runner, ONLINE, NINJA, host="127.0.0.1")
    listener, master_thread, got = _fake_master(Signal(MessageKind.NINJA_ACCEPTED))
    server.set_master("127.0.0.1", listener.getsockname()[1])
    runner_thread = threading.Thread(target=server.start, daemon=True)
    runner_thread.start()
    try:
        master_thread.join(5)
        master = got["conn"]
        assert got["hello"] == HelloMaster("127.0.0.1", server.port, ONLINE, NINJA)

        master.send(ReserveIp("127.0.0.1", 1))
        assert master.receive() == Signal(MessageKind.OK_RESERVED)

        client = RemoteConnection.connect("127.0.0.1", server.port, timeout=5)
        client.send(GameParameters(0, "Ana", 6, 3))
        assert client.receive() == OkStartGame("J2")
        assert played.wait(5)
        assert calls == [(6, "Ana", "J2")]

        master.send(ErrorMessage(MessageKind.ERROR_DISCONNECTED, "bye"))
        runner_thread.join(5)
        assert not runner_thread.is_alive()
        assert client.receive().kind is MessageKind.ERROR_DISCONNECTED
        client.close()
        master.close()
    finally:
        server.stop()
        listener.close()