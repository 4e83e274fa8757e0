from __future__ import annotations

import logging
import random
import socket
import threading

import pytest

from chunkxfer.constants import ACK_ACCEPT, ACK_REJECT
from chunkxfer.errors import ProtocolError, StreamError
from chunkxfer.framing import FramedStream
from chunkxfer.session import ClientSession, ClientState, ServerSession, ServerState, reverse_bytes


class Background:
    def __init__(self, fn):
        self.result = None
        self.error: BaseException | None = None
        self._t = threading.Thread(target=self._run, args=(fn,), daemon=True)
        self._t.start()

    def _run(self, fn) -> None:
        try:
            self.result = fn()
        except BaseException as e:
            self.error = e

    def join(self) -> "Background":
        self._t.join(timeout=5.0)
        assert not self._t.is_alive()
        return self


def socket_pair():
    a, b = socket.socketpair()
    a.settimeout(5.0)
    b.settimeout(5.0)
    return a, b


def read_until_eof(sock: socket.socket) -> bytes:
    data = b""
    while True:
        part = sock.recv(4096)
        if not part:
            return data
        data += part


@pytest.mark.parametrize("data", [b"", b"a", b"ab", b"abc", bytes(range(256)), "同意".encode("utf-8")])
def test_reverse_twice_is_identity(data):
    assert reverse_bytes(reverse_bytes(data)) == data
    assert len(reverse_bytes(data)) == len(data)


def test_reverse_is_bytewise():
    assert reverse_bytes(b"ABCD") == b"DCBA"
    assert reverse_bytes(b"\xe5\x90\x8c") == b"\x8c\x90\xe5"


def test_server_reverses_single_chunk():
    c, s = socket_pair()
    server = ServerSession(FramedStream(s))
    bg = Background(server.run)

    client = FramedStream(c)
    client.send_count(1)
    client.expect_literal(ACK_ACCEPT)
    client.send_frame(b"ABCD")
    assert c.recv(4) == b"\x00\x00\x00\x04"
    assert client.recv_literal(4) == b"DCBA"

    bg.join()
    assert bg.error is None
    assert server.block_count == 1
    assert server.state is ServerState.CLOSED
    assert ServerState.ACK_SENT in server.history
    assert read_until_eof(c) == b""
    c.close()


def test_client_and_server_sessions_end_to_end():
    c, s = socket_pair()
    server = ServerSession(FramedStream(s), max_chunk=64)
    bg = Background(server.run)

    source = bytes(random.Random(5).randbytes(1000))
    seen: list[tuple[int, bytes]] = []
    client = ClientSession(
        FramedStream(c),
        source,
        lmin=16,
        lmax=64,
        rng=random.Random(11),
        on_chunk=lambda chunk, rev: seen.append((chunk.sequence, rev)),
    )
    metrics = client.run()
    bg.join()

    assert bg.error is None
    assert client.state is ClientState.DONE
    assert metrics.chunks == client.block_count == server.block_count == len(seen)
    assert metrics.bytes_sent == metrics.bytes_received == len(source)
    assert b"".join(reverse_bytes(rev) for _, rev in seen) == source
    assert [i for i, _ in seen] == list(range(len(seen)))


def test_empty_source_sends_zero_blocks():
    c, s = socket_pair()
    server = ServerSession(FramedStream(s))
    bg = Background(server.run)
    client = ClientSession(FramedStream(c), b"", lmin=3, lmax=5)
    assert client.run().chunks == 0
    bg.join()
    assert bg.error is None
    assert server.block_count == 0


def test_client_rejected_sends_no_chunks():
    c, s = socket_pair()

    def fake_server() -> bytes:
        s.recv(4)
        s.sendall(b"NOPE!!")
        return read_until_eof(s)

    bg = Background(fake_server)
    client = ClientSession(FramedStream(c), b"abcdefghij", lmin=3, lmax=5)
    with pytest.raises(ProtocolError, match="rejected"):
        client.run()
    bg.join()

    assert bg.result == b""
    assert ClientState.REJECTED in client.history
    assert ClientState.ACCEPTED not in client.history
    assert client.state is ClientState.CLOSED
    s.close()


def test_server_refusal_reaches_client():
    c, s = socket_pair()
    server = ServerSession(FramedStream(s), admit=False)
    bg = Background(server.run)

    client = ClientSession(FramedStream(c), b"abcdefghij", lmin=3, lmax=5)
    with pytest.raises(ProtocolError, match="rejected"):
        client.run()
    bg.join()

    assert bg.error is None
    assert server.history[-2:] == [ServerState.REJECT_SENT, ServerState.CLOSED]
    assert ServerState.RECEIVING_CHUNK not in server.history


def test_connection_dropped_before_ack_is_rejection():
    c, s = socket_pair()
    bg = Background(lambda: (s.recv(4), s.close()))
    client = ClientSession(FramedStream(c), b"abc", lmin=1, lmax=2)
    with pytest.raises(ProtocolError, match="rejected"):
        client.run()
    bg.join()
    assert ClientState.REJECTED in client.history


def test_server_refuses_oversized_chunk(caplog):
    caplog.set_level(logging.ERROR)
    c, s = socket_pair()
    server = ServerSession(FramedStream(s), max_chunk=1024)
    bg = Background(server.run)

    client = FramedStream(c)
    client.send_count(1)
    client.expect_literal(ACK_ACCEPT)
    client.send_count(2000)

    bg.join()
    assert isinstance(bg.error, ProtocolError)
    assert "chunk too large" in str(bg.error)
    assert "block 1/1 failed: ProtocolError: chunk too large" in caplog.text
    assert server.state is ServerState.CLOSED
    assert read_until_eof(c) == b""
    c.close()


def test_server_peer_vanishes_mid_session():
    c, s = socket_pair()
    server = ServerSession(FramedStream(s))
    bg = Background(server.run)

    client = FramedStream(c)
    client.send_count(2)
    client.expect_literal(ACK_ACCEPT)
    client.send_frame(b"one")
    assert client.recv_frame(16) == b"eno"
    c.close()

    bg.join()
    assert isinstance(bg.error, StreamError)
    assert server.index == 1


def test_client_detects_length_mismatch():
    c, s = socket_pair()

    def lying_server() -> None:
        peer = FramedStream(s)
        peer.recv_count()
        peer.send_literal(ACK_ACCEPT)
        peer.recv_frame(16)
        peer.send_frame(b"short")
        read_until_eof(s)

    bg = Background(lying_server)
    client = ClientSession(FramedStream(c), b"abcdefgh", lmin=8, lmax=8)
    with pytest.raises(ProtocolError, match="length"):
        client.run()
    bg.join()
    assert client.index == 0
    s.close()


def test_client_detects_unreversed_payload():
    c, s = socket_pair()

    def echo_server() -> None:
        peer = FramedStream(s)
        peer.recv_count()
        peer.send_literal(ACK_ACCEPT)
        peer.send_frame(peer.recv_frame(16))
        read_until_eof(s)

    bg = Background(echo_server)
    client = ClientSession(FramedStream(c), b"abcdefgh", lmin=8, lmax=8)
    with pytest.raises(ProtocolError, match="reverse"):
        client.run()
    bg.join()
    s.close()


def test_reject_token_is_same_width_as_ack():
    assert len(ACK_REJECT) == len(ACK_ACCEPT) == 6
    assert ACK_REJECT != ACK_ACCEPT


def test_client_refuses_reply_over_receive_capacity():
    c, s = socket_pair()

    def bloating_server() -> None:
        peer = FramedStream(s)
        peer.recv_count()
        peer.send_literal(ACK_ACCEPT)
        peer.recv_frame(16)
        peer.send_frame(b"x" * 16)

    bg = Background(bloating_server)
    client = ClientSession(FramedStream(c), b"abcdefgh", lmin=8, lmax=8, recv_capacity=8)
    with pytest.raises(ProtocolError, match="too large"):
        client.run()
    bg.join()
    assert bg.error is None
    assert client.state is ClientState.CLOSED
    assert client.metrics.chunks == 0
    s.close()
