from __future__ import annotations

import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .constants import ACK_ACCEPT, ACK_LEN, ACK_REJECT, DEFAULT_MAX_CHUNK, DEFAULT_RECV_CAPACITY
from .errors import FrameTooLargeError, ProtocolError, StreamError, TransferError
from .framing import FramedStream
from .planner import Chunk, plan_chunks, split_chunks


def reverse_bytes(data: bytes) -> bytes:
    """Byte-wise reversal; text encoding is not considered."""
    buf = bytearray(data)
    buf.reverse()
    return bytes(buf)


@dataclass(slots=True)
class SessionMetrics:
    chunks: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_sent * 8 / 1_000_000) / self.duration_s


class ClientState(enum.Enum):
    CONNECTING = "connecting"
    INIT_SENT = "init_sent"
    AWAIT_ACK = "await_ack"
    ACCEPTED = "accepted"
    SENDING = "sending"
    DONE = "done"
    REJECTED = "rejected"
    CLOSED = "closed"


class ServerState(enum.Enum):
    LISTENING_FOR_SESSION = "listening_for_session"
    RECEIVED_COUNT = "received_count"
    ACK_SENT = "ack_sent"
    REJECT_SENT = "reject_sent"
    RECEIVING_CHUNK = "receiving_chunk"
    REVERSING = "reversing"
    REPLYING = "replying"
    CLOSED = "closed"


@dataclass(slots=True)
class ClientSession:
    """Drives one transfer: announce the block count, wait for the server's
    go-ahead, then exchange chunks strictly one at a time.

    The connection is closed when ``run`` returns or raises.
    """

    stream: FramedStream
    source: bytes
    lmin: int
    lmax: int
    recv_capacity: int = DEFAULT_RECV_CAPACITY
    rng: Optional[random.Random] = None
    on_chunk: Optional[Callable[[Chunk, bytes], None]] = None
    state: ClientState = ClientState.CONNECTING
    history: list[ClientState] = field(default_factory=lambda: [ClientState.CONNECTING])
    block_count: int = 0
    index: int = 0
    metrics: SessionMetrics = field(default_factory=SessionMetrics)

    def _enter(self, state: ClientState) -> None:
        logging.debug("client %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _await_ack(self) -> None:
        self._enter(ClientState.AWAIT_ACK)
        try:
            token = self.stream.recv_literal(ACK_LEN)
        except StreamError as e:
            self._enter(ClientState.REJECTED)
            raise ProtocolError("rejected") from e
        if token != ACK_ACCEPT:
            self._enter(ClientState.REJECTED)
            logging.warning("server refused the session; reply=%r", token)
            raise ProtocolError("rejected")
        self._enter(ClientState.ACCEPTED)

    def _exchange(self, chunk: Chunk) -> None:
        self.stream.send_frame(chunk.payload)
        self.metrics.bytes_sent += chunk.size
        logging.debug("sent block %d/%d; size=%d", chunk.sequence + 1, self.block_count, chunk.size)

        reply = self.stream.recv_frame(self.recv_capacity)
        if len(reply) != chunk.size:
            raise ProtocolError(f"returned length {len(reply)} != sent length {chunk.size}")
        if reply != reverse_bytes(chunk.payload):
            raise ProtocolError("returned payload is not the reverse of the sent chunk")
        self.metrics.bytes_received += len(reply)
        self.metrics.chunks += 1
        if self.on_chunk is not None:
            self.on_chunk(chunk, reply)

    def run(self) -> SessionMetrics:
        try:
            sizes = plan_chunks(len(self.source), self.lmin, self.lmax, self.rng)
            chunks = split_chunks(self.source, sizes)
            self.block_count = len(chunks)

            self.stream.send_count(self.block_count)
            self._enter(ClientState.INIT_SENT)
            logging.info("sent init packet; block_count=%d size=%d bytes", self.block_count, len(self.source))

            self._await_ack()

            self._enter(ClientState.SENDING)
            for chunk in chunks:
                self.index = chunk.sequence
                self._exchange(chunk)
            self._enter(ClientState.DONE)
        except TransferError as e:
            if self.state is ClientState.SENDING:
                logging.error("block %d/%d failed: %s: %s", self.index + 1, self.block_count, type(e).__name__, e)
            else:
                logging.error("session failed in state %s: %s: %s", self.state.value, type(e).__name__, e)
            raise
        finally:
            self.stream.close()
            if self.state is not ClientState.DONE:
                self._enter(ClientState.CLOSED)
            self.metrics.end_ts = time.monotonic()
        return self.metrics


@dataclass(slots=True)
class ServerSession:
    """Answers one client: read the block count, acknowledge (or refuse), then
    reverse and echo exactly ``block_count`` frames before closing.

    ``admit=False`` sends the reject token instead of the acknowledgment; the
    dispatcher uses it when it is at capacity.
    """

    stream: FramedStream
    max_chunk: int = DEFAULT_MAX_CHUNK
    admit: bool = True
    peer: str = "?"
    state: ServerState = ServerState.LISTENING_FOR_SESSION
    history: list[ServerState] = field(default_factory=lambda: [ServerState.LISTENING_FOR_SESSION])
    block_count: int = 0
    index: int = 0
    metrics: SessionMetrics = field(default_factory=SessionMetrics)

    def _enter(self, state: ServerState) -> None:
        self.state = state
        self.history.append(state)

    def _serve_chunk(self, i: int) -> None:
        self._enter(ServerState.RECEIVING_CHUNK)
        try:
            payload = self.stream.recv_frame(self.max_chunk)
        except FrameTooLargeError as e:
            raise ProtocolError(f"chunk too large: {e.length} > {e.limit}") from e
        self.metrics.bytes_received += len(payload)
        logging.debug("[%s] received block %d/%d; size=%d", self.peer, i + 1, self.block_count, len(payload))

        self._enter(ServerState.REVERSING)
        reversed_payload = reverse_bytes(payload)

        self._enter(ServerState.REPLYING)
        self.stream.send_frame(reversed_payload)
        self.metrics.bytes_sent += len(reversed_payload)
        self.metrics.chunks += 1

    def run(self) -> SessionMetrics:
        try:
            self.block_count = self.stream.recv_count()
            self._enter(ServerState.RECEIVED_COUNT)
            logging.info("[%s] init packet; block_count=%d", self.peer, self.block_count)

            if not self.admit:
                self.stream.send_literal(ACK_REJECT)
                self._enter(ServerState.REJECT_SENT)
                logging.warning("[%s] session refused; server at capacity", self.peer)
                return self.metrics

            self.stream.send_literal(ACK_ACCEPT)
            self._enter(ServerState.ACK_SENT)

            for i in range(self.block_count):
                self.index = i
                self._serve_chunk(i)
            logging.info("[%s] session done; blocks=%d bytes=%d", self.peer, self.metrics.chunks, self.metrics.bytes_received)
        except TransferError as e:
            if self.state is ServerState.RECEIVED_COUNT or self.state is ServerState.LISTENING_FOR_SESSION:
                logging.error("[%s] session failed before any chunk: %s: %s", self.peer, type(e).__name__, e)
            else:
                logging.error(
                    "[%s] block %d/%d failed: %s: %s", self.peer, self.index + 1, self.block_count, type(e).__name__, e
                )
            raise
        finally:
            self.stream.close()
            self._enter(ServerState.CLOSED)
            self.metrics.end_ts = time.monotonic()
        return self.metrics
