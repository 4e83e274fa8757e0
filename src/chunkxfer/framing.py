"""Length-prefixed framing over a connected stream socket.

A frame is a 4-byte big-endian length followed by that many payload bytes. The
block count and the acknowledgment token travel bare, without a prefix. All
partial-read and partial-write looping happens here and nowhere else.
"""
from __future__ import annotations

import socket

from .constants import COUNT_STRUCT, UINT32_MAX
from .errors import FrameTooLargeError, ProtocolError, ResourceError, StreamError


def encode_frame(payload: bytes) -> bytes:
    if len(payload) > UINT32_MAX:
        raise ProtocolError(f"payload too large for a frame: {len(payload)}")
    return COUNT_STRUCT.pack(len(payload)) + payload


class FramedStream:
    def __init__(self, sock: socket.socket):
        self.sock = sock

    def _send_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            try:
                sent = self.sock.send(view)
            except OSError as e:
                raise StreamError(f"send failed: {e}") from e
            if sent == 0:
                raise StreamError("send made no progress")
            view = view[sent:]

    def _recv_exact(self, n: int) -> bytes:
        try:
            buf = bytearray(n)
        except MemoryError as e:
            raise ResourceError(f"cannot allocate {n} byte receive buffer") from e
        view = memoryview(buf)
        got = 0
        while got < n:
            try:
                k = self.sock.recv_into(view[got:], n - got)
            except OSError as e:
                raise StreamError(f"recv failed: {e}") from e
            if k == 0:
                raise StreamError(f"peer closed after {got} of {n} bytes")
            got += k
        return bytes(buf)

    def send_count(self, value: int) -> None:
        self._send_all(COUNT_STRUCT.pack(value))

    def recv_count(self) -> int:
        (value,) = COUNT_STRUCT.unpack(self._recv_exact(COUNT_STRUCT.size))
        return value

    def send_frame(self, payload: bytes) -> None:
        self._send_all(encode_frame(payload))

    def recv_frame(self, max_length: int) -> bytes:
        length = self.recv_count()
        if length > max_length:
            # the body is left unread; the caller is expected to drop the connection
            raise FrameTooLargeError(length, max_length)
        return self._recv_exact(length)

    def send_literal(self, literal: bytes) -> None:
        self._send_all(literal)

    def recv_literal(self, n: int) -> bytes:
        return self._recv_exact(n)

    def expect_literal(self, expected: bytes) -> None:
        got = self.recv_literal(len(expected))
        if got != expected:
            raise ProtocolError(f"unexpected literal {got!r}, wanted {expected!r}")

    def close(self) -> None:
        self.sock.close()
