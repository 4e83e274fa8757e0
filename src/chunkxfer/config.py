from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .constants import (
    DEFAULT_BACKLOG,
    DEFAULT_MAX_CHUNK,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_RECV_CAPACITY,
    DEFAULT_SOURCE_FILE,
    UINT32_MAX,
)

DispatchMode = Literal["select", "threads"]


def _check_port(port: int) -> None:
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")


@dataclass(frozen=True, slots=True)
class ServerConfig:
    port: int
    host: str = "0.0.0.0"
    max_chunk: int = DEFAULT_MAX_CHUNK
    mode: DispatchMode = "select"
    max_sessions: int = DEFAULT_MAX_SESSIONS
    backlog: int = DEFAULT_BACKLOG
    io_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        _check_port(self.port)
        if not 0 <= self.max_chunk <= UINT32_MAX:
            raise ValueError(f"max_chunk out of range: {self.max_chunk}")
        if self.mode not in ("select", "threads"):
            raise ValueError(f"unknown dispatch mode: {self.mode!r}")
        if self.max_sessions < 1:
            raise ValueError(f"max_sessions must be >= 1, got {self.max_sessions}")
        if self.io_timeout is not None and self.io_timeout <= 0:
            raise ValueError(f"io_timeout must be positive, got {self.io_timeout}")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    server_ip: str
    server_port: int
    lmin: int
    lmax: int
    source_file: str = DEFAULT_SOURCE_FILE
    recv_capacity: int = DEFAULT_RECV_CAPACITY
    seed: Optional[int] = None
    connect_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        _check_port(self.server_port)
        if self.lmin < 1:
            raise ValueError(f"Lmin must be >= 1, got {self.lmin}")
        if self.lmax < self.lmin:
            raise ValueError(f"Lmax must be >= Lmin, got Lmin={self.lmin} Lmax={self.lmax}")
        if self.recv_capacity < 0:
            raise ValueError(f"recv_capacity must be >= 0, got {self.recv_capacity}")
        # a reversed chunk comes back at full size
        if self.lmax > self.recv_capacity:
            raise ValueError(f"Lmax {self.lmax} exceeds the receive capacity {self.recv_capacity}")
