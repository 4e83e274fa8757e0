from __future__ import annotations

import logging
import random
import socket
from typing import Callable, Optional

from .config import ClientConfig
from .errors import EndpointError, ResourceError
from .framing import FramedStream
from .planner import Chunk
from .session import ClientSession, SessionMetrics


def load_source(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except MemoryError as e:
        raise ResourceError(f"cannot load {path} into memory") from e


def connect(host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise EndpointError(f"connect to {host}:{port} failed: {e}") from e
    # the connect timeout must not leak into the transfer itself
    sock.settimeout(None)
    return sock


def transfer(
    cfg: ClientConfig,
    source: bytes,
    on_chunk: Optional[Callable[[Chunk, bytes], None]] = None,
) -> SessionMetrics:
    rng = random.Random(cfg.seed) if cfg.seed is not None else random.Random()
    sock = connect(cfg.server_ip, cfg.server_port, timeout=cfg.connect_timeout)
    logging.info("connected to %s:%d", cfg.server_ip, cfg.server_port)
    session = ClientSession(
        FramedStream(sock),
        source,
        cfg.lmin,
        cfg.lmax,
        recv_capacity=cfg.recv_capacity,
        rng=rng,
        on_chunk=on_chunk,
    )
    return session.run()
