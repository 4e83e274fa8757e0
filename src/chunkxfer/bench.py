from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Optional

from .client import transfer
from .config import ClientConfig, DispatchMode, ServerConfig
from .constants import DEFAULT_MAX_CHUNK
from .dispatcher import Dispatcher


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    chunks: int
    duration_s: float
    throughput_mbps: float


def run_benchmark(
    *,
    size_bytes: int,
    lmin: int = 512,
    lmax: int = DEFAULT_MAX_CHUNK,
    mode: DispatchMode = "threads",
    seed: Optional[int] = None,
) -> BenchmarkResult:
    payload = os.urandom(size_bytes)

    server = Dispatcher(ServerConfig(port=0, host="127.0.0.1", max_chunk=lmax, mode=mode))
    host, port = server.server_address
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()

    try:
        metrics = transfer(
            ClientConfig(server_ip=host, server_port=port, lmin=lmin, lmax=lmax, recv_capacity=lmax, seed=seed),
            payload,
        )
    finally:
        server.shutdown()
        t.join(timeout=10.0)
        server.close()

    assert metrics.bytes_received == size_bytes

    duration_s = max(0.001, metrics.duration_s)
    throughput_mbps = (size_bytes * 8 / 1_000_000) / duration_s

    return BenchmarkResult(
        bytes_transferred=size_bytes,
        chunks=metrics.chunks,
        duration_s=duration_s,
        throughput_mbps=throughput_mbps,
    )
