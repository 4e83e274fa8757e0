from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict

from .bench import run_benchmark
from .client import load_source, transfer
from .config import ClientConfig, ServerConfig
from .constants import DEFAULT_MAX_CHUNK, DEFAULT_MAX_SESSIONS, DEFAULT_RECV_CAPACITY, DEFAULT_SOURCE_FILE
from .dispatcher import serve
from .errors import TransferError
from .planner import Chunk


def cmd_serve(args: argparse.Namespace) -> int:
    cfg = ServerConfig(
        port=args.port,
        host=args.host,
        max_chunk=args.max_chunk,
        mode=args.mode,
        max_sessions=args.max_sessions,
        io_timeout=args.io_timeout,
    )
    serve(cfg)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    cfg = ClientConfig(
        server_ip=args.server_ip,
        server_port=args.server_port,
        lmin=args.lmin,
        lmax=args.lmax,
        source_file=args.file,
        recv_capacity=args.recv_capacity,
        seed=args.seed,
        connect_timeout=args.connect_timeout,
    )
    try:
        source = load_source(cfg.source_file)
    except OSError as e:
        logging.error("cannot read %s: %s", cfg.source_file, e)
        return 1

    def show(chunk: Chunk, reversed_payload: bytes) -> None:
        logging.info("block %d: %s", chunk.sequence + 1, reversed_payload.decode("utf-8", errors="replace"))

    metrics = transfer(cfg, source, on_chunk=show)

    payload = {
        "role": "client",
        "chunks": metrics.chunks,
        "bytes": metrics.bytes_sent,
        "seconds": metrics.duration_s,
        "mbps": metrics.throughput_mbps,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        lmin=args.lmin,
        lmax=args.lmax,
        mode=args.mode,
        seed=args.seed,
    )
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chunkxfer", description="Chunked byte-reversal transfer over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve", help="reverse chunks for any number of clients")
    srv.add_argument("port", type=int)
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--max-chunk", type=int, default=DEFAULT_MAX_CHUNK)
    srv.add_argument("--mode", choices=["select", "threads"], default="select")
    srv.add_argument("--max-sessions", type=int, default=DEFAULT_MAX_SESSIONS)
    srv.add_argument("--io-timeout", type=float, default=None, help="seconds before a stalled peer is dropped")
    srv.set_defaults(func=cmd_serve)

    send = sub.add_parser("send", help="send a file in random-sized chunks")
    send.add_argument("server_ip")
    send.add_argument("server_port", type=int)
    send.add_argument("lmin", type=int)
    send.add_argument("lmax", type=int)
    send.add_argument("--file", default=DEFAULT_SOURCE_FILE)
    send.add_argument("--recv-capacity", type=int, default=DEFAULT_RECV_CAPACITY)
    send.add_argument("--seed", type=int, default=None, help="fix the chunk plan (testing only)")
    send.add_argument("--connect-timeout", type=float, default=None)
    send.add_argument("--json", action="store_true")
    send.set_defaults(func=cmd_send)

    bench = sub.add_parser("bench", help="loopback benchmark: server thread + one client")
    bench.add_argument("--size-bytes", type=int, default=1_000_000)
    bench.add_argument("--lmin", type=int, default=512)
    bench.add_argument("--lmax", type=int, default=DEFAULT_MAX_CHUNK)
    bench.add_argument("--mode", choices=["select", "threads"], default="threads")
    bench.add_argument("--seed", type=int, default=None)
    bench.add_argument("--json", action="store_true")
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except ValueError as e:
        p.error(str(e))
    except TransferError as e:
        logging.error("%s: %s", type(e).__name__, e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
