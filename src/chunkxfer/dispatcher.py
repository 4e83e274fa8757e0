"""Server-side accept loop.

One listening socket and every accepted connection are watched through a
``selectors`` readiness poll.

``select`` mode: a ready connection is handed to a fresh ServerSession and run
to completion before the loop polls again, so one stalled peer holds up the
rest of the server.

``threads`` mode: each accepted connection gets its own thread and the loop only
accepts. The wire protocol is the same in both modes.

Connections beyond ``max_sessions`` still get their block count read, then a
reject token instead of the acknowledgment.
"""
from __future__ import annotations

import functools
import logging
import selectors
import socket
import threading

from .config import ServerConfig
from .errors import EndpointError, TransferError
from .framing import FramedStream
from .session import ServerSession


class Dispatcher:
    def __init__(self, cfg: ServerConfig):
        self.cfg = cfg
        self.sock = self._listen()
        self.selector = selectors.DefaultSelector()
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self.selector.register(self.sock, selectors.EVENT_READ, self._on_accept)
        self.selector.register(self._wake_r, selectors.EVENT_READ, None)
        self._stopping = threading.Event()
        self._pending = 0
        self._slots = threading.BoundedSemaphore(cfg.max_sessions)
        self._workers: list[threading.Thread] = []
        self._live: set[socket.socket] = set()
        self._live_lock = threading.Lock()

    def _listen(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.cfg.host, self.cfg.port))
            sock.listen(self.cfg.backlog)
        except OSError as e:
            sock.close()
            raise EndpointError(f"cannot listen on {self.cfg.host}:{self.cfg.port}: {e}") from e
        sock.setblocking(False)
        host, port = sock.getsockname()
        logging.info("listening on %s:%d (mode=%s max_chunk=%d)", host, port, self.cfg.mode, self.cfg.max_chunk)
        return sock

    @property
    def server_address(self) -> tuple[str, int]:
        return self.sock.getsockname()

    def serve_forever(self) -> None:
        while not self._stopping.is_set():
            for key, _ in self.selector.select():
                if key.fileobj is self._wake_r:
                    self._wake_r.recv(64)
                    continue
                key.data(key.fileobj)

    def shutdown(self) -> None:
        """Ask ``serve_forever`` to return; safe to call from another thread."""
        self._stopping.set()
        self._wake_w.send(b"\0")

    def _on_accept(self, sock: socket.socket) -> None:
        try:
            conn, addr = sock.accept()
        except BlockingIOError:
            return
        except OSError as e:
            logging.warning("accept failed: %s", e)
            return

        conn.settimeout(self.cfg.io_timeout)
        peer = f"{addr[0]}:{addr[1]}"
        logging.info("accepted connection from %s", peer)

        if self.cfg.mode == "threads":
            admit = self._slots.acquire(blocking=False)
            with self._live_lock:
                self._live.add(conn)
            self._workers = [t for t in self._workers if t.is_alive()]
            t = threading.Thread(target=self._worker, args=(conn, peer, admit), name=f"session-{peer}", daemon=True)
            self._workers.append(t)
            t.start()
            return

        admit = self._pending < self.cfg.max_sessions
        if admit:
            self._pending += 1
        self.selector.register(conn, selectors.EVENT_READ, functools.partial(self._on_ready, peer, admit))

    def _on_ready(self, peer: str, admit: bool, conn: socket.socket) -> None:
        self.selector.unregister(conn)
        if admit:
            self._pending -= 1
        self._run_session(conn, peer, admit)

    def _worker(self, conn: socket.socket, peer: str, admit: bool) -> None:
        try:
            self._run_session(conn, peer, admit)
        finally:
            with self._live_lock:
                self._live.discard(conn)
            if admit:
                self._slots.release()

    def _run_session(self, conn: socket.socket, peer: str, admit: bool) -> None:
        session = ServerSession(FramedStream(conn), max_chunk=self.cfg.max_chunk, admit=admit, peer=peer)
        try:
            session.run()
        except TransferError as e:
            logging.warning("[%s] connection closed after error: %s", peer, e)
        except Exception:
            conn.close()
            logging.exception("[%s] unexpected error; connection closed", peer)

    def close(self) -> None:
        for key in list(self.selector.get_map().values()):
            self.selector.unregister(key.fileobj)
            if key.fileobj not in (self.sock, self._wake_r):
                key.fileobj.close()
        self.selector.close()
        self.sock.close()
        self._wake_r.close()
        self._wake_w.close()
        # unblock workers still waiting on a stalled peer
        with self._live_lock:
            live = list(self._live)
        for conn in live:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logging.debug("shutdown of a finishing connection failed: %s", e)
        for t in self._workers:
            t.join(timeout=1.0)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def serve(cfg: ServerConfig) -> None:
    with Dispatcher(cfg) as d:
        try:
            d.serve_forever()
        except KeyboardInterrupt:
            logging.info("interrupted; shutting down")
