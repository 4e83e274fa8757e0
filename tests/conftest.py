from __future__ import annotations

import threading

import pytest

from chunkxfer.config import ServerConfig
from chunkxfer.dispatcher import Dispatcher


@pytest.fixture
def start_server():
    started: list[tuple[Dispatcher, threading.Thread]] = []

    def _start(**kwargs) -> Dispatcher:
        d = Dispatcher(ServerConfig(port=0, host="127.0.0.1", **kwargs))
        t = threading.Thread(target=d.serve_forever, daemon=True)
        t.start()
        started.append((d, t))
        return d

    yield _start

    for d, t in started:
        d.shutdown()
        t.join(timeout=5.0)
        d.close()
