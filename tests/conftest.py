"""Shared fixtures for running echo servers in the background."""

from __future__ import annotations

import logging
import socket
import threading

import pytest


class ServerThread:
    """Runs ``server.serve()`` on a daemon thread and keeps whatever it raised."""

    def __init__(self, server) -> None:
        self.server = server
        self.error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            self.server.serve(poll_interval=0.05)
        except Exception as exc:
            self.error = exc

    @property
    def address(self) -> tuple[str, int]:
        return self.server.server_address

    def start(self) -> ServerThread:
        self._thread.start()
        return self

    def join(self, timeout: float = 5.0) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self) -> None:
        if self._thread.is_alive():
            self.server.shutdown()
        self.join()
        self.server.server_close()


@pytest.fixture
def serve():
    """Start a server in the background; every started server is stopped after the test."""
    started: list[ServerThread] = []

    def start(server) -> ServerThread:
        runner = ServerThread(server).start()
        started.append(runner)
        return runner

    yield start

    for runner in started:
        runner.stop()


@pytest.fixture(autouse=True)
def _reset_echos_logging():
    yield
    logger = logging.getLogger("echos")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def occupied_port():
    """A loopback TCP port that already has a listener on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        yield sock.getsockname()[1]
