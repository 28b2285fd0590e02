from __future__ import annotations

import logging
import socket
import socketserver
import sys

from echos.common import BindError, EchoConfig, ServeError, format_address

CHUNK_SIZE = 1024

log = logging.getLogger("echos.stream")


def receive_payload(conn: socket.socket, chunk_size: int = CHUNK_SIZE, idle_timeout: float = 0.0) -> bytes:
    """Read from ``conn`` until the peer is done sending.

    A zero-length read always ends input. A short read (fewer than
    ``chunk_size`` bytes) ends it as well when ``idle_timeout`` is 0;
    otherwise the following read waits at most ``idle_timeout`` seconds
    for more data before giving up. A full chunk goes back to blocking reads.
    """
    payload = bytearray()
    timeout = None
    try:
        while True:
            conn.settimeout(timeout)
            try:
                chunk = conn.recv(chunk_size)
            except socket.timeout:
                break
            if not chunk:
                break
            payload += chunk
            if len(chunk) == chunk_size:
                timeout = None
            elif idle_timeout:
                timeout = idle_timeout
            else:
                break
    finally:
        conn.settimeout(None)
    return bytes(payload)


class StreamEchoHandler(socketserver.BaseRequestHandler):
    """Reads everything one connection sends, then writes it back once."""

    def handle(self) -> None:  # type: ignore[override]
        config: EchoConfig = self.server.config  # type: ignore[attr-defined]
        peer = format_address(self.client_address)
        log.info("connection established from %s", peer)

        payload = receive_payload(self.request, CHUNK_SIZE, config.idle_timeout)
        log.info("received %d bytes from %s: %s", len(payload), peer, payload.decode("utf-8", errors="replace"))

        self.request.sendall(payload)


class StreamEchoServer(socketserver.ThreadingTCPServer):
    """TCP echo listener running every accepted connection on its own thread.

    Errors on one connection only drop that connection, unless the config
    asks for ``fail_fast``: then the first error shuts the listener down and
    :meth:`serve` raises :class:`ServeError`.
    """

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, config: EchoConfig, handler_class: type[socketserver.BaseRequestHandler] = StreamEchoHandler) -> None:
        self.config = config
        self.failure: ServeError | None = None
        try:
            super().__init__(config.address, handler_class)
        except OSError as exc:
            raise BindError(f"Failed to bind to {config.host}:{config.port} - {exc}") from exc

    def serve(self, poll_interval: float = 0.5) -> None:
        log.info("listening on tcp://%s", format_address(self.server_address))
        self.serve_forever(poll_interval)
        if self.failure is not None:
            raise self.failure

    def get_request(self) -> tuple[socket.socket, tuple[str, int]]:
        try:
            return super().get_request()
        except OSError as exc:
            log.error("Failed to accept connection - %s", exc)
            if self.config.fail_fast:
                raise ServeError(f"Failed to accept connection - {exc}") from exc
            raise

    def handle_error(self, request, client_address) -> None:  # type: ignore[override]
        # Runs on the connection's worker thread.
        exc = sys.exc_info()[1]
        peer = format_address(client_address)
        log.error("connection %s failed - %s", peer, exc)
        if not self.config.fail_fast or self.failure is not None:
            return
        failure = ServeError(f"Connection {peer} failed - {exc}")
        failure.__cause__ = exc
        self.failure = failure
        self.shutdown()
