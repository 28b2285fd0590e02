from __future__ import annotations

import logging
import socket
import socketserver
import sys
from dataclasses import dataclass

from echos.common import BindError, EchoConfig, ServeError, format_address

log = logging.getLogger("echos.datagram")


@dataclass(frozen=True)
class Datagram:
    # View into the server's receive buffer; only valid until the next receive.
    payload: memoryview
    truncated: bool


class DatagramEchoHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:  # type: ignore[override]
        datagram, sock = self.request
        peer = format_address(self.client_address)
        if datagram.truncated:
            log.warning("datagram from %s did not fit in %d bytes and was truncated", peer, len(datagram.payload))
        log.info(
            "received %d bytes from %s: %s",
            len(datagram.payload),
            peer,
            bytes(datagram.payload).decode("utf-8", errors="replace"),
        )
        sock.sendto(datagram.payload, self.client_address)


class DatagramEchoServer(socketserver.UDPServer):
    """UDP echo loop: one datagram at a time, in the order the socket delivers them.

    A single buffer of ``datagram_buffer_size + 1`` bytes is reused for every
    receive. Filling the extra byte means the datagram was larger than the
    configured size; the first ``datagram_buffer_size`` bytes are echoed anyway.
    """

    def __init__(self, config: EchoConfig, handler_class: type[socketserver.BaseRequestHandler] = DatagramEchoHandler) -> None:
        self.config = config
        self._buffer = bytearray(config.datagram_buffer_size + 1)
        try:
            super().__init__(config.address, handler_class)
        except OSError as exc:
            raise BindError(f"Failed to bind to {config.host}:{config.port} - {exc}") from exc

    def serve(self, poll_interval: float = 0.5) -> None:
        log.info(
            "listening on udp://%s (buffer %d bytes)",
            format_address(self.server_address),
            self.config.datagram_buffer_size,
        )
        self.serve_forever(poll_interval)

    def get_request(self) -> tuple[tuple[Datagram, socket.socket], tuple[str, int]]:
        try:
            nbytes, client_address = self.socket.recvfrom_into(self._buffer)
        except OSError as exc:
            log.error("Failed to receive datagram - %s", exc)
            if self.config.fail_fast:
                raise ServeError(f"Failed to receive datagram - {exc}") from exc
            raise
        limit = self.config.datagram_buffer_size
        datagram = Datagram(memoryview(self._buffer)[: min(nbytes, limit)], nbytes > limit)
        return (datagram, self.socket), client_address

    def handle_error(self, request, client_address) -> None:  # type: ignore[override]
        # Runs on the serving thread, so raising here stops serve_forever().
        exc = sys.exc_info()[1]
        peer = format_address(client_address)
        log.error("Failed to echo datagram to %s - %s", peer, exc)
        if self.config.fail_fast:
            raise ServeError(f"Failed to echo datagram to {peer} - {exc}") from exc
