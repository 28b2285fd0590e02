from __future__ import annotations

import argparse
import logging
import socketserver
import sys
from typing import Callable, TypeVar

from echos.common import (
    DEFAULT_DATAGRAM_BUFFER_SIZE,
    DEFAULT_IDLE_TIMEOUT,
    BindError,
    EchoConfig,
    ServeError,
    Transport,
    UsageError,
    parse_buffer_size,
    parse_host,
    parse_idle_timeout,
    parse_port,
    parse_protocol,
)
from echos.datagram import DatagramEchoServer
from echos.stream import StreamEchoServer

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

log = logging.getLogger("echos.cli")

T = TypeVar("T")


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with 2 on bad arguments; every usage error here exits with 1."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _checked(parse: Callable[[str], T]) -> Callable[[str], T]:
    def convert(text: str) -> T:
        try:
            return parse(text)
        except UsageError as exc:
            raise argparse.ArgumentTypeError(str(exc)) from None

    return convert


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Send echos logs below WARNING to stdout and the rest to stderr."""
    logger = logging.getLogger("echos")
    if logger.handlers:
        return logger
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT)

    out = logging.StreamHandler(sys.stdout)
    out.setFormatter(fmt)
    out.addFilter(lambda record: record.levelno < logging.WARNING)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(fmt)

    logger.addHandler(out)
    logger.addHandler(err)
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="echos",
        description="Echo every byte received over TCP or UDP back to its sender.",
    )
    parser.add_argument("protocol", type=_checked(parse_protocol), help="tcp (stream) or udp (datagram)")
    parser.add_argument("host", type=_checked(parse_host), help="IPv4 address to bind, e.g. 127.0.0.1")
    parser.add_argument("port", type=_checked(parse_port), help="Port to bind (0-65535)")
    parser.add_argument(
        "buffer_size",
        nargs="?",
        type=_checked(parse_buffer_size),
        help=f"udp only: receive buffer size in bytes (default: {DEFAULT_DATAGRAM_BUFFER_SIZE})",
    )
    parser.add_argument(
        "--idle-timeout",
        type=_checked(parse_idle_timeout),
        default=DEFAULT_IDLE_TIMEOUT,
        metavar="SECONDS",
        help=(
            "tcp only: after a read shorter than 1024 bytes, wait this long for more data "
            f"before echoing; 0 echoes at the first short read (default: {DEFAULT_IDLE_TIMEOUT})"
        ),
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Exit on the first I/O error instead of dropping only the failing connection or datagram",
    )
    return parser


def config_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> EchoConfig:
    if args.buffer_size is not None and args.protocol is not Transport.DATAGRAM:
        parser.error("buffer_size is only supported with udp")
    return EchoConfig(
        protocol=args.protocol,
        host=args.host,
        port=args.port,
        datagram_buffer_size=args.buffer_size or DEFAULT_DATAGRAM_BUFFER_SIZE,
        idle_timeout=args.idle_timeout,
        fail_fast=args.fail_fast,
    )


def build_server(config: EchoConfig) -> socketserver.BaseServer:
    if config.protocol is Transport.STREAM:
        return StreamEchoServer(config)
    return DatagramEchoServer(config)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = config_from_args(parser, args)

    configure_logging()
    log.info("starting %s echo server on %s:%d", config.protocol.value, config.host, config.port)

    try:
        with build_server(config) as server:
            server.serve()  # type: ignore[attr-defined]
    except (BindError, ServeError) as exc:
        log.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("interrupted, shutting down")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
