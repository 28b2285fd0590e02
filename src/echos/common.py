from __future__ import annotations

import enum
from dataclasses import dataclass

DEFAULT_DATAGRAM_BUFFER_SIZE = 1024
DEFAULT_IDLE_TIMEOUT = 0.2
MAX_PORT = 65535


class EchoError(RuntimeError):
    pass


class UsageError(EchoError, ValueError):
    """Invalid command line argument or configuration value."""


class BindError(EchoError):
    pass


class ServeError(EchoError):
    """An I/O error that stopped a server running in fail-fast mode."""


class Transport(str, enum.Enum):
    STREAM = "tcp"
    DATAGRAM = "udp"


def parse_protocol(text: str) -> Transport:
    try:
        return Transport(text)
    except ValueError:
        raise UsageError(f"Unsupported protocol: {text}") from None


def parse_port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise UsageError(f"Invalid port: {text}") from None
    if not 0 <= port <= MAX_PORT:
        raise UsageError(f"Invalid port: {text} (must be between 0 and {MAX_PORT})")
    return port


def parse_host(text: str) -> str:
    # Only the segment count is checked; "a.b.c.d" is accepted.
    if len(text.split(".")) != 4:
        raise UsageError(f"Invalid host: {text}")
    return text


def parse_buffer_size(text: str) -> int:
    try:
        size = int(text)
    except ValueError:
        raise UsageError(f"Invalid buffer size: {text}") from None
    if size <= 0:
        raise UsageError(f"Invalid buffer size: {text} (must be positive)")
    return size


def parse_idle_timeout(text: str) -> float:
    try:
        seconds = float(text)
    except ValueError:
        raise UsageError(f"Invalid idle timeout: {text}") from None
    if seconds < 0:
        raise UsageError(f"Invalid idle timeout: {text} (must not be negative)")
    return seconds


def format_address(address: tuple[str, int]) -> str:
    return f"{address[0]}:{address[1]}"


@dataclass(frozen=True)
class EchoConfig:
    protocol: Transport
    host: str
    port: int
    datagram_buffer_size: int = DEFAULT_DATAGRAM_BUFFER_SIZE
    # Seconds to wait for more data after a short read; 0 ends input at the first short read.
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    fail_fast: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.protocol, Transport):
            object.__setattr__(self, "protocol", parse_protocol(self.protocol))
        parse_host(self.host)
        if not 0 <= self.port <= MAX_PORT:
            raise UsageError(f"Invalid port: {self.port} (must be between 0 and {MAX_PORT})")
        if self.datagram_buffer_size <= 0:
            raise UsageError(f"Invalid buffer size: {self.datagram_buffer_size} (must be positive)")
        if self.idle_timeout < 0:
            raise UsageError(f"Invalid idle timeout: {self.idle_timeout} (must not be negative)")

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)
