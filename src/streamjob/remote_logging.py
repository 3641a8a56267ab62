# src/streamjob/remote_logging.py
"""Relay worker logs back to the operator's console.

The orchestrator starts a LogRelay before submitting any step: a TCP
listener on an ephemeral port that copies every line it receives to local
stderr. Its address is passed to every worker as ``--remote-logger``. A
worker dials it and logs through a PrefixWriter, so each line arriving at
the operator is tagged ``[<host> <stage>:<step>] ``.
"""

from __future__ import annotations

import io
import socket
import socketserver
import sys
import threading
from typing import BinaryIO

import structlog

logger = structlog.get_logger(__name__)

DIAL_TIMEOUT_SECONDS = 5.0


class _RelayHandler(socketserver.StreamRequestHandler):
    server: _RelayServer

    def handle(self) -> None:
        logger.info("accepted remote logging connection", peer=f"{self.client_address[0]}:{self.client_address[1]}")
        for line in self.rfile:
            self.server.emit(line)


class _RelayServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], output: BinaryIO) -> None:
        super().__init__(address, _RelayHandler)
        self._output = output
        self._lock = threading.Lock()

    def emit(self, line: bytes) -> None:
        # One lock so lines from concurrent workers never interleave
        with self._lock:
            self._output.write(line)
            self._output.flush()


class LogRelay:
    """TCP listener copying received lines to a local stream.

    Example:
        with LogRelay() as relay:
            submit_steps(logger_address=relay.address)
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 0, output: BinaryIO | None = None) -> None:
        self._server = _RelayServer((host, port), output if output is not None else sys.stderr.buffer)
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> str:
        """``host:port`` workers should dial. A wildcard bind is replaced by this host's name."""
        host, port = self._server.server_address[:2]
        if host == "0.0.0.0":
            host = socket.gethostname()
        return f"{host}:{port}"

    def start(self) -> str:
        self._thread = threading.Thread(target=self._server.serve_forever, name="streamjob-log-relay", daemon=True)
        self._thread.start()
        logger.info("listening for log messages", address=self.address)
        return self.address

    def close(self) -> None:
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join()
            self._thread = None
        self._server.server_close()

    def __enter__(self) -> LogRelay:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def dial_remote_logger(address: str, timeout: float = DIAL_TIMEOUT_SECONDS) -> BinaryIO:
    """Connect to a LogRelay and return a binary stream writing to it.

    Raises:
        OSError: If address is malformed or the connection fails
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise OSError(f"invalid remote logger address {address!r}")
    sock = socket.create_connection((host, int(port)), timeout=timeout)
    sock.settimeout(None)
    return sock.makefile("wb")


class PrefixWriter(io.TextIOBase):
    """Text stream writing a fixed prefix before every write to a binary stream."""

    def __init__(self, prefix: str, target: BinaryIO) -> None:
        super().__init__()
        self._prefix = prefix.encode("utf-8")
        self._target = target

    @property
    def prefix(self) -> str:
        return self._prefix.decode("utf-8")

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def write(self, text: str) -> int:
        self._target.write(self._prefix + text.encode("utf-8"))
        self._target.flush()
        return len(text)

    def flush(self) -> None:
        self._target.flush()

    def close(self) -> None:
        if not self.closed:
            super().close()
            self._target.close()


def worker_prefix(hostname: str, stage: str, step: int) -> str:
    return f"[{hostname} {stage}:{step}] "
