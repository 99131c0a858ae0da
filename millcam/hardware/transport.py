"""Byte transports to the controller: serial (pyserial) and TCP.

Both expose the same small interface used by the streamer::

    open() / close() / is_open
    write(line)            one G-code line, ``\\n`` appended if missing
    write_realtime(byte)   a single out-of-band byte
    read_line(timeout)     next response line without terminator, or None

Transport failures are raised as ``CommunicationError`` subclasses.
"""

from __future__ import annotations

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import serial

from millcam.hardware.errors import (
    BufferOverflow,
    ConnectionFailed,
    ConnectionLost,
    ConnectionTimeout,
    NotConnected,
    PortUnavailable,
    ReadFailed,
    SerialError,
    TransportConfigurationError,
    WriteFailed,
)

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 1024


class Transport(ABC):
    """Line-oriented byte link."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def _write_bytes(self, data: bytes) -> None:
        ...

    @abstractmethod
    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        ...

    def write(self, line: str) -> None:
        """Send one line (ASCII, ``\\n`` terminated)."""
        if not line.endswith("\n"):
            line += "\n"
        try:
            data = line.encode("ascii")
        except UnicodeEncodeError as exc:
            raise WriteFailed(f"non-ASCII command {line.strip()!r}") from exc
        self._write_bytes(data)

    def write_realtime(self, byte: bytes) -> None:
        """Send a single real-time byte."""
        if len(byte) != 1:
            raise WriteFailed(f"real-time command must be one byte, got {len(byte)}")
        self._write_bytes(byte)

    def __enter__(self) -> Transport:
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class _LineBuffer:
    """Accumulates received bytes and splits ``\\r\\n`` / ``\\n`` lines."""

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, data: bytes) -> None:
        self._buf += data
        if len(self._buf) > MAX_LINE_BYTES and b"\n" not in self._buf:
            received = len(self._buf)
            self._buf = b""
            raise BufferOverflow(received, MAX_LINE_BYTES)

    def pop(self) -> Optional[str]:
        idx = self._buf.find(b"\n")
        if idx < 0:
            return None
        raw, self._buf = self._buf[:idx], self._buf[idx + 1:]
        return raw.rstrip(b"\r").decode("ascii", errors="replace")

    def clear(self) -> None:
        self._buf = b""


# ---------------------------------------------------------------------------
# Serial
# ---------------------------------------------------------------------------


class SerialTransport(Transport):
    """USB / UART link via pyserial.

    Parameters
    ----------
    port : str
        Device path, e.g. ``/dev/ttyUSB0`` or ``COM3``.
    baudrate : int
        Line speed (GRBL default 115200).
    read_timeout_s : float
        Default ``read_line`` timeout.
    """

    def __init__(self, port: str, baudrate: int = 115200, read_timeout_s: float = 0.1) -> None:
        self.port = port
        self.baudrate = baudrate
        self.read_timeout_s = read_timeout_s
        self._serial: Optional[serial.Serial] = None
        self._lines = _LineBuffer()
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        logger.info("Opening serial port %s @ %d baud", self.port, self.baudrate)
        try:
            self._serial = serial.Serial(
                self.port, self.baudrate, timeout=self.read_timeout_s, write_timeout=2.0,
            )
        except ValueError as exc:
            raise TransportConfigurationError(str(exc)) from exc
        except serial.SerialException as exc:
            raise PortUnavailable(self.port) from exc
        self._lines.clear()

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except serial.SerialException as exc:
                logger.warning("Error closing %s: %s", self.port, exc)
            self._serial = None
            logger.info("Serial port %s closed", self.port)

    def _write_bytes(self, data: bytes) -> None:
        if not self.is_open:
            raise NotConnected()
        with self._write_lock:
            try:
                self._serial.write(data)
                self._serial.flush()
            except serial.SerialTimeoutException as exc:
                raise WriteFailed(str(exc)) from exc
            except serial.SerialException as exc:
                raise SerialError(str(exc)) from exc

    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        if not self.is_open:
            raise NotConnected()
        line = self._lines.pop()
        if line is not None:
            return line
        if timeout is not None:
            self._serial.timeout = timeout
        try:
            data = self._serial.readline()
        except serial.SerialException as exc:
            raise ReadFailed(str(exc)) from exc
        finally:
            if timeout is not None:
                self._serial.timeout = self.read_timeout_s
        if data:
            self._lines.feed(data)
        return self._lines.pop()


# ---------------------------------------------------------------------------
# TCP
# ---------------------------------------------------------------------------


class TcpTransport(Transport):
    """Network link (WiFi / Ethernet bridges, telnet-style GRBL ports).

    Parameters
    ----------
    host : str
        Controller address.
    port : int
        TCP port.
    timeout_ms : int
        Connect timeout.
    read_timeout_s : float
        Default ``read_line`` timeout.
    """

    def __init__(
        self, host: str, port: int = 23, timeout_ms: int = 5000, read_timeout_s: float = 0.1,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout_ms = timeout_ms
        self.read_timeout_s = read_timeout_s
        self._sock: Optional[socket.socket] = None
        self._lines = _LineBuffer()
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        logger.info("Connecting to %s:%d", self.host, self.port)
        try:
            self._sock = socket.create_connection(
                (self.host, self.port), timeout=self.timeout_ms / 1000.0,
            )
        except socket.timeout as exc:
            raise ConnectionTimeout(self.timeout_ms) from exc
        except OSError as exc:
            raise ConnectionFailed(f"{self.host}:{self.port}: {exc}") from exc
        self._sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._lines.clear()

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None
            logger.info("Disconnected from %s:%d", self.host, self.port)

    def _write_bytes(self, data: bytes) -> None:
        if self._sock is None:
            raise NotConnected()
        with self._write_lock:
            try:
                self._sock.sendall(data)
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise ConnectionLost(str(exc)) from exc
            except OSError as exc:
                raise WriteFailed(str(exc)) from exc

    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        if self._sock is None:
            raise NotConnected()
        line = self._lines.pop()
        if line is not None:
            return line
        self._sock.settimeout(self.read_timeout_s if timeout is None else timeout)
        try:
            data = self._sock.recv(4096)
        except socket.timeout:
            return None
        except OSError as exc:
            raise ReadFailed(str(exc)) from exc
        if not data:
            raise ConnectionLost("connection closed by peer")
        self._lines.feed(data)
        return self._lines.pop()


def transport_from_config(conn_cfg) -> Transport:
    """TCP when ``connection.host`` is set, serial otherwise."""
    if conn_cfg.use_tcp:
        return TcpTransport(
            conn_cfg.host, conn_cfg.tcp_port, conn_cfg.timeout_ms, conn_cfg.read_timeout_s,
        )
    return SerialTransport(conn_cfg.port, conn_cfg.baudrate, conn_cfg.read_timeout_s)
