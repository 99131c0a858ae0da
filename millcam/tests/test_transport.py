"""Tests for the serial / TCP transports."""

from __future__ import annotations

import socket

import pytest

from millcam.configs.loader import ConnectionConfig
from millcam.hardware.errors import (
    BufferOverflow,
    CommunicationError,
    ConnectionFailed,
    NotConnected,
    PortUnavailable,
    WriteFailed,
)
from millcam.hardware.transport import (
    MAX_LINE_BYTES,
    SerialTransport,
    TcpTransport,
    _LineBuffer,
    transport_from_config,
)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestLineBuffer:
    def test_splits_crlf(self) -> None:
        buf = _LineBuffer()
        buf.feed(b"ok\r\nerror:2")
        assert buf.pop() == "ok"
        assert buf.pop() is None
        buf.feed(b"0\r\n")
        assert buf.pop() == "error:20"

    def test_overflow(self) -> None:
        buf = _LineBuffer()
        with pytest.raises(BufferOverflow):
            buf.feed(b"x" * (MAX_LINE_BYTES + 1))
        assert buf.pop() is None


class TestTcpTransport:
    def test_connection_refused(self) -> None:
        link = TcpTransport("127.0.0.1", _free_port(), timeout_ms=500)
        with pytest.raises(ConnectionFailed):
            link.open()
        assert not link.is_open

    def test_not_connected(self) -> None:
        link = TcpTransport("127.0.0.1", 1)
        with pytest.raises(NotConnected):
            link.write("G0 X1")
        with pytest.raises(NotConnected):
            link.read_line(0.01)

    def test_round_trip(self) -> None:
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]
        try:
            with TcpTransport("127.0.0.1", port, read_timeout_s=0.05) as link:
                conn, _ = server.accept()
                with conn:
                    link.write("G0 X1")
                    link.write_realtime(b"?")
                    conn.settimeout(2.0)
                    received = b""
                    while len(received) < 7:
                        received += conn.recv(16)
                    assert received == b"G0 X1\n?"
                    assert link.read_line(0.05) is None
                    conn.sendall(b"ok\r\nok\r\n")
                    assert link.read_line(1.0) == "ok"
                    assert link.read_line(1.0) == "ok"
        finally:
            server.close()

    def test_rejects_non_ascii(self) -> None:
        link = TcpTransport("127.0.0.1", 1)
        with pytest.raises(WriteFailed):
            link.write("G0 X1 ; café")

    def test_realtime_must_be_one_byte(self) -> None:
        link = TcpTransport("127.0.0.1", 1)
        with pytest.raises(WriteFailed):
            link.write_realtime(b"??")


class TestSerialTransport:
    def test_missing_port(self) -> None:
        link = SerialTransport("/dev/millcam-does-not-exist")
        with pytest.raises(PortUnavailable):
            link.open()
        assert not link.is_open

    def test_closed_port_raises(self) -> None:
        link = SerialTransport("/dev/millcam-does-not-exist")
        with pytest.raises(CommunicationError):
            link.write("G0 X1")


class TestFromConfig:
    def test_serial_by_default(self) -> None:
        link = transport_from_config(ConnectionConfig(port="/dev/ttyACM0", baudrate=115200))
        assert isinstance(link, SerialTransport)
        assert link.port == "/dev/ttyACM0"

    def test_tcp_when_host_set(self) -> None:
        link = transport_from_config(
            ConnectionConfig(port="/dev/ttyUSB0", baudrate=115200, host="10.0.0.5", tcp_port=8080)
        )
        assert isinstance(link, TcpTransport)
        assert (link.host, link.port) == ("10.0.0.5", 8080)
