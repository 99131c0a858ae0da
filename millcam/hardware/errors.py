"""Error hierarchy for controller communication.

``MillcamError`` is the base of every error the library raises on the
hardware side.  Three families hang off it:

CommunicationError
    Transport-level failures.  They end the current send attempt and
    propagate to whoever owns the session.
ProtocolError
    Controller replies that are malformed, rejected or report an alarm.
StreamingError
    Misuse of the buffered streamer (e.g. a full pending queue).
"""

from __future__ import annotations


class MillcamError(Exception):
    """Base exception for all millcam errors."""

    pass


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class CommunicationError(MillcamError):
    """Base for transport failures."""

    pass


class ConnectionFailed(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Connection failed: {detail}")


class ConnectionLost(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Connection lost: {detail}")


class ConnectionTimeout(CommunicationError):
    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Connection timeout after {timeout_ms}ms")


class PortUnavailable(CommunicationError):
    def __init__(self, port: str) -> None:
        self.port = port
        super().__init__(f"Port unavailable: {port}")


class TransportConfigurationError(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Port configuration failed: {detail}")


class WriteFailed(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Write failed: {detail}")


class ReadFailed(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Read failed: {detail}")


class TransportIOError(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"I/O error: {detail}")


class SerialError(CommunicationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Serial port error: {detail}")


class NotConnected(CommunicationError):
    def __init__(self) -> None:
        super().__init__("Device not connected")


class DeviceBusy(CommunicationError):
    def __init__(self) -> None:
        super().__init__("Device busy")


class BufferOverflow(CommunicationError):
    def __init__(self, received: int, maximum: int) -> None:
        self.received = received
        self.maximum = maximum
        super().__init__(f"Buffer overflow: received {received} bytes, max {maximum}")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(MillcamError):
    """Base for controller reply errors."""

    pass


class InvalidResponse(ProtocolError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid response: {detail}")


class IncompleteResponse(ProtocolError):
    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Incomplete response: expected {expected} bytes, got {actual}")


class ChecksumMismatch(ProtocolError):
    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch: expected {expected}, got {actual}")


class UnsupportedCommand(ProtocolError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"Command not supported: {command}")


class FirmwareError(ProtocolError):
    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Firmware error: {message} (code: {code})")


class AlarmError(ProtocolError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Alarm: {message}")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class StreamingError(MillcamError):
    """Base for buffered-streamer errors."""

    pass


class QueueFull(StreamingError):
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Command queue is full ({capacity} commands)")
