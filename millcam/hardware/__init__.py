"""
Controller communication.

GRBL response parsing and command building, device status and overrides,
serial / TCP transports and the flow-controlled ``BufferedStreamer``.
"""

from millcam.hardware.device_status import (
    DeviceStatus,
    MachineStateType,
    OverrideManager,
    RapidOverrideLevel,
)
from millcam.hardware.errors import (
    AlarmError,
    CommunicationError,
    MillcamError,
    ProtocolError,
    QueueFull,
    StreamingError,
)
from millcam.hardware.grbl_protocol import (
    CommandCreator,
    RealTimeCommand,
    SystemCommand,
    alarm_description,
    error_description,
    parse_response,
)
from millcam.hardware.streamer import (
    BufferedCommand,
    BufferedStreamer,
    CommandStatus,
    StreamerState,
    StreamerStats,
)
from millcam.hardware.transport import (
    SerialTransport,
    TcpTransport,
    Transport,
    transport_from_config,
)

__all__ = [
    "AlarmError",
    "BufferedCommand",
    "BufferedStreamer",
    "CommandCreator",
    "CommandStatus",
    "CommunicationError",
    "DeviceStatus",
    "MachineStateType",
    "MillcamError",
    "OverrideManager",
    "ProtocolError",
    "QueueFull",
    "RapidOverrideLevel",
    "RealTimeCommand",
    "SerialTransport",
    "StreamerState",
    "StreamerStats",
    "StreamingError",
    "SystemCommand",
    "TcpTransport",
    "Transport",
    "alarm_description",
    "error_description",
    "parse_response",
    "transport_from_config",
]
