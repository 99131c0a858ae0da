"""Buffered, acknowledgment-driven G-code streaming.

The controller holds received lines in a fixed receive buffer (254 bytes
on GRBL) and answers each processed line with ``ok`` or ``error:<n>`` in
order.  The streamer keeps that buffer full without overflowing it:

Flow control
    ``sent_bytes`` is the wire size (line plus ``\\n``) of every command
    sent but not yet answered.  The next queued command of wire size
    ``L`` is sent only when ``sent_bytes + L + 1 <= buffer_size``.
Correlation
    Responses pair with the oldest unanswered command (FIFO).
Retry
    A command answered with ``error:<n>`` goes back to the *front* of
    the pending queue while ``retry_count < max_retries``; after that it
    is recorded as permanently failed with its last response.
Alarms
    ``alarm:<n>`` stops sending until ``kill_alarm_lock()``.  Alarmed
    commands are never retried.

Locking
    The pending queue and the active list each have their own lock.  A
    critical section takes one of them, decides, and releases it before
    any transport I/O; the two are never held together.

States::

    IDLE --queue--> STREAMING --pause--> PAUSED --resume--> STREAMING
      ^                 |  alarm                                  |
      |                 v                                         |
      |             ALARMED --kill_alarm_lock--> STREAMING        |
      +-- controller_ready <-- RESETTING <-- soft_reset ----------+
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Iterable, Optional, Sequence

from millcam.gcode.parser import strip_comments
from millcam.hardware.device_status import DeviceStatus
from millcam.hardware.errors import (
    AlarmError,
    BufferOverflow,
    CommunicationError,
    QueueFull,
    StreamingError,
)
from millcam.hardware.grbl_protocol import (
    AlarmResponse,
    CommandCreator,
    ErrorResponse,
    Ok,
    Response,
    StatusReport,
    SystemCommand,
    Version,
    alarm_description,
    parse_response,
)
from millcam.hardware.transport import Transport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Commands and state
# ---------------------------------------------------------------------------


class CommandStatus(Enum):
    QUEUED = auto()
    SENT = auto()
    COMPLETED = auto()
    FAILED = auto()


class StreamerState(Enum):
    IDLE = auto()
    STREAMING = auto()
    PAUSED = auto()
    ALARMED = auto()
    RESETTING = auto()


_sequence = itertools.count()


@dataclass
class BufferedCommand:
    """One line travelling through the streamer.

    ``command`` excludes the line terminator; ``wire_size`` includes it.
    """

    command: str
    max_retries: int = 3
    status: CommandStatus = CommandStatus.QUEUED
    retry_count: int = 0
    response: Optional[str] = None
    index: int = field(default_factory=lambda: next(_sequence))

    @property
    def wire_size(self) -> int:
        return len(self.command) + 1

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries


@dataclass(frozen=True)
class StreamerStats:
    """Counters snapshot."""

    state: StreamerState
    queued: int
    active: int
    sent_bytes: int
    buffer_size: int
    completed: int
    failed: int
    retries: int

    @property
    def buffer_usage_percent(self) -> int:
        if self.buffer_size <= 0:
            return 0
        return int(self.sent_bytes / self.buffer_size * 100)


# ---------------------------------------------------------------------------
# Streamer
# ---------------------------------------------------------------------------


class BufferedStreamer:
    """Flow-controlled line streamer for a GRBL-class controller.

    Parameters
    ----------
    transport : Transport
        Open link to the controller.
    buffer_size : int
        Controller receive buffer in bytes.
    queue_size : int
        Pending-queue capacity; ``queue_command`` raises ``QueueFull``
        beyond it.
    max_retries : int
        Re-sends allowed after ``error:<n>`` responses.
    flow_control : bool
        ``False`` sends every queued line immediately.
    on_response : Callable[[Response], None] | None
        Called with every parsed response.
    on_alarm : Callable[[AlarmError], None] | None
        Called when the controller raises an alarm.
    on_failed : Callable[[BufferedCommand], None] | None
        Called when a command fails permanently.
    """

    def __init__(
        self,
        transport: Transport,
        buffer_size: int = 254,
        queue_size: int = 200,
        max_retries: int = 3,
        flow_control: bool = True,
        on_response: Optional[Callable[[Response], None]] = None,
        on_alarm: Optional[Callable[[AlarmError], None]] = None,
        on_failed: Optional[Callable[[BufferedCommand], None]] = None,
    ) -> None:
        if buffer_size <= 1:
            raise ValueError(f"buffer_size must be > 1, got {buffer_size}")
        if queue_size <= 0:
            raise ValueError(f"queue_size must be positive, got {queue_size}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self._transport = transport
        self.buffer_size = buffer_size
        self.queue_size = queue_size
        self.max_retries = max_retries
        self.flow_control = flow_control
        self._on_response = on_response
        self._on_alarm = on_alarm
        self._on_failed = on_failed

        self._queue_lock = threading.Lock()
        self._queue: deque[BufferedCommand] = deque()

        self._active_lock = threading.Lock()
        self._active: list[BufferedCommand] = []
        self._sent_bytes = 0

        # Serialises senders only
        self._send_lock = threading.Lock()

        self._state_lock = threading.Lock()
        self._state = StreamerState.IDLE
        self._alarm: Optional[AlarmError] = None

        self._completed = 0
        self._retries = 0
        self._failed: list[BufferedCommand] = []
        self.device_status = DeviceStatus()

        self._reader: Optional[threading.Thread] = None
        self._stop_reader = threading.Event()
        self._reader_error: Optional[CommunicationError] = None

    @classmethod
    def from_config(cls, transport: Transport, streamer_cfg, **callbacks) -> BufferedStreamer:
        """Build from a ``StreamerConfig`` section."""
        return cls(
            transport,
            buffer_size=streamer_cfg.buffer_size,
            queue_size=streamer_cfg.queue_size,
            max_retries=streamer_cfg.max_retries,
            flow_control=streamer_cfg.flow_control,
            **callbacks,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> StreamerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: StreamerState) -> None:
        with self._state_lock:
            if self._state is not state:
                logger.debug("Streamer %s -> %s", self._state.name, state.name)
                self._state = state

    @property
    def sent_bytes(self) -> int:
        with self._active_lock:
            return self._sent_bytes

    @property
    def queued_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    @property
    def active_count(self) -> int:
        with self._active_lock:
            return len(self._active)

    @property
    def is_paused(self) -> bool:
        return self.state is StreamerState.PAUSED

    @property
    def last_alarm(self) -> Optional[AlarmError]:
        return self._alarm

    def is_drained(self) -> bool:
        """``True`` when nothing is queued or awaiting a response."""
        return self.queued_count == 0 and self.active_count == 0

    def failed_commands(self) -> list[BufferedCommand]:
        with self._active_lock:
            return list(self._failed)

    def stats(self) -> StreamerStats:
        with self._queue_lock:
            queued = len(self._queue)
        with self._active_lock:
            active = len(self._active)
            sent = self._sent_bytes
            failed = len(self._failed)
            completed = self._completed
            retries = self._retries
        return StreamerStats(
            state=self.state,
            queued=queued,
            active=active,
            sent_bytes=sent,
            buffer_size=self.buffer_size,
            completed=completed,
            failed=failed,
            retries=retries,
        )

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def queue_command(self, command: str) -> BufferedCommand:
        """Append one line to the pending queue.

        Raises
        ------
        QueueFull
            The pending queue holds ``queue_size`` commands.
        BufferOverflow
            The line can never fit the controller buffer.
        """
        text = command.rstrip("\r\n")
        cmd = BufferedCommand(text, max_retries=self.max_retries)
        if self.flow_control and cmd.wire_size + 1 > self.buffer_size:
            raise BufferOverflow(cmd.wire_size, self.buffer_size)
        with self._queue_lock:
            if len(self._queue) >= self.queue_size:
                raise QueueFull(self.queue_size)
            self._queue.append(cmd)
        if self.state is StreamerState.IDLE:
            self._set_state(StreamerState.STREAMING)
        return cmd

    def queue_program(self, lines: Sequence[str], start: int = 0) -> int:
        """Queue the code part of ``lines[start:]`` until the queue is full.

        Comment-only and blank lines are skipped.  Returns the index of
        the first line not consumed, so the caller can resume there.
        """
        pos = start
        while pos < len(lines):
            code = strip_comments(lines[pos])
            if code:
                try:
                    self.queue_command(code)
                except QueueFull:
                    break
            pos += 1
        return pos

    def clear_queue(self) -> int:
        """Drop every pending (unsent) command; returns how many."""
        with self._queue_lock:
            dropped = len(self._queue)
            self._queue.clear()
        if dropped:
            logger.info("Cleared %d queued commands", dropped)
        self._settle()
        return dropped

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _has_room(self, sent: int, wire_size: int) -> bool:
        if not self.flow_control:
            return True
        return sent + wire_size + 1 <= self.buffer_size

    def _can_send(self) -> bool:
        return self.state in (StreamerState.IDLE, StreamerState.STREAMING)

    def send_buffered_command(self, cmd: BufferedCommand) -> None:
        """Write *cmd* and track it as active.

        The command is registered before the write so a fast ``ok``
        always finds it; a failed write undoes that and puts the command
        back at the front of the queue.

        Raises
        ------
        CommunicationError
            From the transport.
        """
        with self._active_lock:
            self._active.append(cmd)
            self._sent_bytes += cmd.wire_size
            cmd.status = CommandStatus.SENT
        try:
            self._transport.write(cmd.command)
        except CommunicationError as exc:
            logger.error("Failed to send %r: %s", cmd.command, exc)
            with self._active_lock:
                if cmd in self._active:
                    self._active.remove(cmd)
                    self._sent_bytes = max(0, self._sent_bytes - cmd.wire_size)
            cmd.status = CommandStatus.QUEUED
            with self._queue_lock:
                self._queue.appendleft(cmd)
            raise

    def send_next(self) -> Optional[BufferedCommand]:
        """Send the head of the queue if it fits; return it, else ``None``."""
        if not self._can_send():
            return None
        with self._send_lock:
            with self._active_lock:
                sent = self._sent_bytes
            with self._queue_lock:
                if not self._queue or not self._has_room(sent, self._queue[0].wire_size):
                    return None
                cmd = self._queue.popleft()
            self.send_buffered_command(cmd)
        return cmd

    def pump(self) -> int:
        """Send as many queued commands as the buffer allows."""
        sent = 0
        while self.send_next() is not None:
            sent += 1
        return sent

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _pop_active(self) -> Optional[BufferedCommand]:
        with self._active_lock:
            if not self._active:
                return None
            cmd = self._active.pop(0)
            self._sent_bytes = max(0, self._sent_bytes - cmd.wire_size)
            return cmd

    def handle_response(self, line: str) -> Optional[Response]:
        """Apply one controller line to the streamer state."""
        resp = parse_response(line)
        if resp is None:
            return None

        if isinstance(resp, Ok):
            self._handle_ok(line.strip())
        elif isinstance(resp, ErrorResponse):
            self._handle_error(resp, line.strip())
        elif isinstance(resp, AlarmResponse):
            self._handle_alarm(resp)
        elif isinstance(resp, StatusReport):
            self.device_status.update(resp)
        elif isinstance(resp, Version):
            logger.info("Controller: %s", resp.text)
            self.controller_ready()
        else:
            logger.debug("Controller message: %s", line.strip())

        if self._on_response is not None:
            try:
                self._on_response(resp)
            except Exception as exc:  # noqa: BLE001
                logger.error("Response callback error: %s", exc)
        return resp

    def _handle_ok(self, text: str) -> None:
        cmd = self._pop_active()
        if cmd is None:
            logger.debug("Unmatched 'ok'")
            return
        cmd.status = CommandStatus.COMPLETED
        cmd.response = text
        with self._active_lock:
            self._completed += 1
        self._settle()

    def _handle_error(self, resp: ErrorResponse, text: str) -> None:
        cmd = self._pop_active()
        if cmd is None:
            logger.warning("Unmatched '%s' (%s)", text, resp.description)
            return
        cmd.response = text
        if cmd.can_retry():
            cmd.retry_count += 1
            cmd.status = CommandStatus.QUEUED
            logger.warning(
                "%r rejected with %s (%s), retrying (%d/%d)",
                cmd.command, text, resp.description, cmd.retry_count, cmd.max_retries,
            )
            with self._active_lock:
                self._retries += 1
            with self._queue_lock:
                self._queue.appendleft(cmd)
            return

        cmd.status = CommandStatus.FAILED
        logger.error(
            "%r failed after %d retries: %s (%s)",
            cmd.command, cmd.retry_count, text, resp.description,
        )
        with self._active_lock:
            self._failed.append(cmd)
        self._notify_failed([cmd])
        self._settle()

    def _notify_failed(self, cmds: list[BufferedCommand]) -> None:
        if self._on_failed is None:
            return
        for cmd in cmds:
            try:
                self._on_failed(cmd)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failure callback error: %s", exc)

    def _handle_alarm(self, resp: AlarmResponse) -> None:
        # The controller discards its receive buffer on alarm; nothing in
        # flight will be acknowledged.
        error = AlarmError(f"{resp.description} (alarm:{resp.code})")
        self._alarm = error
        self._set_state(StreamerState.ALARMED)
        with self._active_lock:
            lost = list(self._active)
            self._active.clear()
            self._sent_bytes = 0
            for cmd in lost:
                cmd.status = CommandStatus.FAILED
                cmd.response = f"alarm:{resp.code}"
            self._failed.extend(lost)
        logger.warning("%s (%d in-flight commands failed)", error, len(lost))
        self._notify_failed(lost)
        if self._on_alarm is not None:
            try:
                self._on_alarm(error)
            except Exception as exc:  # noqa: BLE001
                logger.error("Alarm callback error: %s", exc)

    def _settle(self) -> None:
        """Streaming -> Idle once everything is answered."""
        if self.state is StreamerState.STREAMING and self.is_drained():
            self._set_state(StreamerState.IDLE)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop sending; outstanding commands are still acknowledged."""
        if self.state in (StreamerState.IDLE, StreamerState.STREAMING):
            self._set_state(StreamerState.PAUSED)
            logger.info("Streaming paused")

    def resume(self) -> int:
        """Leave the paused state and send what fits."""
        if self.state is not StreamerState.PAUSED:
            return 0
        self._set_state(StreamerState.STREAMING)
        logger.info("Streaming resumed")
        self._settle()
        return self.pump()

    def kill_alarm_lock(self) -> int:
        """Send ``$X`` immediately and resume streaming.

        ``$X`` bypasses the queue and the buffer check.  Returns the number
        of queued commands sent after it.
        """
        cmd = BufferedCommand(
            CommandCreator.system(SystemCommand.KILL_ALARM_LOCK).rstrip("\n"),
            max_retries=0,
        )
        with self._send_lock:
            self.send_buffered_command(cmd)
        self._alarm = None
        self._set_state(StreamerState.STREAMING)
        logger.info("Alarm lock cleared")
        return self.pump()

    def soft_reset(self) -> None:
        """Send ``0x18`` and drop every queued and outstanding command."""
        self._set_state(StreamerState.RESETTING)
        with self._queue_lock:
            dropped = len(self._queue)
            self._queue.clear()
        with self._active_lock:
            dropped += len(self._active)
            self._active.clear()
            self._sent_bytes = 0
        logger.warning("Soft reset (%d commands dropped)", dropped)
        self._transport.write_realtime(CommandCreator.soft_reset())

    def controller_ready(self) -> None:
        """Controller (re)started: leave Resetting."""
        if self.state is StreamerState.RESETTING:
            self._set_state(StreamerState.IDLE)

    def status_query(self) -> None:
        self._transport.write_realtime(CommandCreator.query_status())

    def feed_hold(self) -> None:
        self._transport.write_realtime(CommandCreator.feed_hold())

    def cycle_start(self) -> None:
        self._transport.write_realtime(CommandCreator.cycle_start())

    def send_realtime(self, data: bytes) -> None:
        """Send override / control bytes one at a time."""
        for b in data:
            self._transport.write_realtime(bytes([b]))

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------

    def poll(self, timeout: Optional[float] = None) -> Optional[Response]:
        """Read and handle at most one line, then refill the buffer."""
        line = self._transport.read_line(timeout)
        resp = self.handle_response(line) if line is not None else None
        self.pump()
        return resp

    def start(self, poll_interval_s: float = 0.01) -> None:
        """Handle responses on a background thread."""
        if self._reader is not None and self._reader.is_alive():
            return
        self._stop_reader.clear()
        self._reader_error = None
        self._reader = threading.Thread(
            target=self._reader_loop, args=(poll_interval_s,),
            name="grbl-reader", daemon=True,
        )
        self._reader.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_reader.set()
        if self._reader is not None:
            self._reader.join(timeout)
            self._reader = None

    @property
    def reader_error(self) -> Optional[CommunicationError]:
        return self._reader_error

    def _reader_loop(self, poll_interval_s: float) -> None:
        while not self._stop_reader.is_set():
            try:
                self.poll(poll_interval_s)
            except CommunicationError as exc:
                logger.error("Reader stopped: %s", exc)
                self._reader_error = exc
                return

    def wait_until_idle(self, timeout: Optional[float] = None, poll_interval_s: float = 0.01) -> bool:
        """Block until drained; ``False`` on timeout, alarm or reader failure."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_drained():
            if self.state is StreamerState.ALARMED or self._reader_error is not None:
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval_s)
        return True

    # ------------------------------------------------------------------
    # Whole programs
    # ------------------------------------------------------------------

    def stream(
        self,
        lines: Iterable[str],
        on_progress: Optional[Callable[[StreamerStats], None]] = None,
        poll_interval_s: float = 0.01,
        timeout: Optional[float] = None,
    ) -> StreamerStats:
        """Stream a whole program on the calling thread.

        Feeds the queue as space frees up and returns once every line is
        answered.

        Raises
        ------
        AlarmError
            The controller raised an alarm.
        StreamingError
            The background reader is running, or *timeout* expired.
        CommunicationError
            From the transport.
        """
        if self._reader is not None and self._reader.is_alive():
            raise StreamingError("stream() cannot run while the reader thread is active")
        pending = list(lines)
        pos = 0
        deadline = None if timeout is None else time.monotonic() + timeout
        while pos < len(pending) or not self.is_drained():
            if pos < len(pending):
                pos = self.queue_program(pending, pos)
            self.pump()
            self.poll(poll_interval_s)
            if self.state is StreamerState.ALARMED:
                raise self._alarm or AlarmError(alarm_description(0))
            if on_progress is not None:
                on_progress(self.stats())
            if deadline is not None and time.monotonic() >= deadline:
                raise StreamingError(f"Streaming timed out after {timeout:g}s")
        return self.stats()
