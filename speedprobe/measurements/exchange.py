"""Real-time packet exchange used for jitter and packet loss.

A batch of small timestamped packets goes out over an unordered,
unreliable channel at a fixed interval; the peer echoes each one verbatim
and the round trip is computed from the timestamp carried in the echo.

State machine: NEGOTIATING -> OPEN -> SENDING -> DRAINING -> CLOSED. Any
of the terminal conditions (all echoes back, grace period over, channel
closed, connectivity lost, setup failure) moves the session to CLOSED
exactly once; the others are ignored after that.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Set, Union

from ..config import ExchangeConfig
from ..errors import ProtocolError
from .analyzer import analyze
from .models import ProbePacket

LOGGER = logging.getLogger(__name__)

FAILED_CONNECTIVITY = ("failed", "disconnected", "closed")


class SessionState(str, Enum):
    NEGOTIATING = "negotiating"
    OPEN = "open"
    SENDING = "sending"
    DRAINING = "draining"
    CLOSED = "closed"


class ExchangeStatus(str, Enum):
    COMPLETE = "complete"
    TIMEOUT = "timeout"
    CHANNEL_CLOSED = "channel_closed"
    CONNECTION_FAILED = "connection_failed"
    SETUP_FAILED = "setup_failed"


@dataclass
class ExchangeOutcome:
    status: ExchangeStatus
    sent: int
    received: int
    jitter_ms: Optional[float]
    packet_loss_percent: Optional[float]
    detail: str = ""
    samples: List[float] = field(default_factory=list)


class EchoTransport:
    """A bidirectional unreliable message channel set up by an offer/answer exchange.

    ``connect`` negotiates and wires the channel events to the handler's
    ``handle_open``, ``handle_message``, ``handle_close`` and
    ``handle_connectivity`` callbacks.
    """

    async def connect(self, handler: "ExchangeSession") -> None:
        raise NotImplementedError

    def send(self, payload: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


def _wall_clock_ms() -> float:
    return time.time() * 1000


class ExchangeSession:
    def __init__(
        self,
        transport: EchoTransport,
        exchange: ExchangeConfig,
        on_finished: Optional[Callable[[ExchangeOutcome], None]] = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self.transport = transport
        self.packet_count = exchange.packet_count
        self.interval = exchange.packet_interval_ms / 1000.0
        self.drain_buffer = exchange.drain_buffer_ms / 1000.0
        self.open_timeout = exchange.open_timeout
        self.on_finished = on_finished
        self._clock = clock

        self.state = SessionState.NEGOTIATING
        self.sent = 0
        self.samples: List[float] = []
        self.outcome: Optional[ExchangeOutcome] = None
        self._seen: Set[int] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._done: Optional[asyncio.Future] = None
        self._sender: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._send_started = 0.0

    async def run(self) -> ExchangeOutcome:
        """Negotiate, exchange packets and return once the session is closed."""
        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()
        connector = self._loop.create_task(self._negotiate())
        try:
            return await self._done
        finally:
            if not connector.done():
                connector.cancel()
            try:
                await self.transport.close()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Error closing exchange transport: %s", exc)

    async def _negotiate(self) -> None:
        try:
            await self.transport.connect(self)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("WebRTC setup failed: %s", exc)
            self._finish(ExchangeStatus.SETUP_FAILED, f"WebRTC setup failed: {exc}")
            return

        # Gathering and signaling carry their own timeouts; this one covers the channel open only.
        if self.state is SessionState.NEGOTIATING:
            self._timer = self._loop.call_later(
                self.open_timeout,
                self._finish,
                ExchangeStatus.SETUP_FAILED,
                f"Data channel did not open within {self.open_timeout}s",
            )

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def handle_open(self) -> None:
        if self.state is not SessionState.NEGOTIATING:
            return
        self._cancel_timer()
        self.state = SessionState.OPEN
        LOGGER.info("Connection established. Sending %d packets", self.packet_count)
        self._sender = self._loop.create_task(self._send_loop())
        self.state = SessionState.SENDING

    def handle_message(self, data: Union[str, bytes]) -> None:
        if self.state not in (SessionState.SENDING, SessionState.DRAINING):
            return
        try:
            packet = ProbePacket.decode(data)
        except ProtocolError as exc:
            LOGGER.warning("Failed to parse data channel message: %s", exc)
            return
        if packet.id in self._seen or not 0 <= packet.id < self.sent:
            LOGGER.debug("Ignoring duplicate or unknown echo %s", packet.id)
            return

        self._seen.add(packet.id)
        self.samples.append(self._clock() - packet.send_time)
        if len(self.samples) >= self.packet_count:
            self._finish(ExchangeStatus.COMPLETE)

    def handle_close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        detail = "WebRTC Disconnected before completion." if self.sent < self.packet_count else ""
        self._finish(ExchangeStatus.CHANNEL_CLOSED, detail)

    def handle_connectivity(self, state: str) -> None:
        LOGGER.debug("Connectivity state: %s", state)
        if state in FAILED_CONNECTIVITY:
            self._finish(ExchangeStatus.CONNECTION_FAILED, "WebRTC Failed or Disconnected.")

    # ------------------------------------------------------------------
    # Sending and draining
    # ------------------------------------------------------------------

    async def _send_loop(self) -> None:
        self._send_started = self._loop.time()
        while self.sent < self.packet_count:
            await asyncio.sleep(self.interval)
            if self.state is not SessionState.SENDING:
                return
            packet = ProbePacket(id=self.sent, send_time=self._clock())
            try:
                self.transport.send(packet.encode())
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Send failed after %d packets: %s", self.sent, exc)
                self._finish(ExchangeStatus.CHANNEL_CLOSED, f"Send failed: {exc}")
                return
            self.sent += 1

        LOGGER.debug("All packets sent")
        self.state = SessionState.DRAINING
        schedule_end = self._send_started + self.packet_count * self.interval
        grace = max(0.0, schedule_end - self._loop.time()) + self.drain_buffer
        self._timer = self._loop.call_later(grace, self._finish, ExchangeStatus.TIMEOUT)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _finish(self, status: ExchangeStatus, detail: str = "") -> None:
        if self.state is SessionState.CLOSED:
            return
        # The send timer must be stopped before anything else runs.
        if self._sender is not None and self._sender is not asyncio.current_task():
            self._sender.cancel()
        self._cancel_timer()
        self.state = SessionState.CLOSED

        analysis = analyze(self.samples, self.sent)
        self.outcome = ExchangeOutcome(
            status=status,
            sent=self.sent,
            received=analysis.received,
            jitter_ms=analysis.jitter_ms if self.sent else None,
            packet_loss_percent=analysis.packet_loss_percent,
            detail=detail,
            samples=list(self.samples),
        )
        LOGGER.info(
            "Exchange %s: %d/%d echoes, jitter=%s loss=%s",
            status.value,
            analysis.received,
            self.sent,
            self.outcome.jitter_ms,
            self.outcome.packet_loss_percent,
        )

        if self.on_finished is not None:
            try:
                self.on_finished(self.outcome)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Exchange completion handler failed")
        if self._done is not None and not self._done.done():
            self._done.set_result(self.outcome)
