"""WebRTC echo peer used by the jitter and packet loss test.

The Flask app is synchronous, aiortc is asyncio. ``EchoServer`` owns a
dedicated event loop thread and runs an ``EchoEndpoint`` on it; request
threads hand offers over with ``answer()`` and block for the SDP answer.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from .config import ExchangeConfig
from .errors import InvalidOfferError, SignalingError

LOGGER = logging.getLogger(__name__)


class EchoEndpoint:
    """Accepts an offer, returns an answer, echoes every message it receives."""

    async def open(self, offer_sdp: str) -> str:
        raise NotImplementedError

    async def reap(self, max_age_seconds: float) -> int:
        return 0

    async def close_all(self) -> None:
        pass

    @property
    def active_peers(self) -> int:
        return 0


class AiortcEchoEndpoint(EchoEndpoint):
    def __init__(self, exchange: ExchangeConfig):
        self._configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in exchange.ice_servers]
        )
        self._peers: Dict[str, Tuple[RTCPeerConnection, float]] = {}
        self._cleanups: Set[asyncio.Future] = set()

    @property
    def active_peers(self) -> int:
        return len(self._peers)

    async def open(self, offer_sdp: str) -> str:
        if not offer_sdp or not offer_sdp.strip():
            raise InvalidOfferError("Empty SDP offer")

        peer_id = uuid.uuid4().hex[:8]
        pc = RTCPeerConnection(self._configuration)
        self._peers[peer_id] = (pc, time.monotonic())

        @pc.on("datachannel")
        def on_datachannel(channel):
            LOGGER.info("New DataChannel established: %s (peer %s)", channel.label, peer_id)

            @channel.on("message")
            def on_message(message):
                # Echo the payload untouched: text stays text, bytes stay bytes.
                try:
                    channel.send(message)
                except Exception as exc:  # pylint: disable=broad-except
                    LOGGER.warning("Error echoing data on peer %s: %s", peer_id, exc)

            @channel.on("close")
            def on_close():
                LOGGER.info("DataChannel '%s' closed (peer %s)", channel.label, peer_id)
                self._spawn(self._close_peer(peer_id))

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            LOGGER.debug("Peer %s connection state: %s", peer_id, pc.connectionState)
            if pc.connectionState in ("failed", "closed"):
                await self._close_peer(peer_id)

        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer_sdp, type="offer"))
        except Exception as exc:  # pylint: disable=broad-except
            await self._close_peer(peer_id)
            raise InvalidOfferError(f"Invalid SDP offer: {exc}") from exc

        try:
            answer = await pc.createAnswer()
            # aiortc finishes ICE gathering inside setLocalDescription
            await pc.setLocalDescription(answer)
        except Exception:
            await self._close_peer(peer_id)
            raise

        LOGGER.info("Answered offer for peer %s", peer_id)
        return pc.localDescription.sdp

    def _spawn(self, coro) -> asyncio.Future:
        """Run ``coro`` in the background, holding a reference until it is done."""
        task = asyncio.ensure_future(coro)
        self._cleanups.add(task)
        task.add_done_callback(self._cleanup_done)
        return task

    def _cleanup_done(self, task: asyncio.Future) -> None:
        self._cleanups.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning("Echo peer cleanup failed: %s", task.exception())

    async def _close_peer(self, peer_id: str) -> None:
        entry = self._peers.pop(peer_id, None)
        if entry is None:
            return
        await entry[0].close()
        LOGGER.debug("Closed peer %s", peer_id)

    async def reap(self, max_age_seconds: float) -> int:
        cutoff = time.monotonic() - max_age_seconds
        stale = [peer_id for peer_id, (_, created) in self._peers.items() if created < cutoff]
        for peer_id in stale:
            await self._close_peer(peer_id)
        return len(stale)

    async def close_all(self) -> None:
        for peer_id in list(self._peers):
            await self._close_peer(peer_id)


class EchoServer:
    """Runs an ``EchoEndpoint`` on its own event loop thread."""

    def __init__(self, exchange: ExchangeConfig, endpoint: Optional[EchoEndpoint] = None):
        self.exchange = exchange
        self.endpoint = endpoint or AiortcEchoEndpoint(exchange)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._running = False
        self._start_time: Optional[datetime] = None
        self._total_sessions = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running and self._loop is not None

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None or not self.is_running:
            return 0.0
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def _run_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()
        LOGGER.info("Echo server loop ended")

    def start(self) -> bool:
        with self._lock:
            if self._running:
                LOGGER.warning("Echo server already running")
                return True

            if self.exchange.udp_port_range:
                low, high = self.exchange.udp_port_range
                LOGGER.warning(
                    "udp_port_range %d-%d is not enforced: aiortc binds ephemeral UDP ports", low, high
                )

            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._run_loop, args=(self._loop,), name="echo-server", daemon=True
            )
            self._thread.start()
            self._running = True
            self._start_time = datetime.now(timezone.utc)
            LOGGER.info("Echo server started")
            return True

    def stop(self) -> bool:
        with self._lock:
            if not self._running:
                return True
            self._running = False
            loop, thread = self._loop, self._thread

        try:
            asyncio.run_coroutine_threadsafe(self.endpoint.close_all(), loop).result(timeout=5)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Failed to close echo peers cleanly: %s", exc)
        loop.call_soon_threadsafe(loop.stop)
        if thread and thread.is_alive():
            thread.join(timeout=2.0)

        with self._lock:
            self._loop = None
            self._thread = None
            self._start_time = None
        LOGGER.info("Echo server stopped")
        return True

    def _submit(self, coro, timeout: float) -> Any:
        loop = self._loop
        if not self.is_running or loop is None:
            coro.close()
            raise SignalingError("Echo server is not running")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TimeoutError(f"Echo server did not respond within {timeout}s") from exc

    def answer(self, offer_sdp: str) -> str:
        """Negotiate a new echo peer and return its SDP answer."""
        answer_sdp = self._submit(self.endpoint.open(offer_sdp), self.exchange.signaling_timeout)
        with self._lock:
            self._total_sessions += 1
        return answer_sdp

    def reap_stale(self) -> int:
        if not self.is_running:
            return 0
        reaped = self._submit(self.endpoint.reap(self.exchange.peer_ttl_seconds), timeout=10)
        if reaped:
            LOGGER.info("Reaped %d stale echo peer(s)", reaped)
        return reaped

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "uptime_seconds": self.uptime_seconds,
            "total_sessions": self._total_sessions,
            "active_peers": self.endpoint.active_peers,
        }
