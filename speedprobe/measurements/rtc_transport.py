"""aiortc-backed echo transport and the HTTP signaling it relies on."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from ..config import ExchangeConfig
from ..errors import SignalingError, TransportError
from .exchange import EchoTransport, ExchangeSession

LOGGER = logging.getLogger(__name__)


class SignalingClient:
    """Posts an SDP offer to ``/webrtc/offer`` and returns the answer SDP."""

    def __init__(self, session: requests.Session, url: str, timeout: float = 30.0):
        self.session = session
        self.url = url
        self.timeout = timeout

    def exchange(self, offer_sdp: str) -> str:
        try:
            response = self.session.post(self.url, json={"sdp": offer_sdp}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"Signaling request failed: {exc}") from exc
        if not response.ok:
            raise SignalingError(f"Signaling failed with HTTP {response.status_code}")
        try:
            answer = response.json()["sdp"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SignalingError("Malformed signaling answer") from exc
        if not isinstance(answer, str) or not answer:
            raise SignalingError("Malformed signaling answer")
        return answer


class AiortcTransport(EchoTransport):
    def __init__(self, signaling: SignalingClient, exchange: ExchangeConfig, label: str = "jitter-test"):
        self.signaling = signaling
        self.exchange = exchange
        self.label = label
        self._pc: Optional[RTCPeerConnection] = None
        self._channel = None

    async def connect(self, handler: ExchangeSession) -> None:
        pc = RTCPeerConnection(
            RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self.exchange.ice_servers])
        )
        self._pc = pc
        # Unordered with no retransmits: lost packets stay lost.
        channel = pc.createDataChannel(self.label, ordered=False, maxRetransmits=0)
        self._channel = channel
        channel.on("open", handler.handle_open)
        channel.on("message", handler.handle_message)
        channel.on("close", handler.handle_close)

        @pc.on("iceconnectionstatechange")
        def on_iceconnectionstatechange():
            handler.handle_connectivity(pc.iceConnectionState)

        @pc.on("connectionstatechange")
        def on_connectionstatechange():
            handler.handle_connectivity(pc.connectionState)

        offer = await pc.createOffer()
        try:
            # Candidates are gathered inside setLocalDescription.
            await asyncio.wait_for(pc.setLocalDescription(offer), timeout=self.exchange.gather_timeout)
        except asyncio.TimeoutError as exc:
            raise SignalingError(
                f"ICE gathering did not complete within {self.exchange.gather_timeout}s"
            ) from exc

        loop = asyncio.get_running_loop()
        answer_sdp = await loop.run_in_executor(None, self.signaling.exchange, pc.localDescription.sdp)

        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))
        except Exception as exc:  # pylint: disable=broad-except
            raise SignalingError(f"Failed to apply answer: {exc}") from exc
        LOGGER.debug("Answer applied, waiting for data channel")

    def send(self, payload: str) -> None:
        if self._channel is None or self._channel.readyState != "open":
            raise TransportError("Data channel is not open")
        self._channel.send(payload)

    async def close(self) -> None:
        if self._channel is not None and self._channel.readyState not in ("closing", "closed"):
            self._channel.close()
        if self._pc is not None:
            await self._pc.close()
