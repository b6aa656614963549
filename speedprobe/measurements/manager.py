"""Measurement orchestration: one run at a time, results to the store and local history."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Deque, List, Optional

import requests

from ..config import AppConfig
from ..errors import ProtocolError, RunInProgressError, StoreError, TransportError, ZeroBytesError
from ..store import HttpResultStore, ResultStore
from .exchange import EchoTransport, ExchangeOutcome, ExchangeSession, ExchangeStatus
from .models import MeasurementRun, ResultRecord
from .probe import TimingProbe
from .rtc_transport import AiortcTransport, SignalingClient
from .throughput import ThroughputClient

LOGGER = logging.getLogger(__name__)


class RunContext:
    """Per-client state shared across runs: the in-flight flag and recent history."""

    def __init__(self, history_size: int = 5, history_path: Optional[Path] = None):
        self._lock = threading.Lock()
        self._in_flight = False
        self.history: Deque[ResultRecord] = deque(maxlen=history_size)
        self.history_path = history_path
        self.current: Optional[MeasurementRun] = None
        self._load_history()

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    def try_begin(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def release(self) -> None:
        with self._lock:
            self._in_flight = False

    def remember(self, record: ResultRecord) -> None:
        self.history.appendleft(record)
        self._save_history()

    def _load_history(self) -> None:
        if self.history_path is None or not self.history_path.exists():
            return
        try:
            with open(self.history_path, "r", encoding="utf-8") as handle:
                entries = json.load(handle)
            # Stored most-recent-first; extend keeps that order.
            self.history.extend(ResultRecord.from_dict(entry) for entry in entries)
        except (OSError, ValueError, TypeError) as exc:
            LOGGER.error("Error loading history from %s: %s", self.history_path, exc)

    def _save_history(self) -> None:
        if self.history_path is None:
            return
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_path, "w", encoding="utf-8") as handle:
                json.dump([record.to_dict() for record in self.history], handle, indent=2)
        except OSError as exc:
            LOGGER.error("Error saving history to %s: %s", self.history_path, exc)


def _exchange_status_text(outcome: Optional[ExchangeOutcome]) -> str:
    if outcome is None:
        return "Failed"
    if outcome.status in (ExchangeStatus.COMPLETE, ExchangeStatus.TIMEOUT):
        return "Complete"
    if outcome.status is ExchangeStatus.SETUP_FAILED:
        return "WebRTC setup failed."
    if outcome.status is ExchangeStatus.CONNECTION_FAILED:
        return "WebRTC Failed or Disconnected."
    return outcome.detail or "Complete"


class MeasurementManager:
    """Runs latency, download, upload, then the packet exchange, and finalizes once."""

    def __init__(
        self,
        config: AppConfig,
        context: RunContext,
        probe: TimingProbe,
        throughput: ThroughputClient,
        transport_factory: Callable[[], EchoTransport],
        store: ResultStore,
    ):
        self.config = config
        self.context = context
        self.probe = probe
        self.throughput = throughput
        self.transport_factory = transport_factory
        self.store = store

    @classmethod
    def from_config(cls, config: AppConfig, context: Optional[RunContext] = None) -> "MeasurementManager":
        client = config.client
        base_url = client.server_url.rstrip("/")
        session = requests.Session()
        signaling = SignalingClient(session, f"{base_url}/webrtc/offer", timeout=client.request_timeout)
        return cls(
            config=config,
            context=context or RunContext(client.history_size, config.history_path),
            probe=TimingProbe(
                session,
                f"{base_url}/latency",
                count=client.latency_probes,
                delay_ms=client.probe_delay_ms,
                timeout=client.request_timeout,
            ),
            throughput=ThroughputClient(
                session, base_url, max_size_mb=client.max_transfer_mb, timeout=client.request_timeout
            ),
            transport_factory=lambda: AiortcTransport(signaling, config.exchange),
            store=HttpResultStore(base_url, timeout=client.request_timeout, session=session),
        )

    @property
    def history(self) -> List[ResultRecord]:
        return list(self.context.history)

    def share_url(self, result_id: str) -> str:
        return f"{self.config.client.server_url.rstrip('/')}/?resultId={result_id}"

    def run(self, download_mb: Optional[int] = None, upload_mb: Optional[int] = None) -> MeasurementRun:
        if not self.context.try_begin():
            raise RunInProgressError("Test already in progress")

        run = MeasurementRun(started_at=datetime.now(timezone.utc))
        self.context.current = run
        try:
            self._run_latency(run)
            self._run_download(run, download_mb or self.config.client.download_mb)
            self._run_upload(run, upload_mb or self.config.client.upload_mb)
            asyncio.run(self._run_exchange(run))
        except BaseException:
            self._abandon(run)
            raise
        # Normally a no-op: the exchange session has already finalized.
        self.finalize(run, None)
        return run

    def _run_latency(self, run: MeasurementRun) -> None:
        run.statuses["latency"] = "Pinging..."
        result = self.probe.measure()
        if result.average_ms is None:
            run.statuses["latency"] = "Failed to measure."
            return
        run.latency_ms = result.average_ms
        run.statuses["latency"] = "Complete"

    def _run_download(self, run: MeasurementRun, size_mb: int) -> None:
        run.statuses["download"] = "Testing Download..."
        try:
            result = self.throughput.download(size_mb)
        except ZeroBytesError:
            LOGGER.error("Download test failed: zero bytes received")
            run.statuses["download"] = "Failed: Zero bytes received."
            return
        except (TransportError, ProtocolError) as exc:
            LOGGER.error("Download test failed: %s", exc)
            run.statuses["download"] = "Failed"
            return
        if result.speed_mbps is None:
            LOGGER.error("Download test failed: no measurable duration for %d bytes", result.bytes)
            run.statuses["download"] = "Failed"
            return
        run.download_mbps = result.speed_mbps
        run.statuses["download"] = "Complete"

    def _run_upload(self, run: MeasurementRun, size_mb: int) -> None:
        run.statuses["upload"] = "Testing Upload..."
        try:
            result = self.throughput.upload(size_mb)
        except (TransportError, ProtocolError) as exc:
            LOGGER.error("Upload test failed: %s", exc)
            run.statuses["upload"] = "Failed"
            return
        if result.speed_mbps is None:
            LOGGER.error("Upload test failed: no measurable duration for %d bytes", result.bytes)
            run.statuses["upload"] = "Failed"
            return
        run.upload_mbps = result.speed_mbps
        run.statuses["upload"] = "Complete"

    async def _run_exchange(self, run: MeasurementRun) -> ExchangeOutcome:
        run.statuses["jitter"] = "Starting WebRTC connection..."
        session = ExchangeSession(
            self.transport_factory(),
            self.config.exchange,
            on_finished=lambda outcome: self.finalize(run, outcome),
        )
        return await session.run()

    def finalize(self, run: MeasurementRun, outcome: Optional[ExchangeOutcome]) -> Optional[ResultRecord]:
        """Record the exchange outcome, persist, remember and release. Runs once per run."""
        if not run.in_progress:
            return run.record
        run.in_progress = False

        try:
            if outcome is not None:
                run.jitter_ms = outcome.jitter_ms
                run.packet_loss_percent = outcome.packet_loss_percent
            run.statuses["jitter"] = _exchange_status_text(outcome)

            if not run.measured_anything:
                LOGGER.warning("Run finished without any successful measurement")
                return None

            record = run.to_record()
            if self.config.client.save_results:
                try:
                    run.share_id = self.store.save(record)
                except StoreError as exc:
                    LOGGER.error("Failed to save result for sharing: %s", exc)

            run.record = replace(record, id=run.share_id, timestamp=datetime.now(timezone.utc))
            self.context.remember(run.record)
            return run.record
        finally:
            self.context.release()

    def _abandon(self, run: MeasurementRun) -> None:
        if run.in_progress:
            run.in_progress = False
            self.context.release()

    def load_shared(self, result_id: str) -> ResultRecord:
        return self.store.load(result_id)
