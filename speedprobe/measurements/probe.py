"""Latency measurement via repeated HTTP round trips."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests

LOGGER = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@dataclass
class ProbeResult:
    attempts: int
    samples: List[float] = field(default_factory=list)

    @property
    def average_ms(self) -> Optional[float]:
        if not self.samples:
            return None
        return sum(self.samples) / len(self.samples)


class TimingProbe:
    """Times ``count`` GETs against the latency endpoint.

    A failed trip (network error or non-success status) is dropped. The
    average is taken over the trips that succeeded; with none it is ``None``.
    """

    def __init__(
        self,
        session: requests.Session,
        url: str,
        count: int = 10,
        delay_ms: int = 100,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.url = url
        self.count = count
        self.delay = delay_ms / 1000.0
        self.timeout = timeout
        self._sleep = sleep

    def _round_trip(self) -> Optional[float]:
        start = time.perf_counter()
        # The nonce defeats any cache between us and the server.
        url = f"{self.url}?{time.time_ns()}"
        try:
            response = self.session.get(url, headers=NO_STORE, timeout=self.timeout)
            response.content  # pylint: disable=pointless-statement
        except requests.RequestException as exc:
            LOGGER.debug("Latency probe failed: %s", exc)
            return None
        elapsed_ms = (time.perf_counter() - start) * 1000
        if not response.ok:
            LOGGER.debug("Latency probe returned HTTP %s", response.status_code)
            return None
        return elapsed_ms

    def measure(self) -> ProbeResult:
        result = ProbeResult(attempts=self.count)
        for index in range(self.count):
            elapsed = self._round_trip()
            if elapsed is not None:
                result.samples.append(elapsed)
            if index < self.count - 1:
                self._sleep(self.delay)

        if result.average_ms is None:
            LOGGER.warning("Latency test failed: 0 of %d probes succeeded", self.count)
        else:
            LOGGER.info(
                "Latency %.2f ms (%d/%d probes)", result.average_ms, len(result.samples), self.count
            )
        return result
