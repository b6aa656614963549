"""Jitter and packet loss statistics over echoed probe packets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class JitterLossResult:
    jitter_ms: float
    packet_loss_percent: Optional[float]
    received: int
    dispatched: int


def packet_loss_percent(dispatched: int, received: int) -> Optional[float]:
    """Share of dispatched packets that never came back, or ``None`` if none were sent."""
    if dispatched <= 0:
        return None
    loss = (dispatched - received) / dispatched * 100
    if not 0.0 <= loss <= 100.0:
        LOGGER.warning(
            "Inconsistent packet counts (dispatched=%d, received=%d); clamping loss %.2f%%",
            dispatched,
            received,
            loss,
        )
        loss = min(max(loss, 0.0), 100.0)
    return loss


def mean_successive_delta(samples: Sequence[float]) -> float:
    if len(samples) < 2:
        return 0.0
    total = sum(abs(samples[i] - samples[i - 1]) for i in range(1, len(samples)))
    return total / (len(samples) - 1)


def analyze(samples: Sequence[float], dispatched: int) -> JitterLossResult:
    """Compute jitter and loss from RTT samples in arrival order."""
    return JitterLossResult(
        jitter_ms=mean_successive_delta(samples),
        packet_loss_percent=packet_loss_percent(dispatched, len(samples)),
        received=len(samples),
        dispatched=dispatched,
    )
