"""Background housekeeping jobs."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import AppConfig
from .echo_server import EchoServer

LOGGER = logging.getLogger(__name__)


class SchedulerService:
    """Periodically closes echo peers whose client never finished the exchange."""

    def __init__(self, config: AppConfig, echo_server: EchoServer) -> None:
        self.config = config
        self.echo_server = echo_server
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.started = False

    def start(self) -> None:
        if self.started:
            LOGGER.warning("Scheduler already started, ignoring duplicate start request")
            return

        interval = self.config.exchange.reap_interval_seconds
        if interval <= 0:
            LOGGER.info("Echo peer reaping disabled (reap_interval_seconds=%s)", interval)
            return

        try:
            self.scheduler.add_job(
                self._reap_cycle,
                trigger=IntervalTrigger(seconds=interval),
                id="reap-echo-peers",
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            self.started = True
            LOGGER.info(
                "Scheduler started: reaping echo peers older than %ss every %ss",
                self.config.exchange.peer_ttl_seconds,
                interval,
            )
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Failed to start scheduler: %s", exc, exc_info=True)
            LOGGER.error("  Abandoned echo peers will only be closed on shutdown")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False

    def _reap_cycle(self) -> None:
        try:
            self.echo_server.reap_stale()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Echo peer reaping failed: %s", exc)
