"""Tests for the echo server loop thread and the reaping scheduler."""

import asyncio

import pytest

from speedprobe.config import ExchangeConfig
from speedprobe.echo_server import EchoEndpoint, EchoServer
from speedprobe.errors import InvalidOfferError, SignalingError
from speedprobe.scheduler import SchedulerService


class FakeEndpoint(EchoEndpoint):
    def __init__(self, delay=0.0):
        self.delay = delay
        self.peers = {}
        self.closed_all = False

    @property
    def active_peers(self):
        return len(self.peers)

    async def open(self, offer_sdp):
        if not offer_sdp.strip():
            raise InvalidOfferError("Empty SDP offer")
        await asyncio.sleep(self.delay)
        self.peers[len(self.peers)] = offer_sdp
        return f"answer to {offer_sdp}"

    async def reap(self, max_age_seconds):
        reaped = len(self.peers)
        self.peers.clear()
        return reaped

    async def close_all(self):
        self.closed_all = True


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest.fixture
def echo_server(endpoint):
    server = EchoServer(ExchangeConfig(signaling_timeout=0.5), endpoint=endpoint)
    server.start()
    yield server
    server.stop()


def test_answer_runs_on_the_loop_thread(echo_server, endpoint):
    assert echo_server.answer("v=0 offer") == "answer to v=0 offer"
    status = echo_server.get_status()
    assert status["running"] is True
    assert status["total_sessions"] == 1
    assert status["active_peers"] == 1


def test_invalid_offer_propagates(echo_server):
    with pytest.raises(InvalidOfferError):
        echo_server.answer("   ")
    assert echo_server.get_status()["total_sessions"] == 0


def test_slow_endpoint_times_out(endpoint, echo_server):
    endpoint.delay = 2.0
    with pytest.raises(TimeoutError):
        echo_server.answer("v=0 offer")


def test_answer_requires_running_server(endpoint):
    server = EchoServer(ExchangeConfig(), endpoint=endpoint)
    with pytest.raises(SignalingError):
        server.answer("v=0 offer")
    assert server.reap_stale() == 0


def test_reap_and_stop(echo_server, endpoint):
    echo_server.answer("a")
    echo_server.answer("b")
    assert echo_server.reap_stale() == 2

    echo_server.stop()
    assert endpoint.closed_all
    assert not echo_server.is_running
    assert echo_server.uptime_seconds == 0.0


class StubEchoServer:
    def __init__(self):
        self.reaps = 0

    def reap_stale(self):
        self.reaps += 1
        return 0


def test_scheduler_disabled_with_zero_interval(config):
    service = SchedulerService(config, StubEchoServer())
    service.start()
    assert not service.started


def test_scheduler_registers_reap_job(config):
    config.exchange.reap_interval_seconds = 60
    echo = StubEchoServer()
    service = SchedulerService(config, echo)
    service.start()
    try:
        assert service.started
        assert service.scheduler.get_job("reap-echo-peers") is not None
        service._reap_cycle()
        assert echo.reaps == 1
    finally:
        service.shutdown()
    assert not service.started
