"""Tests for the download and upload clients."""

import pytest
import requests

from fakes import FakeResponse, FakeSession
from speedprobe.errors import TransportError, ZeroBytesError
from speedprobe.measurements.throughput import SyntheticBody, ThroughputClient, ThroughputResult, clamp_size_mb
from speedprobe.streaming import MEGABYTE


def test_speed_in_megabits_per_second():
    assert ThroughputResult(bytes=10 * MEGABYTE // 8, duration_seconds=1.0).speed_mbps == pytest.approx(10.0)
    assert ThroughputResult(bytes=MEGABYTE, duration_seconds=0).speed_mbps is None


@pytest.mark.parametrize("requested, expected", [(0, 1), (-5, 1), (10, 10), (500, 100)])
def test_clamp_size(requested, expected):
    assert clamp_size_mb(requested, 100) == expected


def test_download_counts_streamed_bytes():
    session = FakeSession([FakeResponse(chunks=[b"a" * 1000, b"b" * 24])])
    client = ThroughputClient(session, "http://server/")

    result = client.download(5)
    assert result.bytes == 1024
    method, url, kwargs = session.calls[0]
    assert url == "http://server/download"
    assert kwargs["params"] == {"size": 5}
    assert kwargs["stream"] is True


def test_download_zero_bytes():
    client = ThroughputClient(FakeSession([FakeResponse(chunks=[])]), "http://server")
    with pytest.raises(ZeroBytesError):
        client.download(1)


@pytest.mark.parametrize("response", [FakeResponse(status_code=500), requests.ConnectionError("refused")])
def test_download_transport_failures(response):
    client = ThroughputClient(FakeSession([response]), "http://server")
    with pytest.raises(TransportError):
        client.download(1)


def test_upload_sends_fixed_length_body():
    session = FakeSession([FakeResponse(payload={"status": "ok"})])
    client = ThroughputClient(session, "http://server", max_size_mb=2)

    result = client.upload(50)
    body = session.calls[0][2]["data"]
    assert len(body) == 2 * MEGABYTE
    assert result.bytes == 2 * MEGABYTE


@pytest.mark.parametrize("response", [FakeResponse(status_code=500), requests.Timeout("slow")])
def test_upload_transport_failures(response):
    client = ThroughputClient(FakeSession([response]), "http://server")
    with pytest.raises(TransportError):
        client.upload(1)


def test_synthetic_body_yields_exact_length():
    body = SyntheticBody(100000, chunk_size=65536)
    chunks = list(body)
    assert [len(chunk) for chunk in chunks] == [65536, 34464]
    assert len(body) == 100000
