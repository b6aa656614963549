"""Tests for the HTTP endpoints."""

import pytest

from speedprobe.db import init_db
from speedprobe.errors import InvalidOfferError, SignalingError
from speedprobe.store import SQLResultStore
from speedprobe.streaming import MEGABYTE
from speedprobe.web.app import create_web_app


class FakeEchoServer:
    def __init__(self, error=None):
        self.error = error
        self.offers = []

    def answer(self, offer_sdp):
        self.offers.append(offer_sdp)
        if self.error is not None:
            raise self.error
        return "v=0 answer"

    def get_status(self):
        return {"running": True, "uptime_seconds": 1.5, "total_sessions": len(self.offers), "active_peers": 0}


@pytest.fixture
def store(config):
    store = SQLResultStore(init_db(config.paths.data_dir))
    yield store
    store.close()


@pytest.fixture
def echo_server():
    return FakeEchoServer()


@pytest.fixture
def client(config, store, echo_server):
    app = create_web_app(config=config, store=store, echo_server=echo_server)
    app.config["TESTING"] = True
    return app.test_client()


def test_latency_returns_server_time_uncached(client):
    response = client.get("/latency?12345")
    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True).isdigit()
    assert "no-store" in response.headers["Cache-Control"]


def test_download_streams_requested_size(client):
    response = client.get("/download?size=2")
    assert response.status_code == 200
    assert response.mimetype == "application/octet-stream"
    assert response.headers["Content-Length"] == str(2 * MEGABYTE)
    assert len(response.get_data()) == 2 * MEGABYTE


@pytest.mark.parametrize("size, expected_mb", [("0", 3), ("-1", 3), ("abc", 3), ("50", 4)])
def test_download_falls_back_and_caps(client, size, expected_mb):
    response = client.get(f"/download?size={size}")
    assert len(response.get_data()) == expected_mb * MEGABYTE


def test_download_without_size_uses_default(client):
    assert len(client.get("/download").get_data()) == 3 * MEGABYTE


def test_upload_reports_bytes_received(client):
    response = client.post("/upload", data=b"u" * 100000, content_type="application/octet-stream")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "bytes": 100000}


def test_empty_upload(client):
    response = client.post("/upload", data=b"", content_type="application/octet-stream")
    assert response.get_json()["bytes"] == 0


def test_saved_result_round_trips_exactly(client):
    payload = {
        "latencyMs": 12.345678901234,
        "downloadSpeedMbps": 93.87654321,
        "uploadSpeedMbps": 11.1,
        "jitterMs": None,
        "packetLossPercent": 0.4,
    }
    saved = client.post("/save-result", json=payload)
    assert saved.status_code == 200
    body = saved.get_json()
    assert body["status"] == "success"
    result_id = body["id"]

    loaded = client.get(f"/results/{result_id}")
    assert loaded.status_code == 200
    data = loaded.get_json()
    for key, value in payload.items():
        assert data[key] == value
    assert data["id"] == result_id
    assert "timestamp" in data


def test_ids_are_unique(client):
    first = client.post("/save-result", json={"latencyMs": 1}).get_json()["id"]
    second = client.post("/save-result", json={"latencyMs": 1}).get_json()["id"]
    assert first != second


def test_unknown_result_is_404(client):
    response = client.get("/results/doesnotexist")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Result not found"}


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"[1, 2]",
        b'{"latencyMs": "fast"}',
        b'{"timestamp": "yesterday"}',
        b'{"latencyMs": 1.0, "timestamp": 5}',
    ],
)
def test_invalid_result_is_400(client, data):
    response = client.post("/save-result", data=data, content_type="application/json")
    assert response.status_code == 400


def test_oversized_result_is_413(client):
    body = b'{"latencyMs": 1, "pad": "' + b"x" * 2048 + b'"}'
    response = client.post("/save-result", data=body, content_type="application/json")
    assert response.status_code == 413


def test_offer_returns_answer(client, echo_server):
    response = client.post("/webrtc/offer", json={"sdp": "v=0 offer", "type": "offer"})
    assert response.status_code == 200
    assert response.get_json() == {"sdp": "v=0 answer"}
    assert echo_server.offers == ["v=0 offer"]


@pytest.mark.parametrize("data", [b"not json", b"[]", b'{"type": "offer"}', b'{"sdp": 5}'])
def test_malformed_offer_is_400(client, echo_server, data):
    response = client.post("/webrtc/offer", data=data, content_type="application/json")
    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid SDP offer format"}
    assert echo_server.offers == []


@pytest.mark.parametrize(
    "error, status",
    [
        (InvalidOfferError("bad sdp"), 400),
        (TimeoutError("slow"), 504),
        (SignalingError("down"), 503),
        (RuntimeError("boom"), 500),
    ],
)
def test_offer_failures_map_to_status_codes(client, echo_server, error, status):
    echo_server.error = error
    response = client.post("/webrtc/offer", json={"sdp": "v=0 offer"})
    assert response.status_code == status
    assert "error" in response.get_json()


def test_echo_status(client, echo_server):
    client.post("/webrtc/offer", json={"sdp": "v=0 offer"})
    status = client.get("/api/echo/status").get_json()
    assert status["running"] is True
    assert status["total_sessions"] == 1
