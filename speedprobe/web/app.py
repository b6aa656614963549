"""Flask application factory and HTTP routes."""

from __future__ import annotations

import json
import logging
import time

from flask import Flask, Response, jsonify, request, send_from_directory
from werkzeug.exceptions import ClientDisconnected
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AppConfig
from ..echo_server import EchoServer
from ..errors import InvalidOfferError, ResultNotFoundError, SignalingError, StoreError
from ..measurements.models import ResultRecord
from ..store import ResultStore
from ..streaming import MEGABYTE, drain_upload, resolve_download_mb, stream_download

LOGGER = logging.getLogger(__name__)

NO_CACHE = {"Cache-Control": "no-store, no-cache, must-revalidate"}


def create_web_app(config: AppConfig, store: ResultStore, echo_server: EchoServer) -> Flask:
    static_folder = config.paths.static_dir

    app = Flask(__name__, static_folder=str(static_folder), static_url_path="")
    app.config["SECRET_KEY"] = config.web.secret_key

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    @app.route("/")
    def index():
        return send_from_directory(static_folder, "index.html")

    # =========================================================================
    # Latency and throughput
    # =========================================================================

    @app.get("/latency")
    def latency():
        """Current server time in ms; only the round trip matters to the client."""
        return Response(str(int(time.time() * 1000)), mimetype="text/plain", headers=NO_CACHE)

    @app.get("/download")
    def download():
        size_mb = resolve_download_mb(request.args.get("size"), config.streaming)
        total_bytes = size_mb * MEGABYTE
        return Response(
            stream_download(total_bytes, config.streaming.chunk_size),
            mimetype="application/octet-stream",
            headers={"Content-Length": str(total_bytes), **NO_CACHE},
        )

    @app.post("/upload")
    def upload():
        try:
            received = drain_upload(request.stream, config.streaming.upload_read_size)
        except (OSError, ClientDisconnected) as exc:
            LOGGER.error("Upload failed to read body: %s", exc)
            return jsonify({"error": "Upload failed to read body"}), 500
        return jsonify({"status": "ok", "bytes": received})

    # =========================================================================
    # WebRTC signaling
    # =========================================================================

    @app.post("/webrtc/offer")
    def webrtc_offer():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not isinstance(payload.get("sdp"), str):
            return jsonify({"error": "Invalid SDP offer format"}), 400

        try:
            answer_sdp = echo_server.answer(payload["sdp"])
        except InvalidOfferError as exc:
            LOGGER.warning("Rejected offer: %s", exc)
            return jsonify({"error": "Invalid SDP"}), 400
        except TimeoutError as exc:
            LOGGER.error("Offer timed out: %s", exc)
            return jsonify({"error": "Signaling timed out"}), 504
        except SignalingError as exc:
            LOGGER.error("Echo server unavailable: %s", exc)
            return jsonify({"error": "Echo server unavailable"}), 503
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Failed to answer offer: %s", exc)
            return jsonify({"error": "Internal server error"}), 500

        return jsonify({"sdp": answer_sdp})

    @app.get("/api/echo/status")
    def echo_status():
        return jsonify(echo_server.get_status())

    # =========================================================================
    # Shared results
    # =========================================================================

    @app.post("/save-result")
    def save_result():
        limit = config.web.max_result_body
        if request.content_length is not None and request.content_length > limit:
            return jsonify({"error": "Result body too large"}), 413
        raw = request.stream.read(limit + 1)
        if len(raw) > limit:
            return jsonify({"error": "Result body too large"}), 413

        try:
            record = ResultRecord.from_dict(json.loads(raw))
        except ValueError as exc:
            return jsonify({"error": f"Invalid result: {exc}"}), 400

        try:
            result_id = store.save(record)
        except StoreError as exc:
            LOGGER.error("Failed to persist result: %s", exc)
            return jsonify({"error": "Failed to save result"}), 500
        return jsonify({"status": "success", "id": result_id})

    @app.get("/results/<result_id>")
    def get_result(result_id: str):
        try:
            record = store.load(result_id)
        except ResultNotFoundError:
            return jsonify({"error": "Result not found"}), 404
        except StoreError as exc:
            LOGGER.error("Failed to load result %s: %s", result_id, exc)
            return jsonify({"error": "Failed to load result"}), 500
        return jsonify(record.to_dict())

    return app
