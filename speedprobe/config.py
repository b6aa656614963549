"""Configuration loading helpers for the network test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

# Absolute ceiling for a single download, whatever the configuration says.
HARD_DOWNLOAD_CAP_MB = 1024


@dataclass
class PathsConfig:
    data_dir: Path
    logs_dir: Path
    static_dir: Path


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    secret_key: str = "change-me"
    reverse_proxy_headers: bool = False
    max_result_body: int = 1024 * 1024


@dataclass
class StreamingConfig:
    max_download_mb: int = 100
    default_download_mb: int = 50
    chunk_size: int = 4096
    upload_read_size: int = 65536

    @property
    def download_cap_mb(self) -> int:
        return max(1, min(self.max_download_mb, HARD_DOWNLOAD_CAP_MB))


@dataclass
class ExchangeConfig:
    packet_count: int = 250
    packet_interval_ms: int = 40
    drain_buffer_ms: int = 1000
    gather_timeout: float = 10.0
    open_timeout: float = 15.0
    signaling_timeout: float = 20.0
    ice_servers: List[str] = field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    udp_port_range: Optional[Tuple[int, int]] = None
    peer_ttl_seconds: int = 120
    reap_interval_seconds: int = 30


@dataclass
class ClientConfig:
    server_url: str = "http://localhost:8080"
    latency_probes: int = 10
    probe_delay_ms: int = 100
    request_timeout: float = 30.0
    download_mb: int = 10
    upload_mb: int = 10
    max_transfer_mb: int = 100
    history_size: int = 5
    history_file: Optional[str] = "history.json"
    save_results: bool = True


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    web: WebConfig
    streaming: StreamingConfig
    exchange: ExchangeConfig
    client: ClientConfig
    logging: LoggingConfig

    @property
    def history_path(self) -> Optional[Path]:
        if not self.client.history_file:
            return None
        return self.paths.data_dir / self.client.history_file


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _port_range(raw) -> Optional[Tuple[int, int]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.split("-")
    try:
        low, high = (int(value) for value in raw)
    except (TypeError, ValueError):
        raise ValueError(f"udp_port_range must be two ports, got {raw!r}") from None
    if not 0 < low <= high <= 65535:
        raise ValueError(f"Invalid udp_port_range {low}-{high}")
    return low, high


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from YAML file."""

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    with source_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    paths_data = data.get("paths") or {}
    paths = PathsConfig(
        data_dir=_as_path(root_dir, paths_data.get("data_dir", "data")),
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
        static_dir=_as_path(root_dir, paths_data.get("static_dir", "static")),
    )

    exchange_data = dict(data.get("exchange") or {})
    exchange_data["udp_port_range"] = _port_range(exchange_data.get("udp_port_range"))

    config = AppConfig(
        root_dir=root_dir,
        paths=paths,
        web=WebConfig(**(data.get("web") or {})),
        streaming=StreamingConfig(**(data.get("streaming") or {})),
        exchange=ExchangeConfig(**exchange_data),
        client=ClientConfig(**(data.get("client") or {})),
        logging=LoggingConfig(**(data.get("logging") or {})),
    )

    return config
