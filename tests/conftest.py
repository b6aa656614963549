"""
Pytest configuration file

Adds the project root to the Python path and provides a small on-disk
configuration for each test.
"""
import os
import sys

import pytest
import yaml

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from speedprobe.config import load_config  # noqa: E402

TEST_CONFIG = {
    "paths": {"data_dir": "data", "logs_dir": "logs", "static_dir": "static"},
    "web": {"max_result_body": 1024},
    "streaming": {
        "max_download_mb": 4,
        "default_download_mb": 3,
        "chunk_size": 65536,
        "upload_read_size": 8192,
    },
    "exchange": {
        "packet_count": 5,
        "packet_interval_ms": 1,
        "drain_buffer_ms": 50,
        "open_timeout": 1.0,
        "signaling_timeout": 0.5,
        "ice_servers": [],
        "reap_interval_seconds": 0,
    },
    "client": {
        "server_url": "http://speedprobe.test",
        "latency_probes": 3,
        "probe_delay_ms": 0,
        "history_file": None,
    },
}


@pytest.fixture
def write_config(tmp_path):
    def _write(overrides=None):
        data = {section: dict(values) for section, values in TEST_CONFIG.items()}
        for section, values in (overrides or {}).items():
            data.setdefault(section, {}).update(values)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return load_config(str(path))

    return _write


@pytest.fixture
def config(write_config):
    return write_config()
