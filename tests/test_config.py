"""Tests for configuration loading."""

import pytest

from speedprobe.config import HARD_DOWNLOAD_CAP_MB, load_config


def test_missing_sections_use_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    config = load_config(str(path))
    assert config.web.port == 8080
    assert config.streaming.default_download_mb == 50
    assert config.exchange.packet_count == 250
    assert config.exchange.udp_port_range is None
    assert config.paths.data_dir == (tmp_path / "data").resolve()
    assert config.paths.data_dir.is_dir()
    assert config.history_path == config.paths.data_dir / "history.json"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_download_cap_never_exceeds_hard_limit(config):
    config.streaming.max_download_mb = 5000
    assert config.streaming.download_cap_mb == HARD_DOWNLOAD_CAP_MB
    config.streaming.max_download_mb = 0
    assert config.streaming.download_cap_mb == 1


@pytest.mark.parametrize("raw, expected", [("40000-40100", (40000, 40100)), ([5000, 5010], (5000, 5010))])
def test_udp_port_range_forms(write_config, raw, expected):
    config = write_config({"exchange": {"udp_port_range": raw}})
    assert config.exchange.udp_port_range == expected


@pytest.mark.parametrize("raw", ["40100-40000", "abc", [1], [0, 10]])
def test_udp_port_range_rejects_garbage(write_config, raw):
    with pytest.raises(ValueError):
        write_config({"exchange": {"udp_port_range": raw}})


def test_history_disabled_without_file(config):
    assert config.history_path is None
