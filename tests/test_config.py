"""
Tests for configuration validation and layered loading.
"""

from pathlib import Path

import pytest

from beatcast.config import EmitterConfig, load_config, read_config_file, resolve_event_filter
from beatcast.errors import ConfigError
from beatcast.events import EventType, default_events, tier1_events


class TestEmitterConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        cfg = EmitterConfig(input_file="song.wav")
        assert cfg.input_file == Path("song.wav")
        assert cfg.enabled_events == default_events()
        assert (cfg.multicast_group, cfg.port, cfg.ttl) == ("239.255.0.1", 5000, 1)
        assert cfg.loopback is True
        assert cfg.interface == "0.0.0.0"
        assert (cfg.sample_rate, cfg.frame_size, cfg.hop_size) == (44100, 2048, 1024)
        assert cfg.continuous_interval == 0.1
        assert cfg.position_interval == 1.0
        assert not cfg.preroll_enabled

    def test_frozen(self):
        cfg = EmitterConfig(input_file="song.wav")
        with pytest.raises(AttributeError):
            cfg.port = 6000

    def test_empty_filter_rejected(self):
        with pytest.raises(ConfigError, match="no valid events specified"):
            EmitterConfig(input_file="song.wav", enabled_events=frozenset())

    def test_transport_in_filter_rejected(self):
        with pytest.raises(ConfigError, match="transport events"):
            EmitterConfig(input_file="song.wav", enabled_events={EventType.TRACK_END})

    def test_hop_larger_than_frame_rejected(self):
        with pytest.raises(ConfigError, match="hop_size"):
            EmitterConfig(input_file="song.wav", frame_size=512, hop_size=1024)

    def test_zero_sample_rate_rejected(self):
        with pytest.raises(ConfigError, match="sample_rate must be positive"):
            EmitterConfig(input_file="song.wav", sample_rate=0)

    def test_non_multicast_group_rejected(self):
        with pytest.raises(ConfigError, match="not a multicast"):
            EmitterConfig(input_file="song.wav", multicast_group="192.168.1.10")

    def test_port_range(self):
        with pytest.raises(ConfigError, match="port"):
            EmitterConfig(input_file="song.wav", port=70000)

    def test_negative_preroll_rejected(self):
        with pytest.raises(ConfigError, match="preroll"):
            EmitterConfig(input_file="song.wav", preroll_s=-1.0)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EmitterConfig(input_file="song.wav", ttl=300)


class TestEventFilterResolution:
    """Test resolving filters from presets, strings and lists."""

    def test_preset(self):
        assert resolve_event_filter("tier1") == tier1_events()

    def test_csv(self):
        assert resolve_event_filter("beat,gap") == {EventType.BEAT, EventType.GAP}

    def test_list_of_names(self):
        assert resolve_event_filter(["beat", "hum"]) == {EventType.BEAT, EventType.HUM}

    def test_all_invalid_raises(self):
        with pytest.raises(ConfigError, match="no valid events specified"):
            resolve_event_filter("bogus,track.start")

    def test_scalar_rejected(self):
        with pytest.raises(ConfigError, match="got int: 5"):
            resolve_event_filter(5)


class TestLoadConfig:
    """Test merging of defaults, config file and overrides."""

    def _write(self, tmp_path, text):
        path = tmp_path / "beatcast.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_file_values_applied(self, tmp_path):
        path = self._write(tmp_path, """
network:
  port: 6000
  unicast: gateway
analysis:
  hop_size: 512
transport:
  preroll: 2.5
events:
  enabled: [beat, downbeat]
""")
        cfg = load_config({"input_file": "song.wav"}, config_path=path)
        assert cfg.port == 6000
        assert cfg.unicast_target == "gateway"
        assert cfg.hop_size == 512
        assert cfg.preroll_s == 2.5
        assert cfg.enabled_events == {EventType.BEAT, EventType.DOWNBEAT}

    def test_overrides_beat_file(self, tmp_path):
        path = self._write(tmp_path, "network:\n  port: 6000\n  ttl: 4\n")
        cfg = load_config({"input_file": "song.wav", "port": 7000, "ttl": None}, config_path=path)
        assert cfg.port == 7000
        # None means "not given on the command line"
        assert cfg.ttl == 4

    def test_unknown_keys_ignored(self, tmp_path):
        path = self._write(tmp_path, "network:\n  colour: blue\nextra: 1\n")
        assert read_config_file(path) == {}

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config({"input_file": "song.wav"}, config_path=tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = self._write(tmp_path, "network: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config({"input_file": "song.wav"}, config_path=path)

    def test_numeric_event_selection(self, tmp_path):
        """A scalar under events.enabled is a config error, not a crash."""
        path = self._write(tmp_path, "events:\n  enabled: 5\n")
        with pytest.raises(ConfigError, match="events must be"):
            load_config({"input_file": "song.wav"}, config_path=path)

    def test_missing_input(self):
        with pytest.raises(ConfigError, match="no input file"):
            load_config({}, search_defaults=False)

    def test_default_locations_are_optional(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        cfg = load_config({"input_file": "song.wav"})
        assert cfg.port == 5000

    def test_default_location_loaded(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "beatcast-default.yaml").write_text(
            "network:\n  ttl: 8\n", encoding="utf-8"
        )
        cfg = load_config({"input_file": "song.wav"})
        assert cfg.ttl == 8
