"""Tests for environment-driven configuration."""

from object_matcher.config import MatcherConfig


class TestMatcherConfig:
    """Tests for MatcherConfig."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MATCH_MODEL_PATH", "/models/net.onnx")
        monkeypatch.setenv("MATCH_INPUT_WIDTH", "160")
        monkeypatch.setenv("MATCH_INPUT_HEIGHT", "128")
        monkeypatch.setenv("MATCH_OUTPUT_LENGTH", "512")
        monkeypatch.setenv("MATCH_THRESHOLD", "0.75")
        monkeypatch.setenv("MATCH_CYCLE_DELAY", "0.5")
        monkeypatch.setenv("MATCH_CYCLE_TIMEOUT", "3")

        config = MatcherConfig.from_env()
        assert config.model_path == "/models/net.onnx"
        assert config.input_size == (160, 128)
        assert config.output_length == 512
        assert config.threshold == 0.75
        assert config.cycle_delay == 0.5
        assert config.cycle_timeout == 3.0

    def test_timeout_unset(self, monkeypatch):
        monkeypatch.delenv("MATCH_CYCLE_TIMEOUT", raising=False)
        assert MatcherConfig.from_env().cycle_timeout is None

    def test_with_overrides_skips_none(self):
        config = MatcherConfig(threshold=0.6, cycle_delay=2.0)
        updated = config.with_overrides(threshold=0.8, cycle_delay=None)
        assert updated.threshold == 0.8
        assert updated.cycle_delay == 2.0
        assert config.threshold == 0.6
