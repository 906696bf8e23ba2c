"""Tests for configuration loading and logging helpers."""

import logging

import pytest

from contractrag.exceptions import ConfigurationError
from contractrag.utils import EngineConfig, load_config, preview, set_log_level


class TestConfig:
    """Tests for EngineConfig and load_config."""

    def test_defaults(self):
        """Test defaults match the documented constants."""
        config = EngineConfig()

        assert config.chunking.target_size == 1000
        assert config.chunking.overlap == 200
        assert config.embedding.batch_size == 100
        assert config.embedding.max_chars == 8000
        assert config.scoring.weights == {"CRITICAL": 30.0, "HIGH": 15.0, "MEDIUM": 5.0, "LOW": 2.0}
        assert config.store.backend == "memory"
        assert config.rules_path is None

    def test_missing_file_gives_defaults(self, tmp_path):
        """Test a missing config file falls back to defaults."""
        assert load_config(tmp_path / "absent.yaml") == EngineConfig()

    def test_yaml_file(self, tmp_path):
        """Test nested settings are read from YAML."""
        path = tmp_path / "contractrag.yaml"
        path.write_text(
            "embedding:\n"
            "  provider: hash\n"
            "  dimension: 64\n"
            "fuzzy:\n"
            "  threshold: 0.5\n"
            "analysis:\n"
            "  min_confidence: 0.4\n"
        )

        config = load_config(path)

        assert config.embedding.provider == "hash"
        assert config.embedding.dimension == 64
        assert config.fuzzy.threshold == 0.5
        assert config.analysis.min_confidence == 0.4
        assert config.chunking.target_size == 1000

    def test_json_file(self, tmp_path):
        """Test JSON config files are supported."""
        path = tmp_path / "contractrag.json"
        path.write_text('{"store": {"backend": "chroma", "persist_directory": "./kb"}}')

        config = load_config(path)

        assert config.store.backend == "chroma"
        assert config.store.persist_directory == "./kb"

    def test_unsupported_format(self, tmp_path):
        """Test unknown config formats are rejected."""
        path = tmp_path / "contractrag.toml"
        path.write_text("")

        with pytest.raises(ConfigurationError):
            load_config(path)


class TestLogging:
    """Tests for logging helpers."""

    def test_preview(self):
        """Test previews flatten whitespace and truncate."""
        assert preview("a\n  b") == "a b"
        assert preview("x" * 100, limit=10) == "x" * 10 + "..."
        assert preview(None) == ""

    def test_set_log_level(self):
        """Test the package log level can be changed by name."""
        set_log_level("DEBUG")
        assert logging.getLogger("contractrag").level == logging.DEBUG

        set_log_level(logging.INFO)
        assert logging.getLogger("contractrag").level == logging.INFO
