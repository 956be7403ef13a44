"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for engine configs.
"""

import os
import tempfile

import pytest
import yaml

from tutor_analytics.config.loader import (
    EngagementConfig,
    EngineConfig,
    EventStoreConfig,
    load_engine_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "event_store": {"fan_out_width": 4, "page_size": 100, "partition_limit": 2000},
            "request": {"timeout_seconds": 5, "default_window_days": 7},
            "engagement": {"message_rate_weight": 0.5, "response_time_weight": 0.5},
            "faq": {"similarity_threshold": 0.75, "min_occurrences": 2, "max_results": 5},
        })

        config = load_engine_config(config_path)

        assert config.event_store.fan_out_width == 4
        assert config.event_store.partition_limit == 2000
        assert config.request.timeout_seconds == 5.0
        assert isinstance(config.request.timeout_seconds, float)
        assert config.engagement.message_rate_weight == 0.5
        assert config.faq.similarity_threshold == 0.75

    def test_partial_config_keeps_defaults(self):
        config = load_engine_config(self._write_config({"faq": {"max_results": 3}}))

        assert config.faq.max_results == 3
        assert config.faq.similarity_threshold == 0.6
        assert config.event_store == EventStoreConfig()

    def test_empty_file_yields_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        assert load_engine_config(config_path) == EngineConfig.default()

    def test_missing_file_raises_error(self):
        with pytest.raises(FileNotFoundError):
            load_engine_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml_raises_error(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("event_store: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_engine_config(config_path)

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_engine_config(self._write_config({"metrics": {}}))

    def test_unknown_section_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown keys in event_store"):
            load_engine_config(self._write_config({"event_store": {"fan_out": 4}}))

    def test_non_dict_root_rejected(self):
        with pytest.raises(ValueError, match="root must be a dictionary"):
            load_engine_config(self._write_config([1, 2]))

    def test_wrong_types_rejected(self):
        with pytest.raises(ValueError, match="must be an integer"):
            load_engine_config(self._write_config({"event_store": {"page_size": 1.5}}))
        with pytest.raises(ValueError, match="must be a number"):
            load_engine_config(self._write_config({"request": {"timeout_seconds": "fast"}}))
        with pytest.raises(ValueError, match="must be a number"):
            load_engine_config(self._write_config({"event_store": {"fan_out_width": True}}))

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError, match="fan_out_width"):
            load_engine_config(self._write_config({"event_store": {"fan_out_width": 0}}))
        with pytest.raises(ValueError, match="similarity_threshold"):
            load_engine_config(self._write_config({"faq": {"similarity_threshold": 1.5}}))


class TestEngagementConfig:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            EngagementConfig(message_rate_weight=0.7, response_time_weight=0.4)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            EngagementConfig(message_rate_weight=1.2, response_time_weight=-0.2)
