"""
Tests for the configuration module.

Run with: pytest tests/test_config.py -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import (
    get_capture_config,
    get_config,
    get_enrollment_config,
    get_project_root,
    get_section,
    get_server_config,
    get_verification_config,
    load_config,
)


class TestConfig:
    """Tests for config.yaml loading."""

    def test_project_root_has_config(self):
        assert (get_project_root() / "config.yaml").exists()

    def test_singleton(self):
        assert get_config() is get_config()

    def test_default_thresholds(self):
        assert get_enrollment_config()["sample_count"] == 5
        assert get_enrollment_config()["min_valid_fraction"] == 0.6
        assert get_verification_config()["sample_count"] == 3
        assert get_verification_config()["similarity_threshold"] == 0.88
        assert get_capture_config()["max_attempts"] == 50
        assert get_capture_config()["countdown_ticks"] == 2

    def test_missing_section(self):
        with pytest.raises(KeyError):
            get_section("does_not_exist")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_server_config(self):
        server = get_server_config()
        assert server["port"] == 8000
        assert server["host"] == "0.0.0.0"
