"""
Unit tests for processing configuration
"""

import pytest

from report_sync.config import STRATEGIES, ProcessingConfig


class TestProcessingConfig:
    """Test ProcessingConfig defaults and validation"""

    def test_defaults(self):
        config = ProcessingConfig()

        assert config.chunk_size is None
        assert config.concurrency == 3
        assert config.retry_attempts == 3
        assert config.retry_delay == 2.0
        assert config.retry_backoff == "linear"
        assert config.pause_between_chunks == 0.5
        assert config.poll_interval == 2.0
        assert config.task_timeout is None

    @pytest.mark.parametrize("overrides", [
        {"chunk_size": 0},
        {"concurrency": 0},
        {"retry_attempts": 0},
        {"retry_delay": -1.0},
        {"poll_interval": -0.5},
        {"task_timeout": 0},
        {"retry_backoff": "random"},
        {"chunk_size": 600},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ProcessingConfig(**overrides)

    def test_with_overrides_ignores_none(self):
        config = ProcessingConfig().with_overrides(concurrency=5, chunk_size=None)

        assert config.concurrency == 5
        assert config.chunk_size is None

    def test_to_dict(self):
        data = ProcessingConfig(chunk_size=100).to_dict()

        assert data["chunk_size"] == 100
        assert data["max_chunk_records"] == 500


class TestForVolume:
    """Test adaptive settings"""

    def test_small_upload(self):
        config = ProcessingConfig.for_volume(1_000)

        assert config.chunk_size == 100
        assert config.concurrency == 3
        assert config.pause_between_chunks == 0.5

    def test_medium_upload_lowers_concurrency(self):
        config = ProcessingConfig.for_volume(7_500)

        assert config.chunk_size == 100
        assert config.concurrency == 2

    def test_large_upload(self):
        config = ProcessingConfig.for_volume(20_000)

        assert config.chunk_size == 50
        assert config.concurrency == 2
        assert config.pause_between_chunks == 1.0

    def test_overrides_win(self):
        config = ProcessingConfig.for_volume(20_000, concurrency=4)

        assert config.concurrency == 4


class TestForStrategy:
    """Test named presets"""

    @pytest.mark.parametrize("name", sorted(STRATEGIES))
    def test_known_strategies(self, name):
        assert ProcessingConfig.for_strategy(name) == STRATEGIES[name]

    def test_conservative_is_gentler_than_fast(self):
        fast = ProcessingConfig.for_strategy("fast")
        conservative = ProcessingConfig.for_strategy("conservative")

        assert conservative.concurrency < fast.concurrency
        assert conservative.pause_between_chunks > fast.pause_between_chunks

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown strategy"):
            ProcessingConfig.for_strategy("reckless")


class TestFromEnv:
    """Test environment overrides"""

    def test_reads_prefixed_variables(self):
        environ = {
            "REPORT_SYNC_CHUNK_SIZE": "75",
            "REPORT_SYNC_CONCURRENCY": "4",
            "REPORT_SYNC_RETRY_DELAY": "0.5",
            "REPORT_SYNC_TASK_TIMEOUT": "600",
            "REPORT_SYNC_RETRY_BACKOFF": "exponential",
        }

        config = ProcessingConfig.from_env(environ=environ)

        assert config.chunk_size == 75
        assert config.concurrency == 4
        assert config.retry_delay == 0.5
        assert config.task_timeout == 600.0
        assert config.retry_backoff == "exponential"

    def test_blank_values_are_ignored(self):
        base = ProcessingConfig(concurrency=2)

        config = ProcessingConfig.from_env(base, environ={"REPORT_SYNC_CONCURRENCY": " "})

        assert config.concurrency == 2

    def test_invalid_number(self):
        with pytest.raises(ValueError, match="REPORT_SYNC_CONCURRENCY"):
            ProcessingConfig.from_env(environ={"REPORT_SYNC_CONCURRENCY": "many"})
