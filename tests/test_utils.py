"""
Tests for solana_utils and solana_base modules.
"""
import pytest

from solana_utils import (
    VOTE_PROGRAM_ID, VOTE_PROGRAM_INVOKE_PREFIX, DEFAULT_HEADERS, RETRY_BASE_DELAY,
    RETRY_MAX_ATTEMPTS, RpcError, NetworkError, SolanaToolError, LeaderScheduleError,
    load_config, settings_from_config, format_timestamp, shorten
)
from solana_base import SolanaTool


class TestConstants:
    """Test that constants are properly defined"""

    def test_vote_program_id(self):
        assert VOTE_PROGRAM_ID == "Vote111111111111111111111111111111111111111"

    def test_invoke_prefix(self):
        assert VOTE_PROGRAM_INVOKE_PREFIX == "Program Vote111111111111111111111111111111111111111 invoke"

    def test_default_headers(self):
        assert DEFAULT_HEADERS['Content-Type'] == 'application/json'

    def test_retry_defaults(self):
        assert RETRY_BASE_DELAY > 0
        assert RETRY_MAX_ATTEMPTS >= 1


class TestExceptions:
    """Tests for the exception hierarchy"""

    def test_rpc_error_carries_code(self):
        error = RpcError("rate limited", code=429)
        assert error.code == 429
        assert isinstance(error, SolanaToolError)

    def test_network_error_keeps_original(self):
        original = ValueError("boom")
        error = NetworkError("failed", original_error=original)
        assert error.original_error is original

    def test_leader_schedule_error_is_tool_error(self):
        assert issubclass(LeaderScheduleError, SolanaToolError)


class TestConfig:
    """Tests for config loading"""

    def test_load_config_missing_file(self, tmp_path):
        assert load_config(str(tmp_path / "missing.yaml")) == {}

    def test_load_config_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("retry:\n  base_delay: 1\n  max_attempts: 2\n")

        config = load_config(str(path))

        assert config['retry']['base_delay'] == 1

    def test_load_config_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("retry: [unclosed\n")

        assert load_config(str(path)) == {}

    def test_settings_from_config_overrides(self):
        settings = settings_from_config({'retry': {'max_attempts': 2}, 'jitter': {'min': 0, 'max': 1}})

        assert settings['max_attempts'] == 2
        assert settings['base_delay'] == RETRY_BASE_DELAY
        assert settings['jitter_min'] == 0
        assert settings['jitter_max'] == 1

    def test_settings_from_empty_config(self):
        settings = settings_from_config({})
        assert settings['max_attempts'] == RETRY_MAX_ATTEMPTS


class TestFormatting:
    """Tests for display helpers"""

    def test_format_timestamp_contains_utc(self):
        result = format_timestamp(1700000000)
        assert "UTC" in result
        assert "2023" in result

    def test_format_timestamp_invalid(self):
        assert format_timestamp("not a number").startswith("Unknown timestamp")

    def test_shorten_long_value(self):
        assert shorten(VOTE_PROGRAM_ID) == "Vote1111...11111111"

    def test_shorten_short_value(self):
        assert shorten("abc") == "abc"


class TestSolanaTool:
    """Tests for the SolanaTool base class"""

    def test_defaults(self):
        tool = SolanaTool()
        assert tool.rpc_url.startswith("https://")
        assert tool.base_delay == RETRY_BASE_DELAY
        assert tool.max_attempts == RETRY_MAX_ATTEMPTS

    def test_overrides(self):
        tool = SolanaTool(rpc_url="http://localhost:8899", base_delay=0.5, max_attempts=2)
        assert tool.rpc_url == "http://localhost:8899"
        assert tool.base_delay == 0.5
        assert tool.max_attempts == 2
        assert "localhost" in repr(tool)

    def test_headers_are_copied(self):
        tool = SolanaTool()
        tool.headers['X-Test'] = '1'
        assert 'X-Test' not in DEFAULT_HEADERS
