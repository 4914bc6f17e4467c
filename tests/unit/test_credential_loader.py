"""
Unit tests for API key file loading.
"""

import pytest

from mockforge.credentials.loader import load_credentials, parse_credentials
from mockforge.errors import ConfigurationError


class TestParseCredentials:
    """Tests for key file parsing."""

    def test_skips_blank_and_comment_lines(self):
        """Comments and blank lines are ignored; order is kept."""
        text = "# primary\nAIzaFirstKey0001\n\n   \n# backup\nAIzaSecondKey002\n"
        assert parse_credentials(text) == ["AIzaFirstKey0001", "AIzaSecondKey002"]

    def test_strips_whitespace(self):
        """Surrounding whitespace is not part of the key."""
        assert parse_credentials("   AIzaPaddedKey01  \r\n") == ["AIzaPaddedKey01"]

    def test_short_key_reports_line(self):
        """A short key names the offending line."""
        with pytest.raises(ConfigurationError, match="keys.txt:2: API key appears to be too short"):
            parse_credentials("AIzaValidKey0001\nshort\n", source="keys.txt")

    def test_empty_file_rejected(self):
        """A file with only comments has no keys."""
        with pytest.raises(ConfigurationError, match="No valid API keys"):
            parse_credentials("# nothing here\n\n")


class TestLoadCredentials:
    """Tests for reading the key file from disk."""

    def test_reads_file(self, tmp_path):
        """Keys are read in file order."""
        key_file = tmp_path / "api_key.txt"
        key_file.write_text("AIzaFirstKey0001\nAIzaSecondKey002\n", encoding="utf-8")

        assert load_credentials(key_file) == ["AIzaFirstKey0001", "AIzaSecondKey002"]

    def test_missing_file_fails(self, tmp_path):
        """A missing file without a fallback is a configuration error."""
        with pytest.raises(ConfigurationError, match="API key file not found"):
            load_credentials(tmp_path / "missing.txt")

    def test_missing_file_uses_fallback_key(self, tmp_path):
        """The environment key is used when the file is absent."""
        keys = load_credentials(tmp_path / "missing.txt", fallback_key="AIzaEnvironment01")
        assert keys == ["AIzaEnvironment01"]

    def test_file_wins_over_fallback(self, tmp_path):
        """An existing file takes precedence over the environment key."""
        key_file = tmp_path / "api_key.txt"
        key_file.write_text("AIzaFromFile0001\n", encoding="utf-8")

        assert load_credentials(key_file, fallback_key="AIzaEnvironment01") == ["AIzaFromFile0001"]
