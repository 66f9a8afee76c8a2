"""Tests for configuration file loading and value parsing."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from drover.config import ConfigurationError, parse_list, parse_number, read_env_file


class TestReadEnvFile:
    def test_plain_file(self, tmp_path):
        env = tmp_path / "internal.env"
        env.write_text("INGEST_BASE_URL=http://ingest.local/api\nWATCH_WORKERS=8\n")

        values = read_env_file(env)

        assert values == {"INGEST_BASE_URL": "http://ingest.local/api", "WATCH_WORKERS": "8"}

    def test_missing_plain_file_is_empty(self, tmp_path):
        assert read_env_file(tmp_path / "internal.env") == {}

    def test_missing_encrypted_file_is_an_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            read_env_file(tmp_path / "internal.env.enc", encrypted=True)

    def test_encrypted_file_decrypted_with_sops(self, tmp_path):
        enc = tmp_path / "internal.env.enc"
        enc.write_text("ciphertext")
        decrypted = MagicMock(stdout="NOTIFY_HTTP_URL=http://alerts.local/hook\n")

        with patch("drover.config.subprocess.run", return_value=decrypted) as run:
            values = read_env_file(enc, encrypted=True)

        assert values == {"NOTIFY_HTTP_URL": "http://alerts.local/hook"}
        assert run.call_args.args[0][:2] == ["sops", "--decrypt"]

    def test_sops_failure_is_an_error(self, tmp_path):
        enc = tmp_path / "internal.env.enc"
        enc.write_text("ciphertext")
        failure = subprocess.CalledProcessError(128, ["sops"], stderr="no matching keys\n")

        with (
            patch("drover.config.subprocess.run", side_effect=failure),
            pytest.raises(ConfigurationError, match="no matching keys"),
        ):
            read_env_file(enc, encrypted=True)

    def test_sops_not_installed_is_an_error(self, tmp_path):
        enc = tmp_path / "internal.env.enc"
        enc.write_text("ciphertext")

        with (
            patch("drover.config.subprocess.run", side_effect=FileNotFoundError("sops")),
            pytest.raises(ConfigurationError, match="not installed"),
        ):
            read_env_file(enc, encrypted=True)


class TestParseValues:
    def test_number_default(self):
        assert parse_number({}, "WATCH_WORKERS", "4", int) == 4

    def test_number_from_values(self):
        assert parse_number({"INGEST_TIMEOUT": "12.5"}, "INGEST_TIMEOUT", "30") == 12.5

    @pytest.mark.parametrize("raw", ["many", "0", "-3"])
    def test_invalid_number(self, raw):
        with pytest.raises(ConfigurationError, match="WATCH_WORKERS"):
            parse_number({"WATCH_WORKERS": raw}, "WATCH_WORKERS", "4", int)

    def test_parse_list(self):
        assert parse_list(" *.txt, *.csv ,,") == ["*.txt", "*.csv"]
