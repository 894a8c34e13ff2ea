"""Tests for main CLI module."""

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from transcribe_relay.config import AwsConfig, Config, ConfigError
from transcribe_relay.main import _merge_config_overrides, app

runner = CliRunner()


@pytest.fixture
def valid_config():
    return Config(aws=AwsConfig(region="us-east-1", access_key_id="AKID", secret_access_key="s3cr3t"))


class TestRunCommand:
    """Tests for run command."""

    @patch("transcribe_relay.main.asyncio.run")
    @patch("transcribe_relay.main.RelayServer")
    @patch("transcribe_relay.main.load_config")
    def test_run_starts_server(self, mock_load, mock_server_class, mock_asyncio_run, valid_config):
        """Test run loads config and serves."""
        mock_load.return_value = valid_config

        result = runner.invoke(app, ["run", "--port", "9001"])

        assert result.exit_code == 0
        mock_server_class.assert_called_once_with(valid_config, config_path=None)
        assert valid_config.server.port == 9001
        mock_asyncio_run.assert_called_once()

    @patch("transcribe_relay.main.load_config")
    def test_run_config_error(self, mock_load):
        """Test configuration errors exit with code 1."""
        mock_load.side_effect = ConfigError("Config file not found: missing.toml")

        result = runner.invoke(app, ["run", "--config", "missing.toml"])

        assert result.exit_code == 1

    @patch("transcribe_relay.main.RelayServer")
    @patch("transcribe_relay.main.load_config")
    def test_run_validation_error(self, mock_load, mock_server_class):
        """Test a config without region fails validation before serving."""
        mock_load.return_value = Config()

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        mock_server_class.assert_not_called()

    @patch("transcribe_relay.main.asyncio.run", side_effect=KeyboardInterrupt)
    @patch("transcribe_relay.main.RelayServer")
    @patch("transcribe_relay.main.load_config")
    def test_run_keyboard_interrupt(self, mock_load, mock_server_class, mock_asyncio_run, valid_config):
        """Test Ctrl-C exits cleanly."""
        mock_load.return_value = valid_config
        mock_server_class.return_value.serve = MagicMock()

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 0

    @patch("transcribe_relay.main.asyncio.run")
    @patch("transcribe_relay.main.RelayServer")
    @patch("transcribe_relay.main.load_config")
    def test_run_region_override(self, mock_load, mock_server_class, mock_asyncio_run):
        """Test --region satisfies validation when config lacks one."""
        cfg = Config()
        mock_load.return_value = cfg

        result = runner.invoke(app, ["run", "--region", "ap-southeast-2"])

        assert result.exit_code == 0
        assert cfg.aws.region == "ap-southeast-2"


class TestCheckConfigCommand:
    """Tests for check-config command."""

    @patch("transcribe_relay.main.load_config")
    def test_text_output_masks_secrets(self, mock_load, valid_config):
        mock_load.return_value = valid_config

        result = runner.invoke(app, ["check-config"])

        assert result.exit_code == 0
        assert "Configuration OK:" in result.stdout
        assert "[aws]" in result.stdout
        assert "region = us-east-1" in result.stdout
        assert "s3cr3t" not in result.stdout

    @patch("transcribe_relay.main.load_config")
    def test_json_output(self, mock_load, valid_config):
        mock_load.return_value = valid_config

        result = runner.invoke(app, ["check-config", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["aws"]["region"] == "us-east-1"
        assert data["aws"]["secret_access_key"] == "****"
        assert data["session"]["max_chunk_bytes"] == 10240

    @patch("transcribe_relay.main.load_config")
    def test_invalid_config(self, mock_load):
        mock_load.return_value = Config()

        result = runner.invoke(app, ["check-config"])

        assert result.exit_code == 1


class TestMergeConfigOverrides:
    """Tests for CLI override merging."""

    def test_no_overrides(self, valid_config):
        merged = _merge_config_overrides(valid_config)
        assert merged.server.host == "0.0.0.0"
        assert merged.server.port == 3000

    def test_all_overrides(self, valid_config):
        merged = _merge_config_overrides(
            valid_config, host="127.0.0.1", port=8081, region="eu-central-1"
        )
        assert merged.server.host == "127.0.0.1"
        assert merged.server.port == 8081
        assert merged.aws.region == "eu-central-1"
