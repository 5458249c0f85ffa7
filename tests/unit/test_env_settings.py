"""
Tests for environment settings loading.
"""

import pytest

from config.env_settings import EnvSettings, load_env_settings

ENV_VARS = ('BYBIT_API_KEY', 'BYBIT_SECRET_KEY', 'LOG_LEVEL', 'DB_FILE_PATH', 'TRADING_ENVIRONMENT')


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so values loaded from a .env file are removed on undo
    for name in ENV_VARS:
        monkeypatch.setenv(name, '')
        monkeypatch.delenv(name)
    return monkeypatch


class TestEnvSettings:
    """Test suite for load_env_settings."""

    def test_defaults_without_environment(self, clean_env, tmp_path):
        settings = load_env_settings(str(tmp_path / "missing.env"))

        assert settings.api_key == ''
        assert settings.has_credentials is False
        assert settings.log_level == 'info'
        assert settings.db_file_path == './trading_bot.db'
        assert settings.environment == 'testnet'

    def test_reads_process_environment(self, clean_env, tmp_path):
        clean_env.setenv('BYBIT_API_KEY', 'key')
        clean_env.setenv('BYBIT_SECRET_KEY', 'secret')
        clean_env.setenv('LOG_LEVEL', 'DEBUG')
        clean_env.setenv('TRADING_ENVIRONMENT', 'Mainnet')

        settings = load_env_settings(str(tmp_path / "missing.env"))

        assert settings.has_credentials is True
        assert settings.log_level == 'debug'
        assert settings.environment == 'mainnet'

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("BYBIT_API_KEY=file-key\nBYBIT_SECRET_KEY=file-secret\nDB_FILE_PATH=/tmp/bot.db\n")

        settings = load_env_settings(str(env_file))

        assert settings.api_key == 'file-key'
        assert settings.secret_key == 'file-secret'
        assert settings.db_file_path == '/tmp/bot.db'

    def test_process_environment_wins_over_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("BYBIT_API_KEY=file-key\n")
        clean_env.setenv('BYBIT_API_KEY', 'process-key')

        settings = load_env_settings(str(env_file))

        assert settings.api_key == 'process-key'

    def test_partial_credentials(self):
        assert EnvSettings(api_key='key', secret_key='').has_credentials is False
