"""
Process settings loaded from the environment, with an optional .env file.
Credentials never live in the trading core configuration dictionaries.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class EnvSettings:
    api_key: str
    secret_key: str
    log_level: str = 'info'
    db_file_path: str = './trading_bot.db'
    environment: str = 'testnet'

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key)


def load_env_settings(env_file: Optional[str] = None) -> EnvSettings:
    """Read BYBIT_* credentials and process settings; a missing .env file is not an error."""
    load_dotenv(dotenv_path=env_file, override=False)

    return EnvSettings(
        api_key=os.getenv('BYBIT_API_KEY', ''),
        secret_key=os.getenv('BYBIT_SECRET_KEY', ''),
        log_level=os.getenv('LOG_LEVEL', 'info').lower(),
        db_file_path=os.getenv('DB_FILE_PATH', './trading_bot.db'),
        environment=os.getenv('TRADING_ENVIRONMENT', 'testnet').lower(),
    )
