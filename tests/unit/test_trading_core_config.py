# tests/unit/test_trading_core_config.py
"""
Tests for trading core configuration module.
Validates loading, structure, validation, and default values.
"""

import pytest
from decimal import Decimal
from config.trading_core_config import get_config, validate_config, BASE_TRADING_CORE_CONFIG


class TestTradingCoreConfig:
    """Test suite for trading core configuration."""

    def test_load_default_config(self):
        """Test that default configuration loads with every section."""
        # Act
        config = get_config('default')

        # Assert
        for section in ('strategy', 'signal', 'order_policy', 'retry', 'exchange', 'scheduling',
                        'order_monitor', 'audit', 'database'):
            assert section in config

    def test_default_strategy_values(self):
        """Test the breakout defaults."""
        config = get_config('default')

        assert config['strategy']['symbol'] == 'DOGEUSDT'
        assert config['strategy']['candle_count'] == 1000
        assert config['signal']['lookback_candles'] == 72
        assert config['signal']['volume_ratio_threshold'] == Decimal('0.6')
        assert config['signal']['breakout_volume_multiplier'] == Decimal('1.2')
        assert config['order_policy']['take_profit_pct'] == Decimal('0.03')
        assert config['order_policy']['stop_loss_pct'] == Decimal('0.008')
        assert config['retry']['max_attempts'] == 3
        assert config['scheduling']['interval_seconds'] == 3600

    def test_load_testnet_config(self):
        config = get_config('testnet')

        assert config['exchange']['environment'] == 'testnet'
        assert config['exchange']['placement_strategy'] == 'market'

    def test_load_mainnet_config(self):
        """Mainnet arms conditional entries and has a smaller error budget."""
        config = get_config('mainnet')

        assert config['exchange']['environment'] == 'mainnet'
        assert config['exchange']['placement_strategy'] == 'conditional'
        assert config['scheduling']['max_errors'] == 5
        assert config['order_policy'] == BASE_TRADING_CORE_CONFIG['order_policy']

    def test_load_nonexistent_environment(self):
        """Test that loading non-existent environment raises ValueError."""
        with pytest.raises(ValueError, match="Unknown trading core environment"):
            get_config('paper')

    def test_config_immutability(self):
        """Test that returned config is a copy, not the original dict."""
        # Arrange
        config1 = get_config('default')
        config2 = get_config('default')

        # Act
        config1['retry']['max_attempts'] = 99

        # Assert
        assert config2['retry']['max_attempts'] == 3
        assert BASE_TRADING_CORE_CONFIG['retry']['max_attempts'] == 3

    @pytest.mark.parametrize("environment", ['default', 'testnet', 'mainnet'])
    def test_validate_shipped_configs(self, environment):
        # Act
        is_valid, message = validate_config(get_config(environment))

        # Assert
        assert is_valid, f"Validation failed: {message}"
        assert message == "Configuration is valid"

    def test_validate_missing_section(self):
        # Arrange
        config = get_config('default')
        del config['order_policy']

        # Act
        is_valid, message = validate_config(config)

        # Assert
        assert not is_valid
        assert "Missing required section: order_policy" in message

    def test_validate_missing_strategy_key(self):
        config = get_config('default')
        del config['strategy']['symbol']

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "Missing required strategy key: symbol" in message

    @pytest.mark.parametrize("value", [Decimal('0'), Decimal('1'), Decimal('1.5')])
    def test_validate_volume_ratio_bounds(self, value):
        config = get_config('default')
        config['signal']['volume_ratio_threshold'] = value

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "volume_ratio_threshold must be between 0 and 1" in message

    def test_validate_candle_count_covers_window(self):
        """The fetched series must hold the window plus the excluded recent candles."""
        config = get_config('default')
        config['strategy']['candle_count'] = 50

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "candle_count must be at least 74" in message

    def test_validate_stop_loss_percentage(self):
        config = get_config('default')
        config['order_policy']['stop_loss_pct'] = Decimal('-0.01')

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "stop_loss_pct must be between 0 and 1" in message

    def test_validate_retry_attempts(self):
        config = get_config('default')
        config['retry']['max_attempts'] = 0

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "max_attempts must be at least 1" in message

    def test_validate_unknown_placement_strategy(self):
        config = get_config('default')
        config['exchange']['placement_strategy'] = 'iceberg'

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "placement_strategy must be one of" in message

    def test_validate_unknown_exchange_environment(self):
        config = get_config('default')
        config['exchange']['environment'] = 'demo'

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "exchange.environment must be testnet or mainnet" in message

    def test_validate_monitor_stale_window(self):
        config = get_config('default')
        config['order_monitor']['stale_after_minutes'] = 0

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "stale_after_minutes must be positive" in message

    def test_validate_audit_retention(self):
        config = get_config('default')
        config['audit']['retention_days'] = -1

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "retention_days must be positive" in message

    def test_default_price_precision_fits_doge_ticks(self):
        config = get_config('default')

        assert config['exchange']['price_decimals'] == 5

    def test_validate_negative_price_decimals(self):
        config = get_config('default')
        config['exchange']['price_decimals'] = -1

        is_valid, message = validate_config(config)

        assert not is_valid
        assert "price_decimals must not be negative" in message
