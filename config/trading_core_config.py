"""
Configuration for core trading system parameters.
Contains strategy selection, signal thresholds, order policy, retry, exchange, scheduling and audit settings.
"""

from decimal import Decimal
from typing import Any, Dict
import copy

# Base configuration structure
BASE_TRADING_CORE_CONFIG: Dict[str, Any] = {
    'strategy': {
        'symbol': 'DOGEUSDT',           # Single traded instrument (linear perpetual)
        'quote_asset': 'USDT',          # Balance asset used for position sizing
        'timeframe': '1',               # Kline interval in minutes, exchange notation
        'candle_count': 1000,           # Candles fetched per cycle
    },
    'signal': {
        'lookback_candles': 72,         # Wall/support window length
        'excluded_recent': 2,           # Candles between window end and series end
        'volume_match_count': 10,       # Same-colour candles accumulated for confirmation
        'volume_ratio_threshold': Decimal('0.6'),
        'breakout_volume_multiplier': Decimal('1.2'),
    },
    'order_policy': {
        'take_profit_pct': Decimal('0.03'),   # 3% from the reference price
        'stop_loss_pct': Decimal('0.008'),    # 0.8% from the reference price
    },
    'retry': {
        'max_attempts': 3,              # Total placement attempts, including the first
        'delay_seconds': 1.0,           # Fixed delay between attempts
    },
    'exchange': {
        'environment': 'testnet',
        'placement_strategy': 'market',       # market, conditional or stop_limit
        'recv_window': 5000,
        'request_timeout_seconds': 10,
        'stop_limit_offset_pct': Decimal('0.002'),
        'price_decimals': 5,                  # Symbol tick size precision for TP, SL and trigger prices
    },
    'scheduling': {
        'interval_seconds': 3600,       # One trading cycle per hour
        'align_to_interval': True,      # Start runs at the top of the interval
        'max_errors': 10,               # Consecutive errors before the job stops
        'error_backoff_base': 60,       # Base backoff time in seconds
        'max_backoff': 300,             # Maximum backoff time in seconds
    },
    # <Pending Order Monitor Configuration - Begin>
    'order_monitor': {
        'enabled': True,
        'interval_seconds': 300,
        'stale_after_minutes': 5,       # Unfilled orders older than this are cancelled
    },
    # <Pending Order Monitor Configuration - End>
    'audit': {
        'retention_days': 90,
        'purge_interval_seconds': 86400,
        'changed_by': 'system',
    },
    'database': {
        'path': './trading_bot.db',
    },
}

# Testnet configuration - same as base with explicit environment
TESTNET_CONFIG = copy.deepcopy(BASE_TRADING_CORE_CONFIG)

# Mainnet configuration - conditional entries and a shorter stale window
MAINNET_CONFIG = copy.deepcopy(BASE_TRADING_CORE_CONFIG)
MAINNET_CONFIG['exchange'].update({
    'environment': 'mainnet',
    'placement_strategy': 'conditional',
})
MAINNET_CONFIG['scheduling'].update({
    'max_errors': 5,
})

# Environment configurations
CONFIGS = {
    'testnet': TESTNET_CONFIG,
    'mainnet': MAINNET_CONFIG,
    'default': BASE_TRADING_CORE_CONFIG
}

PLACEMENT_STRATEGIES = ('market', 'conditional', 'stop_limit')


def get_config(environment: str = 'default') -> Dict[str, Any]:
    """
    Get trading core configuration for specific environment.

    Args:
        environment: Configuration environment ('testnet', 'mainnet', 'default')

    Returns:
        Configuration dictionary for the specified environment.

    Raises:
        ValueError: If the requested environment is not found.
    """
    if environment not in CONFIGS:
        raise ValueError(f"Unknown trading core environment: {environment}. "
                         f"Available: {list(CONFIGS.keys())}")

    # Return a deep copy to prevent accidental mutation
    return copy.deepcopy(CONFIGS[environment])


def validate_config(config: Dict[str, Any]) -> tuple[bool, str]:
    """
    Validate trading core configuration.

    Args:
        config: Configuration dictionary to validate.

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['strategy', 'signal', 'order_policy', 'retry', 'exchange', 'scheduling']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required section: {section}"

    strategy = config['strategy']
    for key in ['symbol', 'quote_asset', 'timeframe', 'candle_count']:
        if key not in strategy:
            return False, f"Missing required strategy key: {key}"

    # Validate signal thresholds
    signal = config['signal']
    if signal['lookback_candles'] <= 0:
        return False, "lookback_candles must be positive"
    if signal['excluded_recent'] < 1:
        return False, "excluded_recent must be at least 1"
    if signal['volume_match_count'] <= 0:
        return False, "volume_match_count must be positive"
    if not Decimal('0') < signal['volume_ratio_threshold'] < Decimal('1'):
        return False, "volume_ratio_threshold must be between 0 and 1"
    if signal['breakout_volume_multiplier'] <= Decimal('0'):
        return False, "breakout_volume_multiplier must be positive"

    required_candles = signal['lookback_candles'] + signal['excluded_recent']
    if strategy['candle_count'] < required_candles:
        return False, f"candle_count must be at least {required_candles}, got {strategy['candle_count']}"

    # Validate order policy percentages
    order_policy = config['order_policy']
    if not Decimal('0') < order_policy['take_profit_pct'] < Decimal('1'):
        return False, "take_profit_pct must be between 0 and 1"
    if not Decimal('0') < order_policy['stop_loss_pct'] < Decimal('1'):
        return False, "stop_loss_pct must be between 0 and 1"

    retry = config['retry']
    if retry['max_attempts'] < 1:
        return False, "max_attempts must be at least 1"
    if retry['delay_seconds'] < 0:
        return False, "delay_seconds must be non-negative"

    exchange = config['exchange']
    if exchange['environment'] not in ('testnet', 'mainnet'):
        return False, f"exchange.environment must be testnet or mainnet, got {exchange['environment']}"
    if exchange['placement_strategy'] not in PLACEMENT_STRATEGIES:
        return False, f"exchange.placement_strategy must be one of {PLACEMENT_STRATEGIES}"
    if exchange.get('price_decimals', 5) < 0:
        return False, "exchange.price_decimals must not be negative"
    if exchange['recv_window'] <= 0:
        return False, "exchange.recv_window must be positive"

    scheduling = config['scheduling']
    if scheduling['interval_seconds'] <= 0:
        return False, "scheduling.interval_seconds must be positive"
    if scheduling['max_errors'] <= 0:
        return False, "scheduling.max_errors must be positive"

    # <Pending Order Monitor Validation - Begin>
    if 'order_monitor' in config:
        monitor = config['order_monitor']
        if monitor.get('interval_seconds', 1) <= 0:
            return False, "order_monitor.interval_seconds must be positive"
        if monitor.get('stale_after_minutes', 1) <= 0:
            return False, "order_monitor.stale_after_minutes must be positive"
    # <Pending Order Monitor Validation - End>

    if 'audit' in config and config['audit'].get('retention_days', 1) <= 0:
        return False, "audit.retention_days must be positive"

    return True, "Configuration is valid"
