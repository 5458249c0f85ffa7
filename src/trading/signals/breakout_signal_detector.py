"""
Breakout signal detection over a closed candle series.
Finds the wall (highest high) and support (lowest low) of a lookback window, tests the last closed
candle against them and confirms the breakout with same-colour volume. Pure computation, no I/O.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from src.core.market_types import Candle
from src.core.shared_enums import TradeDirection
from src.core.trading_errors import InsufficientCandleDataError


@dataclass(frozen=True)
class BreakoutSignal:
    """Outcome of one breakout evaluation."""
    wall: float
    support: float
    wall_break: bool
    support_break: bool
    breaking_close: float
    breaking_volume: float
    matching_volume: float = 0.0
    general_volume: float = 0.0
    volume_ratio: float = 0.0
    volume_confirmed: bool = False

    @property
    def direction(self) -> Optional[TradeDirection]:
        if self.wall_break:
            return TradeDirection.LONG
        if self.support_break:
            return TradeDirection.SHORT
        return None

    @property
    def has_breakout(self) -> bool:
        return self.wall_break or self.support_break

    @property
    def should_trade(self) -> bool:
        return self.has_breakout and self.volume_confirmed


class BreakoutSignalDetector:
    """Evaluates wall and support breakouts with volume confirmation."""

    def __init__(self,
                 lookback_candles: int = 72,
                 excluded_recent: int = 2,
                 volume_match_count: int = 10,
                 volume_ratio_threshold: float = 0.6,
                 breakout_volume_multiplier: float = 1.2):
        self.lookback_candles = lookback_candles
        self.excluded_recent = excluded_recent
        self.volume_match_count = volume_match_count
        self.volume_ratio_threshold = volume_ratio_threshold
        self.breakout_volume_multiplier = breakout_volume_multiplier

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'BreakoutSignalDetector':
        signal_config = config['signal']
        return cls(
            lookback_candles=signal_config['lookback_candles'],
            excluded_recent=signal_config['excluded_recent'],
            volume_match_count=signal_config['volume_match_count'],
            volume_ratio_threshold=float(signal_config['volume_ratio_threshold']),
            breakout_volume_multiplier=float(signal_config['breakout_volume_multiplier']),
        )

    @property
    def required_candles(self) -> int:
        return self.lookback_candles + self.excluded_recent

    def detect(self, candles: Sequence[Candle]) -> BreakoutSignal:
        """
        Evaluate the series (oldest first). The breaking candle is candles[-2].

        Raises:
            InsufficientCandleDataError: fewer than lookback + excluded candles supplied
        """
        if len(candles) < self.required_candles:
            raise InsufficientCandleDataError(self.required_candles, len(candles))

        frame = self._to_frame(candles)
        window = frame.iloc[-self.required_candles:-self.excluded_recent]
        wall = float(window['high'].max())
        support = float(window['low'].min())

        breaking = frame.iloc[-2]
        breaking_close = float(breaking['close'])
        breaking_volume = float(breaking['volume'])

        # Exclusive by construction: support is only tested when the wall held
        wall_break = breaking_close > wall
        support_break = not wall_break and breaking_close < support

        if not (wall_break or support_break):
            return BreakoutSignal(wall=wall, support=support, wall_break=False, support_break=False,
                                  breaking_close=breaking_close, breaking_volume=breaking_volume)

        direction = TradeDirection.LONG if wall_break else TradeDirection.SHORT
        matching_volume, general_volume = self._scan_volume(frame, direction)
        volume_ratio = matching_volume / general_volume if general_volume > 0 else 0.0
        volume_confirmed = (volume_ratio > self.volume_ratio_threshold and
                            breaking_volume > volume_ratio * self.breakout_volume_multiplier)

        return BreakoutSignal(
            wall=wall,
            support=support,
            wall_break=wall_break,
            support_break=support_break,
            breaking_close=breaking_close,
            breaking_volume=breaking_volume,
            matching_volume=matching_volume,
            general_volume=general_volume,
            volume_ratio=volume_ratio,
            volume_confirmed=volume_confirmed,
        )

    def _scan_volume(self, frame: pd.DataFrame, direction: TradeDirection) -> tuple[float, float]:
        """
        Walk back from index len-2 to index 1, summing same-colour volume until
        volume_match_count matches are seen. General volume covers the same span.
        """
        scan = frame.iloc[1:len(frame) - 1].iloc[::-1]
        if direction is TradeDirection.LONG:
            matches = scan['close'] > scan['open']
        else:
            matches = scan['close'] < scan['open']

        match_counts = matches.cumsum()
        reached = match_counts >= self.volume_match_count
        if reached.any():
            stop = int(reached.to_numpy().argmax())
            scan = scan.iloc[:stop + 1]
            matches = matches.iloc[:stop + 1]

        matching_volume = float(scan.loc[matches, 'volume'].sum())
        general_volume = float(scan['volume'].sum())
        return matching_volume, general_volume

    @staticmethod
    def _to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
        return pd.DataFrame(
            [(c.open, c.high, c.low, c.close, c.volume) for c in candles],
            columns=['open', 'high', 'low', 'close', 'volume'],
        )
