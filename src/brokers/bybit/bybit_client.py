"""
Bybit v5 REST client for linear perpetuals.
Signs private requests with HMAC-SHA256, pages klines backwards and maps responses to core value types.
The client never retries; placement retry belongs to the order lifecycle controller.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from src.brokers.abstract_exchange_client import ExchangeClient
from src.brokers.bybit.placement_strategies import (PlacementStrategy, MarketPlacement, CATEGORY_LINEAR,
                                                     DEFAULT_PRICE_DECIMALS,
                                                     create_placement_strategy)
from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.market_types import Candle, Position, OrderAck
from src.core.shared_enums import TradeDirection, ExchangeEnvironment
from src.core.trading_errors import ExchangeRequestError, ExchangeResponseError

BASE_URLS = {
    ExchangeEnvironment.MAINNET: "https://api.bybit.com",
    ExchangeEnvironment.TESTNET: "https://api-testnet.bybit.com",
}

KLINE_ENDPOINT = "/v5/market/kline"
POSITION_LIST_ENDPOINT = "/v5/position/list"
WALLET_BALANCE_ENDPOINT = "/v5/account/wallet-balance"
ORDER_CREATE_ENDPOINT = "/v5/order/create"
ORDER_CANCEL_ENDPOINT = "/v5/order/cancel"
ORDER_REALTIME_ENDPOINT = "/v5/order/realtime"
ORDER_HISTORY_ENDPOINT = "/v5/order/history"

MAX_KLINE_PAGE = 1000


def _ts_ms() -> int:
    return int(time.time() * 1000)


def _to_float(value: Any, default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    return float(value)


class BybitClient(ExchangeClient):
    """One client for testnet and mainnet, parameterized by environment and placement strategy."""

    def __init__(self,
                 api_key: str,
                 api_secret: str,
                 environment: ExchangeEnvironment = ExchangeEnvironment.TESTNET,
                 placement_strategy: Optional[PlacementStrategy] = None,
                 recv_window: int = 5000,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.environment = environment
        self.base_url = BASE_URLS[environment]
        self.api_key = api_key or ""
        self.api_secret = (api_secret or "").encode("utf-8")
        self.placement_strategy = placement_strategy or MarketPlacement()
        self.recv_window = int(recv_window)
        self.timeout = float(timeout)
        self.sess = session or requests.Session()
        self.context_logger = get_context_logger()

    # <Signing - Begin>
    def _signature(self, timestamp: int, payload: str) -> str:
        """HMAC-SHA256 over timestamp + api_key + recv_window + payload."""
        pre_sign = f"{timestamp}{self.api_key}{self.recv_window}{payload}"
        return hmac.new(self.api_secret, pre_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def _auth_headers(self, payload: str) -> Dict[str, str]:
        if not self.api_key or not self.api_secret:
            raise ExchangeRequestError("Bybit private request requires api_key and api_secret")
        timestamp = _ts_ms()
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": str(timestamp),
            "X-BAPI-RECV-WINDOW": str(self.recv_window),
            "X-BAPI-SIGN": self._signature(timestamp, payload),
            "Content-Type": "application/json",
        }
    # <Signing - End>

    # <Core Request - Begin>
    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 signed: bool = False) -> Dict[str, Any]:
        """Send one request and return the parsed body. Raises on transport errors only."""
        url = f"{self.base_url}{path}"
        headers: Dict[str, str] = {}
        data: Optional[str] = None

        if method == "GET":
            query = urlencode(params or {})
            if query:
                url = f"{url}?{query}"
            if signed:
                headers = self._auth_headers(query)
        else:
            data = json.dumps(params or {}, separators=(",", ":"))
            headers = self._auth_headers(data) if signed else {"Content-Type": "application/json"}

        try:
            response = self.sess.request(method=method, url=url, headers=headers, data=data,
                                         timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            self.context_logger.log_event(
                TradingEventType.EXCHANGE_API,
                f"Bybit request failed: {method} {path}",
                context_provider={'error': str(e), 'error_type': type(e).__name__},
                decision_reason="EXCHANGE_TRANSPORT_ERROR"
            )
            raise ExchangeRequestError(f"Bybit request failed: {method} {path}: {e}") from e
        except ValueError as e:
            raise ExchangeRequestError(f"Bybit returned a non-JSON body: {method} {path}") from e

        if not isinstance(body, dict):
            raise ExchangeRequestError(f"Unexpected Bybit response shape: {method} {path}")
        return body

    def _checked(self, body: Dict[str, Any], action: str) -> Dict[str, Any]:
        """Return body['result'], raising when retCode is non-zero."""
        ret_code = body.get("retCode")
        if ret_code != 0:
            raise ExchangeResponseError(f"Bybit {action} failed: {body.get('retMsg', 'unknown error')}",
                                        ret_code)
        return body.get("result") or {}
    # <Core Request - End>

    def fetch_recent_candles(self, symbol: str, timeframe: str, count: int) -> List[Candle]:
        """Page backwards from now until count candles are collected; return them oldest first."""
        rows: List[List[str]] = []
        end_ms: Optional[int] = None

        while len(rows) < count:
            params: Dict[str, Any] = {
                "category": CATEGORY_LINEAR,
                "symbol": symbol,
                "interval": timeframe,
                "limit": min(MAX_KLINE_PAGE, count - len(rows)),
            }
            if end_ms is not None:
                params["end"] = end_ms

            result = self._checked(self._request("GET", KLINE_ENDPOINT, params), "kline")
            page = result.get("list") or []
            if not page:
                break

            # Pages arrive newest first
            rows.extend(page)
            end_ms = int(page[-1][0]) - 1
            if len(page) < params["limit"]:
                break

        candles = [self._parse_kline_row(row) for row in rows[:count]]
        candles.reverse()

        self.context_logger.log_event(
            TradingEventType.EXCHANGE_API,
            f"Fetched {len(candles)} candles",
            symbol=symbol,
            context_provider={'count': len(candles), 'timeframe': timeframe},
            decision_reason="CANDLES_FETCHED"
        )
        return candles

    @staticmethod
    def _parse_kline_row(row: List[str]) -> Candle:
        return Candle(
            timestamp=datetime.fromtimestamp(int(row[0]) / 1000),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )

    def get_active_positions(self, symbol: str) -> List[Position]:
        params = {"category": CATEGORY_LINEAR, "symbol": symbol}
        result = self._checked(self._request("GET", POSITION_LIST_ENDPOINT, params, signed=True), "position list")

        positions = []
        for item in result.get("list") or []:
            size = _to_float(item.get("size"))
            if size <= 0:
                continue
            updated = item.get("updatedTime")
            positions.append(Position(
                symbol=item.get("symbol", symbol),
                side=item.get("side", ""),
                size=size,
                entry_price=_to_float(item.get("avgPrice")),
                mark_price=_to_float(item.get("markPrice")),
                unrealised_pnl=_to_float(item.get("unrealisedPnl")),
                updated_at=datetime.fromtimestamp(int(updated) / 1000) if updated else None,
            ))
        return positions

    def get_available_balance(self, quote_asset: str) -> float:
        params = {"accountType": "UNIFIED", "coin": quote_asset}
        result = self._checked(self._request("GET", WALLET_BALANCE_ENDPOINT, params, signed=True), "wallet balance")

        for account in result.get("list") or []:
            for coin in account.get("coin") or []:
                if coin.get("coin") == quote_asset:
                    equity = coin.get("equity")
                    if equity in (None, ""):
                        return _to_float(coin.get("walletBalance"))
                    return float(equity)
        return 0.0

    def place_order(self, symbol: str, direction: TradeDirection, trigger_or_market_price: float,
                    quantity: float, stop_loss: float, take_profit: float) -> OrderAck:
        body = self.placement_strategy.build_order_request(
            symbol, direction, trigger_or_market_price, quantity, stop_loss, take_profit)
        response = self._request("POST", ORDER_CREATE_ENDPOINT, body, signed=True)

        if response.get("retCode") != 0:
            self.context_logger.log_event(
                TradingEventType.EXCHANGE_API,
                "Bybit rejected order request",
                symbol=symbol,
                context_provider={
                    'direction': direction.value,
                    'error': response.get('retMsg'),
                    'ret_code': response.get('retCode'),
                },
                decision_reason="ORDER_REQUEST_REJECTED"
            )
            return OrderAck(success=False, error_code=str(response.get("retCode")),
                            error_message=response.get("retMsg"), raw=response)

        result = response.get("result") or {}
        return OrderAck(
            success=True,
            exchange_order_id=result.get("orderId", ""),
            order_link_id=result.get("orderLinkId", ""),
            status=self.placement_strategy.initial_status,
            raw=response,
        )

    def cancel_order(self, symbol: str, order_id: str) -> OrderAck:
        body = {"category": CATEGORY_LINEAR, "symbol": symbol, "orderId": order_id}
        response = self._request("POST", ORDER_CANCEL_ENDPOINT, body, signed=True)

        if response.get("retCode") != 0:
            return OrderAck(success=False, exchange_order_id=order_id, error_code=str(response.get("retCode")),
                            error_message=response.get("retMsg"), raw=response)

        result = response.get("result") or {}
        return OrderAck(success=True, exchange_order_id=result.get("orderId", order_id),
                        order_link_id=result.get("orderLinkId", ""), status="Cancelled", raw=response)

    def get_order_status(self, symbol: str, order_id: str) -> str:
        params = {"category": CATEGORY_LINEAR, "symbol": symbol, "orderId": order_id}
        result = self._checked(self._request("GET", ORDER_REALTIME_ENDPOINT, params, signed=True), "order status")
        orders = result.get("list") or []

        if not orders:
            # Closed orders drop out of the realtime view
            result = self._checked(self._request("GET", ORDER_HISTORY_ENDPOINT, params, signed=True), "order history")
            orders = result.get("list") or []

        if not orders:
            raise ExchangeResponseError(f"Order {order_id} not found on exchange", 0)
        return orders[0].get("orderStatus", "")


def create_exchange_client(config: Dict[str, Any], api_key: str, api_secret: str,
                           session: Optional[requests.Session] = None) -> BybitClient:
    """Build a BybitClient from the 'exchange' configuration section."""
    exchange_config = config['exchange']
    strategy = create_placement_strategy(
        exchange_config['placement_strategy'],
        price_decimals=int(exchange_config.get('price_decimals', DEFAULT_PRICE_DECIMALS)),
        limit_offset_pct=float(exchange_config.get('stop_limit_offset_pct', 0.002)),
    )
    return BybitClient(
        api_key=api_key,
        api_secret=api_secret,
        environment=ExchangeEnvironment(exchange_config['environment']),
        placement_strategy=strategy,
        recv_window=exchange_config.get('recv_window', 5000),
        timeout=exchange_config.get('request_timeout_seconds', 10),
        session=session,
    )
