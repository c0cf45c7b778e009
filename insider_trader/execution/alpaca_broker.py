"""Alpaca broker adapter over the REST API v2 using requests."""
from typing import Dict, List, Optional
import requests
from insider_trader.execution.base_broker import (
    AccountSnapshot, BaseBroker, BrokerPosition, OrderRequest, OrderResponse, OrderSide, OrderStatus
)
from insider_trader.utils.constants import utcnow
from insider_trader.utils.exceptions import BrokerError
from insider_trader.utils.logging import get_logger
from config.settings import get_settings, get_data_sources_config

logger = get_logger(__name__)

# Alpaca order status -> OrderStatus
_STATUS_MAP = {
    'filled': OrderStatus.FILLED,
    'partially_filled': OrderStatus.PARTIALLY_FILLED,
    'canceled': OrderStatus.CANCELLED,
    'expired': OrderStatus.CANCELLED,
    'rejected': OrderStatus.REJECTED,
}

def _to_float(value) -> Optional[float]:
    if value in (None, ''):
        return None
    return float(value)

class AlpacaBroker(BaseBroker):
    """
    Alpaca Markets account (paper or live, depending on ALPACA_BASE_URL).

    Every request raises BrokerError on network failure, non-2xx status or a
    non-JSON body, with the response text attached for context.
    """

    def __init__(self, settings=None, session: Optional[requests.Session] = None):
        settings = settings or get_settings()
        self.base_url = settings.ALPACA_BASE_URL.rstrip('/')
        self.data_url = settings.ALPACA_DATA_URL.rstrip('/')
        self.timeout = get_data_sources_config()['brokers']['alpaca'].get('request_timeout_seconds', 30)
        self.session = session or requests.Session()
        self.session.headers.update({
            'APCA-API-KEY-ID': settings.ALPACA_API_KEY,
            'APCA-API-SECRET-KEY': settings.ALPACA_API_SECRET,
        })

    def _request(self, method: str, url: str, **kwargs):
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise BrokerError(f"Alpaca network error: {url}: {e}") from e

        if not response.ok:
            raise BrokerError(f"Alpaca API HTTP {response.status_code}: {url}\n{response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise BrokerError(f"Alpaca API returned non-JSON body: {url}") from e

    def get_positions(self) -> List[BrokerPosition]:
        data = self._request('GET', f"{self.base_url}/v2/positions")
        try:
            return [
                BrokerPosition(
                    symbol=p['symbol'],
                    quantity=float(p['qty']),
                    avg_entry_price=float(p['avg_entry_price']),
                    market_value=float(p['market_value']),
                    unrealized_pnl=float(p['unrealized_pl']),
                    unrealized_pnl_pct=float(p['unrealized_plpc']),
                    side=p.get('side', 'long'),
                    current_price=_to_float(p.get('current_price'))
                )
                for p in data
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise BrokerError(f"Alpaca positions response shape mismatch: {e!r}") from e

    def get_account(self) -> AccountSnapshot:
        data = self._request('GET', f"{self.base_url}/v2/account")
        try:
            return AccountSnapshot(
                portfolio_value=float(data['portfolio_value']),
                cash=float(data['cash']),
                buying_power=float(data['buying_power']),
                status=data.get('status', '')
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BrokerError(f"Alpaca account response shape mismatch: {e!r}") from e

    def get_latest_prices(self, symbols: List[str]) -> Dict[str, float]:
        """Snapshot prices, falling back latestTrade -> minuteBar -> dailyBar."""
        if not symbols:
            return {}

        snapshots = self._request(
            'GET',
            f"{self.data_url}/v2/stocks/snapshots",
            params={'symbols': ','.join(symbols)}
        )

        prices = {}
        try:
            for symbol, snap in (snapshots or {}).items():
                snap = snap or {}
                for key, field in (('latestTrade', 'p'), ('minuteBar', 'c'), ('dailyBar', 'c')):
                    price = (snap.get(key) or {}).get(field)
                    if price is not None:
                        prices[symbol] = float(price)
                        break
        except (AttributeError, TypeError, ValueError) as e:
            raise BrokerError(f"Alpaca snapshots response shape mismatch: {e!r}") from e
        return prices

    def submit_order(self, order: OrderRequest) -> OrderResponse:
        body = {
            'symbol': order.symbol,
            'qty': str(int(order.quantity)) if order.side == OrderSide.BUY else str(order.quantity),
            'side': order.side.value.lower(),
            'type': 'market',
            'time_in_force': order.time_in_force,
        }
        if order.is_bracket:
            # OCO legs must outlive the entry fill
            body.update({
                'time_in_force': 'gtc',
                'order_class': 'bracket',
                'take_profit': {'limit_price': f"{order.take_profit_price:.2f}"},
                'stop_loss': {'stop_price': f"{order.stop_price:.2f}"},
            })

        data = self._request('POST', f"{self.base_url}/v2/orders", json=body)
        try:
            response = OrderResponse(
                broker_order_id=data['id'],
                symbol=order.symbol,
                side=order.side,
                status=_STATUS_MAP.get(data.get('status'), OrderStatus.SUBMITTED),
                quantity=order.quantity,
                filled_qty=_to_float(data.get('filled_qty')) or 0.0,
                filled_avg_price=_to_float(data.get('filled_avg_price')),
                timestamp=utcnow()
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise BrokerError(f"Alpaca order response shape mismatch for {order.symbol}: {e!r}") from e

        logger.info(
            "Alpaca order submitted",
            order_id=data.get('id'),
            symbol=order.symbol,
            side=order.side.value,
            qty=body['qty'],
            order_class=body.get('order_class', 'simple'),
            status=data.get('status')
        )
        return response
