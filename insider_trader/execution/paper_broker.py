"""
Paper trading broker simulation.
Fills orders immediately against an in-process price table with simulated slippage.
"""
import threading
import uuid
from typing import Dict, List, Optional
from insider_trader.execution.base_broker import (
    AccountSnapshot, BaseBroker, BrokerPosition, OrderRequest, OrderResponse, OrderSide, OrderStatus
)
from insider_trader.utils.constants import utcnow
from insider_trader.utils.logging import get_logger
from config.settings import get_data_sources_config

logger = get_logger(__name__)

class PaperBroker(BaseBroker):
    """
    Simulated broker for paper trading.

    Features:
    - Immediate fills with simulated slippage
    - Bracket levels recorded with the position
    - Position and cash tracking

    State lives in this process only; use it for development and tests.
    """

    def __init__(
        self,
        starting_cash: Optional[float] = None,
        prices: Optional[Dict[str, float]] = None,
        config: Optional[Dict] = None
    ):
        """
        Initialize paper broker.

        Args:
            starting_cash: Starting cash balance (default from data_sources.yaml)
            prices: Initial symbol -> price table
            config: Paper broker config block
        """
        config = config or get_data_sources_config()['brokers']['paper']
        self.starting_cash = float(starting_cash if starting_cash is not None else config['starting_cash'])
        self.cash = self.starting_cash
        self.simulate_slippage = config.get('simulate_slippage', False)
        self.slippage_bps = config.get('slippage_bps', 0)
        self.default_price = config.get('default_price')
        self.prices: Dict[str, float] = dict(prices or {})
        self.positions: Dict[str, BrokerPosition] = {}
        self.brackets: Dict[str, Dict[str, float]] = {}
        self.orders: Dict[str, OrderResponse] = {}
        self._lock = threading.Lock()

        logger.info(
            "Paper broker initialized",
            starting_cash=self.starting_cash,
            slippage_enabled=self.simulate_slippage,
            slippage_bps=self.slippage_bps
        )

    def set_price(self, symbol: str, price: float):
        """Update the simulated market price and mark positions to it."""
        with self._lock:
            self.prices[symbol] = price
            position = self.positions.get(symbol)
            if position:
                self._mark(position, price)

    def get_positions(self) -> List[BrokerPosition]:
        return list(self.positions.values())

    def get_account(self) -> AccountSnapshot:
        positions_value = sum(pos.market_value for pos in self.positions.values())
        return AccountSnapshot(
            portfolio_value=self.cash + positions_value,
            cash=self.cash,
            buying_power=self.cash
        )

    def get_latest_prices(self, symbols: List[str]) -> Dict[str, float]:
        prices = {}
        for symbol in symbols:
            price = self.prices.get(symbol, self.default_price)
            if price:
                prices[symbol] = float(price)
        return prices

    def submit_order(self, order: OrderRequest) -> OrderResponse:
        """
        Simulate order execution.
        All orders are filled immediately at market with simulated slippage.
        """
        order_id = str(uuid.uuid4())
        base_price = self.get_latest_prices([order.symbol]).get(order.symbol)
        if base_price is None:
            return self._reject(order_id, order, f"No price available for {order.symbol}")

        slippage = base_price * self.slippage_bps / 10_000 if self.simulate_slippage else 0.0
        fill_price = base_price + slippage if order.side == OrderSide.BUY else base_price - slippage
        total_value = fill_price * order.quantity

        with self._lock:
            if order.side == OrderSide.BUY:
                if total_value > self.cash:
                    return self._reject(
                        order_id, order,
                        f"Insufficient cash: need ${total_value:.2f}, have ${self.cash:.2f}"
                    )
                self.cash -= total_value
                self._add_to_position(order.symbol, order.quantity, fill_price)
                if order.is_bracket:
                    self.brackets[order.symbol] = {
                        'stop_price': order.stop_price,
                        'take_profit_price': order.take_profit_price,
                    }
            else:
                position = self.positions.get(order.symbol)
                if not position or position.quantity < order.quantity:
                    return self._reject(order_id, order, "Insufficient shares to sell")
                self.cash += total_value
                self._remove_from_position(order.symbol, order.quantity)

        response = OrderResponse(
            broker_order_id=order_id,
            symbol=order.symbol,
            side=order.side,
            status=OrderStatus.FILLED,
            quantity=order.quantity,
            filled_qty=order.quantity,
            filled_avg_price=fill_price,
            timestamp=utcnow()
        )
        self.orders[order_id] = response

        logger.info(
            "Paper order filled",
            order_id=order_id,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            fill_price=fill_price,
            bracket=order.is_bracket
        )
        return response

    def _reject(self, order_id: str, order: OrderRequest, message: str) -> OrderResponse:
        logger.warning("Paper order rejected", symbol=order.symbol, side=order.side.value, reason=message)
        response = OrderResponse(
            broker_order_id=order_id,
            symbol=order.symbol,
            side=order.side,
            status=OrderStatus.REJECTED,
            quantity=order.quantity,
            filled_qty=0,
            filled_avg_price=None,
            timestamp=utcnow(),
            error_message=message
        )
        self.orders[order_id] = response
        return response

    @staticmethod
    def _mark(position: BrokerPosition, price: float):
        position.current_price = price
        position.market_value = price * position.quantity
        position.unrealized_pnl = (price - position.avg_entry_price) * position.quantity
        cost = position.avg_entry_price * position.quantity
        position.unrealized_pnl_pct = position.unrealized_pnl / cost if cost else 0.0

    def _add_to_position(self, symbol: str, quantity: float, price: float):
        """Add to or create position."""
        if symbol in self.positions:
            pos = self.positions[symbol]
            new_qty = pos.quantity + quantity
            pos.avg_entry_price = (pos.avg_entry_price * pos.quantity + price * quantity) / new_qty
            pos.quantity = new_qty
            self._mark(pos, price)
        else:
            self.positions[symbol] = BrokerPosition(
                symbol=symbol,
                quantity=quantity,
                avg_entry_price=price,
                market_value=price * quantity,
                unrealized_pnl=0.0,
                unrealized_pnl_pct=0.0,
                current_price=price
            )

    def _remove_from_position(self, symbol: str, quantity: float):
        """Remove from position."""
        pos = self.positions[symbol]
        pos.quantity -= quantity
        self._mark(pos, pos.current_price or pos.avg_entry_price)

        if pos.quantity <= 0:
            del self.positions[symbol]
            self.brackets.pop(symbol, None)
