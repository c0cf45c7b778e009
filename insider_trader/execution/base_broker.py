"""
Abstract broker interface.
All broker adapters must implement this interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

class OrderSide(str, Enum):
    """Order side (buy or sell)."""
    BUY = "BUY"
    SELL = "SELL"

class OrderStatus(str, Enum):
    """Order execution status."""
    SUBMITTED = "SUBMITTED"
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

@dataclass
class OrderRequest:
    """Whole-share market order, optionally bracketed by stop-loss and take-profit legs."""
    symbol: str
    side: OrderSide
    quantity: float
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    time_in_force: str = "day"

    @property
    def is_bracket(self) -> bool:
        return self.stop_price is not None and self.take_profit_price is not None

@dataclass
class OrderResponse:
    """Standardized order response."""
    broker_order_id: str
    symbol: str
    side: OrderSide
    status: OrderStatus
    quantity: float
    filled_qty: float
    filled_avg_price: Optional[float]
    timestamp: datetime
    error_message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status not in (OrderStatus.REJECTED, OrderStatus.CANCELLED)

@dataclass
class BrokerPosition:
    """Current position snapshot."""
    symbol: str
    quantity: float
    avg_entry_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_pct: float
    side: str = "long"
    current_price: Optional[float] = None

@dataclass
class AccountSnapshot:
    """Account balances."""
    portfolio_value: float
    cash: float
    buying_power: float
    status: str = "ACTIVE"

class BaseBroker(ABC):
    """
    Abstract broker interface.
    All concrete brokers must implement these methods.
    """

    @abstractmethod
    def get_positions(self) -> List[BrokerPosition]:
        """Get all open positions."""
        pass

    @abstractmethod
    def get_account(self) -> AccountSnapshot:
        """Get account balances."""
        pass

    @abstractmethod
    def get_latest_prices(self, symbols: List[str]) -> Dict[str, float]:
        """
        Get the latest trade price per symbol.
        Symbols without a price are omitted rather than mapped to zero.
        """
        pass

    @abstractmethod
    def submit_order(self, order: OrderRequest) -> OrderResponse:
        """Submit an order to the broker."""
        pass

    def get_buying_power(self) -> float:
        """Cash available for new orders."""
        return self.get_account().buying_power

    def get_position(self, symbol: str) -> Optional[BrokerPosition]:
        """Get specific position by symbol."""
        for position in self.get_positions():
            if position.symbol == symbol:
                return position
        return None
