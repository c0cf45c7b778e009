"""
Order placement for approved recommendations.
Converts a recommendation into a broker order and submits it.
"""
import math
from insider_trader.execution.base_broker import BaseBroker, OrderRequest, OrderResponse, OrderSide
from insider_trader.utils.constants import ACTION_BUY, ACTION_SELL
from insider_trader.utils.exceptions import BrokerError
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics

logger = get_logger(__name__)

class OrderManager:
    """
    Places the order behind an approved recommendation.

    BUY: whole shares worth of the notional at the live price, bracketed when
    stop < price < take-profit, otherwise a plain market order.
    SELL: the full held quantity.
    """

    def __init__(self, broker: BaseBroker):
        self.broker = broker

    def execute(self, recommendation) -> OrderResponse:
        """
        Raises:
            BrokerError: no live price, notional below one share, nothing held
                to sell, transport failure, or the broker rejected the order
        """
        if recommendation.action == ACTION_BUY:
            order = self._build_buy(recommendation)
        elif recommendation.action == ACTION_SELL:
            order = self._build_sell(recommendation)
        else:
            raise BrokerError(f"{recommendation.action} recommendations cannot be executed as trades.")

        response = self.broker.submit_order(order)
        metrics.record_order_executed(order.side.value, response.status.value)

        if not response.accepted:
            raise BrokerError(f"Order rejected for {order.symbol}: {response.error_message or response.status.value}")

        logger.info(
            "Order submitted",
            rec_id=recommendation.rec_id,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            bracket=order.is_bracket,
            broker_order_id=response.broker_order_id,
            status=response.status.value
        )
        return response

    def _build_buy(self, recommendation) -> OrderRequest:
        ticker = recommendation.ticker
        price = self.broker.get_latest_prices([ticker]).get(ticker)
        if not price:
            raise BrokerError(f"Cannot place order for {ticker}: current price unavailable. Please retry.")

        quantity = math.floor(recommendation.notional / price)
        if quantity < 1:
            raise BrokerError(
                f"Notional ${recommendation.notional:.2f} is too small to buy 1 share of {ticker} at ${price:.2f}."
            )

        stop = recommendation.stop_price
        target = recommendation.take_profit_price
        if stop is not None and target is not None:
            if stop < price < target:
                return OrderRequest(
                    symbol=ticker,
                    side=OrderSide.BUY,
                    quantity=quantity,
                    stop_price=stop,
                    take_profit_price=target
                )
            logger.warning(
                "Bracket levels invalid for live price, placing plain market buy",
                ticker=ticker,
                price=price,
                stop_price=stop,
                take_profit_price=target
            )

        return OrderRequest(symbol=ticker, side=OrderSide.BUY, quantity=quantity)

    def _build_sell(self, recommendation) -> OrderRequest:
        ticker = recommendation.ticker
        position = self.broker.get_position(ticker)
        if position is None or position.quantity <= 0:
            raise BrokerError(f"Cannot sell {ticker}: no open position found in the portfolio.")
        return OrderRequest(symbol=ticker, side=OrderSide.SELL, quantity=position.quantity)
