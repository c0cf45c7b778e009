"""Broker selection."""
from insider_trader.execution.base_broker import BaseBroker
from config.settings import get_settings

def create_broker(settings=None) -> BaseBroker:
    """Build the broker named by BROKER_TYPE ('alpaca' or 'paper')."""
    settings = settings or get_settings()
    broker_type = settings.BROKER_TYPE.lower()

    if broker_type == 'alpaca':
        from insider_trader.execution.alpaca_broker import AlpacaBroker
        return AlpacaBroker(settings)
    if broker_type == 'paper':
        from insider_trader.execution.paper_broker import PaperBroker
        return PaperBroker()

    raise ValueError(f"Unknown BROKER_TYPE: {settings.BROKER_TYPE}")
