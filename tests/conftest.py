"""
Shared pytest fixtures for the insider trader test suite.

Provides:
  - ``db``: a session on a fresh in-memory SQLite database with every table.
  - ``paper_broker``: a paper broker with no slippage and no default price.
  - Fakes for the HTTP session, the reasoning service and the chat notifier.
  - ``make_record``: factory for Form 4 transaction records.
"""

import os

# Settings are cached on first use, so the environment must be set first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TELEGRAM_CHAT_ID", "ops-chat")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token")
os.environ.setdefault("APPROVAL_BASE_URL", "https://trader.example.com")
os.environ.setdefault("PIPELINE_TRIGGER_SECRET", "test-secret")
os.environ.setdefault("BROKER_TYPE", "paper")

from datetime import date
from typing import Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

import insider_trader.models  # noqa: F401  (registers every table)
from insider_trader.data.transformers import TransactionRecord
from insider_trader.execution.paper_broker import PaperBroker
from insider_trader.models.base import Base, build_engine
from insider_trader.utils.exceptions import NotificationError


PAPER_CONFIG = {
    "starting_cash": 100_000,
    "simulate_slippage": False,
    "slippage_bps": 0,
    "default_price": None,
}


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """A session on a fresh in-memory database. Closed after the test."""
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine, for tests that need two independent connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'trader.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


# ── Broker ────────────────────────────────────────────────────────────────────

@pytest.fixture
def paper_broker() -> PaperBroker:
    return PaperBroker(starting_cash=100_000, prices={}, config=dict(PAPER_CONFIG))


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code: int = 200, json_body=None, text: str = ""):
        self.status_code = status_code
        self._json = json_body
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeHttpSession:
    """Stands in for requests.Session; answers GETs from a url -> response table."""

    def __init__(self, routes: Optional[Dict[str, FakeResponse]] = None):
        self.routes = dict(routes or {})
        self.headers: Dict[str, str] = {}
        self.calls: List[dict] = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append({"method": "GET", "url": url, "params": params})
        response = self.routes.get(url)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return FakeResponse(404)
        return response

    def request(self, method, url, params=None, json=None, timeout=None):
        if method == "GET":
            return self.get(url, params=params, timeout=timeout)
        return self.post(url, json=json, timeout=timeout)

    def post(self, url, json=None, timeout=None, headers=None):
        self.calls.append({"method": "POST", "url": url, "json": json})
        response = self.routes.get(url)
        if isinstance(response, Exception):
            raise response
        return response or FakeResponse(200, {"ok": True, "result": {}})


class FakeReasoningClient:
    def __init__(self, reply: str = "[]"):
        self.reply = reply
        self.calls: List[tuple] = []

    def invoke(self, system, portfolio_context, signals_context):
        self.calls.append((system, portfolio_context, signals_context))
        return self.reply


class FakeNotifier:
    """Records everything it is asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[tuple] = []
        self.approvals: List[tuple] = []
        self.summaries: List[dict] = []
        self.webhooks: List[str] = []

    def _check(self):
        if self.fail:
            raise NotificationError("Telegram API error on sendMessage [HTTP 502]: Bad Gateway")

    def send_message(self, text, chat_id=None):
        self._check()
        self.messages.append((text, chat_id))

    def send_approval_request(self, recommendation, current_price=None):
        self._check()
        self.approvals.append((recommendation.rec_id, current_price))

    def send_portfolio_summary(self, account, positions, prices, theses=None, chat_id=None):
        self._check()
        self.summaries.append({
            "account": account, "positions": positions, "prices": prices,
            "theses": theses, "chat_id": chat_id,
        })

    def set_webhook(self, url):
        self._check()
        self.webhooks.append(url)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


# ── Domain factories ──────────────────────────────────────────────────────────

@pytest.fixture
def make_record():
    def _make(
        ticker: str = "ACME",
        insider_name: str = "Jane Doe",
        insider_role: str = "Director",
        transaction_date: date = date(2026, 3, 16),
        transaction_code: str = "P",
        shares: float = 1_000,
        price: float = 50.0,
        accession_number: Optional[str] = "0001234567-26-000001",
    ) -> TransactionRecord:
        return TransactionRecord(
            ticker=ticker,
            insider_name=insider_name,
            insider_role=insider_role,
            transaction_date=transaction_date,
            transaction_code=transaction_code,
            shares=shares,
            price=price,
            accession_number=accession_number,
        )
    return _make
