"""Telegram Bot API notification channel."""
import re
from typing import Dict, List, Optional
import requests
from insider_trader.utils.constants import utcnow
from insider_trader.utils.exceptions import NotificationError
from insider_trader.utils.logging import get_logger
from config.settings import get_settings, get_data_sources_config

logger = get_logger(__name__)

_MD_SPECIAL = re.compile(r'([*_`\[])')

ACTION_EMOJI = {
    'BUY': '🟢',
    'SELL': '🔴',
    'HOLD': '🟡',
}

def escape_md(text) -> str:
    """Escape Telegram Markdown (v1) formatting characters."""
    return _MD_SPECIAL.sub(r'\\\1', str(text))

def format_money(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.0f}K"
    return f"${value:.2f}"

class TelegramNotifier:
    """
    Posts Markdown messages to the operator chat.

    Raises NotificationError on network failure, non-JSON bodies, HTTP errors
    and `{"ok": false}` replies alike.
    """

    def __init__(self, settings=None, session: Optional[requests.Session] = None):
        settings = settings or get_settings()
        config = get_data_sources_config()['telegram']
        self.api_url = config['api_url'].rstrip('/')
        self.timeout = config.get('request_timeout_seconds', 15)
        self.token = settings.TELEGRAM_BOT_TOKEN
        self.chat_id = settings.TELEGRAM_CHAT_ID
        self.approval_base_url = settings.APPROVAL_BASE_URL.rstrip('/')
        self.expiry_hours = settings.APPROVAL_EXPIRY_HOURS
        self.session = session or requests.Session()

    def _post(self, method: str, body: Dict):
        url = f"{self.api_url}/bot{self.token}/{method}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"Telegram network error: {method}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise NotificationError(f"Telegram API returned non-JSON body: {method} [HTTP {response.status_code}]") from e

        if not response.ok or not data.get('ok'):
            description = data.get('description', data) if isinstance(data, dict) else data
            raise NotificationError(f"Telegram API error on {method} [HTTP {response.status_code}]: {description}")
        return data.get('result')

    def send_message(self, text: str, chat_id: Optional[str] = None):
        """Send a Markdown message to the operator chat, or to chat_id when replying."""
        return self._post('sendMessage', {
            'chat_id': chat_id or self.chat_id,
            'parse_mode': 'Markdown',
            'text': text,
        })

    def set_webhook(self, url: str):
        """Point the bot's message updates at url."""
        return self._post('setWebhook', {'url': url, 'allowed_updates': ['message']})

    def send_approval_request(self, recommendation, current_price: Optional[float] = None):
        """Recommendation card with Approve and Reject link buttons."""
        rec_id = recommendation.rec_id
        if not rec_id:
            raise NotificationError("Recommendation id is required to build approval links")

        lines = [
            "🚨 *INSIDER TRADE SIGNAL*",
            "",
            f"{ACTION_EMOJI.get(recommendation.action, '')} *Action:* {recommendation.action}",
            f"*Ticker:* ${escape_md(recommendation.ticker)}",
            f"*Notional:* {escape_md(format_money(recommendation.notional))}",
        ]
        if current_price is not None:
            lines.append(f"*Current Price:* {escape_md(format_money(current_price))}")
        if recommendation.stop_price is not None:
            lines.append(f"🛑 *Stop-Loss:* {escape_md(f'${recommendation.stop_price:.2f}')}")
        if recommendation.take_profit_price is not None:
            lines.append(f"🎯 *Take-Profit:* {escape_md(f'${recommendation.take_profit_price:.2f}')}")
        lines += [
            "",
            "📋 *Agent Reasoning:*",
            escape_md(recommendation.reasoning),
            "",
            f"`Recommendation ID: {rec_id}`",
            f"_Expires in {self.expiry_hours:g}h, approve or it auto-expires._",
        ]

        result = self._post('sendMessage', {
            'chat_id': self.chat_id,
            'parse_mode': 'Markdown',
            'text': "\n".join(lines),
            'reply_markup': {
                'inline_keyboard': [[
                    {'text': '✅ Approve', 'url': f"{self.approval_base_url}/approve?id={rec_id}"},
                    {'text': '❌ Reject', 'url': f"{self.approval_base_url}/reject?id={rec_id}"},
                ]],
            },
        })
        logger.info("Approval request sent", rec_id=rec_id, ticker=recommendation.ticker)
        return result

    def send_portfolio_summary(self, account, positions: List, prices: Dict[str, float],
                               theses: Optional[List] = None, chat_id: Optional[str] = None):
        """Account balances plus per-position entry, live price, value, P/L and bracket levels."""
        thesis_by_ticker = {}
        for thesis in theses or []:
            thesis_by_ticker.setdefault(thesis.ticker, thesis)

        lines = [
            "💼 *PAPER ACCOUNT SUMMARY*",
            "",
            f"💰 *Net Worth:* {escape_md(format_money(account.portfolio_value))}",
            f"💵 *Cash:* {escape_md(format_money(account.cash))}",
            f"⚡ *Buying Power:* {escape_md(format_money(account.buying_power))}",
        ]

        if not positions:
            lines += ["", "📊 *Positions:* _(none, account is flat)_"]
        else:
            lines += ["", f"📊 *Open Positions ({len(positions)}):*", ""]
            total_pnl = 0.0
            for p in positions:
                total_pnl += p.unrealized_pnl
                sign = '+' if p.unrealized_pnl >= 0 else '-'
                current = prices.get(p.symbol)
                price_str = f"${p.avg_entry_price:.2f}"
                if current is not None:
                    price_str += f" → ${current:.2f}"
                pnl_str = f"{sign}{format_money(abs(p.unrealized_pnl))} ({sign}{abs(p.unrealized_pnl_pct) * 100:.2f}%)"

                lines += [
                    f"*{escape_md(p.symbol)}* {escape_md(p.side.upper())} × {p.quantity:g} shares",
                    f"  Entry: {escape_md(price_str)}  |  Value: {escape_md(format_money(p.market_value))}",
                    f"  P/L: {escape_md(pnl_str)}",
                ]

                thesis = thesis_by_ticker.get(p.symbol)
                if thesis and (thesis.stop_price is not None or thesis.take_profit_price is not None):
                    parts = []
                    if thesis.stop_price is not None:
                        parts.append(f"🛑 Stop: ${thesis.stop_price:.2f}")
                    if thesis.take_profit_price is not None:
                        parts.append(f"🎯 Target: ${thesis.take_profit_price:.2f}")
                    lines.append(f"  {escape_md('  |  '.join(parts))}")
                lines.append("")

            total_sign = '+' if total_pnl >= 0 else '-'
            lines.append(f"💹 *Total Unrealized P/L:* {escape_md(total_sign + format_money(abs(total_pnl)))}")

        lines += ["", f"_Updated: {escape_md(utcnow().strftime('%a, %d %b %Y %H:%M:%S UTC'))}_"]
        return self.send_message("\n".join(lines), chat_id=chat_id)
