"""
Operator chat commands.

Incoming bot messages are matched by keyword, in order:
portfolio query, set schedule, cancel schedule, show schedule, run now.
Anything else gets the help text. Replies go to the chat the message came
from and a failed reply never fails the webhook.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from sqlalchemy.orm import Session
from insider_trader.core.portfolio import get_positions_with_thesis
from insider_trader.execution.base_broker import BaseBroker
from insider_trader.notifications.telegram import TelegramNotifier
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.constants import CALLBACK_RUN_PIPELINE, JOB_KIND_CRON
from insider_trader.utils.exceptions import NotificationError
from insider_trader.utils.logging import get_logger
from insider_trader.utils.schedule_parser import parse_schedule_command, CST_UTC_OFFSET_HOURS

logger = get_logger(__name__)

PORTFOLIO_KEYWORDS = (
    "portfolio", "portofolio", "portfoilio", "portfollio",
    "/portfolio", "/portofolio",
    "net worth", "networth", "balance",
    "holdings", "positions", "account",
)

TRADE_KEYWORDS = (
    "trade", "/trade", "scan", "/scan", "run", "signal", "insider", "analyze", "start",
)

CANCEL_SCHEDULE_KEYWORDS = ("cancel schedule", "unschedule", "remove schedule")
SHOW_SCHEDULE_KEYWORDS = ("when", "next scan", "next run", "show schedule")

SCHEDULE_USAGE = (
    "⏰ *Schedule the pipeline*\n\n"
    "Tell me when to run, e.g.:\n"
    "• `schedule 6:30 PM weekdays`\n"
    "• `schedule 9 AM daily`\n"
    "• `schedule 18:30 weekdays`"
)

NO_SCHEDULE = (
    "📭 *No schedule set.*\n\n"
    "Say something like:\n"
    "`schedule 6:30 PM weekdays`\n"
    "to set one."
)

SCHEDULE_CANCELLED = (
    "🗑 *Schedule cancelled.* The pipeline will no longer run automatically.\n\n"
    "Say *trade* to run it manually anytime."
)

NO_ACTIVE_SCHEDULE = "ℹ️ No active schedule found."

SCAN_STARTED = (
    "🔍 *Scanning EDGAR for insider signals…*\n\n"
    "I'll send you approval cards shortly if I find anything worth trading."
)

HELP_TEXT = (
    "👋 *Available commands:*\n\n"
    "• *portfolio* — show live account & positions\n"
    "• *trade* — scan EDGAR & propose trades now\n"
    "• *schedule 6:30 PM weekdays* — set a recurring scan time\n"
    "• *when* — show the current schedule\n"
    "• *cancel schedule* — remove the recurring schedule"
)

def format_cst(moment: datetime) -> str:
    """Naive UTC timestamp as a short Central time string, e.g. 3/14/26, 6:30 PM."""
    local = moment - timedelta(hours=CST_UTC_OFFSET_HOURS)
    hour12 = local.hour % 12 or 12
    period = "PM" if local.hour >= 12 else "AM"
    return f"{local.month}/{local.day}/{local:%y}, {hour12}:{local:%M} {period}"

class ChatCommandHandler:
    """Dispatch one operator chat message to the matching command."""

    def __init__(
        self,
        db: Session,
        notifier: TelegramNotifier,
        broker: BaseBroker,
        trigger_pipeline: Callable[[], object]
    ):
        self.db = db
        self.notifier = notifier
        self.broker = broker
        self.trigger_pipeline = trigger_pipeline
        self.scheduler = DurableScheduler(db)

    def handle(self, text: Optional[str], chat_id: Optional[str] = None) -> Optional[str]:
        """
        Handle a message and reply to chat_id.

        Returns:
            Name of the command that ran, or None for messages without text
        """
        if not text:
            return None

        raw = text.strip()
        lowered = raw.lower()

        if any(kw in lowered for kw in PORTFOLIO_KEYWORDS):
            command, handler = 'portfolio', self._portfolio
        elif lowered.startswith("schedule") or lowered.startswith("/schedule"):
            command, handler = 'schedule', lambda cid: self._set_schedule(raw, cid)
        elif any(kw in lowered for kw in CANCEL_SCHEDULE_KEYWORDS):
            command, handler = 'cancel_schedule', self._cancel_schedule
        elif any(kw in lowered for kw in SHOW_SCHEDULE_KEYWORDS):
            command, handler = 'show_schedule', self._show_schedule
        elif any(kw in lowered for kw in TRADE_KEYWORDS):
            command, handler = 'run', self._run_now
        else:
            command, handler = 'help', lambda cid: self._reply(HELP_TEXT, cid)

        logger.info("Chat command received", command=command, chat_id=chat_id)
        handler(chat_id)
        return command

    def _reply(self, text: str, chat_id: Optional[str]):
        try:
            self.notifier.send_message(text, chat_id=chat_id)
        except NotificationError as e:
            logger.error("Chat reply failed", chat_id=chat_id, error=str(e))

    # ---------- Commands ----------

    def _portfolio(self, chat_id: Optional[str]):
        try:
            with ThreadPoolExecutor(max_workers=3) as executor:
                account_future = executor.submit(self.broker.get_account)
                positions_future = executor.submit(self.broker.get_positions)
                theses_future = executor.submit(get_positions_with_thesis, self.db)
                account = account_future.result()
                positions = positions_future.result()
                theses = theses_future.result()

            symbols = [p.symbol for p in positions]
            prices = self.broker.get_latest_prices(symbols) if symbols else {}
            self.notifier.send_portfolio_summary(account, positions, prices, theses=theses, chat_id=chat_id)
        except Exception as e:
            logger.error("Portfolio query failed", chat_id=chat_id, error=str(e))
            self._reply(f"⚠️ Failed to fetch account data: {e}", chat_id)

    def _set_schedule(self, raw_text: str, chat_id: Optional[str]):
        parsed = parse_schedule_command(raw_text)
        if parsed is None:
            self._reply(SCHEDULE_USAGE, chat_id)
            return

        cron, label = parsed
        try:
            self.scheduler.replace_cron(CALLBACK_RUN_PIPELINE, cron, payload={'label': label}, label=label)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to set schedule", cron=cron, error=str(e))
            self._reply(f"❌ Failed to set schedule: {e}", chat_id)
            return

        logger.info("Pipeline schedule set", cron=cron, label=label)
        self._reply(
            "✅ *Schedule set!*\n\n"
            f"Pipeline will run at *{label}*\n"
            f"_(UTC cron: `{cron}`)_\n\n"
            "Say *cancel schedule* to remove it.",
            chat_id
        )

    def _cancel_schedule(self, chat_id: Optional[str]):
        try:
            cancelled = self.scheduler.cancel_all(CALLBACK_RUN_PIPELINE, kind=JOB_KIND_CRON)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to cancel schedule", error=str(e))
            self._reply(f"❌ Error: {e}", chat_id)
            return

        self._reply(SCHEDULE_CANCELLED if cancelled else NO_ACTIVE_SCHEDULE, chat_id)

    def _show_schedule(self, chat_id: Optional[str]):
        jobs = self.scheduler.list_active(callback=CALLBACK_RUN_PIPELINE, kind=JOB_KIND_CRON)
        if not jobs:
            self._reply(NO_SCHEDULE, chat_id)
            return

        lines: List[str] = [
            f"• *{job.label or job.cron}* — next run: {format_cst(job.run_at)} CST"
            for job in jobs
        ]
        self._reply("⏰ *Active Schedule:*\n\n" + "\n".join(lines), chat_id)

    def _run_now(self, chat_id: Optional[str]):
        self._reply(SCAN_STARTED, chat_id)
        try:
            self.trigger_pipeline()
        except Exception as e:
            logger.error("Failed to start pipeline run", error=str(e))
            self._reply(f"❌ Error: {e}", chat_id)
