"""
Chat bot endpoints.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from insider_trader.api.dependencies import get_broker, get_notifier, get_pipeline_trigger
from insider_trader.core.chat_commands import ChatCommandHandler
from insider_trader.execution.base_broker import BaseBroker
from insider_trader.models.base import get_db
from insider_trader.notifications.telegram import TelegramNotifier
from insider_trader.utils.exceptions import NotificationError
from insider_trader.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

class TelegramChat(BaseModel):
    id: int

class TelegramMessage(BaseModel):
    message_id: int
    chat: TelegramChat
    text: Optional[str] = None

class TelegramUpdate(BaseModel):
    """Only the fields the bot acts on."""
    update_id: int
    message: Optional[TelegramMessage] = None

@router.post("/webhook", response_class=PlainTextResponse)
def telegram_webhook(
    update: TelegramUpdate,
    db: Session = Depends(get_db),
    notifier: TelegramNotifier = Depends(get_notifier),
    broker: BaseBroker = Depends(get_broker),
    trigger_pipeline=Depends(get_pipeline_trigger)
):
    """
    Receive a bot update and run the matching chat command.
    Always answers 200 once the body parses so the update is not redelivered.
    """
    message = update.message
    if message is None or not message.text:
        return PlainTextResponse("OK")

    handler = ChatCommandHandler(db, notifier, broker, trigger_pipeline)
    handler.handle(message.text, chat_id=str(message.chat.id))
    return PlainTextResponse("OK")

@router.get("/setup", response_class=PlainTextResponse)
def telegram_setup(request: Request, notifier: TelegramNotifier = Depends(get_notifier)):
    """Register this deployment's webhook URL with the bot. Hit once after deploying."""
    webhook_url = str(request.base_url).rstrip('/') + "/telegram/webhook"
    try:
        notifier.set_webhook(webhook_url)
    except NotificationError as e:
        logger.error("Webhook registration failed", url=webhook_url, error=str(e))
        return PlainTextResponse(f"❌ Webhook registration failed: {e}", status_code=500)

    logger.info("Webhook registered", url=webhook_url)
    return PlainTextResponse(f"✅ Webhook registered: {webhook_url}")
