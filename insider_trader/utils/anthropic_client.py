"""Anthropic Messages API client using requests."""
from typing import Optional
import requests
from insider_trader.utils.exceptions import ReasoningServiceError
from insider_trader.utils.logging import get_logger
from config.settings import get_settings, get_data_sources_config

logger = get_logger(__name__)

class ReasoningClient:
    """Sends one system prompt plus a user message and returns the text reply."""

    def __init__(self, settings=None, session: Optional[requests.Session] = None):
        settings = settings or get_settings()
        config = get_data_sources_config()['anthropic']
        self.api_url = config['api_url']
        self.api_version = config['api_version']
        self.timeout = config.get('request_timeout_seconds', 120)
        self.api_key = settings.ANTHROPIC_API_KEY
        self.model = settings.ANTHROPIC_MODEL
        self.max_tokens = settings.ANTHROPIC_MAX_TOKENS
        self.session = session or requests.Session()

    def invoke(self, system: str, portfolio_context: str, signals_context: str) -> str:
        """
        Ask the model for trading decisions.

        Raises:
            ReasoningServiceError: network failure, non-2xx status, non-JSON body
                or a response without a content block list
        """
        user_message = "\n".join([
            portfolio_context,
            "",
            signals_context,
            "",
            "Based on the above signals and portfolio state, provide your trading decisions.",
        ])

        try:
            response = self.session.post(
                self.api_url,
                headers={
                    'x-api-key': self.api_key,
                    'anthropic-version': self.api_version,
                    'content-type': 'application/json',
                },
                json={
                    'model': self.model,
                    'max_tokens': self.max_tokens,
                    'system': system,
                    'messages': [{'role': 'user', 'content': user_message}],
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ReasoningServiceError(f"Anthropic network error: {e}") from e

        if not response.ok:
            raise ReasoningServiceError(f"Anthropic API HTTP {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise ReasoningServiceError("Anthropic API returned non-JSON body") from e

        content = body.get('content') if isinstance(body, dict) else None
        if not isinstance(content, list):
            raise ReasoningServiceError(f"Anthropic response shape unexpected: {str(body)[:300]}")

        text = "".join(
            block.get('text') or ''
            for block in content
            if isinstance(block, dict) and block.get('type') == 'text'
        ).strip()

        logger.info("Reasoning service replied", model=self.model, chars=len(text))
        return text
