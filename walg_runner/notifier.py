"""
Best-effort failure notifications through the Telegram Bot API.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Sends one-shot alert messages to a Telegram chat.

    Sending never raises: a missing configuration turns the notifier into a
    no-op and HTTP errors are only logged.
    """

    def __init__(self, bot_token=None, chat_id=None, prefix='WAL-G',
                 api_url='https://api.telegram.org', timeout=10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.prefix = prefix
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> 'TelegramNotifier':
        return cls(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            prefix=settings.telegram_message_prefix,
            api_url=settings.telegram_api_url,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send(self, message: str) -> bool:
        """
        Send a message.

        Args:
            message: Text to send (the configured prefix is prepended)

        Returns:
            True if the API accepted the message
        """
        if not self.enabled:
            logger.debug("Notification channel not configured, skipping")
            return False

        url = f"{self.api_url}/bot{self.bot_token}/sendMessage"
        try:
            response = requests.post(
                url,
                data={'chat_id': self.chat_id, 'text': f"{self.prefix}: {message}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            # The token is part of the URL; keep it out of the logs
            logger.warning(f"Failed to send notification: {type(e).__name__}")
            return False
