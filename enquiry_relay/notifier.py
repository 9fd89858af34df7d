import logging
from typing import Optional, Union

from telegram import Bot
from telegram.error import TelegramError

from enquiry_relay.errors import TransportError
from enquiry_relay.metrics import record_outbound_message

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Outbound side of the bot: one Bot API call per send, no retries.
    """

    def __init__(self, bot: Bot):
        self._bot = bot

    async def send(self, chat_id: Union[int, str], text: str, reply_markup=None) -> None:
        """
        Send text to chat_id, optionally with a keyboard.

        Raises:
            TransportError: the Bot API call failed
        """
        try:
            await self._bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        except TelegramError as e:
            record_outbound_message("failed")
            logger.error(f"Failed to send message to chat {chat_id}: {e}")
            raise TransportError("Failed to send message") from e
        record_outbound_message("sent")
        logger.info(f"Message sent to chat {chat_id}")

    async def acknowledge(self, callback_query_id: str, text: Optional[str] = None) -> None:
        """Answer a callback query so the client stops showing a spinner."""
        try:
            await self._bot.answer_callback_query(callback_query_id, text=text)
        except TelegramError as e:
            logger.error(f"Failed to answer callback query {callback_query_id}: {e}")
            raise TransportError("Failed to answer callback query") from e
