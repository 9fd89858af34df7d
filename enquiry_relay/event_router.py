"""
Inbound event routing.

One handler per event kind. Each handler performs its store writes and
replies as independent best-effort steps: a store failure never blocks the
reply and a failed reply never blocks the writes.
"""

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.orm import Session
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup

from enquiry_relay.errors import StoreError, TransportError
from enquiry_relay.events import ButtonPress, ContactShared, Sender, StartCommand, TextMessage
from enquiry_relay.metrics import record_bot_event
from enquiry_relay.schemas import ContactMetadata, TextMetadata, dump_metadata
from enquiry_relay.storage import UNKNOWN_USERNAME, insert_message, upsert_user

logger = logging.getLogger(__name__)
T = TypeVar("T")

COMMAND_PREFIX = "/"

SHARE_PHONE = "share_phone"
ASK_QUESTION = "ask_question"
GENERAL_INQUIRY = "general_inquiry"

WELCOME_TEMPLATE = """🎉 Welcome {first_name}!

I'm your enquiry chat bot. I'm here to help you with any questions or feedback you might have.

You can:
📝 Ask me any question
💬 Share your feedback
📱 Contact our support team

How can I assist you today?"""

BUTTON_PROMPTS = {
    SHARE_PHONE: "📱 Please share your phone number using the button below, or simply type it in the chat.",
    ASK_QUESTION: "❓ Please type your question and I'll do my best to help you!",
    GENERAL_INQUIRY: "💬 Please share your inquiry or feedback. I'm here to listen!",
}

CONTACT_THANKS = "📱 Thank you for sharing your contact information! Our team will reach out to you soon."

AUTO_REPLY = """✅ Thank you for your message!

Your inquiry has been received and our team will review it shortly. We appreciate your patience and will get back to you as soon as possible.

If you have any urgent matters, please don't hesitate to send another message."""

ADMIN_NOTIFICATION_TEMPLATE = """🔔 New message received:

👤 From: {name} (@{username})
💬 Message: {body}
🕒 Time: {time}
🆔 Chat ID: {chat_id}"""


def welcome_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("📱 Share Phone Number", callback_data=SHARE_PHONE),
            InlineKeyboardButton("❓ Ask a Question", callback_data=ASK_QUESTION),
        ],
        [InlineKeyboardButton("💬 General Inquiry", callback_data=GENERAL_INQUIRY)],
    ])


def contact_request_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton("Share Phone Number", request_contact=True)]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )


def format_admin_notification(event: TextMessage, now: Optional[datetime] = None) -> str:
    sender = event.sender
    name = " ".join(part for part in (sender.first_name, sender.last_name) if part)
    return ADMIN_NOTIFICATION_TEMPLATE.format(
        name=name or "Unknown",
        username=sender.username or UNKNOWN_USERNAME,
        body=event.body,
        time=(now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S"),
        chat_id=sender.chat_id,
    )


class InboundEventRouter:
    """
    Dispatches typed inbound events to their handlers.

    Args:
        session_factory: callable returning a SQLAlchemy Session
        notifier: object with async send(chat_id, text, reply_markup=None)
            and acknowledge(callback_query_id)
        admin_chat_id: destination for the admin mirror, None to disable it
    """

    def __init__(self, session_factory: Callable[[], Session], notifier, admin_chat_id: Optional[str] = None):
        self._session_factory = session_factory
        self._notifier = notifier
        self._admin_chat_id = admin_chat_id

    async def on_start(self, event: StartCommand) -> None:
        outcome = _Outcome(self._run_store)
        await outcome.store(self._upsert_sender, event.sender)

        text = WELCOME_TEMPLATE.format(first_name=event.sender.first_name or "")
        await outcome.send(self._notifier.send, event.sender.chat_id, text, reply_markup=welcome_keyboard())
        record_bot_event("start", outcome.result)

    async def on_button(self, event: ButtonPress) -> None:
        outcome = _Outcome(self._run_store)
        prompt = BUTTON_PROMPTS.get(event.action)
        if prompt is None:
            logger.info(f"Ignoring unknown button action: {event.action!r}")
            outcome.result = "ignored"
        else:
            markup = contact_request_keyboard() if event.action == SHARE_PHONE else None
            await outcome.send(self._notifier.send, event.chat_id, prompt, reply_markup=markup)

        # Always unblock the client, whatever branch ran
        await outcome.send(self._notifier.acknowledge, event.callback_id)
        record_bot_event("button", outcome.result)

    async def on_contact(self, event: ContactShared) -> None:
        outcome = _Outcome(self._run_store)
        sender = event.sender
        contact = event.contact
        metadata = ContactMetadata(
            first_name=contact.first_name,
            last_name=contact.last_name,
            user_id=contact.user_id,
        )
        await outcome.store(self._upsert_sender, sender)
        await outcome.store(
            insert_message,
            user_id=sender.user_id,
            chat_id=sender.chat_id,
            message_type="contact",
            content=f"Phone: {contact.phone_number}",
            metadata=dump_metadata(metadata),
        )

        await outcome.send(self._notifier.send, sender.chat_id, CONTACT_THANKS)
        record_bot_event("contact", outcome.result)

    async def on_text(self, event: TextMessage) -> None:
        if event.has_contact or event.body.startswith(COMMAND_PREFIX):
            record_bot_event("text", "ignored")
            return

        outcome = _Outcome(self._run_store)
        sender = event.sender
        metadata = TextMetadata(
            username=sender.username or UNKNOWN_USERNAME,
            first_name=sender.first_name,
            last_name=sender.last_name,
            message_id=event.message_id,
        )
        await outcome.store(self._upsert_sender, sender)
        await outcome.store(
            insert_message,
            user_id=sender.user_id,
            chat_id=sender.chat_id,
            message_type="text",
            content=event.body,
            metadata=dump_metadata(metadata),
        )

        await outcome.send(self._notifier.send, sender.chat_id, AUTO_REPLY)

        if self._admin_chat_id:
            await outcome.send(self._notifier.send, self._admin_chat_id, format_admin_notification(event))
        record_bot_event("text", outcome.result)

    async def _run_store(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run func(session, *args, **kwargs) in the default executor with its own session."""
        loop = asyncio.get_running_loop()
        bound = partial(self._with_session, func, *args, **kwargs)
        return await loop.run_in_executor(None, bound)

    def _with_session(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._session_factory() as db:
            return func(db, *args, **kwargs)

    @staticmethod
    def _upsert_sender(db: Session, sender: Sender):
        return upsert_user(
            db,
            user_id=sender.user_id,
            chat_id=sender.chat_id,
            username=sender.username,
            first_name=sender.first_name,
            last_name=sender.last_name,
        )


class _Outcome:
    """Runs best-effort steps and remembers how the event went."""

    def __init__(self, run_store):
        self.result = "handled"
        self._run_store = run_store

    async def store(self, func, *args, **kwargs):
        try:
            return await self._run_store(func, *args, **kwargs)
        except StoreError as e:
            logger.error(f"Store step failed, continuing: {e}")
            self.result = "store_error"
            return None

    async def send(self, func, *args, **kwargs):
        try:
            await func(*args, **kwargs)
        except TransportError as e:
            logger.error(f"Outbound step failed, continuing: {e}")
            self.result = "transport_error"
