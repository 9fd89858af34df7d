"""
python-telegram-bot transport adapter.

Builds the Application, turns incoming Updates into typed events for the
InboundEventRouter and drives polling or webhook delivery.
"""

import logging
from typing import Any

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from enquiry_relay.config import Settings
from enquiry_relay.errors import ValidationError
from enquiry_relay.event_router import InboundEventRouter
from enquiry_relay.events import ButtonPress, ContactShared, Sender, SharedContact, StartCommand, TextMessage

logger = logging.getLogger(__name__)


def build_application(settings: Settings) -> Application:
    return ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()


# =============================================================================
# Update -> event conversion
# =============================================================================

def sender_from_update(update: Update) -> Sender:
    user = update.effective_user
    chat = update.effective_chat
    return Sender(
        user_id=str(user.id),
        chat_id=str(chat.id),
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
    )


def start_event(update: Update) -> StartCommand:
    return StartCommand(sender=sender_from_update(update))


def button_event(update: Update) -> ButtonPress:
    query = update.callback_query
    chat_id = query.message.chat.id if query.message else query.from_user.id
    return ButtonPress(callback_id=query.id, chat_id=str(chat_id), action=query.data)


def contact_event(update: Update) -> ContactShared:
    contact = update.effective_message.contact
    return ContactShared(
        sender=sender_from_update(update),
        contact=SharedContact(
            phone_number=contact.phone_number,
            first_name=contact.first_name,
            last_name=contact.last_name,
            user_id=contact.user_id,
        ),
    )


def text_event(update: Update) -> TextMessage:
    message = update.effective_message
    return TextMessage(
        sender=sender_from_update(update),
        body=message.text or "",
        message_id=message.message_id,
        has_contact=message.contact is not None,
    )


# =============================================================================
# Handler registration
# =============================================================================

def register_handlers(application: Application, router: InboundEventRouter) -> None:
    """
    Wire the router into the application. Order matters: /start is matched
    before the catch-all message handler, contacts before plain messages.
    """

    async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await router.on_start(start_event(update))

    async def handle_button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await router.on_button(button_event(update))

    async def handle_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await router.on_contact(contact_event(update))

    async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await router.on_text(text_event(update))

    application.add_handler(CommandHandler("start", handle_start))
    application.add_handler(CallbackQueryHandler(handle_button))
    application.add_handler(MessageHandler(filters.CONTACT, handle_contact))
    application.add_handler(MessageHandler(filters.UpdateType.MESSAGE & ~filters.CONTACT, handle_message))
    application.add_error_handler(handle_error)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error(f"Unhandled error while processing update: {context.error}", exc_info=context.error)


# =============================================================================
# Lifecycle
# =============================================================================

def webhook_url(settings: Settings) -> str:
    if not settings.WEBHOOK_BASE_URL:
        raise RuntimeError("WEBHOOK_BASE_URL must be set when BOT_MODE=webhook")
    return f"{settings.WEBHOOK_BASE_URL.rstrip('/')}/webhook/{settings.TELEGRAM_BOT_TOKEN}"


async def start_transport(application: Application, settings: Settings) -> None:
    """Start receiving updates according to BOT_MODE."""
    if settings.BOT_MODE == "disabled":
        logger.info("Bot transport disabled, not receiving updates")
        return

    await application.initialize()
    if settings.BOT_MODE == "webhook":
        await application.bot.set_webhook(webhook_url(settings), secret_token=settings.WEBHOOK_SECRET)
        logger.info("Bot started with webhook delivery")
    else:
        await application.updater.start_polling()
        logger.info("Bot started with polling")
    await application.start()


async def stop_transport(application: Application) -> None:
    if application.updater is not None and application.updater.running:
        await application.updater.stop()
    if application.running:
        await application.stop()
    await application.shutdown()
    logger.info("Bot transport stopped")


async def process_webhook_update(application: Application, payload: Any) -> Update:
    """
    Decode a webhook body and run it through the registered handlers.

    Raises:
        ValidationError: the body is not a Telegram Update
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid update")
    try:
        update = Update.de_json(payload, application.bot)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid update") from e
    if update is None:
        raise ValidationError("Invalid update")

    await application.process_update(update)
    return update
