"""
Tests for the inbound event router.

Tests cover:
- /start upserts the user and sends the welcome keyboard
- Button presses send prompts and always acknowledge
- Contact and text events persist exactly one message
- Command-prefixed text and contact-carrying events are ignored
- Admin mirror on/off
- Store and transport failures do not block the other steps
- Store work runs off the event loop
"""

import asyncio
import json
import time
from datetime import datetime

import pytest
from telegram import InlineKeyboardMarkup, ReplyKeyboardMarkup

from enquiry_relay.errors import StoreError
from enquiry_relay.event_router import (
    AUTO_REPLY,
    BUTTON_PROMPTS,
    CONTACT_THANKS,
    InboundEventRouter,
    format_admin_notification,
)
from enquiry_relay.events import ButtonPress, ContactShared, Sender, SharedContact, StartCommand, TextMessage
from enquiry_relay.models import Message, User
from enquiry_relay.storage import SessionLocal

from conftest import FakeNotifier


SENDER = Sender(user_id="42", chat_id="4242", username="alice", first_name="Alice", last_name="Smith")
CONTACT_EVENT = ContactShared(
    sender=SENDER,
    contact=SharedContact(phone_number="+15550100", first_name="Alice", last_name="Smith", user_id=42),
)


def make_router(notifier, admin_chat_id=None):
    return InboundEventRouter(SessionLocal, notifier, admin_chat_id=admin_chat_id)


def run(coro):
    return asyncio.run(coro)


class TestStartCommand:

    def test_start_upserts_user_and_sends_welcome(self, db, notifier):
        run(make_router(notifier).on_start(StartCommand(sender=SENDER)))

        user = db.query(User).filter(User.user_id == "42").one()
        assert user.chat_id == "4242"

        assert len(notifier.sent) == 1
        chat_id, text, markup = notifier.sent[0]
        assert chat_id == "4242"
        assert "Welcome Alice" in text
        assert isinstance(markup, InlineKeyboardMarkup)
        actions = [button.callback_data for row in markup.inline_keyboard for button in row]
        assert actions == ["share_phone", "ask_question", "general_inquiry"]

    def test_start_does_not_store_a_message(self, db, notifier):
        run(make_router(notifier).on_start(StartCommand(sender=SENDER)))

        assert db.query(Message).count() == 0


class TestButtonPress:

    @pytest.mark.parametrize("action", ["ask_question", "general_inquiry"])
    def test_prompt_without_keyboard(self, db_tables, notifier, action):
        run(make_router(notifier).on_button(ButtonPress(callback_id="cb1", chat_id="4242", action=action)))

        assert notifier.sent == [("4242", BUTTON_PROMPTS[action], None)]
        assert notifier.acknowledged == ["cb1"]

    def test_share_phone_requests_contact(self, db_tables, notifier):
        run(make_router(notifier).on_button(ButtonPress(callback_id="cb2", chat_id="4242", action="share_phone")))

        _, text, markup = notifier.sent[0]
        assert text == BUTTON_PROMPTS["share_phone"]
        assert isinstance(markup, ReplyKeyboardMarkup)
        assert markup.one_time_keyboard is True
        assert markup.resize_keyboard is True
        assert markup.keyboard[0][0].request_contact is True
        assert notifier.acknowledged == ["cb2"]

    def test_unknown_action_still_acknowledges(self, db_tables, notifier):
        run(make_router(notifier).on_button(ButtonPress(callback_id="cb3", chat_id="4242", action="bogus")))

        assert notifier.sent == []
        assert notifier.acknowledged == ["cb3"]

    def test_acknowledges_even_when_prompt_fails(self, db_tables):
        notifier = FakeNotifier(fail_send=True)

        run(make_router(notifier).on_button(ButtonPress(callback_id="cb4", chat_id="4242", action="ask_question")))

        assert notifier.acknowledged == ["cb4"]


class TestContactShared:

    def test_contact_stores_message_and_thanks(self, db, notifier):
        run(make_router(notifier).on_contact(CONTACT_EVENT))

        assert db.query(User).count() == 1
        message = db.query(Message).one()
        assert message.message_type == "contact"
        assert message.content == "Phone: +15550100"
        assert message.sender_type is None
        assert json.loads(message.metadata_json) == {
            "kind": "contact",
            "first_name": "Alice",
            "last_name": "Smith",
            "user_id": 42,
        }
        assert notifier.sent == [("4242", CONTACT_THANKS, None)]

    def test_thanks_sent_when_message_store_fails(self, db, notifier, monkeypatch):
        def broken_insert(*args, **kwargs):
            raise StoreError("Failed to store message")

        monkeypatch.setattr("enquiry_relay.event_router.insert_message", broken_insert)

        run(make_router(notifier).on_contact(CONTACT_EVENT))

        assert db.query(User).count() == 1
        assert db.query(Message).count() == 0
        assert notifier.sent == [("4242", CONTACT_THANKS, None)]

    def test_persists_when_thanks_fails(self, db):
        notifier = FakeNotifier(fail_send=True)

        run(make_router(notifier).on_contact(CONTACT_EVENT))

        assert db.query(User).count() == 1
        assert db.query(Message).one().content == "Phone: +15550100"


class TestTextMessage:

    def test_text_stores_message_and_auto_replies(self, db, notifier):
        event = TextMessage(sender=SENDER, body="Do you ship abroad?", message_id=99)

        run(make_router(notifier).on_text(event))

        message = db.query(Message).one()
        assert message.message_type == "text"
        assert message.content == "Do you ship abroad?"
        metadata = json.loads(message.metadata_json)
        assert metadata["kind"] == "text"
        assert metadata["username"] == "alice"
        assert metadata["message_id"] == 99
        assert notifier.sent == [("4242", AUTO_REPLY, None)]

    def test_repeated_text_keeps_one_user_row(self, db, notifier):
        router = make_router(notifier)

        run(router.on_text(TextMessage(sender=SENDER, body="one")))
        run(router.on_text(TextMessage(sender=SENDER, body="two")))

        assert db.query(User).count() == 1
        assert db.query(Message).count() == 2

    def test_command_text_is_ignored(self, db, notifier):
        run(make_router(notifier).on_text(TextMessage(sender=SENDER, body="/help")))

        assert db.query(User).count() == 0
        assert db.query(Message).count() == 0
        assert notifier.sent == []

    def test_contact_message_is_ignored(self, db, notifier):
        run(make_router(notifier).on_text(TextMessage(sender=SENDER, body="", has_contact=True)))

        assert db.query(Message).count() == 0
        assert notifier.sent == []

    def test_admin_mirror_when_configured(self, db, notifier):
        run(make_router(notifier, admin_chat_id="999").on_text(TextMessage(sender=SENDER, body="hello")))

        assert [chat_id for chat_id, _, _ in notifier.sent] == ["4242", "999"]
        admin_text = notifier.sent[1][1]
        assert "Alice Smith (@alice)" in admin_text
        assert "💬 Message: hello" in admin_text
        assert "🆔 Chat ID: 4242" in admin_text

    def test_missing_username_falls_back_to_unknown(self, db, notifier):
        sender = Sender(user_id="5", chat_id="5", first_name="Bob")

        run(make_router(notifier).on_text(TextMessage(sender=sender, body="hey")))

        assert db.query(User).one().username == "Unknown"
        assert json.loads(db.query(Message).one().metadata_json)["username"] == "Unknown"

    def test_reply_sent_when_message_store_fails(self, db, notifier, monkeypatch):
        def broken_insert(*args, **kwargs):
            raise StoreError("Failed to store message")

        monkeypatch.setattr("enquiry_relay.event_router.insert_message", broken_insert)

        run(make_router(notifier).on_text(TextMessage(sender=SENDER, body="hello")))

        # The user row is written independently of the message row
        assert db.query(User).count() == 1
        assert db.query(Message).count() == 0
        assert notifier.sent == [("4242", AUTO_REPLY, None)]

    def test_persists_when_reply_fails(self, db):
        notifier = FakeNotifier(fail_send=True)

        run(make_router(notifier, admin_chat_id="999").on_text(TextMessage(sender=SENDER, body="hello")))

        assert db.query(Message).count() == 1


def test_slow_store_does_not_block_event_loop(db_tables, notifier, monkeypatch):
    from enquiry_relay import event_router

    real_upsert = event_router.upsert_user

    def slow_upsert(*args, **kwargs):
        time.sleep(0.3)
        return real_upsert(*args, **kwargs)

    monkeypatch.setattr("enquiry_relay.event_router.upsert_user", slow_upsert)

    async def scenario():
        ticks = 0
        done = asyncio.Event()

        async def heartbeat():
            nonlocal ticks
            while not done.is_set():
                ticks += 1
                await asyncio.sleep(0.01)

        task = asyncio.create_task(heartbeat())
        await make_router(notifier).on_text(TextMessage(sender=SENDER, body="hello"))
        done.set()
        await task
        return ticks

    assert run(scenario()) > 10
    assert notifier.sent == [("4242", AUTO_REPLY, None)]


def test_format_admin_notification():
    event = TextMessage(sender=Sender(user_id="1", chat_id="77"), body="ping")

    text = format_admin_notification(event, now=datetime(2025, 1, 15, 10, 0, 0))

    assert text == (
        "🔔 New message received:\n\n"
        "👤 From: Unknown (@Unknown)\n"
        "💬 Message: ping\n"
        "🕒 Time: 2025-01-15 10:00:00\n"
        "🆔 Chat ID: 77"
    )
