"""
Typed inbound events.

The Telegram adapter converts each Update into one of these and pushes it
into the InboundEventRouter, so the router never touches telegram objects.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Sender:
    user_id: str
    chat_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class StartCommand:
    sender: Sender


@dataclass(frozen=True)
class ButtonPress:
    callback_id: str
    chat_id: str
    action: Optional[str]


@dataclass(frozen=True)
class SharedContact:
    phone_number: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_id: Optional[int] = None


@dataclass(frozen=True)
class ContactShared:
    sender: Sender
    contact: SharedContact


@dataclass(frozen=True)
class TextMessage:
    sender: Sender
    body: str
    message_id: Optional[int] = None
    has_contact: bool = False
