"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text

from enquiry_relay.storage import Base


class User(Base):
    """
    A Telegram user who has contacted the bot.

    Table: users
    Unique key: user_id (upsert conflict target)
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    chat_id = Column(String, nullable=False)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    last_interaction = Column(String, nullable=False, index=True)  # ISO-8601 UTC string


class Message(Base):
    """
    An inbound or operator-sent message. Rows are append-only.

    Table: messages
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    chat_id = Column(String, nullable=False)
    message_type = Column(String, nullable=False)  # text | contact
    content = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", Text, nullable=True)
    sender_type = Column(String, nullable=True)  # "admin" for operator sends
    timestamp = Column(String, nullable=False, index=True)  # ISO-8601 UTC string
