"""Telegram enquiry bot relay with an operator HTTP API."""

__version__ = "1.0.0"
