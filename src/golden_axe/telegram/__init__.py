"""Telegram Bot API client, update transport and command handlers."""
