"""Afripay Telegram bot — conversation orchestration core."""
