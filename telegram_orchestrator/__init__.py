"""Debounced AI reply drafts for Telegram, approved through a bot."""

__version__ = "0.1.0"
