"""
Minimal Telegram Bot API client for push alerts.
"""

from __future__ import annotations

import requests


class TelegramBot:
    """Send HTML-formatted text messages to a single chat."""

    def __init__(self, token: str, chat_id: str, *, timeout: float = 10) -> None:
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self.api_url = f"https://api.telegram.org/bot{token}"

    def send_text(self, text: str) -> None:
        """
        Send ``text`` to the configured chat.

        Raises:
            requests.HTTPError: Telegram rejected the message.
        """
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        response = requests.post(f"{self.api_url}/sendMessage", json=payload, timeout=self.timeout)
        response.raise_for_status()
