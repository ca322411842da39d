"""
Discord webhook client for push alerts.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests


LEVEL_COLORS = {
    "DEBUG": 0x95A5A6,
    "INFO": 0x0099FF,
    "WARNING": 0xFFA500,
    "ERROR": 0xFF0000,
    "CRITICAL": 0xFF0000,
}


class DiscordWebhook:
    """Post messages (optionally with one embed) to a Discord webhook URL."""

    def __init__(self, webhook_url: str, *, username: str = "Grid Bot", timeout: float = 10) -> None:
        self.webhook_url = webhook_url
        self.username = username
        self.timeout = timeout

    def send_text(self, text: str, *, title: Optional[str] = None, level: str = "INFO") -> None:
        """
        Send ``text`` as an embed coloured by ``level``.

        Raises:
            requests.HTTPError: Discord rejected the payload.
        """
        embeds: List[Dict[str, Any]] = [
            {
                "title": title or "Grid Bot",
                "description": text[:4000],
                "color": LEVEL_COLORS.get(level.upper(), LEVEL_COLORS["INFO"]),
            }
        ]
        response = requests.post(
            self.webhook_url,
            json={"username": self.username, "embeds": embeds},
            timeout=self.timeout,
        )
        response.raise_for_status()
