from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from signalbot.config import MonitoringConfig

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertConfig:
    enabled: bool = True
    discord_webhook: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    cooldown_seconds: int = 30

    @property
    def has_channels(self) -> bool:
        discord = bool((self.discord_webhook or "").strip())
        telegram = bool((self.telegram_bot_token or "").strip() and (self.telegram_chat_id or "").strip())
        return discord or telegram


class AlertDispatcher:
    """Operator notifications for conditions that need a human (unprotected positions, failed cleanups)."""

    def __init__(self, config: AlertConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()
        self._last_sent_ts: dict[str, float] = {}

    def send(
        self,
        *,
        event: str,
        message: str,
        level: str = "info",
        context: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> bool:
        if not self.config.enabled or not self.config.has_channels:
            return False
        key = dedupe_key or event
        now = time.monotonic()
        prev = self._last_sent_ts.get(key)
        if prev is not None and (now - prev) < self.config.cooldown_seconds:
            LOGGER.debug("Alert %s suppressed by cooldown", key)
            return False
        self._last_sent_ts[key] = now

        text = f"[{level.upper()}] {event}: {message}"
        if context:
            text += " | " + " ".join(f"{k}={v}" for k, v in context.items())

        self._post_discord(text)
        self._post_telegram(text)
        return True

    def _post(self, channel: str, url: str, payload: dict[str, Any]) -> None:
        try:
            response = self.session.post(url, json=payload, timeout=10)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning("%s alert failed: %s", channel, exc)

    def _post_discord(self, text: str) -> None:
        webhook = (self.config.discord_webhook or "").strip()
        if webhook:
            self._post("Discord", webhook, {"content": text})

    def _post_telegram(self, text: str) -> None:
        bot_token = (self.config.telegram_bot_token or "").strip()
        chat_id = (self.config.telegram_chat_id or "").strip()
        if bot_token and chat_id:
            self._post(
                "Telegram",
                f"https://api.telegram.org/bot{bot_token}/sendMessage",
                {"chat_id": chat_id, "text": text},
            )


def build_alert_dispatcher(config: MonitoringConfig, env: Mapping[str, str]) -> AlertDispatcher:
    return AlertDispatcher(
        AlertConfig(
            enabled=config.alerts_enabled,
            discord_webhook=env.get("ALERT_DISCORD_WEBHOOK"),
            telegram_bot_token=env.get("ALERT_TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=env.get("ALERT_TELEGRAM_CHAT_ID"),
            cooldown_seconds=config.alert_cooldown_seconds,
        )
    )
