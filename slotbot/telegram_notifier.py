from __future__ import annotations

import logging
from typing import Iterable

import httpx

logger = logging.getLogger(__name__)


async def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout_seconds: float = 20.0,
    client: httpx.AsyncClient | None = None,
) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    if client is None:
        async with httpx.AsyncClient(timeout=timeout_seconds) as own:
            r = await own.post(url, json=payload)
    else:
        r = await client.post(url, json=payload)

    r.raise_for_status()
    data = r.json()
    if not data.get("ok", False):
        raise RuntimeError(f"Telegram API error: {data}")


class TelegramNotifier:
    """Best-effort broadcast: failures are logged, never raised, never retried."""

    def __init__(
        self,
        bot_token: str,
        chat_ids: Iterable[str],
        *,
        admin_chat_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_ids = tuple(chat_ids)
        self.admin_chat_id = admin_chat_id
        self._client = client

    async def notify(self, text: str) -> int:
        return await self._broadcast(self._recipients(), text)

    async def notify_admin(self, text: str) -> int:
        # Служебные сообщения: только админу, если он задан, иначе всем.
        recipients = (self.admin_chat_id,) if self.admin_chat_id else self.chat_ids
        return await self._broadcast(recipients, text)

    def _recipients(self) -> tuple[str, ...]:
        result = list(self.chat_ids)
        if self.admin_chat_id and self.admin_chat_id not in result:
            result.append(self.admin_chat_id)
        return tuple(result)

    async def _broadcast(self, recipients: Iterable[str], text: str) -> int:
        delivered = 0
        for chat_id in recipients:
            try:
                await send_telegram_message(
                    bot_token=self.bot_token,
                    chat_id=chat_id,
                    text=text,
                    client=self._client,
                )
            except Exception as e:
                # Best-effort: don't stop sending to other chat_ids.
                logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
                continue
            delivered += 1
        return delivered
