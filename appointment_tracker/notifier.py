"""
Telegram transport for notification batches.

Отправка найденных слотов в Telegram. Движок решает, что отправлять;
здесь только форматирование и доставка с ретраями.
"""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Sequence

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError

from .config import NotifierConfig
from .keys import group_by_date
from .models import Appointment
from .utils import async_retry

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(
        self,
        bot: Bot,
        chat_id: int,
        config: NotifierConfig | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self.config = config or NotifierConfig()
        self.retry_delay = retry_delay

    def format_message(self, appointments: Sequence[Appointment]) -> str:
        limit = self.config.max_appointments_per_message
        title = (
            "🎉 <b>Появился свободный слот!</b>"
            if len(appointments) == 1
            else f"🎉 <b>Свободных слотов: {len(appointments)}</b>"
        )
        lines = [title]
        shown = 0
        for day, group in group_by_date(appointments).items():
            if shown >= limit:
                break
            lines.append("")
            lines.append(f"📅 <b>{day.strftime('%d.%m.%Y')}</b>")
            for apt in group:
                if shown >= limit:
                    break
                # 09:00-12:00 — Tehran, Center A (cdielts)
                place = ", ".join(p for p in (apt.city, apt.location) if p)
                line = f"🕐 {html.escape(apt.time)} — {html.escape(place)} ({html.escape(apt.exam_category)})"
                if apt.price is not None:
                    line += f" — {apt.price:g}"
                if apt.registration_url:
                    line += f'\n<a href="{html.escape(apt.registration_url, quote=True)}">Записаться</a>'
                lines.append(line)
                shown += 1

        hidden = len(appointments) - shown
        if hidden > 0:
            lines.append("")
            lines.append(f"… и ещё {hidden}")
        lines.append("")
        lines.append("⚡ Бронируйте, пока не заняли!")
        return "\n".join(lines)

    async def send(self, appointments: Sequence[Appointment]) -> bool:
        """Deliver available appointments. Returns True on success."""
        available = [apt for apt in appointments if apt.is_available]
        rejected = [apt for apt in appointments if not apt.is_available]
        for apt in rejected:
            logger.warning("Telegram filtered: %s (%s)", apt.id, apt.status.value)
        if not available:
            logger.warning("Telegram notification rejected: no available appointments")
            return False

        text = self.format_message(available)
        send_text = async_retry(
            attempts=self.config.retries,
            base_delay=self.retry_delay,
            exceptions=(TelegramAPIError, asyncio.TimeoutError),
        )(self._send_text)
        try:
            await send_text(text)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to send appointments notification: %s", e)
            return False
        logger.info("Telegram notification sent for %s appointment(s)", len(available))
        return True

    async def send_text(self, text: str) -> None:
        try:
            await self._send_text(text)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to send text notification: %s", e)

    async def _send_text(self, text: str) -> None:
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )


__all__ = ["TelegramNotifier"]
