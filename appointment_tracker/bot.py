"""
Telegram bot entrypoint built with aiogram 3.

Основной модуль Telegram-бота:
- /start
- кнопки: Запустить мониторинг, Остановить, Статус
- FSM для состояния мониторинга
- мидлвара, которая пускает только админа по chat_id
"""

from __future__ import annotations

import asyncio
import html
import importlib
import logging
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware, Bot, Dispatcher, F
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import (
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
)

from .config import get_settings
from .engine import AppointmentTracker
from .monitor import FetchFunc, MonitorService
from .notifier import TelegramNotifier
from .utils import setup_logging


logger = logging.getLogger(__name__)


class AdminOnlyMiddleware(BaseMiddleware):
    """Allow only admin user to interact with bot."""

    def __init__(self, admin_chat_id: int) -> None:
        super().__init__()
        self.admin_chat_id = admin_chat_id

    async def __call__(
        self,
        handler: Callable[[Message, Dict[str, Any]], Awaitable[Any]],
        event: Message,
        data: Dict[str, Any],
    ) -> Any:
        if getattr(event, "chat", None) and event.chat.id != self.admin_chat_id:
            await event.answer("Этот бот предназначен только для владельца.")
            return
        return await handler(event, data)


class MonitorStates(StatesGroup):
    idle = State()
    running = State()


def load_fetcher(path: str) -> FetchFunc:
    """Resolve 'package.module:callable' into the async appointment fetcher."""
    if not path or ":" not in path:
        raise ValueError("FETCHER must be set as 'module:callable'")
    module_name, attr = path.split(":", 1)
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def main_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text="▶️ Запустить мониторинг",
                    callback_data="start_monitoring",
                )
            ],
            [
                InlineKeyboardButton(
                    text="⏹ Остановить",
                    callback_data="stop_monitoring",
                )
            ],
            [
                InlineKeyboardButton(
                    text="ℹ️ Статус",
                    callback_data="status",
                )
            ],
        ]
    )


def status_text(monitor: MonitorService) -> str:
    st = monitor.state
    stats = monitor.tracker.statistics()
    text = (
        f"📊 <b>Статус мониторинга</b>\n"
        f"Состояние: {'запущен' if st.is_running else 'остановлен'}\n"
        f"Проверок выполнено: {st.checks_count}\n"
        f"Отправлено уведомлений: {st.notifications_total}\n"
        f"Отслеживается слотов: {stats.total_tracked} "
        f"(свободно {stats.available_count}, занято {stats.filled_count}, "
        f"ожидание {stats.pending_count})\n"
        f"Ключей в журнале уведомлений: {stats.notified_keys_count}\n"
    )
    if st.last_check_at:
        text += f"Последняя проверка: {st.last_check_at:%Y-%m-%d %H:%M:%S} UTC\n"
    if st.last_error:
        text += f"Последняя ошибка: <code>{html.escape(st.last_error)}</code>\n"
    return text


def main() -> None:
    """Entry point for running the bot."""
    settings = get_settings()
    setup_logging()

    bot = Bot(
        settings.bot.token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    dp = Dispatcher()

    tracker = AppointmentTracker.from_config(settings.detection)
    cleaned = tracker.initialize()
    logger.info(
        "Tracker initialised: %s tracking records, %s ledger keys removed on startup",
        cleaned.tracking_removed,
        cleaned.ledger_removed,
    )

    notifier = TelegramNotifier(bot, settings.bot.admin_chat_id, settings.notifier)
    monitor = MonitorService(
        tracker=tracker,
        fetch=load_fetcher(settings.monitor.fetcher),
        on_text=notifier.send_text,
        on_appointments=notifier.send,
        config=settings.monitor,
    )

    dp.message.middleware(AdminOnlyMiddleware(settings.bot.admin_chat_id))

    @dp.message(Command("start"))
    async def cmd_start(message: Message, state: FSMContext) -> None:
        await state.set_state(MonitorStates.idle)
        await message.answer(
            "👋 Привет! Я бот для мониторинга свободных слотов на экзамен.\n\n"
            "Используй кнопки ниже для управления мониторингом.",
            reply_markup=main_keyboard(),
        )

    @dp.callback_query(F.data == "start_monitoring")
    async def on_start_monitoring(callback: CallbackQuery, state: FSMContext) -> None:
        await callback.answer()
        await monitor.start()
        await state.set_state(MonitorStates.running)
        await callback.message.edit_text(
            "Мониторинг запущен ✅", reply_markup=main_keyboard()
        )

    @dp.callback_query(F.data == "stop_monitoring")
    async def on_stop_monitoring(callback: CallbackQuery, state: FSMContext) -> None:
        await callback.answer()
        await monitor.stop()
        await state.set_state(MonitorStates.idle)
        await callback.message.edit_text(
            "Мониторинг остановлен ⏹️", reply_markup=main_keyboard()
        )

    @dp.callback_query(F.data == "status")
    async def on_status(callback: CallbackQuery, state: FSMContext) -> None:
        await callback.answer()
        await callback.message.edit_text(status_text(monitor), reply_markup=main_keyboard())

    logger.info("Starting polling")
    asyncio.run(_run_polling(dp, bot, monitor))


async def _run_polling(dp: Dispatcher, bot: Bot, monitor: MonitorService) -> None:
    try:
        await dp.start_polling(bot)
    finally:
        # Даём текущему циклу дописать состояние перед выходом
        await monitor.stop()
        await bot.session.close()


if __name__ == "__main__":
    main()
