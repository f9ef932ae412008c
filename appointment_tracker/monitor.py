"""
Monitoring service for appointment slots.

Сервис мониторинга в фоне:
- циклические проверки со случайной задержкой, строго по одной
- трекинг статусов и решение, о чём уведомлять
- подтверждение доставки -> журнал уведомлений
- периодическая чистка между циклами
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Set

from .config import MonitorConfig
from .engine import AppointmentTracker
from .errors import NotificationInvariantError
from .keys import filter_appointments
from .models import Appointment, DetectionResult, MonitorState, utcnow
from .utils import jitter_delay

logger = logging.getLogger(__name__)


FetchFunc = Callable[[], Awaitable[List[Appointment]]]
NotifyFunc = Callable[[str], Awaitable[None]]
# Returns True if the batch was delivered by at least one transport
NotifyAppointmentsFunc = Callable[[List[Appointment]], Awaitable[bool]]


@dataclass
class MonitorService:
    """High-level monitoring loop."""

    tracker: AppointmentTracker
    fetch: FetchFunc
    on_text: NotifyFunc
    on_appointments: NotifyAppointmentsFunc
    config: MonitorConfig = field(default_factory=MonitorConfig)
    _state: MonitorState = field(default_factory=MonitorState)
    _task: Optional[asyncio.Task[None]] = None
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    _cycle_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _consecutive_errors: int = 0
    _undelivered: Set[str] = field(default_factory=set)

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def state(self) -> MonitorState:
        return self._state

    async def start(self) -> None:
        if self._task and not self._task.done():
            logger.info("Monitor already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="appointment-monitor-loop")
        await self.on_text("Мониторинг запущен ✅")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self.on_text("Останавливаю мониторинг...")
        try:
            # Текущий цикл доводим до конца, чтобы запись состояния не оборвалась
            await asyncio.wait_for(self._task, timeout=30)
        except asyncio.TimeoutError:
            logger.warning("Monitor task did not stop within timeout")
        self._task = None
        self._state.is_running = False
        await self.on_text("Мониторинг остановлен ⏹️")

    async def run_cycle(self) -> List[Appointment]:
        """
        Run one fetch -> detect -> filter -> dispatch -> mark cycle.

        Candidates are the newly available appointments plus those that were
        eligible on an earlier check but never delivered.
        Returns the appointments that were delivered and marked as notified.
        """
        async with self._cycle_lock:
            self._state.checks_count += 1
            self._state.last_check_at = utcnow()

            fetched = await self.fetch()
            appointments = filter_appointments(
                fetched,
                cities=self.config.cities,
                exam_categories=self.config.exam_categories,
                months=self.config.months,
            )
            result = self.tracker.process_appointments(appointments)
            self._state.last_error = None
            self._log_detection(result, len(appointments))

            candidates = self._candidates(result, appointments)
            for d in self.tracker.decisions_for(candidates):
                if d.should_notify:
                    logger.info("Notify %s - %s", d.key, d.reason)
                else:
                    logger.info("Suppressed %s - %s", d.key, d.reason)

            try:
                notifiable = self.tracker.eligible(candidates)
            except NotificationInvariantError as e:
                # Трекинг уже сохранён, отменяем только отправку
                logger.error("Notification step aborted: %s", e)
                self._state.last_error = str(e)
                await self.on_text(f"⚠️ Отправка уведомлений отменена: {html.escape(str(e))}")
                return []

            if not notifiable:
                logger.info("No appointments eligible for notification on this check")
                return []

            keys = {self.tracker.appointment_key(apt) for apt in notifiable}
            delivered = await self.on_appointments(notifiable)
            if not delivered:
                self._undelivered |= keys
                logger.warning(
                    "Delivery failed for %s appointment(s), they stay eligible for the next check",
                    len(notifiable),
                )
                return []

            self._undelivered -= keys
            self.tracker.mark_notified(notifiable)
            self._state.notifications_total += len(notifiable)
            return notifiable

    def _candidates(
        self, result: DetectionResult, appointments: List[Appointment]
    ) -> List[Appointment]:
        present = {self.tracker.appointment_key(apt) for apt in appointments}
        # Слоты, пропавшие из выдачи, больше не ждут повторной отправки
        self._undelivered &= present

        candidates = list(result.newly_available)
        seen = {apt.id for apt in candidates}
        for apt in appointments:
            if apt.id in seen:
                continue
            if self.tracker.appointment_key(apt) in self._undelivered:
                candidates.append(apt)
                seen.add(apt.id)
        return candidates

    async def run_cleanup(self) -> None:
        async with self._cycle_lock:
            result = self.tracker.cleanup()
            self._state.last_cleanup_at = utcnow()
            logger.info(
                "Cleanup finished: %s tracking records, %s ledger keys removed",
                result.tracking_removed,
                result.ledger_removed,
            )

    def _cleanup_due(self, now: datetime) -> bool:
        last = self._state.last_cleanup_at
        return last is None or now - last >= timedelta(hours=self.config.cleanup_interval_hours)

    async def _run_loop(self) -> None:
        self._state.is_running = True
        self._state.last_error = None
        self._consecutive_errors = 0

        while not self._stop_event.is_set():
            # Базовая задержка между попытками; может быть увеличена при ошибках
            delay = jitter_delay(
                self.config.check_interval,
                self.config.check_interval_variation,
            )
            # Увеличиваем интервал при частых ошибках, чтобы не флудить сайт
            if self._consecutive_errors:
                factor = min(5, 1 + self._consecutive_errors)
                delay *= factor

            try:
                if self._cleanup_due(utcnow()):
                    await self.run_cleanup()
                await self.run_cycle()
                self._consecutive_errors = 0
            except Exception as e:  # noqa: BLE001
                logger.exception("Unexpected error in monitor loop: %s", e)
                self._state.last_error = str(e)
                self._consecutive_errors += 1
                await self.on_text(
                    f"Ошибка мониторинга: {html.escape(repr(e))}. "
                    f"Интервал проверок временно увеличен (серия ошибок: {self._consecutive_errors})."
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self._state.is_running = False

    def _log_detection(self, result: DetectionResult, total: int) -> None:
        stats = self.tracker.statistics()
        logger.info(
            "Check #%s: %s appointments, %s available, %s filled | tracking %s, notifications sent %s",
            self._state.checks_count,
            total,
            stats.available_count,
            stats.filled_count,
            stats.total_tracked,
            stats.total_notifications_sent,
        )
        if result.newly_available:
            logger.info("Found %s new available appointment(s)", len(result.newly_available))
        if result.status_changed:
            logger.info("%s appointment(s) changed status", len(result.status_changed))
        if result.removed:
            logger.info("%s appointment(s) removed since last check", len(result.removed))


__all__ = ["MonitorService", "FetchFunc", "NotifyFunc", "NotifyAppointmentsFunc"]
