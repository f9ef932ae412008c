"""
Config loading via Pydantic v2 and python-dotenv.

Загрузка конфигурации из .env и базовая валидация.
"""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError


BASE_DIR = Path(__file__).resolve().parent.parent
# В Docker можно задать DATA_DIR=/app/data и смонтировать volume, тогда трекинг переживёт рестарт
DATA_DIR = Path(os.environ.get("DATA_DIR", str(BASE_DIR / "data")))
ENV_PATH = BASE_DIR / ".env"

# Явно загружаем переменные окружения из .env, если файл существует
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class BotConfig(BaseModel):
    token: str
    admin_chat_id: int


class DetectionConfig(BaseModel):
    tracking_data_file: Path = Field(
        default_factory=lambda: DATA_DIR / "appointment-tracking.json"
    )
    notification_tracking_file: Path = Field(
        default_factory=lambda: DATA_DIR / "notified-appointments.json"
    )
    max_tracking_days: int = Field(default=30, ge=1)


class MonitorConfig(BaseModel):
    check_interval: int = Field(default=300, ge=30)
    check_interval_variation: int = Field(default=30, ge=0)
    cities: Optional[List[str]] = Field(
        default=None,
        description="Города для отбора. Пусто — любые.",
    )
    exam_categories: Optional[List[str]] = Field(
        default=None,
        description="Категории экзамена (например, cdielts). Пусто — любые.",
    )
    months: Optional[List[int]] = Field(
        default=None,
        description="Целевые месяцы 1..12. Пусто — любые.",
    )
    cleanup_interval_hours: int = Field(default=24, ge=1)
    fetcher: str = Field(
        default="",
        description="Import path 'module:callable' of the async appointment fetcher.",
    )


class NotifierConfig(BaseModel):
    max_appointments_per_message: int = Field(default=10, ge=1)
    retries: int = Field(default=3, ge=1)


class LoggingConfig(BaseModel):
    logs_dir: Path = Field(default_factory=lambda: BASE_DIR / "logs")
    log_level: str = Field(default="INFO")
    max_bytes: int = Field(default=5 * 1024 * 1024)  # 5 MB
    backup_count: int = Field(default=5)


class Settings(BaseModel):
    bot: BotConfig
    detection: DetectionConfig = DetectionConfig()
    monitor: MonitorConfig = MonitorConfig()
    notifier: NotifierConfig = NotifierConfig()
    logging: LoggingConfig = LoggingConfig()


def _split_str_list(value: str | None) -> Optional[List[str]]:
    if not value:
        return None
    return [x.strip() for x in value.split(",") if x.strip()]


def _split_int_list(value: str | None) -> Optional[List[int]]:
    if not value:
        return None
    return [int(x.strip()) for x in value.split(",") if x.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Load and cache settings.

    Raises ValidationError if .env is incomplete or invalid.
    """
    env = os.environ

    try:
        bot = BotConfig(
            token=env.get("BOT_TOKEN", ""),
            admin_chat_id=int(env.get("ADMIN_CHAT_ID", "0") or "0"),
        )
        detection = DetectionConfig(
            tracking_data_file=Path(
                env.get("TRACKING_DATA_FILE", str(DATA_DIR / "appointment-tracking.json"))
            ),
            notification_tracking_file=Path(
                env.get(
                    "NOTIFICATION_TRACKING_FILE",
                    str(DATA_DIR / "notified-appointments.json"),
                )
            ),
            max_tracking_days=int(env.get("MAX_TRACKING_DAYS", "30")),
        )
        monitor = MonitorConfig(
            check_interval=int(env.get("CHECK_INTERVAL", "300")),
            check_interval_variation=int(env.get("CHECK_INTERVAL_VARIATION", "30")),
            cities=_split_str_list(env.get("CITIES")),
            exam_categories=_split_str_list(env.get("EXAM_CATEGORIES")),
            months=_split_int_list(env.get("MONTHS")),
            cleanup_interval_hours=int(env.get("CLEANUP_INTERVAL_HOURS", "24")),
            fetcher=env.get("FETCHER", ""),
        )
        notifier = NotifierConfig(
            max_appointments_per_message=int(env.get("MAX_APPOINTMENTS_PER_MESSAGE", "10")),
            retries=int(env.get("NOTIFY_RETRIES", "3")),
        )
        logging_cfg = LoggingConfig(log_level=env.get("LOG_LEVEL", "INFO"))
        return Settings(
            bot=bot,
            detection=detection,
            monitor=monitor,
            notifier=notifier,
            logging=logging_cfg,
        )
    except ValidationError:
        # Пробрасываем дальше, чтобы верхний уровень мог вывести аккуратную ошибку
        raise


__all__ = [
    "BotConfig",
    "DetectionConfig",
    "LoggingConfig",
    "MonitorConfig",
    "NotifierConfig",
    "Settings",
    "get_settings",
    "BASE_DIR",
    "DATA_DIR",
]
