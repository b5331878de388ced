from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    db_path: Path
    camera_index: int
    show_window: bool
    trainer_mode: bool
    success_reps: int
    max_attempts: int
    pulse_seconds: float
    log_level: str


def get_settings() -> Settings:
    return Settings(
        db_path=Path(os.getenv("SQUAT_DB_PATH", "./squatcoach.db")),
        camera_index=int(os.getenv("SQUAT_CAMERA_INDEX", "0")),
        show_window=_env_bool("SQUAT_SHOW_WINDOW", False),
        trainer_mode=_env_bool("SQUAT_TRAINER_MODE", True),
        success_reps=int(os.getenv("SQUAT_SUCCESS_REPS", "10")),
        max_attempts=int(os.getenv("SQUAT_MAX_ATTEMPTS", "50")),
        pulse_seconds=float(os.getenv("SQUAT_PULSE_SECONDS", "1.5")),
        log_level=os.getenv("SQUAT_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings | None = None):
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
