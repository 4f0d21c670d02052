from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.getenv("VOCAB_MASTERY_DB_PATH") or PROJECT_ROOT / "vocab_mastery.db")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    generator_timeout: float = 20.0
    practice_limit: int = 10
    max_example_sentences: int = 10
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        generator_timeout=_env_float("VOCAB_MASTERY_GENERATOR_TIMEOUT", 20.0),
        practice_limit=max(1, min(int(_env_float("VOCAB_MASTERY_PRACTICE_LIMIT", 10)), 100)),
        max_example_sentences=10,
        log_level=(os.getenv("VOCAB_MASTERY_LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level: str | None = None) -> None:
    resolved = (level or load_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default
