from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from cashflow_engine.recurrence import MAX_EXPANSION_ITERATIONS

DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    log_level: str = DEFAULT_LOG_LEVEL
    max_expansion_iterations: int = MAX_EXPANSION_ITERATIONS


def load_settings() -> Settings:
    return Settings(
        frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
        log_level=get_log_level(),
        max_expansion_iterations=get_max_expansion_iterations(),
    )


def get_log_level() -> str:
    raw = os.getenv("CASHFLOW_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if not isinstance(logging.getLevelName(raw), int):
        return DEFAULT_LOG_LEVEL
    return raw


def get_max_expansion_iterations() -> int:
    raw = os.getenv("CASHFLOW_MAX_EXPANSION_ITERATIONS")
    if not raw:
        return MAX_EXPANSION_ITERATIONS
    try:
        value = int(raw)
    except ValueError:
        return MAX_EXPANSION_ITERATIONS
    return value if value > 0 else MAX_EXPANSION_ITERATIONS
