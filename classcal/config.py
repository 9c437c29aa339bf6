from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from classcal.expander import DEFAULT_HARD_CAP


@dataclass(frozen=True)
class Settings:
    # JSON file holding classes and instances
    db_path: str = "classcal.json"

    # Safety ceiling for a single expansion; also bounds rules without
    # endDate/occurrences.
    hard_cap: int = DEFAULT_HARD_CAP

    # Pagination
    page_limit: int = 10
    max_page_limit: int = 100

    log_level: str = "INFO"


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < 1:
        raise RuntimeError(f"{name} must be >= 1")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Reads .env if present; real environment variables win.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    page_limit = _positive_int("CLASSCAL_PAGE_LIMIT", 10)
    max_page_limit = _positive_int("CLASSCAL_MAX_PAGE_LIMIT", 100)
    if page_limit > max_page_limit:
        raise RuntimeError("CLASSCAL_PAGE_LIMIT must not exceed CLASSCAL_MAX_PAGE_LIMIT")

    log_level = os.getenv("CLASSCAL_LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise RuntimeError(f"Invalid CLASSCAL_LOG_LEVEL value: {log_level!r}")

    return Settings(
        db_path=os.getenv("CLASSCAL_DB_PATH", "classcal.json").strip() or "classcal.json",
        hard_cap=_positive_int("CLASSCAL_HARD_CAP", DEFAULT_HARD_CAP),
        page_limit=page_limit,
        max_page_limit=max_page_limit,
        log_level=log_level,
    )
