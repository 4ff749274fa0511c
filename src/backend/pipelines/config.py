from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class EngineSettings:
    log_level: str
    log_format: str
    data_source: str
    fixtures_dir: Path | None
    seed_defaults: bool


def get_engine_settings() -> EngineSettings:
    """
    Load engine settings from environment variables (a local `.env` is honored).

    Reads:
      COMPLIANCE_LOG_LEVEL, COMPLIANCE_LOG_FORMAT, COMPLIANCE_DATA_SOURCE,
      COMPLIANCE_FIXTURES_DIR, COMPLIANCE_SEED_DEFAULTS
    """
    log_format = os.getenv("COMPLIANCE_LOG_FORMAT", "console").strip().lower()
    if log_format not in ("console", "json"):
        raise ValueError("COMPLIANCE_LOG_FORMAT must be 'console' or 'json'.")

    data_source = os.getenv("COMPLIANCE_DATA_SOURCE", "memory").strip().lower()
    if data_source not in ("memory", "fixtures"):
        raise ValueError("COMPLIANCE_DATA_SOURCE must be 'memory' or 'fixtures'.")

    fixtures_raw = os.getenv("COMPLIANCE_FIXTURES_DIR", "").strip()
    fixtures_dir = Path(fixtures_raw) if fixtures_raw else None
    if data_source == "fixtures" and fixtures_dir is None:
        raise ValueError("Missing required environment variable: COMPLIANCE_FIXTURES_DIR")

    return EngineSettings(
        log_level=os.getenv("COMPLIANCE_LOG_LEVEL", "INFO").strip().upper(),
        log_format=log_format,
        data_source=data_source,
        fixtures_dir=fixtures_dir,
        seed_defaults=_parse_bool("COMPLIANCE_SEED_DEFAULTS", default=True),
    )


def _parse_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r}).")
