from __future__ import annotations

from dataclasses import dataclass
import os
from urllib.parse import urlparse


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    lean_app_id: str
    lean_app_key: str
    lean_master_key: str
    lean_server_url: str
    assessment_history_limit: int
    conceal_forbidden_resources: bool


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise SettingsError(f"Missing required environment variable: {name}")
    return value


def _optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _require_url(name: str, value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise SettingsError(f"Invalid URL for {name}: {value}")
    return value


def _positive_int(name: str, default: int) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise SettingsError(f"Invalid integer for {name}: {raw}") from exc
    if value < 1:
        raise SettingsError(f"{name} must be >= 1, got {value}")
    return value


def _flag(name: str) -> bool:
    raw = _optional_env(name)
    if raw is None:
        return False
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise SettingsError(f"Invalid boolean for {name}: {raw}")


def load_settings() -> Settings:
    lean_app_id = _require_env("LEAN_APP_ID")
    lean_app_key = _require_env("LEAN_APP_KEY")
    lean_master_key = _require_env("LEAN_MASTER_KEY")
    lean_server_url = _require_url(
        "LEAN_SERVER_URL",
        os.getenv("LEAN_SERVER_URL", "https://api.leancloud.cn").strip(),
    )
    assessment_history_limit = _positive_int("ASSESSMENT_HISTORY_LIMIT", 100)
    conceal_forbidden_resources = _flag("CONCEAL_FORBIDDEN_RESOURCES")

    return Settings(
        lean_app_id=lean_app_id,
        lean_app_key=lean_app_key,
        lean_master_key=lean_master_key,
        lean_server_url=lean_server_url,
        assessment_history_limit=assessment_history_limit,
        conceal_forbidden_resources=conceal_forbidden_resources,
    )
