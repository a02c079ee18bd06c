from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/helpdesk.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    default_ttl: int = 120


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "helpdesk.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    api_key: str = ""


@dataclass(slots=True)
class SLAConfig:
    enabled: bool = True
    default_response_hours: int = 24
    default_resolve_hours: int = 72
    business_hours_start: int = 9
    business_hours_end: int = 17
    # 0=Sunday .. 6=Saturday
    work_days: list[int] = field(default_factory=lambda: [1, 2, 3, 4, 5])
    breach_check_interval_seconds: int = 300


@dataclass(slots=True)
class TicketConfig:
    auto_assign_enabled: bool = True
    max_subject_length: int = 200
    max_description_length: int = 10_000
    max_attachments: int = 10


@dataclass(slots=True)
class RateLimitConfig:
    enabled: bool = True
    requests_per_minute: int = 10


@dataclass(slots=True)
class I18NConfig:
    default_locale: str = "en-US"
    supported_locales: list[str] = field(default_factory=lambda: ["en-US"])


@dataclass(slots=True)
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    sla: SLAConfig = field(default_factory=SLAConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    i18n: I18NConfig = field(default_factory=I18NConfig)


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_int_list(value: Any, default: list[int]) -> list[int]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        value = [part for part in value.split(",") if part.strip()]
    try:
        return [int(item) for item in value]
    except (TypeError, ValueError):
        return list(default)


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    database_cfg = DatabaseConfig(
        url=str(_get_env_str("DATABASE_URL", _deep_get(raw, "database", "url", default="sqlite:///./data/helpdesk.db"))),
        pool_min_size=_as_int(
            _get_env_str("DB_POOL_MIN", None),
            _as_int(_deep_get(raw, "database", "pool_min_size"), 2),
        ),
        pool_max_size=_as_int(
            _get_env_str("DB_POOL_MAX", None),
            _as_int(_deep_get(raw, "database", "pool_max_size"), 10),
        ),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
        default_ttl=_as_int(
            _get_env_str("REDIS_DEFAULT_TTL", None),
            _as_int(_deep_get(raw, "redis", "default_ttl"), 120),
        ),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="helpdesk.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    api_cfg = ApiConfig(
        host=str(_get_env_str("API_HOST", _deep_get(raw, "api", "host", default="0.0.0.0"))),
        port=_as_int(_get_env_str("API_PORT", None), _as_int(_deep_get(raw, "api", "port"), 8080)),
        api_key=str(_get_env_str("API_KEY", _deep_get(raw, "api", "api_key", default=""))),
    )

    sla_cfg = SLAConfig(
        enabled=_as_bool(_get_env_str("SLA_ENABLED"), _as_bool(_deep_get(raw, "sla", "enabled"), True)),
        default_response_hours=_as_int(
            _get_env_str("SLA_DEFAULT_RESPONSE_HOURS", None),
            _as_int(_deep_get(raw, "sla", "default_response_hours"), 24),
        ),
        default_resolve_hours=_as_int(
            _get_env_str("SLA_DEFAULT_RESOLVE_HOURS", None),
            _as_int(_deep_get(raw, "sla", "default_resolve_hours"), 72),
        ),
        business_hours_start=_as_int(
            _get_env_str("SLA_BUSINESS_HOURS_START", None),
            _as_int(_deep_get(raw, "sla", "business_hours_start"), 9),
        ),
        business_hours_end=_as_int(
            _get_env_str("SLA_BUSINESS_HOURS_END", None),
            _as_int(_deep_get(raw, "sla", "business_hours_end"), 17),
        ),
        work_days=_as_int_list(
            _get_env_str("SLA_WORK_DAYS", None),
            _as_int_list(_deep_get(raw, "sla", "work_days"), [1, 2, 3, 4, 5]),
        ),
        breach_check_interval_seconds=_as_int(
            _deep_get(raw, "sla", "breach_check_interval_seconds"), 300
        ),
    )

    ticket_cfg = TicketConfig(
        auto_assign_enabled=_as_bool(
            _get_env_str("TICKET_AUTO_ASSIGN_ENABLED"),
            _as_bool(_deep_get(raw, "tickets", "auto_assign_enabled"), True),
        ),
        max_subject_length=_as_int(_deep_get(raw, "tickets", "max_subject_length"), 200),
        max_description_length=_as_int(_deep_get(raw, "tickets", "max_description_length"), 10_000),
        max_attachments=_as_int(_deep_get(raw, "tickets", "max_attachments"), 10),
    )

    rate_limit_cfg = RateLimitConfig(
        enabled=_as_bool(
            _get_env_str("RATE_LIMIT_ENABLED"), _as_bool(_deep_get(raw, "rate_limit", "enabled"), True)
        ),
        requests_per_minute=_as_int(
            _get_env_str("RATE_LIMIT_REQUESTS_PER_MINUTE", None),
            _as_int(_deep_get(raw, "rate_limit", "requests_per_minute"), 10),
        ),
    )

    i18n_cfg = I18NConfig(
        default_locale=str(_deep_get(raw, "i18n", "default_locale", default="en-US")),
        supported_locales=list(_deep_get(raw, "i18n", "supported_locales", default=["en-US"])),
    )

    return AppConfig(
        database=database_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        api=api_cfg,
        sla=sla_cfg,
        tickets=ticket_cfg,
        rate_limit=rate_limit_cfg,
        i18n=i18n_cfg,
    )
