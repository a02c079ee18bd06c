from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config

ENV_KEYS = ("DATABASE_URL", "API_KEY", "SLA_WORK_DAYS", "TICKET_AUTO_ASSIGN_ENABLED", "RATE_LIMIT_REQUESTS_PER_MINUTE")


def _write(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    config_path = _write(
        tmp_path,
        """
database:
  url: "sqlite:///./data/test.db"
sla:
  default_response_hours: 8
  work_days: [1, 2, 3]
tickets:
  auto_assign_enabled: false
i18n:
  supported_locales: ["en-US", "es-ES"]
""",
    )

    cfg = load_config(config_path)

    assert cfg.database.url == "sqlite:///./data/test.db"
    assert cfg.sla.default_response_hours == 8
    assert cfg.sla.default_resolve_hours == 72
    assert cfg.sla.work_days == [1, 2, 3]
    assert cfg.tickets.auto_assign_enabled is False
    assert cfg.i18n.supported_locales == ["en-US", "es-ES"]
    assert cfg.rate_limit.requests_per_minute == 10


def test_env_overrides_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
database:
  url: "sqlite:///./data/yaml.db"
api:
  api_key: yaml-key
""",
    )
    monkeypatch.setenv("DATABASE_URL", "postgresql://helpdesk@localhost/helpdesk")
    monkeypatch.setenv("API_KEY", "env-key")
    monkeypatch.setenv("SLA_WORK_DAYS", "0,6")
    monkeypatch.setenv("TICKET_AUTO_ASSIGN_ENABLED", "no")
    monkeypatch.setenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "not-a-number")

    cfg = load_config(config_path)

    assert cfg.database.url == "postgresql://helpdesk@localhost/helpdesk"
    assert cfg.api.api_key == "env-key"
    assert cfg.sla.work_days == [0, 6]
    assert cfg.tickets.auto_assign_enabled is False
    assert cfg.rate_limit.requests_per_minute == 10


def test_missing_or_malformed_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "config" / "missing.yaml")
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, "- just\n- a list"))
