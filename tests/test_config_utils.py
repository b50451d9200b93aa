from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from eodcache.config import Settings
from eodcache.utils import _JSONFormatter, as_utc, epoch_to_date, normalize_ticker, positive_float


def test_database_file_defaults_under_data_dir(tmp_path: Path) -> None:
    settings = Settings(data_dir=str(tmp_path))
    assert settings.database_file == tmp_path / "prices.db"
    assert settings.export_dir == tmp_path / "prices"


def test_database_file_override(tmp_path: Path) -> None:
    settings = Settings(data_dir=str(tmp_path), prices_db_file=str(tmp_path / "custom.db"))
    assert settings.database_file == tmp_path / "custom.db"


def test_provider_env_override(monkeypatch) -> None:
    monkeypatch.setenv("PRICE_PRIMARY_PROVIDER", "stooq")
    monkeypatch.setenv("PRICE_FALLBACK_ENABLED", "false")
    settings = Settings()
    assert settings.price_primary_provider == "stooq"
    assert settings.price_fallback_enabled is False


def test_positive_float() -> None:
    assert positive_float("12.5") == 12.5
    assert positive_float(3) == 3.0
    for bad in (None, True, "", "abc", 0, -1, float("nan"), float("inf")):
        assert positive_float(bad) is None


def test_ticker_and_time_helpers() -> None:
    assert normalize_ticker(" brk-b ") == "BRK-B"
    assert normalize_ticker(None) == ""
    assert epoch_to_date(1733184000 + 52200) == "2024-12-03"
    assert as_utc(datetime(2024, 1, 2, 3, 4)).utcoffset().total_seconds() == 0


def test_json_log_formatter() -> None:
    record = logging.LogRecord("eodcache.test", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
    payload = json.loads(_JSONFormatter().format(record))
    assert payload["msg"] == "hello world"
    assert payload["level"] == "WARNING"
