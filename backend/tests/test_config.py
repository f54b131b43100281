from __future__ import annotations

import pytest

from titan_billing.core.config import Settings, parse_csv, str_to_bool

_PROD_ENV = {
    "ENV": "prod",
    "JWT_SECRET": "s3cret",
    "DATABASE_URL": "postgresql+psycopg2://app:pw@db:5432/billing",
    "FRONTEND_BASE_URL": "https://app.example.com",
    "CORS_ORIGINS": "https://app.example.com",
}


def _apply(monkeypatch, env: dict[str, str]) -> None:
    for key, value in env.items():
        monkeypatch.setenv(key, value)


def test_str_to_bool_and_parse_csv():
    assert str_to_bool(None, default=True) is True
    assert str_to_bool("Yes") is True
    assert str_to_bool("0") is False
    assert parse_csv(" a, ,b ") == ["a", "b"]


def test_dev_defaults(monkeypatch):
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.delenv("RATE_LIMIT_ENABLED", raising=False)
    monkeypatch.delenv("CORS_ORIGINS", raising=False)

    s = Settings()

    assert s.RATE_LIMIT_ENABLED is True
    assert "http://localhost:3000" in s.CORS_ORIGINS
    assert s.STRIPE_WEBHOOK_TOLERANCE_SECONDS == 300


def test_valid_prod_settings(monkeypatch):
    _apply(monkeypatch, _PROD_ENV)

    s = Settings()

    assert s.database_url == _PROD_ENV["DATABASE_URL"]
    assert s.CORS_ORIGINS == ["https://app.example.com"]


@pytest.mark.parametrize(
    "override, message",
    [
        ({"JWT_SECRET": ""}, "JWT_SECRET"),
        ({"CORS_ORIGINS": "http://localhost:3000"}, "localhost"),
        ({"FRONTEND_BASE_URL": "http://app.example.com"}, "https://"),
    ],
)
def test_prod_rejects_unsafe_settings(monkeypatch, override, message):
    _apply(monkeypatch, {**_PROD_ENV, **override})

    with pytest.raises(RuntimeError, match=message):
        Settings()


def test_database_url_built_from_parts(monkeypatch):
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.setenv("DATABASE_URL", "")
    _apply(
        monkeypatch,
        {"DB_HOST": "db", "DB_NAME": "billing", "DB_APP_USER": "app", "DB_APP_PASSWORD": "p@ss", "DB_SSLMODE": "require"},
    )

    s = Settings()

    assert s.database_url == "postgresql+psycopg2://app:p%40ss@db:5432/billing?sslmode=require"
    assert s.migrations_database_url == s.database_url
