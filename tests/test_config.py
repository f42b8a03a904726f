"""
Configuration selection tests (APP_ENV classes, production start-up checks).
"""

import pytest

from app import create_app
from app.config import ProductionConfig, TestingConfig, config


def test_testing_config_selected():
    cfg = config["testing"]()
    assert cfg.TESTING is True
    assert cfg.NOTIFICATIONS_ASYNC is False


def test_production_refuses_missing_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        create_app("production")


def test_production_refuses_missing_secret_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://acc@db/acc")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app("production")


def test_config_instance_feeds_app(app):
    assert app.config["JWT_SECRET_KEY"] == TestingConfig.JWT_SECRET_KEY
