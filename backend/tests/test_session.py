"""Tests for engine configuration."""

import pytest
from pydantic import ValidationError

from stockledger.core.config import Settings
from stockledger.db.session import engine_options


def test_pool_sizing_comes_from_settings():
    config = Settings(
        database_url="postgresql://pos:secret@db/stockledger",
        debug=False,
        db_pool_size=4,
        db_max_overflow=2,
        db_pool_recycle=600,
    )
    options = engine_options(config)
    assert options["pool_size"] == 4
    assert options["max_overflow"] == 2
    assert options["pool_recycle"] == 600
    assert "connect_args" not in options


def test_sqlite_has_no_sized_pool():
    options = engine_options(Settings(database_url="sqlite:///./test.db"))
    assert options["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in options


def test_pool_size_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(db_pool_size=0)
