"""Tests for config.py data directory resolution and defaults."""

from __future__ import annotations

import getpass
import os
from pathlib import Path

import pytest

from ambit import config
from ambit.config import _default_data_dir, user_data_dir, user_db_path


def test_env_var_overrides_data_dir(tmp_path, monkeypatch):
    """AMBIT_DATA_DIR takes priority."""
    target = tmp_path / "custom"
    monkeypatch.setenv("AMBIT_DATA_DIR", str(target))
    assert _default_data_dir() == target.resolve()


def test_default_data_dir_is_home_ambit_data(monkeypatch):
    monkeypatch.delenv("AMBIT_DATA_DIR", raising=False)
    assert _default_data_dir() == Path.home() / ".ambit" / "data"


def test_user_data_dir_created_under_data_dir(data_dir):
    path = user_data_dir("test_user")
    assert path == data_dir / "test_user"
    assert path.is_dir()
    assert user_db_path("test_user") == path / "ambit.db"


@pytest.mark.parametrize("bad", ["../escape", "a/b", "a\\b", ".."])
def test_user_data_dir_rejects_path_tricks(bad):
    with pytest.raises(ValueError, match="Invalid user_id"):
        user_data_dir(bad)


def test_default_user_respects_env_var(monkeypatch):
    """AMBIT_USER overrides the system username."""
    monkeypatch.setenv("AMBIT_USER", "custom-user")
    assert (os.getenv("AMBIT_USER", "") or getpass.getuser()) == "custom-user"


def test_scheduler_intervals_are_positive():
    for value in (
        config.ACTIVITY_INTERVAL,
        config.EXTRACT_INTERVAL,
        config.ENRICH_INTERVAL,
        config.MAINTENANCE_INTERVAL,
        config.SAVE_INTERVAL,
    ):
        assert value > 0
    assert config.SEARCH_TIMEOUT > 0
    assert config.LLM_TIMEOUT > 0
