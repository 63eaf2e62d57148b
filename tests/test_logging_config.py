"""Tests for structured logging setup."""

import json
import logging

import pytest

from mealcart.logging_config import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_log_carries_context(tmp_path, restore_root_logger):
    setup_logging(tmp_path)

    get_logger("mealcart.test", platform="blinkit", plan_id=7).warning("price missing")
    for handler in logging.getLogger().handlers:
        handler.flush()

    record = json.loads((tmp_path / "app.log").read_text(encoding="utf-8").splitlines()[-1])
    assert record["message"] == "price missing"
    assert record["service"] == "mealcart"
    assert record["level"] == "WARNING"
    assert record["platform"] == "blinkit"
    assert record["plan_id"] == 7
    assert (tmp_path / "error.log").read_text(encoding="utf-8") == ""
