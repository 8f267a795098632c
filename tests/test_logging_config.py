"""Tests for logging setup."""

import json
import logging

import pytest

from pricewatch.config import settings
from pricewatch.logging_config import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_file_logs_carry_context(tmp_path, restore_root_logger):
    setup_logging(base_dir=tmp_path, to_file=True)

    log = get_logger("pricewatch.test", product_id=12, strategy="HTTP_FAST")
    log.info("tracked")
    log.error("failed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    logs_dir = tmp_path / settings.log_dir
    records = [json.loads(line) for line in (logs_dir / "app.log").read_text().splitlines()]
    tracked = next(r for r in records if r["message"] == "tracked")
    assert tracked["product_id"] == 12
    assert tracked["strategy"] == "HTTP_FAST"
    assert tracked["level"] == "INFO"

    errors = (logs_dir / "error.log").read_text().splitlines()
    assert len(errors) == 1
    assert json.loads(errors[0])["message"] == "failed"


def test_console_only(tmp_path, restore_root_logger):
    root = setup_logging(base_dir=tmp_path, to_file=False)
    assert not (tmp_path / settings.log_dir).exists()
    assert all(not isinstance(h, logging.FileHandler) for h in root.handlers)
