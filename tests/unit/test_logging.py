from __future__ import annotations

import logging
import sys

from app.config import get_settings
from app.core.logging import TruncatedFormatter, _build_handlers, _rotated_name


def test_rotated_backups_use_dash_suffix() -> None:
  assert _rotated_name("/var/log/lectern_app_1.log.3") == "/var/log/lectern_app_1.log-3"
  assert _rotated_name("/var/log/lectern_app_1.log") == "/var/log/lectern_app_1.log"


def test_build_handlers_creates_the_log_file(tmp_path) -> None:
  stream, file_handler, log_path = _build_handlers(get_settings(), tmp_path / "logs")
  try:
    assert log_path.exists()
    assert log_path.name.startswith("lectern_app_")
    assert isinstance(stream.formatter, TruncatedFormatter)
  finally:
    file_handler.close()


def test_truncated_formatter_keeps_the_tail_of_deep_tracebacks() -> None:
  def recurse(depth: int) -> None:
    if depth == 0:
      raise ValueError("deep failure")
    recurse(depth - 1)

  try:
    recurse(10)
  except ValueError:
    record = logging.LogRecord("test", logging.ERROR, __file__, 1, "boom", None, sys.exc_info())

  text = TruncatedFormatter("%(message)s").format(record)
  assert "    ...\n" in text
  assert text.rstrip().endswith("ValueError: deep failure")
