"""Minimal .env support so local runs pick up LECTERN_* settings without exporting them."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from pathlib import Path

_QUOTES = ('"', "'")


def default_env_path() -> Path:
  """LECTERN_ENV_FILE when set, otherwise the .env beside pyproject.toml."""
  override = os.getenv("LECTERN_ENV_FILE")
  if override:
    return Path(override)
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_lines(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
  """Yield (key, value) pairs; blanks, comments and lines without '=' are skipped."""
  for raw_line in lines:
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    line = line.removeprefix("export ").lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
      value = value[1:-1]
    yield key, value


def load_env_file(path: Path, *, override: bool = False) -> int:
  """Copy pairs from path into os.environ and return how many were applied."""
  if not path.is_file():
    return 0

  applied = 0
  for key, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()):
    if key in os.environ and not override:
      continue
    os.environ[key] = value
    applied += 1
  return applied
