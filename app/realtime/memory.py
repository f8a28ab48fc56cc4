"""In-process change feed used with the in-memory ledger."""

from __future__ import annotations

import logging
from collections import defaultdict

from app.jobs.models import JobRecord
from app.realtime.feed import ChangeListener

logger = logging.getLogger(__name__)


class _MemorySubscription:
  def __init__(self, feed: InMemoryChangeFeed, parent_id: str, listener: ChangeListener) -> None:
    self._feed = feed
    self._parent_id = parent_id
    self._listener = listener
    self._closed = False

  async def close(self) -> None:
    if self._closed:
      return
    self._closed = True
    self._feed._remove(self._parent_id, self._listener)


class InMemoryChangeFeed:
  """Fan out published rows to listeners registered for the row's parent."""

  def __init__(self) -> None:
    self._listeners: dict[str, list[ChangeListener]] = defaultdict(list)

  async def subscribe(self, parent_id: str, listener: ChangeListener) -> _MemorySubscription:
    self._listeners[parent_id].append(listener)
    return _MemorySubscription(self, parent_id, listener)

  def publish(self, record: JobRecord) -> None:
    for listener in list(self._listeners.get(record.parent_id, ())):
      try:
        listener(record)
      except Exception:  # noqa: BLE001
        logger.exception("Change listener failed for job %s", record.job_id)

  def listener_count(self, parent_id: str) -> int:
    return len(self._listeners.get(parent_id, ()))

  def _remove(self, parent_id: str, listener: ChangeListener) -> None:
    listeners = self._listeners.get(parent_id)
    if not listeners:
      return
    try:
      listeners.remove(listener)
    except ValueError:
      return
    if not listeners:
      del self._listeners[parent_id]
