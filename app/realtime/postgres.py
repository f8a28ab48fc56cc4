"""Postgres LISTEN/NOTIFY change feed.

The Postgres ledger publishes every write with pg_notify in the same transaction, so a listener
sees a row only after it is committed. When the LISTEN connection drops, the feed reconnects and
replays each watched parent's current rows, so a terminal write made during the gap still arrives.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from app.jobs.errors import InvalidJobRecord
from app.jobs.models import JobRecord
from app.realtime.feed import ChangeListener, decode_change_event

logger = logging.getLogger(__name__)

Refetch = Callable[[str], Awaitable[list[JobRecord]]]

MAX_RECONNECT_DELAY_SECONDS = 30.0


class _PostgresSubscription:
  def __init__(self, feed: PostgresChangeFeed, parent_id: str, listener: ChangeListener) -> None:
    self._feed = feed
    self._parent_id = parent_id
    self._listener = listener
    self._closed = False

  async def close(self) -> None:
    if self._closed:
      return
    self._closed = True
    await self._feed._remove(self._parent_id, self._listener)


class PostgresChangeFeed:
  """Share one LISTEN connection across all subscriptions of a process.

  ``refetch`` (usually ``JobsRepository.list_jobs_for_parent``) is used after a reconnect to
  replay rows that may have changed while no connection was listening.
  """

  def __init__(
    self,
    dsn: str,
    *,
    channel: str = "generation_jobs",
    connect_timeout: float = 5.0,
    refetch: Refetch | None = None,
    reconnect_delay: float = 1.0,
    max_reconnect_attempts: int = 10,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ) -> None:
    self._dsn = dsn
    self._channel = channel
    self._connect_timeout = connect_timeout
    self._refetch = refetch
    self._reconnect_delay = reconnect_delay
    self._max_reconnect_attempts = max_reconnect_attempts
    self._sleep = sleep
    self._connection: asyncpg.Connection | None = None
    self._listeners: dict[str, list[ChangeListener]] = defaultdict(list)
    self._lock = asyncio.Lock()
    self._reconnect_task: asyncio.Task[None] | None = None

  async def subscribe(self, parent_id: str, listener: ChangeListener) -> _PostgresSubscription:
    async with self._lock:
      if self._connection is None or self._connection.is_closed():
        await self._connect()
      self._listeners[parent_id].append(listener)
    return _PostgresSubscription(self, parent_id, listener)

  async def _connect(self) -> None:
    connection = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
    await connection.add_listener(self._channel, self._on_notify)
    connection.add_termination_listener(self._on_terminated)
    self._connection = connection
    logger.info("Listening for job changes on channel %s", self._channel)

  def _on_notify(self, connection: Any, pid: int, channel: str, payload: str) -> None:
    try:
      record = decode_change_event(payload)
    except InvalidJobRecord as exc:
      logger.warning("Dropping change event on %s: %s", channel, exc)
      return
    self._deliver(record)

  def _deliver(self, record: JobRecord) -> None:
    for listener in list(self._listeners.get(record.parent_id, ())):
      try:
        listener(record)
      except Exception:  # noqa: BLE001
        logger.exception("Change listener failed for job %s", record.job_id)

  def _on_terminated(self, connection: Any) -> None:
    if connection is not self._connection:
      return
    self._connection = None
    if not self._listeners:
      return
    logger.error("LISTEN connection on %s terminated with %d watched parent(s); reconnecting", self._channel, len(self._listeners))
    if self._reconnect_task is None or self._reconnect_task.done():
      self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect(), name=f"relisten-{self._channel}")

  async def _reconnect(self) -> None:
    delay = self._reconnect_delay
    for attempt in range(1, self._max_reconnect_attempts + 1):
      async with self._lock:
        # A subscribe() may have reconnected first, or every subscription may be gone.
        if not self._listeners or (self._connection is not None and not self._connection.is_closed()):
          return
        try:
          await self._connect()
        except (OSError, TimeoutError, asyncpg.PostgresError) as exc:
          logger.warning("Reconnect %d/%d to channel %s failed: %s", attempt, self._max_reconnect_attempts, self._channel, exc)
        else:
          parents = list(self._listeners)
          break
      await self._sleep(delay)
      delay = min(delay * 2, MAX_RECONNECT_DELAY_SECONDS)
    else:
      logger.error("Gave up listening on %s; %d parent(s) will not receive job changes", self._channel, len(self._listeners))
      return

    await self._replay(parents)

  async def _replay(self, parents: list[str]) -> None:
    if self._refetch is None:
      return
    for parent_id in parents:
      try:
        records = await self._refetch(parent_id)
      except Exception:  # noqa: BLE001
        logger.exception("Replaying jobs for parent %s failed", parent_id)
        continue
      for record in records:
        self._deliver(record)

  async def _remove(self, parent_id: str, listener: ChangeListener) -> None:
    async with self._lock:
      listeners = self._listeners.get(parent_id)
      if listeners and listener in listeners:
        listeners.remove(listener)
        if not listeners:
          del self._listeners[parent_id]
      if not self._listeners:
        await self._close_connection()

  async def _close_connection(self) -> None:
    connection, self._connection = self._connection, None
    if connection is None or connection.is_closed():
      return
    connection.remove_termination_listener(self._on_terminated)
    await connection.remove_listener(self._channel, self._on_notify)
    await connection.close()
