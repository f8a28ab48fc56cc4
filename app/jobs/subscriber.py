"""Client-side observation of the job ledger for one parent resource.

Each job moves through ``Idle -> Watching -> Resolved(COMPLETED) | Resolved(FAILED) | TimedOut``.
Any event for a job first cancels that job's watchdog; PROCESSING re-arms it. A watchdog expiry is
advisory: it never writes to the ledger and a later terminal event still dispatches.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from app.jobs.errors import ClientTimeout
from app.jobs.models import JobRecord, JobStatus, JobType
from app.realtime.feed import ChangeFeed, ChannelSubscription

logger = logging.getLogger(__name__)

DEFAULT_WATCHDOG_SECONDS = 180.0

NoticeKind = Literal["completed", "failed", "timeout"]


@dataclass(frozen=True)
class JobNotice:
  """One-shot user-visible notice."""

  job_id: str
  job_type: JobType
  kind: NoticeKind
  title: str
  description: str
  destructive: bool = False


@dataclass
class JobCallbacks:
  """Typed callbacks per job type and terminal status; every field is optional."""

  on_quiz_completed: Callable[[], None] | None = None
  on_quiz_failed: Callable[[str], None] | None = None
  on_flashcards_completed: Callable[[], None] | None = None
  on_flashcards_failed: Callable[[str], None] | None = None
  on_material_completed: Callable[[], None] | None = None
  on_material_failed: Callable[[str], None] | None = None
  on_timeout: Callable[[ClientTimeout], None] | None = None
  on_notice: Callable[[JobNotice], None] | None = None


_LABELS: dict[JobType, str] = {JobType.GENERATE_QUIZ: "quiz", JobType.GENERATE_FLASHCARDS: "flashcards", JobType.GENERATE_MATERIAL: "material"}

_COMPLETED_NOTICES: dict[JobType, tuple[str, str]] = {
  JobType.GENERATE_QUIZ: ("Quiz generated!", "Your quiz was generated successfully."),
  JobType.GENERATE_FLASHCARDS: ("Flashcards generated!", "Your flashcards were generated successfully."),
  JobType.GENERATE_MATERIAL: ("Material generated!", "Your didactic material was generated successfully."),
}

_FAILED_NOTICES: dict[JobType, tuple[str, str]] = {
  JobType.GENERATE_QUIZ: ("Error generating quiz", "The quiz could not be generated."),
  JobType.GENERATE_FLASHCARDS: ("Error generating flashcards", "The flashcards could not be generated."),
  JobType.GENERATE_MATERIAL: ("Error generating material", "The didactic material could not be generated."),
}

_TIMEOUT_NOTICE = ("Timed out", "Generation is taking longer than expected. Try reloading.")


def default_failure_message(job_type: JobType) -> str:
  return _FAILED_NOTICES[job_type][1]


class _JobWatch:
  """Per-subscription state: one armed timer per job and the set of resolved jobs."""

  def __init__(self, parent_id: str, callbacks: JobCallbacks, *, watchdog_seconds: float, loop: asyncio.AbstractEventLoop) -> None:
    self.parent_id = parent_id
    self._callbacks = callbacks
    self._watchdog_seconds = watchdog_seconds
    self._loop = loop
    self._timers: dict[str, asyncio.TimerHandle] = {}
    self._resolved: set[str] = set()
    self._timed_out: set[str] = set()
    self.disposed = False

  @property
  def armed_jobs(self) -> frozenset[str]:
    return frozenset(self._timers)

  def handle(self, record: JobRecord) -> None:
    """Listener entry point; events are assumed to arrive in non-decreasing order."""
    if self.disposed or record.parent_id != self.parent_id:
      return
    # Every event disarms first; only PROCESSING arms again.
    self._cancel_timer(record.job_id)
    if record.job_id in self._resolved:
      logger.debug("Ignoring event for resolved job %s (%s)", record.job_id, record.status.value)
      return

    if record.status is JobStatus.PROCESSING:
      # A job already reported as timed out keeps waiting for its terminal event silently.
      if record.job_id not in self._timed_out:
        self._timers[record.job_id] = self._loop.call_later(self._watchdog_seconds, self._on_timer, record)
    elif record.status is JobStatus.COMPLETED:
      self._resolved.add(record.job_id)
      self._dispatch_completed(record)
    elif record.status is JobStatus.FAILED:
      self._resolved.add(record.job_id)
      self._dispatch_failed(record)

  def cancel_all(self) -> None:
    for timer in self._timers.values():
      timer.cancel()
    self._timers.clear()

  def _cancel_timer(self, job_id: str) -> None:
    timer = self._timers.pop(job_id, None)
    if timer is not None:
      timer.cancel()

  def _on_timer(self, record: JobRecord) -> None:
    # The callback may already be queued when a terminal event or dispose cancels it.
    self._timers.pop(record.job_id, None)
    if self.disposed or record.job_id in self._resolved:
      return
    self._timed_out.add(record.job_id)
    logger.warning("Job %s still PROCESSING after %ss on the client", record.job_id, self._watchdog_seconds)
    if self._callbacks.on_timeout:
      self._callbacks.on_timeout(ClientTimeout(job_id=record.job_id, job_type=record.job_type.value, waited_seconds=self._watchdog_seconds))
    self._notify(record, "timeout", *_TIMEOUT_NOTICE, destructive=True)

  def _dispatch_completed(self, record: JobRecord) -> None:
    callback = getattr(self._callbacks, f"on_{_LABELS[record.job_type]}_completed")
    if callback:
      callback()
    self._notify(record, "completed", *_COMPLETED_NOTICES[record.job_type])

  def _dispatch_failed(self, record: JobRecord) -> None:
    message = record.error_message or default_failure_message(record.job_type)
    callback = getattr(self._callbacks, f"on_{_LABELS[record.job_type]}_failed")
    if callback:
      callback(message)
    title, _ = _FAILED_NOTICES[record.job_type]
    self._notify(record, "failed", title, message, destructive=True)

  def _notify(self, record: JobRecord, kind: NoticeKind, title: str, description: str, *, destructive: bool = False) -> None:
    if self._callbacks.on_notice:
      self._callbacks.on_notice(JobNotice(job_id=record.job_id, job_type=record.job_type, kind=kind, title=title, description=description, destructive=destructive))


class WatchHandle:
  """Disposer for one subscription; also an async context manager."""

  def __init__(self, watch: _JobWatch, subscription: ChannelSubscription) -> None:
    self._watch = watch
    self._subscription = subscription

  @property
  def disposed(self) -> bool:
    return self._watch.disposed

  @property
  def armed_jobs(self) -> frozenset[str]:
    """Jobs whose watchdog is currently armed."""
    return self._watch.armed_jobs

  async def dispose(self) -> None:
    """Cancel every armed timer and release the channel subscription; idempotent."""
    if self._watch.disposed:
      return
    self._watch.disposed = True
    self._watch.cancel_all()
    await self._subscription.close()
    logger.debug("Disposed job watch for parent %s", self._watch.parent_id)

  async def __aenter__(self) -> WatchHandle:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.dispose()


class JobSubscriber:
  """Watch the jobs of a parent resource and dispatch typed callbacks."""

  def __init__(self, feed: ChangeFeed, *, watchdog_seconds: float = DEFAULT_WATCHDOG_SECONDS) -> None:
    if watchdog_seconds <= 0:
      raise ValueError("watchdog_seconds must be positive.")
    self._feed = feed
    self._watchdog_seconds = watchdog_seconds

  async def subscribe(self, parent_id: str, callbacks: JobCallbacks) -> WatchHandle:
    watch = _JobWatch(parent_id, callbacks, watchdog_seconds=self._watchdog_seconds, loop=asyncio.get_running_loop())
    subscription = await self._feed.subscribe(parent_id, watch.handle)
    logger.debug("Watching jobs for parent %s", parent_id)
    return WatchHandle(watch, subscription)
