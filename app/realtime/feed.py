"""Change event contract shared by every feed implementation."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

import msgspec

from app.jobs.errors import InvalidJobRecord
from app.jobs.models import JobRecord, record_from_row

CHANGE_TABLE = "generation_jobs"

ChangeListener = Callable[[JobRecord], None]


class ChangeEvent(msgspec.Struct):
  """Envelope published on every ledger write; record is the full current row."""

  table: str
  record: dict[str, Any]


_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder(ChangeEvent)


def encode_change_event(record: JobRecord) -> bytes:
  return _encoder.encode(ChangeEvent(table=CHANGE_TABLE, record=record.to_row()))


def decode_change_event(payload: bytes | str) -> JobRecord:
  """Decode a JSON change event into a validated JobRecord."""
  try:
    event = _decoder.decode(payload)
  except msgspec.DecodeError as exc:
    raise InvalidJobRecord(f"Malformed change event: {exc}") from exc
  if event.table != CHANGE_TABLE:
    raise InvalidJobRecord(f"Unexpected change event table: {event.table}")
  return record_from_row(event.record)


class ChannelSubscription(Protocol):
  async def close(self) -> None:
    """Stop delivering events; safe to call more than once."""


class ChangeFeed(Protocol):
  """Push channel scoped to one parent resource."""

  async def subscribe(self, parent_id: str, listener: ChangeListener) -> ChannelSubscription:
    """Deliver every change to jobs of parent_id to listener, in arrival order."""
