"""Change feeds that deliver ledger rows to subscribers."""

from .feed import CHANGE_TABLE, ChangeEvent, ChangeFeed, ChangeListener, ChannelSubscription, decode_change_event, encode_change_event
from .memory import InMemoryChangeFeed
from .polling import PollingChangeFeed

__all__ = [
  "CHANGE_TABLE",
  "ChangeEvent",
  "ChangeFeed",
  "ChangeListener",
  "ChannelSubscription",
  "InMemoryChangeFeed",
  "PollingChangeFeed",
  "decode_change_event",
  "encode_change_event",
]
