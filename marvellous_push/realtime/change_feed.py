"""Reference-counted sharing of one change-feed connection among many listeners."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import asyncpg

from marvellous_push.utils.backoff import with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
  """A single notification from the feed."""

  channel: str
  payload: str


ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]
Disposer = Callable[[], Awaitable[None]]


class FeedHandle(Protocol):
  async def close(self) -> None: ...


class ChangeFeedSource(Protocol):
  async def open(self, on_change: Callable[[ChangeEvent], None]) -> FeedHandle: ...


class SharedChangeFeed:
  """
  One underlying feed, opened for the first listener and closed after the last.

  Instances are built and owned explicitly (see the app lifespan) and handed
  to consumers; there is no module-level instance.
  """

  def __init__(self, *, source: ChangeFeedSource, max_attempts: int = 5, base_delay: float = 1.0, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    self._source = source
    self._max_attempts = max_attempts
    self._base_delay = base_delay
    self._sleep = sleep
    self._handle: FeedHandle | None = None
    self._listeners: dict[int, ChangeCallback] = {}
    self._next_listener_id = 0
    self._lock = asyncio.Lock()
    self._pending: set[asyncio.Task[Any]] = set()

  @property
  def is_open(self) -> bool:
    return self._handle is not None

  @property
  def listener_count(self) -> int:
    return len(self._listeners)

  async def subscribe(self, callback: ChangeCallback) -> Disposer:
    """Register a listener and return its disposer; raises BackoffExhaustedError if the feed never opens."""
    async with self._lock:
      if self._handle is None:
        self._handle = await with_backoff(lambda: self._source.open(self._fan_out), max_attempts=self._max_attempts, base_delay=self._base_delay, operation_name="change_feed_open", sleep=self._sleep)
        logger.info("Change feed opened")
      listener_id = self._next_listener_id
      self._next_listener_id += 1
      self._listeners[listener_id] = callback

    disposed = False

    async def dispose() -> None:
      nonlocal disposed
      if disposed:
        return
      disposed = True
      await self._release(listener_id)

    return dispose

  async def aclose(self) -> None:
    """Drop every listener and close the feed."""
    async with self._lock:
      self._listeners.clear()
      await self._close_handle()

  async def _release(self, listener_id: int) -> None:
    async with self._lock:
      self._listeners.pop(listener_id, None)
      if not self._listeners:
        await self._close_handle()

  async def _close_handle(self) -> None:
    handle, self._handle = self._handle, None
    if handle is None:
      return
    try:
      await handle.close()
      logger.info("Change feed closed")
    except Exception as exc:  # noqa: BLE001
      logger.error("Change feed close failed: %s", exc, exc_info=True)

  def _fan_out(self, event: ChangeEvent) -> None:
    for callback in list(self._listeners.values()):
      try:
        outcome = callback(event)
      except Exception as exc:  # noqa: BLE001
        logger.error("Change listener failed channel=%s error=%s", event.channel, exc, exc_info=True)
        continue
      if inspect.isawaitable(outcome):
        task = asyncio.ensure_future(outcome)
        self._pending.add(task)
        task.add_done_callback(self._finish_task)

  def _finish_task(self, task: asyncio.Task[Any]) -> None:
    self._pending.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Async change listener failed: %s", exc, exc_info=exc)


class _PgListenHandle:
  def __init__(self, connection: asyncpg.Connection, channels: Sequence[str], listener: Callable[..., None]) -> None:
    self._connection = connection
    self._channels = channels
    self._listener = listener

  async def close(self) -> None:
    try:
      for channel in self._channels:
        await self._connection.remove_listener(channel, self._listener)
    finally:
      await self._connection.close()


class PgNotifyChangeSource:
  """Postgres LISTEN/NOTIFY feed; one dedicated connection per open feed."""

  def __init__(self, *, dsn: str, channels: Sequence[str], connect_timeout: float = 5.0) -> None:
    if not channels:
      raise ValueError("At least one channel is required.")
    self._dsn = _plain_postgres_dsn(dsn)
    self._channels = tuple(channels)
    self._connect_timeout = connect_timeout

  async def open(self, on_change: Callable[[ChangeEvent], None]) -> FeedHandle:
    connection = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)

    def _listener(_connection: Any, _pid: int, channel: str, payload: str) -> None:
      on_change(ChangeEvent(channel=channel, payload=payload))

    try:
      for channel in self._channels:
        await connection.add_listener(channel, _listener)
    except Exception:
      await connection.close()
      raise

    logger.info("Listening on channels=%s", ",".join(self._channels))
    return _PgListenHandle(connection, self._channels, _listener)


def _plain_postgres_dsn(dsn: str) -> str:
  """asyncpg wants postgresql://, not the SQLAlchemy driver form."""
  return dsn.replace("postgresql+asyncpg://", "postgresql://", 1)
