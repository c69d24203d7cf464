"""Repository helpers for push subscription persistence."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marvellous_push.core.database import get_session_factory
from marvellous_push.notifications.contracts import InvalidRequestError, Subscription, SubscriptionStoreError
from marvellous_push.schema.push_subscriptions import PushSubscription

logger = logging.getLogger(__name__)


class PushSubscriptionRepository:
  """Persist and read push subscriptions in Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _factory(self) -> async_sessionmaker[AsyncSession]:
    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      raise SubscriptionStoreError("Subscription store is not configured (MARVELLOUS_PG_DSN is missing).")
    return session_factory

  async def upsert(self, entry: Subscription) -> None:
    """Insert or re-home a subscription keyed by endpoint."""
    async with self._factory()() as session:
      await self._upsert_with_session(session=session, entry=entry)

  async def _upsert_with_session(self, *, session: AsyncSession, entry: Subscription) -> None:
    # A device that re-registers under another account moves with it.
    stmt = insert(PushSubscription).values(recipient_id=entry.recipient_id, endpoint=entry.endpoint, user_agent=entry.user_agent)
    stmt = stmt.on_conflict_do_update(index_elements=["endpoint"], set_={"recipient_id": entry.recipient_id, "user_agent": entry.user_agent})
    await session.execute(stmt)
    await session.commit()

  async def get_subscriptions(self, recipient_ids: Iterable[str]) -> list[Subscription]:
    """Return every subscription owned by any of the recipients."""
    wanted = sorted({recipient_id for recipient_id in recipient_ids if recipient_id})
    if not wanted:
      raise InvalidRequestError("recipient_ids must contain at least one identifier.")

    try:
      async with self._factory()() as session:
        return await self._get_subscriptions_with_session(session=session, recipient_ids=wanted)
    except SQLAlchemyError as exc:
      logger.error("Subscription lookup failed recipients=%d error=%s", len(wanted), exc, exc_info=True)
      raise SubscriptionStoreError("Subscription store is unreachable.") from exc
    except OSError as exc:
      logger.error("Subscription store connection failed error=%s", exc)
      raise SubscriptionStoreError("Subscription store is unreachable.") from exc

  async def _get_subscriptions_with_session(self, *, session: AsyncSession, recipient_ids: list[str]) -> list[Subscription]:
    # Stable order keeps result lists reproducible across calls.
    stmt = select(PushSubscription).where(PushSubscription.recipient_id.in_(recipient_ids)).order_by(PushSubscription.recipient_id, PushSubscription.created_at, PushSubscription.endpoint)
    result = await session.execute(stmt)
    rows = result.scalars().all()
    return [Subscription(recipient_id=row.recipient_id, endpoint=row.endpoint, created_at=row.created_at, user_agent=row.user_agent) for row in rows]

  async def delete_for_recipient_endpoint(self, *, recipient_id: str, endpoint: str) -> int:
    """Delete the exact (recipient, endpoint) row; deleting nothing is fine."""
    async with self._factory()() as session:
      return await self._delete_with_session(session=session, recipient_id=recipient_id, endpoint=endpoint)

  async def _delete_with_session(self, *, session: AsyncSession, recipient_id: str, endpoint: str) -> int:
    # Scoped to the owner so a re-homed endpoint is never removed by a stale batch.
    stmt = delete(PushSubscription).where(PushSubscription.recipient_id == recipient_id, PushSubscription.endpoint == endpoint)
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount or 0)
