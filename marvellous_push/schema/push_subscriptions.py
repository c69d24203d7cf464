"""SQLAlchemy model for push delivery endpoints."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, Index, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marvellous_push.core.database import Base


class PushSubscription(Base):
  """One registered device endpoint belonging to a recipient."""

  __tablename__ = "push_subscriptions"
  __table_args__ = (Index("ux_push_subscriptions_endpoint", "endpoint", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  # Opaque identifier issued by the auth platform; not a foreign key here.
  recipient_id: Mapped[str] = mapped_column(Text, index=True, nullable=False)
  endpoint: Mapped[str] = mapped_column(Text, nullable=False)
  user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
