"""Operator ORM model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from livedesk.db.base import Base, JSONType, UTCDateTime, utcnow


class Operator(Base):
    __tablename__ = "operators"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(Text, default="operator")
    permissions: Mapped[dict] = mapped_column(JSONType, default=dict)
    presence: Mapped[str] = mapped_column(
        Text, default="offline", index=True
    )  # 'offline' | 'available' | 'busy'
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    connection_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Weak reference, set iff presence == 'busy'
    current_session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    last_activity: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    online_since: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
