"""Chat message ORM model."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from livedesk.db.base import Base, JSONType, UTCDateTime, utcnow


class Message(Base):
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_type: Mapped[str] = mapped_column(
        Text, nullable=False
    )  # 'user' | 'operator' | 'system'
    sender_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        Text, default="text"
    )  # 'text' | 'image' | 'file' | 'system'
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    # Relationships
    session: Mapped["ChatSession"] = relationship(  # noqa: F821
        back_populates="messages", lazy="noload"
    )
