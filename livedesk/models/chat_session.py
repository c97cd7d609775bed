"""Live chat session ORM model."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from livedesk.db.base import Base, JSONType, UTCDateTime, utcnow


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    initial_question: Mapped[str] = mapped_column(Text, nullable=False)
    operator_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("operators.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        Text, default="queue_waiting", index=True
    )  # 'queue_waiting' | 'operator_assigned' | 'operator_chat' | 'resolved' | 'escalated_ticket'
    priority: Mapped[str] = mapped_column(
        Text, default="medium"
    )  # 'low' | 'medium' | 'high' | 'urgent'
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_timeout_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ticket_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    # Relationships
    messages: Mapped[list["Message"]] = relationship(  # noqa: F821
        back_populates="session", lazy="noload"
    )
