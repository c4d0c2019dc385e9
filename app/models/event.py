"""
Canonical calendar event model.
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, CheckConstraint, ForeignKey, DateTime, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType

if TYPE_CHECKING:
    from app.models.user import User


class Event(Base):
    """
    Calendar event pulled from, or pushed to, an external provider.

    Start and end are stored as UTC instants; ``timezone`` is the IANA zone
    the event was authored in. Events are unique per
    (user, provider, provider-native id).
    """

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_type: Mapped[str] = mapped_column(String(20), nullable=False)
    external_event_id: Mapped[Optional[str]] = mapped_column(
        String(1024),
        nullable=True,
    )  # Original ID from the provider
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    timezone: Mapped[str] = mapped_column(String(100), default="UTC")
    status: Mapped[str] = mapped_column(
        String(20),
        default="confirmed",
    )  # confirmed, tentative, cancelled
    meeting_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )  # video_call, phone_call, in_person
    meeting_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attendees: Mapped[list] = mapped_column(JSONType, default=list)
    synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="events")

    __table_args__ = (
        Index(
            "idx_event_natural_key",
            "user_id",
            "provider_type",
            "external_event_id",
            unique=True,
        ),
        Index("idx_event_user_range", "user_id", "start_date", "end_date"),
        CheckConstraint("start_date <= end_date", name="ck_event_range"),
    )
    # Timestamps are read back on flush; async sessions cannot lazy-load them
    __mapper_args__ = {"eager_defaults": True}
