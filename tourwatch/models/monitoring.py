"""Saved searches, monitored searches, result snapshots and notification events."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourwatch.database import Base, JSONType


class SavedSearchQuery(Base):
    __tablename__ = "saved_search_queries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    raw_text: Mapped[str | None] = mapped_column(Text)
    destinations: Mapped[list] = mapped_column(JSONType, default=list)
    departure_city: Mapped[str | None] = mapped_column(String(100))
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    flexible_month: Mapped[str | None] = mapped_column(String(50))
    duration_nights: Mapped[int | None] = mapped_column(Integer)
    adults: Mapped[int] = mapped_column(Integer, default=2)
    children: Mapped[int] = mapped_column(Integer, default=0)
    children_ages: Mapped[list] = mapped_column(JSONType, default=list)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    budget_type: Mapped[str] = mapped_column(String(20), default="total")
    currency: Mapped[str] = mapped_column(String(3), default="RUB")
    travel_styles: Mapped[list] = mapped_column(JSONType, default=list)
    requirements: Mapped[list] = mapped_column(JSONType, default=list)
    priorities: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MonitoredSearch(Base):
    __tablename__ = "monitored_searches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    saved_query_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("saved_search_queries.id"), nullable=False
    )
    monitor_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_conditions: Mapped[dict] = mapped_column(JSONType, default=dict)
    checks_count: Mapped[int] = mapped_column(Integer, default=0)
    notifications_count: Mapped[int] = mapped_column(Integer, default=0)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_notification_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    lease_token: Mapped[str | None] = mapped_column(String(64))
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    saved_query: Mapped[SavedSearchQuery] = relationship(lazy="joined")


class ResultSnapshot(Base):
    __tablename__ = "result_snapshots"
    __table_args__ = (
        UniqueConstraint("monitored_search_id", "candidate_id", name="uq_snapshot_search_candidate"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    monitored_search_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("monitored_searches.id", ondelete="CASCADE"), nullable=False
    )
    candidate_id: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="RUB")
    availability: Mapped[str | None] = mapped_column(String(30))
    score: Mapped[int | None] = mapped_column(Integer)
    found_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_notified: Mapped[bool] = mapped_column(Boolean, default=False)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class NotificationEvent(Base):
    __tablename__ = "notification_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    monitored_search_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("monitored_searches.id", ondelete="CASCADE"), nullable=False
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    candidate_id: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_delta: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    delivery_status: Mapped[str] = mapped_column(String(20), default="pending")
    delivery_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
