from datetime import datetime
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import String, DateTime, Integer, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketing.core.config import settings
from ticketing.core.database import Base
from ticketing.models.base import UUIDMixin

if TYPE_CHECKING:
    from ticketing.models.order import Order


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Category(Base, UUIDMixin):
    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    events: Mapped[List["Event"]] = relationship("Event", back_populates="category")


class Event(Base, UUIDMixin):
    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[EventStatus] = mapped_column(SQLEnum(EventStatus), default=EventStatus.DRAFT)

    # Schedule
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), default=settings.DEFAULT_CURRENCY)

    category_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True, index=True
    )
    organizer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # Owned by the accounts service

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="events")
    ticket_types: Mapped[List["TicketType"]] = relationship(
        "TicketType", back_populates="event", cascade="all, delete-orphan"
    )


class TicketType(Base, UUIDMixin):
    """A purchasable ticket tier of an event. Prices are whole currency units."""
    __tablename__ = "ticket_types"

    name: Mapped[str] = mapped_column(String(255))  # e.g., "Early Bird", "General", "VIP"
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    price: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default=settings.DEFAULT_CURRENCY)

    # Availability
    quantity_total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # null = unlimited
    quantity_sold: Mapped[int] = mapped_column(Integer, default=0)

    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="ticket_types")
    orders: Mapped[List["Order"]] = relationship("Order", back_populates="ticket_type")
