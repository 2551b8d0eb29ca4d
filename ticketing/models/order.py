from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, DateTime, Integer, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketing.core.config import settings
from ticketing.core.database import Base
from ticketing.models.base import UUIDMixin

if TYPE_CHECKING:
    from ticketing.models.event import TicketType


class OrderStatus(str, Enum):
    """Payment status for ticket orders."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class Order(Base, UUIDMixin):
    """Ticket order record. Amounts are whole currency units."""
    __tablename__ = "orders"

    # Order reference
    order_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)

    user_id: Mapped[str] = mapped_column(String(36), index=True)
    ticket_type_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_types.id"))

    # Order details
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[int] = mapped_column(Integer)  # Price at time of purchase
    original_amount: Mapped[int] = mapped_column(Integer)  # unit_price * quantity
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    discount_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    total_amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default=settings.DEFAULT_CURRENCY)

    # Payment
    status: Mapped[OrderStatus] = mapped_column(SQLEnum(OrderStatus), default=OrderStatus.PENDING)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    ticket_type: Mapped["TicketType"] = relationship("TicketType", back_populates="orders")
