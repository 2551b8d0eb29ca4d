from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import String, DateTime, Integer, ForeignKey, Text, Numeric, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ticketing.core.config import settings
from ticketing.core.database import Base
from ticketing.models.base import UUIDMixin

if TYPE_CHECKING:
    from ticketing.models.event import Category, Event, TicketType
    from ticketing.models.order import Order


class PromoCodeType(str, Enum):
    """Type of discount."""
    PERCENTAGE = "percentage"  # e.g., 20% off
    FIXED_AMOUNT = "fixed_amount"  # e.g., 5000 off each ticket
    FREE = "free"  # Full ticket price waived


class PromoCodeStatus(str, Enum):
    """Status of promo code."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USED_UP = "used_up"  # Usage limit reached


class PromoCode(Base, UUIDMixin):
    """
    Promo/discount code for ticket purchases.
    Account-bound, multi-use, optionally scoped to an event, a category
    and/or a ticket type.
    """
    __tablename__ = "promo_codes"

    # Code info
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)  # Stored upper-cased (e.g., "SAVE20")
    name: Mapped[str] = mapped_column(String(255))  # Friendly name (e.g., "Summer Sale 20%")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Discount details
    type: Mapped[PromoCodeType] = mapped_column(SQLEnum(PromoCodeType))
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # 20 for 20% or 5000 currency units
    currency: Mapped[str] = mapped_column(String(3), default=settings.DEFAULT_CURRENCY)
    max_discount_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Per-ticket cap for percentage discounts
    min_order_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Minimum order to apply

    # Status
    status: Mapped[PromoCodeStatus] = mapped_column(
        SQLEnum(PromoCodeStatus), default=PromoCodeStatus.ACTIVE
    )

    # Validity period
    valid_from: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)  # null = no expiry

    # Usage limits
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Total uses allowed
    usage_limit_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)

    # Scope restrictions, null = unrestricted on that axis
    event_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=True, index=True
    )
    category_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True, index=True
    )
    ticket_type_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("ticket_types.id"), nullable=True, index=True
    )

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    event: Mapped[Optional["Event"]] = relationship("Event")
    category: Mapped[Optional["Category"]] = relationship("Category")
    ticket_type: Mapped[Optional["TicketType"]] = relationship("TicketType")
    usages: Mapped[List["PromoCodeUsage"]] = relationship(
        "PromoCodeUsage", back_populates="promo_code"
    )

    @validates("code")
    def normalize_code(self, key, value):
        return value.strip().upper() if value else value


class PromoCodeUsage(Base, UUIDMixin):
    """
    One redemption of a promo code against an order.
    """
    __tablename__ = "promo_code_usages"
    __table_args__ = (
        UniqueConstraint("promo_code_id", "order_id", name="uq_promo_code_usage_order"),
    )

    promo_code_id: Mapped[str] = mapped_column(String(36), ForeignKey("promo_codes.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), index=True)

    # Amounts for the whole order
    discount_amount: Mapped[int] = mapped_column(Integer)
    original_amount: Mapped[int] = mapped_column(Integer)
    final_amount: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    promo_code: Mapped["PromoCode"] = relationship("PromoCode", back_populates="usages")
    order: Mapped["Order"] = relationship("Order")
