from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, DateTime, Integer, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ticketing.core.database import Base
from ticketing.models.base import UUIDMixin

if TYPE_CHECKING:
    from ticketing.models.event import Event


class CourtesyCodeType(str, Enum):
    FREE = "free"  # Free admission
    DISCOUNT = "discount"  # Fixed amount off each ticket


class CourtesyStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    USED = "used"
    EXPIRED = "expired"


class CourtesyRequest(Base, UUIDMixin):
    """
    Request for a complimentary ticket. Once approved it carries a single-use
    bearer code valid only for its event.
    """
    __tablename__ = "courtesy_requests"

    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), index=True)

    # Requester
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Code, assigned on approval
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True, index=True)
    code_type: Mapped[CourtesyCodeType] = mapped_column(SQLEnum(CourtesyCodeType), default=CourtesyCodeType.FREE)
    discount_value: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Only for DISCOUNT codes

    status: Mapped[CourtesyStatus] = mapped_column(SQLEnum(CourtesyStatus), default=CourtesyStatus.PENDING)

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    event: Mapped["Event"] = relationship("Event")

    @validates("code")
    def normalize_code(self, key, value):
        return value.strip().upper() if value else value
