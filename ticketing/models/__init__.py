# Database models - All models must be imported here for SQLAlchemy to create tables

from ticketing.models.event import Category, Event, EventStatus, TicketType
from ticketing.models.order import Order, OrderStatus
from ticketing.models.promo_code import PromoCode, PromoCodeUsage, PromoCodeType, PromoCodeStatus
from ticketing.models.courtesy import CourtesyRequest, CourtesyCodeType, CourtesyStatus

__all__ = [
    # Events
    "Category", "Event", "EventStatus", "TicketType",
    # Orders
    "Order", "OrderStatus",
    # Promo codes
    "PromoCode", "PromoCodeUsage", "PromoCodeType", "PromoCodeStatus",
    # Courtesy codes
    "CourtesyRequest", "CourtesyCodeType", "CourtesyStatus",
]
