"""
Promo Code Service - validation and redemption of account-bound promo codes.

Usage:
    from ticketing.services.promo_codes import PromoCodeService

    result = await PromoCodeService.validate_promo_code(db, "SAVE20", user_id, ticket_type_id, 2)
    if result.is_valid:
        ...
"""

import logging
import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ticketing.core.config import settings
from ticketing.core.exceptions import CodeNotFound, OrderNotFound, PerUserLimitExceeded, UsageLimitExceeded
from ticketing.models.courtesy import CourtesyRequest
from ticketing.models.event import TicketType
from ticketing.models.order import Order
from ticketing.models.promo_code import PromoCode, PromoCodeUsage, PromoCodeType, PromoCodeStatus
from ticketing.schemas.promo_code import PromoCodeValidationResult, ValidationErrorCode
from ticketing.services.discount_calculator import (
    calculate_for_promo_code,
    discount_percentage,
    totals_for_quantity,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _format_amount(value) -> str:
    return f"{Decimal(str(value)).normalize():f}"


def _fail(error: str, error_code: ValidationErrorCode) -> PromoCodeValidationResult:
    return PromoCodeValidationResult(is_valid=False, error=error, error_code=error_code)


async def get_ticket_type(db: AsyncSession, ticket_type_id: str) -> Optional[TicketType]:
    """Load a ticket type with its event (and so the event's category id)."""
    result = await db.execute(
        select(TicketType)
        .options(selectinload(TicketType.event))
        .where(TicketType.id == ticket_type_id)
    )
    return result.scalar_one_or_none()


class PromoCodeService:
    """Service for validating and redeeming promo codes."""

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str) -> Optional[PromoCode]:
        result = await db.execute(
            select(PromoCode)
            .where(PromoCode.code == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def count_user_usages(db: AsyncSession, promo_code_id: str, user_id: str) -> int:
        result = await db.execute(
            select(func.count(PromoCodeUsage.id)).where(
                PromoCodeUsage.promo_code_id == promo_code_id,
                PromoCodeUsage.user_id == user_id,
            )
        )
        return result.scalar_one()

    @staticmethod
    async def validate_promo_code(
        db: AsyncSession,
        code: str,
        user_id: str,
        ticket_type_id: str,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> PromoCodeValidationResult:
        """
        Check a promo code against a purchase of `quantity` tickets of one type.

        Checks run in a fixed order and stop at the first failure. Nothing is
        written; the usage counter only moves in apply_promo_code_to_order.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        now = now or datetime.utcnow()

        promo_code = await PromoCodeService.get_by_code(db, code)
        if not promo_code:
            return _fail("Promo code not found", ValidationErrorCode.NOT_FOUND)

        if promo_code.status != PromoCodeStatus.ACTIVE:
            return _fail("Promo code is not active", ValidationErrorCode.NOT_ACTIVE)

        if promo_code.valid_from and now < promo_code.valid_from:
            return _fail("Promo code is not yet valid", ValidationErrorCode.NOT_ACTIVE)
        if promo_code.valid_until and now > promo_code.valid_until:
            return _fail("Promo code has expired", ValidationErrorCode.EXPIRED)

        if promo_code.usage_limit is not None and promo_code.used_count >= promo_code.usage_limit:
            return _fail("Promo code usage limit reached", ValidationErrorCode.LIMIT_REACHED)

        if promo_code.usage_limit_per_user is not None:
            prior_usages = await PromoCodeService.count_user_usages(db, promo_code.id, user_id)
            if prior_usages >= promo_code.usage_limit_per_user:
                return _fail(
                    "You have reached the usage limit for this promo code",
                    ValidationErrorCode.LIMIT_REACHED,
                )

        ticket_type = await get_ticket_type(db, ticket_type_id)
        if not ticket_type:
            return _fail("Ticket type not found", ValidationErrorCode.NOT_FOUND)

        # Each scope axis is enforced on its own
        if promo_code.event_id and promo_code.event_id != ticket_type.event_id:
            return _fail("Promo code is not valid for this event", ValidationErrorCode.SCOPE_MISMATCH)
        if promo_code.category_id and promo_code.category_id != ticket_type.event.category_id:
            return _fail(
                "Promo code is not valid for this event category",
                ValidationErrorCode.SCOPE_MISMATCH,
            )
        if promo_code.ticket_type_id and promo_code.ticket_type_id != ticket_type_id:
            return _fail("Promo code is not valid for this ticket type", ValidationErrorCode.SCOPE_MISMATCH)

        total_base_amount = ticket_type.price * quantity
        if promo_code.min_order_amount is not None and total_base_amount < promo_code.min_order_amount:
            return _fail(
                f"Minimum order amount of {promo_code.min_order_amount} {promo_code.currency} required",
                ValidationErrorCode.MINIMUM_NOT_MET,
            )

        per_ticket = calculate_for_promo_code(ticket_type.price, promo_code)
        totals = totals_for_quantity(per_ticket, quantity)

        return PromoCodeValidationResult(
            is_valid=True,
            promo_code=promo_code,
            discount_amount=totals.discount_amount,
            final_amount=totals.final_amount,
            discount_percentage=discount_percentage(totals.discount_amount, total_base_amount),
        )

    @staticmethod
    async def apply_promo_code_to_order(
        db: AsyncSession,
        promo_code_id: str,
        user_id: str,
        order_id: str,
        discount_amount: int,
        original_amount: int,
        final_amount: int,
    ) -> PromoCodeUsage:
        """
        Record a redemption: usage row, counter increment and order discount
        fields, committed together or not at all.

        Limits are re-checked here against the store. The conditional counter
        update runs first and holds the promo code's write lock, so racing
        redemptions queue behind it and the per-user recount sees every
        committed usage. Writes run in a savepoint: on failure only they are
        rolled back and the caller's session keeps its loaded objects.
        """
        promo_code = await db.get(PromoCode, promo_code_id, populate_existing=True)
        if not promo_code:
            raise CodeNotFound(f"Promo code {promo_code_id} not found")

        async with db.begin_nested():
            counter = await db.execute(
                update(PromoCode)
                .where(
                    PromoCode.id == promo_code_id,
                    or_(
                        PromoCode.usage_limit.is_(None),
                        PromoCode.used_count < PromoCode.usage_limit,
                    ),
                )
                .values(used_count=PromoCode.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            if counter.rowcount != 1:
                raise UsageLimitExceeded(f"Promo code {promo_code.code} usage limit reached")

            if promo_code.usage_limit_per_user is not None:
                prior_usages = await PromoCodeService.count_user_usages(db, promo_code_id, user_id)
                if prior_usages >= promo_code.usage_limit_per_user:
                    raise PerUserLimitExceeded(
                        f"User {user_id} already used promo code {promo_code.code} {prior_usages} time(s)"
                    )

            usage = PromoCodeUsage(
                promo_code_id=promo_code_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=discount_amount,
                original_amount=original_amount,
                final_amount=final_amount,
            )
            db.add(usage)
            await db.flush()

            order_update = await db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(
                    discount_amount=discount_amount,
                    original_amount=original_amount,
                    discount_code=promo_code.code,
                )
                .execution_options(synchronize_session=False)
            )
            if order_update.rowcount != 1:
                raise OrderNotFound(f"Order {order_id} not found")

        await db.commit()

        logger.info(
            f"Promo code {promo_code.code} redeemed on order {order_id} by user {user_id} "
            f"(discount {discount_amount})"
        )
        return usage

    @staticmethod
    async def get_active_promo_codes(
        db: AsyncSession,
        event_id: Optional[str] = None,
        category_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[PromoCode]:
        """Active codes inside their validity window, optionally usable for an event/category."""
        now = now or datetime.utcnow()
        query = (
            select(PromoCode)
            .where(
                PromoCode.status == PromoCodeStatus.ACTIVE,
                PromoCode.valid_from <= now,
                or_(PromoCode.valid_until.is_(None), PromoCode.valid_until >= now),
            )
            .order_by(PromoCode.created_at.desc())
        )
        if event_id:
            query = query.where(or_(PromoCode.event_id == event_id, PromoCode.event_id.is_(None)))
        if category_id:
            query = query.where(or_(PromoCode.category_id == category_id, PromoCode.category_id.is_(None)))

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def format_discount_description(promo_code: PromoCode) -> str:
        if promo_code.type == PromoCodeType.PERCENTAGE:
            return f"{_format_amount(promo_code.value)}% off"
        if promo_code.type == PromoCodeType.FIXED_AMOUNT:
            return f"{_format_amount(promo_code.value)} {promo_code.currency} off"
        if promo_code.type == PromoCodeType.FREE:
            return "Free"
        return "Discount"

    @staticmethod
    def generate_promo_code(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
        prefix = normalize_code(settings.PROMO_CODE_PREFIX if prefix is None else prefix)
        length = length or settings.PROMO_CODE_LENGTH
        suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(max(length - len(prefix), 0)))
        return prefix + suffix

    @staticmethod
    async def is_code_unique(db: AsyncSession, code: str) -> bool:
        """A code is free only if neither a promo code nor a courtesy code uses it."""
        normalized = normalize_code(code)
        promo = await db.execute(select(PromoCode.id).where(PromoCode.code == normalized))
        if promo.first() is not None:
            return False
        courtesy = await db.execute(select(CourtesyRequest.id).where(CourtesyRequest.code == normalized))
        return courtesy.first() is None
