"""
Courtesy Code Service - complimentary ticket codes.

Courtesy codes are bearer tokens: single use, bound to one event, not to an
account. A request is reviewed by the organizer, gets a code on approval and
is consumed by the first order that redeems it.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.config import settings
from ticketing.core.exceptions import CourtesyCodeAlreadyUsed, CourtesyRequestError
from ticketing.models.courtesy import CourtesyRequest, CourtesyCodeType, CourtesyStatus
from ticketing.models.promo_code import PromoCodeType
from ticketing.schemas.discount import DiscountResolution, DiscountSource
from ticketing.schemas.promo_code import ValidationErrorCode
from ticketing.services.discount_calculator import (
    calculate_discount,
    discount_percentage,
    totals_for_quantity,
)
from ticketing.services.promo_codes import PromoCodeService, get_ticket_type, normalize_code

logger = logging.getLogger(__name__)

# Attempts at drawing a code that collides with no promo or courtesy code
MAX_CODE_ATTEMPTS = 5


def _fail(error: str, error_code: ValidationErrorCode) -> DiscountResolution:
    return DiscountResolution.failure(error, error_code, source=DiscountSource.COURTESY_CODE)


def generate_courtesy_code() -> str:
    return secrets.token_hex(8).upper()


class CourtesyCodeService:
    """Service for reviewing, validating and redeeming courtesy codes."""

    @staticmethod
    async def validate_courtesy_code(
        db: AsyncSession,
        code: str,
        ticket_type_id: str,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> DiscountResolution:
        """
        Check a courtesy code against a purchase of `quantity` tickets of one type.

        The only write is the lazy APPROVED -> EXPIRED transition of a code
        found past its expiry.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        now = now or datetime.utcnow()

        # Lookups leave the caller's pending changes unflushed
        with db.no_autoflush:
            ticket_type = await get_ticket_type(db, ticket_type_id)
            if not ticket_type:
                return _fail("Ticket type not found", ValidationErrorCode.NOT_FOUND)

            result = await db.execute(
                select(CourtesyRequest)
                .where(
                    CourtesyRequest.code == normalize_code(code),
                    CourtesyRequest.event_id == ticket_type.event_id,
                    CourtesyRequest.status == CourtesyStatus.APPROVED,
                )
                .execution_options(populate_existing=True)
            )
            courtesy_request = result.scalar_one_or_none()
        if not courtesy_request:
            return _fail("Courtesy code not found or not valid", ValidationErrorCode.NOT_FOUND)

        if courtesy_request.expires_at and now > courtesy_request.expires_at:
            await CourtesyCodeService.expire(db, courtesy_request)
            return _fail("Courtesy code has expired", ValidationErrorCode.EXPIRED)

        # Guards against a redemption committed between the lookup and here
        if courtesy_request.status == CourtesyStatus.USED:
            return _fail("Courtesy code has already been used", ValidationErrorCode.ALREADY_USED)

        if courtesy_request.code_type == CourtesyCodeType.FREE:
            per_ticket = calculate_discount(ticket_type.price, PromoCodeType.FREE, None)
            description = "Free admission"
        elif courtesy_request.code_type == CourtesyCodeType.DISCOUNT:
            per_ticket = calculate_discount(
                ticket_type.price, PromoCodeType.FIXED_AMOUNT, courtesy_request.discount_value or 0
            )
            description = f"Discount of {courtesy_request.discount_value} {ticket_type.currency}"
        else:
            per_ticket = calculate_discount(ticket_type.price, None, None)
            description = ""

        totals = totals_for_quantity(per_ticket, quantity)
        total_base_amount = ticket_type.price * quantity

        return DiscountResolution(
            is_valid=True,
            type=DiscountSource.COURTESY_CODE,
            code=courtesy_request.code,
            name=f"Courtesy - {ticket_type.event.title}",
            description=description,
            discount_amount=totals.discount_amount,
            final_amount=totals.final_amount,
            discount_percentage=discount_percentage(totals.discount_amount, total_base_amount),
            code_ref=courtesy_request,
        )

    @staticmethod
    async def expire(db: AsyncSession, courtesy_request: CourtesyRequest) -> bool:
        """
        Move an approved request to EXPIRED. Returns False if it was no longer approved.

        The write is committed through its own session so that changes pending
        in the caller's session are neither flushed nor committed with it.
        """
        async with AsyncSession(db.bind, expire_on_commit=False) as writer:
            result = await writer.execute(
                update(CourtesyRequest)
                .where(
                    CourtesyRequest.id == courtesy_request.id,
                    CourtesyRequest.status == CourtesyStatus.APPROVED,
                )
                .values(status=CourtesyStatus.EXPIRED, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            await writer.commit()

        with db.no_autoflush:
            await db.refresh(courtesy_request)

        if result.rowcount != 1:
            logger.warning(f"Courtesy code {courtesy_request.code} changed state before it could expire")
            return False
        logger.warning(f"Courtesy code {courtesy_request.code} expired at {courtesy_request.expires_at}")
        return True

    @staticmethod
    async def mark_used(db: AsyncSession, courtesy_request_id: str) -> None:
        """
        Consume a courtesy code. Only an APPROVED request can become USED, so of
        two racing redemptions exactly one succeeds. A failed redemption only
        rolls back its own savepoint.
        """
        now = datetime.utcnow()
        async with db.begin_nested():
            result = await db.execute(
                update(CourtesyRequest)
                .where(
                    CourtesyRequest.id == courtesy_request_id,
                    CourtesyRequest.status == CourtesyStatus.APPROVED,
                )
                .values(status=CourtesyStatus.USED, used_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise CourtesyCodeAlreadyUsed(
                    f"Courtesy request {courtesy_request_id} is not approved or was already used"
                )
        await db.commit()

        logger.info(f"Courtesy request {courtesy_request_id} redeemed")

    @staticmethod
    async def approve_request(
        db: AsyncSession,
        request_id: str,
        code_type: CourtesyCodeType,
        discount_value: Optional[int] = None,
    ) -> CourtesyRequest:
        courtesy_request = await db.get(CourtesyRequest, request_id)
        if not courtesy_request:
            raise CourtesyRequestError("Courtesy request not found")
        if courtesy_request.status != CourtesyStatus.PENDING:
            raise CourtesyRequestError("Courtesy request was already processed")
        if code_type == CourtesyCodeType.DISCOUNT and (not discount_value or discount_value <= 0):
            raise CourtesyRequestError("A positive discount value is required for discount codes")

        code = None
        for _ in range(MAX_CODE_ATTEMPTS):
            candidate = generate_courtesy_code()
            if await PromoCodeService.is_code_unique(db, candidate):
                code = candidate
                break
        if code is None:
            raise CourtesyRequestError("Could not generate a unique courtesy code")

        now = datetime.utcnow()
        courtesy_request.status = CourtesyStatus.APPROVED
        courtesy_request.code_type = code_type
        courtesy_request.discount_value = discount_value if code_type == CourtesyCodeType.DISCOUNT else None
        courtesy_request.code = code
        courtesy_request.approved_at = now
        courtesy_request.expires_at = now + timedelta(days=settings.COURTESY_CODE_TTL_DAYS)

        await db.commit()
        await db.refresh(courtesy_request)

        logger.info(f"Courtesy request {request_id} approved with {code_type.value} code")
        return courtesy_request

    @staticmethod
    async def reject_request(db: AsyncSession, request_id: str) -> CourtesyRequest:
        courtesy_request = await db.get(CourtesyRequest, request_id)
        if not courtesy_request:
            raise CourtesyRequestError("Courtesy request not found")
        if courtesy_request.status != CourtesyStatus.PENDING:
            raise CourtesyRequestError("Courtesy request was already processed")

        courtesy_request.status = CourtesyStatus.REJECTED
        courtesy_request.rejected_at = datetime.utcnow()

        await db.commit()
        await db.refresh(courtesy_request)

        logger.info(f"Courtesy request {request_id} rejected")
        return courtesy_request
