"""
Discount Code Service - single entry point for promo and courtesy codes.

Usage:
    from ticketing.services.discount_codes import DiscountCodeService

    # At checkout:
    result = await DiscountCodeService.validate_discount_code(db, code, user_id, ticket_type_id, quantity)

    # Once the order is paid:
    await DiscountCodeService.apply_code_usage(db, result, user_id, order.id, original_amount, final_amount)

Promo codes are the primary namespace: a courtesy code is only tried when the
promo lookup fails, and when both fail the promo error is reported.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.exceptions import DiscountUsageError
from ticketing.models.courtesy import CourtesyRequest
from ticketing.models.promo_code import PromoCode
from ticketing.schemas.discount import DiscountResolution, DiscountSource
from ticketing.services.courtesy import CourtesyCodeService
from ticketing.services.promo_codes import PromoCodeService

logger = logging.getLogger(__name__)


class DiscountCodeService:
    """Resolves a user-supplied code and records its usage after payment."""

    @staticmethod
    async def validate_discount_code(
        db: AsyncSession,
        code: str,
        user_id: str,
        ticket_type_id: str,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> DiscountResolution:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        now = now or datetime.utcnow()

        promo_result = await PromoCodeService.validate_promo_code(
            db, code, user_id, ticket_type_id, quantity, now=now
        )
        if promo_result.is_valid:
            promo_code = promo_result.promo_code
            return DiscountResolution(
                is_valid=True,
                type=DiscountSource.PROMO_CODE,
                code=promo_code.code,
                name=promo_code.name,
                description=promo_code.description or "",
                discount_amount=promo_result.discount_amount,
                final_amount=promo_result.final_amount,
                discount_percentage=promo_result.discount_percentage,
                code_ref=promo_code,
            )

        courtesy_result = await CourtesyCodeService.validate_courtesy_code(
            db, code, ticket_type_id, quantity, now=now
        )
        if courtesy_result.is_valid:
            return courtesy_result

        return DiscountResolution.failure(
            promo_result.error or "Invalid code",
            promo_result.error_code,
            source=DiscountSource.PROMO_CODE,
        )

    @staticmethod
    async def apply_code_usage(
        db: AsyncSession,
        result: DiscountResolution,
        user_id: str,
        order_id: str,
        original_amount: int,
        final_amount: int,
    ) -> None:
        """
        Record a resolved code against a completed order.

        Any failure is raised as DiscountUsageError. The order's payment is
        never reversed here; the caller reports the error to operators. Only
        the bookkeeping writes are rolled back, so the caller's order and
        other loaded objects stay readable.
        """
        if not result.is_valid or result.code_ref is None:
            raise DiscountUsageError("No valid code to apply", order_id=order_id, code=result.code)

        expected = PromoCode if result.type == DiscountSource.PROMO_CODE else CourtesyRequest
        if not isinstance(result.code_ref, expected):
            raise DiscountUsageError(
                f"Code reference does not match discount type {result.type.value}",
                order_id=order_id,
                code=result.code,
            )

        try:
            if result.type == DiscountSource.PROMO_CODE:
                await PromoCodeService.apply_promo_code_to_order(
                    db,
                    result.code_ref.id,
                    user_id,
                    order_id,
                    result.discount_amount,
                    original_amount,
                    final_amount,
                )
            else:
                await CourtesyCodeService.mark_used(db, result.code_ref.id)
        except Exception as e:
            logger.error(
                f"Failed to record {result.type.value} {result.code} on order {order_id}: {e}"
            )
            raise DiscountUsageError(
                f"Discount bookkeeping failed for order {order_id}: {e}",
                order_id=order_id,
                code=result.code,
            ) from e
