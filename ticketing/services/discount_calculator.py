"""
Per-ticket discount arithmetic.

Every amount here is in whole currency units. Multi-ticket totals are always
the per-ticket result multiplied by the quantity, never a discount applied to
a pre-multiplied order total.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from ticketing.models.promo_code import PromoCode, PromoCodeType

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class DiscountBreakdown:
    discount_amount: int
    final_amount: int


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_discount(
    price: int,
    discount_type: Optional[str],
    value: Optional[Number],
    max_discount_amount: Optional[Number] = None,
) -> DiscountBreakdown:
    """
    Discount for a single ticket.

    The result always satisfies 0 <= discount_amount <= price and
    discount_amount + final_amount == price, whatever the inputs.
    """
    base = max(_to_decimal(price), Decimal("0"))
    amount = _to_decimal(value)

    if discount_type == PromoCodeType.PERCENTAGE:
        raw = base * amount / Decimal("100")
        if max_discount_amount is not None:
            raw = min(raw, _to_decimal(max_discount_amount))
    elif discount_type == PromoCodeType.FIXED_AMOUNT:
        # Per ticket, capped at the ticket price
        raw = min(amount, base)
    elif discount_type == PromoCodeType.FREE:
        raw = base
    else:
        raw = Decimal("0")

    raw = max(Decimal("0"), min(raw, base))

    unit_price = round_half_up(base)
    discount_amount = min(round_half_up(raw), unit_price)
    return DiscountBreakdown(
        discount_amount=discount_amount,
        final_amount=unit_price - discount_amount,
    )


def calculate_for_promo_code(price: int, promo_code: PromoCode) -> DiscountBreakdown:
    return calculate_discount(
        price,
        promo_code.type,
        promo_code.value,
        promo_code.max_discount_amount,
    )


def totals_for_quantity(per_ticket: DiscountBreakdown, quantity: int) -> DiscountBreakdown:
    return DiscountBreakdown(
        discount_amount=per_ticket.discount_amount * quantity,
        final_amount=per_ticket.final_amount * quantity,
    )


def discount_percentage(total_discount: int, total_base: int) -> float:
    """Share of the order total that was discounted, rounded to 2 decimals."""
    if total_base <= 0:
        return 0.0
    pct = Decimal(total_discount) * Decimal("100") / Decimal(total_base)
    return float(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
