from enum import Enum
from typing import Optional

from pydantic import BaseModel

from ticketing.models.promo_code import PromoCode


class ValidationErrorCode(str, Enum):
    """Category of a failed code validation."""
    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    SCOPE_MISMATCH = "scope_mismatch"
    MINIMUM_NOT_MET = "minimum_not_met"
    ALREADY_USED = "already_used"


class PromoCodeValidationResult(BaseModel):
    """Result of promo code validation. Amounts cover the whole order."""
    is_valid: bool
    error: Optional[str] = None
    error_code: Optional[ValidationErrorCode] = None
    promo_code: Optional[PromoCode] = None
    discount_amount: int = 0
    final_amount: int = 0
    discount_percentage: float = 0.0

    class Config:
        arbitrary_types_allowed = True
