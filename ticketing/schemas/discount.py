from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel

from ticketing.models.courtesy import CourtesyRequest
from ticketing.models.promo_code import PromoCode
from ticketing.schemas.promo_code import ValidationErrorCode


class DiscountSource(str, Enum):
    """Namespace a resolved code came from."""
    PROMO_CODE = "PROMO_CODE"
    COURTESY_CODE = "COURTESY_CODE"


class DiscountResolution(BaseModel):
    """Normalized outcome of resolving a promo or courtesy code for a purchase."""
    is_valid: bool
    error: Optional[str] = None
    error_code: Optional[ValidationErrorCode] = None
    type: DiscountSource = DiscountSource.PROMO_CODE
    code: str = ""
    name: str = ""
    description: str = ""
    discount_amount: int = 0
    final_amount: int = 0
    discount_percentage: float = 0.0
    code_ref: Optional[Union[PromoCode, CourtesyRequest]] = None

    class Config:
        arbitrary_types_allowed = True

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: Optional[ValidationErrorCode] = None,
        source: DiscountSource = DiscountSource.PROMO_CODE,
    ) -> "DiscountResolution":
        return cls(is_valid=False, error=error, error_code=error_code, type=source)
