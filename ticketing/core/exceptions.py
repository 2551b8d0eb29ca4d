from typing import Optional


class DiscountError(Exception):
    """Base class for discount bookkeeping failures."""


class DiscountUsageError(DiscountError):
    """Recording a discount against a completed order failed.

    The order and its payment stand; only the discount bookkeeping is
    missing and needs operator attention.
    """

    def __init__(self, message: str, order_id: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id
        self.code = code


class UsageLimitExceeded(DiscountError):
    pass


class PerUserLimitExceeded(DiscountError):
    pass


class CourtesyCodeAlreadyUsed(DiscountError):
    pass


class OrderNotFound(DiscountError):
    pass


class CourtesyRequestError(DiscountError):
    pass


class CodeNotFound(DiscountError):
    pass
