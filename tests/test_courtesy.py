"""Tests for CourtesyCodeService."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from ticketing.core.exceptions import CourtesyCodeAlreadyUsed, CourtesyRequestError
from ticketing.models import Category, CourtesyCodeType, CourtesyRequest, CourtesyStatus
from ticketing.schemas.discount import DiscountSource
from ticketing.schemas.promo_code import ValidationErrorCode
from ticketing.services.courtesy import CourtesyCodeService
from ticketing.services.promo_codes import PromoCodeService
from tests.factories import make_courtesy_request, make_event, make_order, make_ticket_type


class TestValidateCourtesyCode:
    """Tests for CourtesyCodeService.validate_courtesy_code."""

    async def test_free_code(self, db, event):
        ticket_type = await make_ticket_type(db, event.id, price=15000)
        courtesy = await make_courtesy_request(db, event.id, code="FREEPASS")

        result = await CourtesyCodeService.validate_courtesy_code(db, "freepass", ticket_type.id, 1)

        assert result.is_valid
        assert result.type == DiscountSource.COURTESY_CODE
        assert result.code == "FREEPASS"
        assert result.name == "Courtesy - Summer Fest"
        assert result.description == "Free admission"
        assert result.discount_amount == 15000
        assert result.final_amount == 0
        assert result.discount_percentage == 100.0
        assert result.code_ref is courtesy

    async def test_discount_code_per_ticket(self, db, ticket_type, event):
        await make_courtesy_request(
            db, event.id, code="HALF", code_type=CourtesyCodeType.DISCOUNT, discount_value=10000
        )

        result = await CourtesyCodeService.validate_courtesy_code(db, "HALF", ticket_type.id, 3)

        assert result.is_valid
        assert result.description == "Discount of 10000 CLP"
        assert result.discount_amount == 30000
        assert result.final_amount == 60000
        assert result.discount_percentage == 33.33

    async def test_discount_larger_than_price_is_capped(self, db, event):
        ticket_type = await make_ticket_type(db, event.id, price=5000)
        await make_courtesy_request(
            db, event.id, code="BIG", code_type=CourtesyCodeType.DISCOUNT, discount_value=8000
        )

        result = await CourtesyCodeService.validate_courtesy_code(db, "BIG", ticket_type.id, 2)

        assert result.discount_amount == 10000
        assert result.final_amount == 0

    async def test_ticket_type_not_found(self, db):
        result = await CourtesyCodeService.validate_courtesy_code(db, "ANY", "missing", 1)

        assert not result.is_valid
        assert result.type == DiscountSource.COURTESY_CODE
        assert result.error == "Ticket type not found"

    async def test_code_from_another_event(self, db, ticket_type):
        other_event = await make_event(db, title="Other Fest")
        await make_courtesy_request(db, other_event.id, code="ELSEWHERE")

        result = await CourtesyCodeService.validate_courtesy_code(db, "ELSEWHERE", ticket_type.id, 1)

        assert not result.is_valid
        assert result.error == "Courtesy code not found or not valid"
        assert result.error_code == ValidationErrorCode.NOT_FOUND

    @pytest.mark.parametrize("status", [CourtesyStatus.PENDING, CourtesyStatus.REJECTED, CourtesyStatus.EXPIRED])
    async def test_only_approved_codes_are_found(self, db, ticket_type, event, status):
        await make_courtesy_request(db, event.id, code="NOTYET", status=status)

        result = await CourtesyCodeService.validate_courtesy_code(db, "NOTYET", ticket_type.id, 1)

        assert result.error == "Courtesy code not found or not valid"

    async def test_expired_code_is_marked_expired(self, db, ticket_type, event):
        """An approved code past its expiry is rejected and persisted as EXPIRED."""
        courtesy = await make_courtesy_request(
            db, event.id, code="STALE", expires_at=datetime.utcnow() - timedelta(days=1)
        )

        result = await CourtesyCodeService.validate_courtesy_code(db, "STALE", ticket_type.id, 1)

        assert not result.is_valid
        assert result.error == "Courtesy code has expired"
        assert result.error_code == ValidationErrorCode.EXPIRED
        await db.refresh(courtesy)
        assert courtesy.status == CourtesyStatus.EXPIRED

        again = await CourtesyCodeService.validate_courtesy_code(db, "STALE", ticket_type.id, 1)
        assert again.error == "Courtesy code not found or not valid"

    async def test_code_without_expiry_never_expires(self, db, ticket_type, event):
        await make_courtesy_request(db, event.id, code="FOREVER", expires_at=None)

        result = await CourtesyCodeService.validate_courtesy_code(
            db, "FOREVER", ticket_type.id, 1, now=datetime.utcnow() + timedelta(days=3650)
        )

        assert result.is_valid

    async def test_used_code_is_rejected(self, db, ticket_type, event):
        courtesy = await make_courtesy_request(db, event.id, code="ONEUSE")

        first = await CourtesyCodeService.validate_courtesy_code(db, "ONEUSE", ticket_type.id, 1)
        await CourtesyCodeService.mark_used(db, courtesy.id)
        second = await CourtesyCodeService.validate_courtesy_code(db, "ONEUSE", ticket_type.id, 1)

        assert first.is_valid
        assert not second.is_valid

    async def test_rejects_non_positive_quantity(self, db, ticket_type):
        with pytest.raises(ValueError):
            await CourtesyCodeService.validate_courtesy_code(db, "ANY", ticket_type.id, -1)


class TestMarkUsed:
    """Tests for CourtesyCodeService.mark_used."""

    async def test_transitions_to_used_once(self, db, event):
        courtesy = await make_courtesy_request(db, event.id, code="ONCEONLY")

        await CourtesyCodeService.mark_used(db, courtesy.id)
        with pytest.raises(CourtesyCodeAlreadyUsed):
            await CourtesyCodeService.mark_used(db, courtesy.id)

        await db.refresh(courtesy)
        assert courtesy.status == CourtesyStatus.USED
        assert courtesy.used_at is not None

    async def test_pending_request_cannot_be_used(self, db, event):
        courtesy = await make_courtesy_request(db, event.id, code=None, status=CourtesyStatus.PENDING)

        with pytest.raises(CourtesyCodeAlreadyUsed):
            await CourtesyCodeService.mark_used(db, courtesy.id)

    async def test_failed_redemption_keeps_caller_objects_loaded(self, db, ticket_type, event):
        courtesy = await make_courtesy_request(db, event.id, code="TWICE")
        order = await make_order(db, ticket_type)
        await CourtesyCodeService.mark_used(db, courtesy.id)

        with pytest.raises(CourtesyCodeAlreadyUsed):
            await CourtesyCodeService.mark_used(db, courtesy.id)

        assert order.order_number.startswith("ORD-")
        assert courtesy.code == "TWICE"

    async def test_single_use_under_concurrent_redemptions(self, file_session_maker):
        """Racing redemptions of one courtesy code: exactly one wins."""
        sessions = file_session_maker

        async with sessions() as setup:
            race_event = await make_event(setup)
            courtesy = await make_courtesy_request(setup, race_event.id, code="RACEPASS")

        async def redeem():
            async with sessions() as session:
                await CourtesyCodeService.mark_used(session, courtesy.id)

        results = await asyncio.gather(*(redeem() for _ in range(6)), return_exceptions=True)
        successes = [r for r in results if not isinstance(r, BaseException)]
        already_used = [r for r in results if isinstance(r, CourtesyCodeAlreadyUsed)]

        async with sessions() as check:
            stored = await check.get(CourtesyRequest, courtesy.id)

        assert len(successes) == 1
        assert len(already_used) == 5
        assert stored.status == CourtesyStatus.USED
        assert stored.used_at is not None


class TestLazyExpiry:
    """Tests for the expiry write made while validating."""

    async def test_pending_caller_changes_are_not_committed(self, file_session_maker):
        sessions = file_session_maker

        async with sessions() as setup:
            expiry_event = await make_event(setup)
            expiry_ticket = await make_ticket_type(setup, expiry_event.id)
            courtesy = await make_courtesy_request(
                setup, expiry_event.id, code="LAPSED", expires_at=datetime.utcnow() - timedelta(hours=1)
            )

        async with sessions() as checkout:
            checkout.add(Category(name="Uncommitted"))

            result = await CourtesyCodeService.validate_courtesy_code(checkout, "LAPSED", expiry_ticket.id, 1)

            assert result.error == "Courtesy code has expired"
            await checkout.rollback()

        async with sessions() as check:
            stored = await check.get(CourtesyRequest, courtesy.id)
            categories = (
                await check.execute(select(func.count(Category.id)).where(Category.name == "Uncommitted"))
            ).scalar_one()

        assert stored.status == CourtesyStatus.EXPIRED
        assert categories == 0


class TestReview:
    """Tests for approving and rejecting courtesy requests."""

    async def test_approve_assigns_code_and_expiry(self, db, event):
        pending = await make_courtesy_request(
            db, event.id, code=None, status=CourtesyStatus.PENDING, expires_at=None
        )

        approved = await CourtesyCodeService.approve_request(db, pending.id, CourtesyCodeType.FREE)

        assert approved.status == CourtesyStatus.APPROVED
        assert approved.code is not None
        assert len(approved.code) == 16
        assert approved.code == approved.code.upper()
        assert approved.approved_at is not None
        assert approved.expires_at - approved.approved_at == timedelta(days=30)
        assert approved.discount_value is None
        assert await PromoCodeService.is_code_unique(db, approved.code) is False

    async def test_approve_discount_requires_value(self, db, event):
        pending = await make_courtesy_request(db, event.id, code=None, status=CourtesyStatus.PENDING)

        with pytest.raises(CourtesyRequestError):
            await CourtesyCodeService.approve_request(db, pending.id, CourtesyCodeType.DISCOUNT)

        approved = await CourtesyCodeService.approve_request(
            db, pending.id, CourtesyCodeType.DISCOUNT, discount_value=5000
        )
        assert approved.discount_value == 5000

    async def test_approved_code_validates(self, db, ticket_type, event):
        pending = await make_courtesy_request(db, event.id, code=None, status=CourtesyStatus.PENDING)
        approved = await CourtesyCodeService.approve_request(db, pending.id, CourtesyCodeType.FREE)

        result = await CourtesyCodeService.validate_courtesy_code(db, approved.code.lower(), ticket_type.id, 1)

        assert result.is_valid

    async def test_reject(self, db, event):
        pending = await make_courtesy_request(db, event.id, code=None, status=CourtesyStatus.PENDING)

        rejected = await CourtesyCodeService.reject_request(db, pending.id)

        assert rejected.status == CourtesyStatus.REJECTED
        assert rejected.rejected_at is not None
        assert rejected.code is None

    async def test_processed_request_cannot_be_reviewed_again(self, db, event):
        approved = await make_courtesy_request(db, event.id, code="DONE")

        with pytest.raises(CourtesyRequestError):
            await CourtesyCodeService.approve_request(db, approved.id, CourtesyCodeType.FREE)
        with pytest.raises(CourtesyRequestError):
            await CourtesyCodeService.reject_request(db, approved.id)

    async def test_unknown_request(self, db):
        with pytest.raises(CourtesyRequestError):
            await CourtesyCodeService.reject_request(db, "missing")
