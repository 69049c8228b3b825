"""Discount code validation and usage tests"""
import pytest

from app.models.discount_usage import DiscountUsage
from app.services.discount_service import (
    calculate_discount, round_amount, validate_discount_code, record_discount_usage, get_usage_count
)
from conftest import make_order


@pytest.mark.critical
class TestCalculateDiscount:

    def test_percentage_discount(self):
        assert calculate_discount(200000, "percentage", 10) == 20000

    def test_percentage_rounds_half_up_in_usd(self):
        assert calculate_discount(10.05, "percentage", 50, currency="USD") == 5.03

    def test_fixed_amount_is_clamped_to_amount(self):
        """A fixed discount never exceeds what is being paid"""
        assert calculate_discount(15000, "fixed_amount", 20000) == 15000

    def test_zero_amount_gets_no_discount(self):
        assert calculate_discount(0, "percentage", 50) == 0

    def test_round_amount_cop_has_no_minor_unit(self):
        assert round_amount(1234.5, "COP") == 1235
        assert round_amount(10.005, "USD") == 10.01


@pytest.mark.critical
class TestValidateDiscountCode:

    def test_valid_percentage_code(self, db_session):
        result = validate_discount_code("welcome10", None, [], 100000, "COP", db_session)
        assert result.valid is True
        assert result.discount.code == "WELCOME10"
        assert result.discount_amount == 10000
        assert result.final_amount == 90000

    def test_unknown_code(self, db_session):
        result = validate_discount_code("NOPE", None, [], 100000, "COP", db_session)
        assert result.valid is False
        assert result.reason == "not_found"

    def test_inactive_code(self, db_session):
        result = validate_discount_code("OFF", None, [], 100000, "COP", db_session)
        assert result.reason == "inactive"

    def test_expired_code(self, db_session):
        result = validate_discount_code("OLD", None, [], 100000, "COP", db_session)
        assert result.reason == "expired"

    def test_not_yet_valid_code(self, db_session):
        result = validate_discount_code("SOON", None, [], 100000, "COP", db_session)
        assert result.reason == "not_yet_valid"

    def test_course_restricted_code(self, db_session):
        rejected = validate_discount_code("DRIPONLY", None, ["course-free"], 100000, "COP", db_session)
        assert rejected.reason == "not_applicable"

        accepted = validate_discount_code("DRIPONLY", None, ["course-drip"], 100000, "COP", db_session)
        assert accepted.valid is True
        assert accepted.discount_amount == 20000

    def test_minimum_purchase(self, db_session):
        result = validate_discount_code("BIGSPENDER", None, [], 50000, "COP", db_session)
        assert result.reason == "below_minimum"

    def test_fixed_amount_currency_mismatch(self, db_session):
        result = validate_discount_code("USD5", None, [], 100000, "COP", db_session)
        assert result.reason == "currency_mismatch"

    def test_single_use_code_used_once_globally(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        db_session.add(DiscountUsage(
            discount_code_id="dc-once", discount_code="ONCE", user_id=test_user.id,
            order_id=order.id, discount_amount=20000, currency="COP"
        ))
        db_session.commit()

        # A different buyer is rejected too
        result = validate_discount_code("ONCE", None, [], 100000, "COP", db_session)
        assert result.reason == "already_used"

    def test_max_uses_exhausted(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        db_session.add(DiscountUsage(
            discount_code_id="dc-capped", discount_code="CAPPED", user_id=test_user.id,
            order_id=order.id, discount_amount=2500, currency="COP"
        ))
        db_session.commit()

        result = validate_discount_code("CAPPED", test_user.id, [], 100000, "COP", db_session)
        assert result.reason == "exhausted"


@pytest.mark.high
class TestRecordDiscountUsage:

    def test_usage_recorded_once_per_order(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        order.discount_code_id = "dc-welcome"
        order.discount_code = "WELCOME10"
        order.discount_amount = 5000

        first = record_discount_usage(order, db_session)
        second = record_discount_usage(order, db_session)
        db_session.commit()

        assert first.id == second.id
        assert get_usage_count("dc-welcome", db_session) == 1

    def test_order_without_code_records_nothing(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        assert record_discount_usage(order, db_session) is None
