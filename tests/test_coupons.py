from datetime import timedelta

import pytest

from coupons import CouponService, compute_discount
from database import utcnow
from errors import CouponInvalid, MinimumAmountNotMet
from schemas import Coupon


@pytest.fixture
def coupons(store):
    return CouponService(store)


@pytest.fixture
def make_coupon(store):
    def _make(code="SAVE10", type="percentage", value=10, **fields):
        return store.create_document("coupon", Coupon(code=code, type=type, value=value, **fields))
    return _make


@pytest.mark.parametrize("amount,value,max_discount", [
    (200.0, 10, 15.0),
    (100.0, 10, 15.0),
    (99.99, 10, None),
    (40.0, 25, None),
    (1000.0, 50, 100.0),
])
def test_percentage_discount(amount, value, max_discount):
    coupon = {"type": "percentage", "value": value, "max_discount": max_discount}
    expected = amount * value / 100
    if max_discount is not None:
        expected = min(expected, max_discount)
    assert compute_discount(coupon, amount) == round(expected, 2)


@pytest.mark.parametrize("amount", [20.0, 75.5, 500.0])
def test_fixed_discount_ignores_amount(amount):
    assert compute_discount({"type": "fixed", "value": 25}, amount) == 25


def test_validate_percentage(coupons, make_coupon):
    make_coupon(code="SAVE10", value=10, max_discount=15)
    result = coupons.validate("SAVE10", 200)
    assert result["valid"] is True
    assert result["discount"] == 15
    assert result["type"] == "percentage"
    assert result["value"] == 10


def test_validate_normalizes_code(coupons, make_coupon):
    make_coupon(code="SUMMER")
    assert coupons.validate("  summer ", 50)["discount"] == 5


def test_fixed_discount_may_exceed_amount(coupons, make_coupon):
    make_coupon(code="FLAT25", type="fixed", value=25)
    assert coupons.validate("FLAT25", 20)["discount"] == 25


def test_unknown_code_is_invalid(coupons):
    with pytest.raises(CouponInvalid):
        coupons.validate("NOPE", 100)


def test_inactive_coupon_is_invalid(coupons, make_coupon):
    make_coupon(code="OFF", is_active=False)
    with pytest.raises(CouponInvalid):
        coupons.validate("OFF", 100)


def test_expired_coupon_is_invalid(coupons, make_coupon):
    make_coupon(code="OLD", expires_at=utcnow() - timedelta(days=1))
    with pytest.raises(CouponInvalid):
        coupons.validate("OLD", 100)


def test_future_expiry_is_valid(coupons, make_coupon):
    make_coupon(code="SOON", expires_at=utcnow() + timedelta(days=1))
    assert coupons.validate("SOON", 100)["discount"] == 10


def test_exhausted_coupon_is_invalid(coupons, make_coupon):
    make_coupon(code="ONCE", usage_limit=1, used_count=1)
    with pytest.raises(CouponInvalid):
        coupons.validate("ONCE", 100)


def test_minimum_amount(coupons, make_coupon):
    make_coupon(code="BIG", min_amount=50)
    with pytest.raises(MinimumAmountNotMet) as info:
        coupons.validate("BIG", 49.99)
    assert info.value.min_amount == 50
    assert info.value.message == "Minimum order amount of $50 required for this coupon"
    assert coupons.validate("BIG", 50)["discount"] == 5


def test_record_usage_until_limit(store, coupons, make_coupon):
    coupon_id = make_coupon(code="TWICE", usage_limit=2)
    coupons.record_usage(coupon_id)
    coupons.record_usage(coupon_id)
    assert store["coupon"].find_one({"code": "TWICE"})["used_count"] == 2
    with pytest.raises(CouponInvalid):
        coupons.record_usage(coupon_id)
    with pytest.raises(CouponInvalid):
        coupons.validate("TWICE", 100)


def test_release_usage(store, coupons, make_coupon):
    coupon_id = make_coupon(code="BACK", usage_limit=1)
    coupons.record_usage(coupon_id)
    coupons.release_usage(coupon_id)
    assert store["coupon"].find_one({"code": "BACK"})["used_count"] == 0


def test_validate_endpoint(client, make_coupon):
    make_coupon(code="SAVE10")
    resp = client.post("/coupons/validate", json={"code": "save10", "amount": 80})
    assert resp.status_code == 200
    assert resp.json() == {"valid": True, "discount": 8.0, "type": "percentage", "value": 10.0}


def test_validate_endpoint_errors(client, make_coupon):
    make_coupon(code="BIG", min_amount=100)
    resp = client.post("/coupons/validate", json={"code": "MISSING", "amount": 80})
    assert resp.status_code == 404
    assert resp.json() == {"message": "Invalid or expired coupon code"}

    resp = client.post("/coupons/validate", json={"code": "BIG", "amount": 80})
    assert resp.status_code == 400
    assert "Minimum order amount of $100" in resp.json()["message"]
