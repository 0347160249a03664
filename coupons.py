import logging
from typing import Any, Dict, Optional

from database import Store, to_object_id, utcnow
from errors import CouponInvalid, MinimumAmountNotMet

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Dict[str, Any], amount: float) -> float:
    """Discount for ``amount``; fixed coupons are not capped by the amount."""
    value = float(coupon["value"])
    if coupon["type"] == "percentage":
        discount = amount * value / 100
        max_discount = coupon.get("max_discount")
        if max_discount is not None and discount > max_discount:
            discount = float(max_discount)
    else:
        discount = value
    return round(discount, 2)


class CouponService:
    def __init__(self, store: Store):
        self.store = store

    def _find_usable(self, code: str, session=None) -> Dict[str, Any]:
        now = utcnow()
        coupon = self.store["coupon"].find_one(
            {
                "code": normalize_code(code),
                "is_active": True,
                "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
            },
            session=session,
        )
        if not coupon:
            raise CouponInvalid()
        limit = coupon.get("usage_limit")
        if limit is not None and coupon.get("used_count", 0) >= limit:
            raise CouponInvalid()
        return coupon

    def validate(self, code: str, amount: float, session=None) -> Dict[str, Any]:
        coupon = self._find_usable(code, session=session)
        min_amount = coupon.get("min_amount") or 0
        if amount < min_amount:
            raise MinimumAmountNotMet(min_amount)
        return {
            "valid": True,
            "coupon_id": str(coupon["_id"]),
            "code": coupon["code"],
            "discount": compute_discount(coupon, amount),
            "type": coupon["type"],
            "value": coupon["value"],
        }

    def record_usage(self, coupon_id, session=None):
        """Increment ``used_count`` unless the usage limit is already reached."""
        _id = to_object_id(coupon_id)
        coupon = self.store["coupon"].find_one({"_id": _id}, session=session) if _id else None
        if not coupon:
            raise CouponInvalid()
        used = coupon.get("used_count", 0)
        limit = coupon.get("usage_limit")
        if limit is not None and used >= limit:
            raise CouponInvalid()
        # compare-and-swap on the count we read
        result = self.store["coupon"].update_one(
            {"_id": _id, "used_count": used},
            {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}},
            session=session,
        )
        if result.modified_count == 0:
            raise CouponInvalid()
        logger.info("Coupon %s used (%d/%s)", coupon["code"], used + 1, limit if limit is not None else "-")

    def release_usage(self, coupon_id: Optional[str], session=None):
        _id = to_object_id(coupon_id)
        if _id:
            self.store["coupon"].update_one(
                {"_id": _id, "used_count": {"$gt": 0}}, {"$inc": {"used_count": -1}}, session=session
            )
