"""
Coupon effects.

A coupon row carries a type tag plus loosely related columns. Before any
discount math it is converted into one of three effect variants that carry
only the fields they need, and `compute_discount` is the single place that
dispatches on them.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from campus_eats.models.enums import CouponType

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PercentageDiscount:
    percent: Decimal


@dataclass(frozen=True)
class FixedAmountDiscount:
    amount: Decimal


@dataclass(frozen=True)
class FreeItem:
    menu_item_id: int


CouponEffect = Union[PercentageDiscount, FixedAmountDiscount, FreeItem]


@dataclass(frozen=True)
class PricedLine:
    menu_item_id: int
    quantity: int
    unit_price: Decimal


class UnknownCouponType(ValueError):
    pass


def effect_for(coupon) -> CouponEffect:
    coupon_type = CouponType(coupon.type)

    if coupon_type == CouponType.PERCENTAGE_DISCOUNT:
        return PercentageDiscount(percent=Decimal(coupon.discount_value))
    if coupon_type == CouponType.FIXED_AMOUNT_DISCOUNT:
        return FixedAmountDiscount(amount=Decimal(coupon.discount_value))
    if coupon_type == CouponType.FREE_ITEM:
        if coupon.specific_menu_item_id is None:
            raise UnknownCouponType(f"Coupon {coupon.id} is FreeItem without a menu item")
        return FreeItem(menu_item_id=int(coupon.specific_menu_item_id))

    raise UnknownCouponType(f"Unsupported coupon type: {coupon.type}")


def compute_discount(effect: CouponEffect, subtotal: Decimal, lines: Iterable[PricedLine]) -> Decimal:
    if isinstance(effect, PercentageDiscount):
        discount = subtotal * effect.percent / Decimal(100)
    elif isinstance(effect, FixedAmountDiscount):
        discount = min(effect.amount, subtotal)
    elif isinstance(effect, FreeItem):
        # one unit of the matching line, nothing if it was not ordered
        discount = next(
            (line.unit_price for line in lines if line.menu_item_id == effect.menu_item_id),
            Decimal("0"),
        )
    else:
        raise UnknownCouponType(f"Unsupported coupon effect: {effect!r}")

    return discount.quantize(CENT, rounding=ROUND_HALF_UP)


def order_total(subtotal: Decimal, discount: Decimal) -> Decimal:
    return max(Decimal("0"), subtotal - discount)
