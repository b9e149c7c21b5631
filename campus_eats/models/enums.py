from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    WORKER = "WORKER"
    MANAGER = "MANAGER"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class KitchenTaskStatus(str, enum.Enum):
    NOT_STARTED = "NotStarted"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"


class CouponType(str, enum.Enum):
    PERCENTAGE_DISCOUNT = "PercentageDiscount"
    FIXED_AMOUNT_DISCOUNT = "FixedAmountDiscount"
    FREE_ITEM = "FreeItem"


class LoyaltyTransactionType(str, enum.Enum):
    EARNED = "Earned"
    REDEEMED = "Redeemed"
    ADJUSTED = "Adjusted"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    # provider spelling, persisted as-is
    SUCCEDED = "SUCCEDED"
