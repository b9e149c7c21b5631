# campus_eats/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from campus_eats.models.user import User  # noqa: F401
from campus_eats.models.menu_item import MenuItem  # noqa: F401

from campus_eats.models.order import Order  # noqa: F401
from campus_eats.models.order_item import OrderItem  # noqa: F401
from campus_eats.models.kitchen_task import KitchenTask  # noqa: F401

from campus_eats.models.loyalty import LoyaltyAccount, LoyaltyTransaction  # noqa: F401
from campus_eats.models.coupon import Coupon, UserCoupon  # noqa: F401

from campus_eats.models.payment import Payment  # noqa: F401
