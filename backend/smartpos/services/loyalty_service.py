# Overview: Customer resolution and loyalty point redemption/earning.

from __future__ import annotations

from sqlalchemy import update

from ..errors import ValidationError
from ..models import Customer, LoyaltySetting
from smartpos.validation import require_text


def get_setting(session, store_id: int) -> LoyaltySetting | None:
    return session.query(LoyaltySetting).filter_by(store_id=store_id).first()


def find_customer_by_phone(session, store_id: int, phone: str) -> Customer | None:
    return session.query(Customer).filter_by(store_id=store_id, phone=phone).first()


def resolve_customer(session, store_id: int, *, customer_id=None, phone=None, name=None) -> Customer | None:
    """
    Look up the order's customer.

    customer_id wins when given. Otherwise the phone number is matched within
    the store and a new customer is created when none exists yet. Must run
    inside the caller's atomic scope when it may create.
    """
    if customer_id is not None:
        customer = session.get(Customer, customer_id)
        if customer is None or customer.store_id != store_id:
            raise ValidationError(f"Customer {customer_id} not found in store {store_id}")
        return customer

    if not phone:
        return None

    phone = require_text(phone, "customer.phone", max_length=32)
    customer = find_customer_by_phone(session, store_id, phone)
    if customer is not None:
        return customer

    customer = Customer(
        store_id=store_id,
        phone=phone,
        name=(str(name).strip() if name else "") or phone,
        loyalty_points=0,
    )
    session.add(customer)
    session.flush()
    return customer


def redeemable_points(setting: LoyaltySetting | None, customer: Customer | None, used_points: int) -> int:
    """
    Points actually redeemed when a cart asks for ``used_points``.

    The request is capped at the customer's balance. Nothing is redeemed
    without an active program or an existing customer. A request below
    ``min_redeem_points`` raises ValidationError.
    """
    if used_points < 0:
        raise ValidationError("used_points must be >= 0")
    if not used_points:
        return 0
    if setting is None or not setting.is_active or customer is None:
        return 0
    if setting.min_redeem_points and used_points < setting.min_redeem_points:
        raise ValidationError(
            f"At least {setting.min_redeem_points} points must be redeemed",
            details={"min_redeem_points": setting.min_redeem_points, "used_points": used_points},
        )
    return min(used_points, max(customer.loyalty_points or 0, 0))


def redemption_discount(setting: LoyaltySetting | None, points: int) -> int:
    """Money value of points already capped by redeemable_points()."""
    if not points or setting is None:
        return 0
    return points * setting.vnd_per_point


def points_earned(setting: LoyaltySetting | None, total_amount: int) -> int:
    if setting is None or not setting.is_active:
        return 0
    if not setting.vnd_per_earned_point or setting.vnd_per_earned_point <= 0:
        return 0
    if total_amount < (setting.min_order_value or 0):
        return 0
    return total_amount // setting.vnd_per_earned_point


def deduct_points(session, customer_id: int, points: int) -> None:
    """Conditional decrement; fails instead of letting the balance go negative."""
    if points <= 0:
        return
    result = session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.loyalty_points >= points)
        .values(loyalty_points=Customer.loyalty_points - points, version_id=Customer.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise ValidationError(f"Customer {customer_id} does not have {points} points to redeem")


def restore_points(session, customer_id: int, points: int) -> None:
    if points <= 0:
        return
    session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(loyalty_points=Customer.loyalty_points + points, version_id=Customer.version_id + 1)
        .execution_options(synchronize_session=False)
    )


def record_paid_order(session, customer_id: int, *, total_amount: int, earned_points: int) -> None:
    """Credit earned points and bump the customer's spend aggregates."""
    session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            loyalty_points=Customer.loyalty_points + max(earned_points, 0),
            total_spent=Customer.total_spent + total_amount,
            total_orders=Customer.total_orders + 1,
            version_id=Customer.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
