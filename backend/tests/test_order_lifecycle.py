import pytest

from smartpos.errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    UnknownProductError,
    ValidationError,
)
from smartpos.models import AuditEvent, Batch, Customer, Employee, Order, PaymentRequest
from smartpos.services import Cart, CartLine
from smartpos.services.pricing import SaleType

from conftest import make_product


def cart(store, product, quantity=2, **kwargs):
    return Cart(store_id=store.id, lines=[CartLine(product_id=product.id, quantity=quantity)], **kwargs)


def level(engine, store, product):
    return engine.ledger.get_level(store.id, product.id)


class TestCreate:
    def test_cash_order_commits_stock_and_freezes_totals(self, engine, store, seller, product):
        order = engine.orders.create(cart(store, product, employee_id=seller.id))

        assert order.status == "PENDING"
        assert order.stock_state == "COMMITTED"
        assert order.order_number == "HD-000001"
        assert (order.subtotal, order.vat_amount, order.total_amount) == (20000, 2000, 22000)
        assert order.total_amount == max(order.subtotal - order.discount_amount, 0) + order.vat_amount
        assert order.subtotal == sum(i.quantity * i.unit_price for i in order.items)
        assert level(engine, store, product).quantity == 18

    def test_qr_order_reserves_and_issues_payment_request(self, engine, db_session, store, product):
        order = engine.orders.create(cart(store, product, payment_method="qr"))

        stock = level(engine, store, product)
        assert order.stock_state == "RESERVED"
        assert (stock.quantity, stock.reserved, stock.available) == (20, 2, 18)

        requests = db_session.query(PaymentRequest).filter_by(order_id=order.id).all()
        assert len(requests) == 1
        assert requests[0].status == "ACTIVE"
        assert requests[0].amount == order.total_amount
        assert order.qr_expires_at == requests[0].expires_at

    def test_order_numbers_are_sequential_per_store(self, engine, store, product):
        first = engine.orders.create(cart(store, product, quantity=1))
        second = engine.orders.create(cart(store, product, quantity=1))

        assert [first.order_number, second.order_number] == ["HD-000001", "HD-000002"]

    def test_insufficient_stock_aborts_without_any_order(self, engine, db_session, store, product):
        with pytest.raises(InsufficientStockError) as exc_info:
            engine.orders.create(cart(store, product, quantity=21))

        assert exc_info.value.product_id == product.id
        assert exc_info.value.available == 20
        assert db_session.query(Order).count() == 0
        assert db_session.query(AuditEvent).count() == 0
        assert level(engine, store, product).quantity == 20

        # Rolled-back number is reused
        assert engine.orders.create(cart(store, product, quantity=1)).order_number == "HD-000001"

    def test_empty_cart_is_rejected(self, engine, store):
        with pytest.raises(ValidationError):
            engine.orders.create(Cart(store_id=store.id, lines=[]))

    def test_non_positive_quantity_is_rejected(self, engine, store, product):
        with pytest.raises(ValidationError):
            engine.orders.create(cart(store, product, quantity=0))

    def test_product_from_another_store_is_unknown(self, engine, other_store, product):
        with pytest.raises(UnknownProductError):
            engine.orders.create(cart(other_store, product))

    def test_inactive_employee_is_rejected(self, engine, db_session, store, product):
        former = Employee(store_id=store.id, full_name="Former", is_active=False)
        db_session.add(former)
        db_session.commit()

        with pytest.raises(ValidationError):
            engine.orders.create(cart(store, product, employee_id=former.id))

    def test_sale_type_prices_are_frozen_on_items(self, engine, store, product):
        order = engine.orders.create(Cart(
            store_id=store.id,
            lines=[
                CartLine(product_id=product.id, quantity=1, sale_type=SaleType.PROMOTIONAL, custom_price=8000),
                CartLine(product_id=product.id, quantity=1, sale_type=SaleType.FREE),
            ],
        ))

        promo, free = order.items
        assert (promo.list_price, promo.unit_price, promo.vat_amount) == (10000, 8000, 800)
        assert (free.unit_price, free.line_total) == (0, 0)
        assert order.subtotal == 8000

    def test_at_cost_line_for_zero_cost_product_is_free(self, engine, db_session, store):
        sample = make_product(db_session, store, sku="SAMPLE", price=5000, cost_price=0, quantity=10)

        order = engine.orders.create(Cart(
            store_id=store.id,
            lines=[CartLine(product_id=sample.id, quantity=2, sale_type=SaleType.AT_COST)],
        ))

        assert order.items[0].unit_price == 0
        assert (order.subtotal, order.total_amount) == (0, 0)

    def test_fefo_binds_nearest_expiry_batch(self, engine, db_session, store, batch_product):
        order = engine.orders.create(cart(store, batch_product, quantity=3))

        soon = db_session.query(Batch).filter_by(batch_no="LOT-SOON").one()
        assert order.items[0].batch_id == soon.id
        db_session.expire_all()
        assert db_session.get(Batch, soon.id).quantity == 2

    def test_line_larger_than_its_batch_is_rejected(self, engine, db_session, store, batch_product):
        with pytest.raises(InsufficientStockError) as exc_info:
            engine.orders.create(cart(store, batch_product, quantity=6))

        assert exc_info.value.available == 5
        assert db_session.query(Order).count() == 0


class TestDrafts:
    def test_draft_has_no_stock_effect_until_submitted(self, engine, store, product):
        order = engine.orders.create(cart(store, product, draft=True))

        assert order.status == "DRAFT"
        assert order.stock_state == "NONE"
        assert level(engine, store, product).quantity == 20

        order = engine.orders.submit_draft(order.id)

        assert order.status == "PENDING"
        assert order.stock_state == "COMMITTED"
        assert order.submitted_at is not None
        assert level(engine, store, product).quantity == 18

    def test_only_drafts_can_be_submitted(self, engine, store, product):
        order = engine.orders.create(cart(store, product))

        with pytest.raises(InvalidStateTransitionError):
            engine.orders.submit_draft(order.id)


class TestPayment:
    def test_confirm_cash_paid_is_idempotent(self, engine, store, product):
        order = engine.orders.create(cart(store, product))

        paid = engine.orders.confirm_cash_paid(order.id)
        paid_at = paid.paid_at
        again = engine.orders.confirm_cash_paid(order.id)

        assert again.status == "PAID"
        assert again.paid_at == paid_at
        assert level(engine, store, product).quantity == 18

    def test_qr_reservation_is_committed_exactly_once(self, engine, store, product):
        order = engine.orders.create(cart(store, product, payment_method="qr"))

        _, changed = engine.orders.mark_paid(order.id)
        _, changed_again = engine.orders.mark_paid(order.id)

        stock = level(engine, store, product)
        assert (changed, changed_again) == (True, False)
        assert (stock.quantity, stock.reserved) == (18, 0)

    def test_cash_confirmation_refuses_qr_orders(self, engine, store, product):
        order = engine.orders.create(cart(store, product, payment_method="qr"))

        with pytest.raises(ValidationError):
            engine.orders.confirm_cash_paid(order.id)

    def test_cancelled_order_cannot_be_paid(self, engine, store, product):
        order = engine.orders.create(cart(store, product))
        engine.orders.cancel(order.id)

        with pytest.raises(InvalidStateTransitionError):
            engine.orders.confirm_cash_paid(order.id)


class TestCancel:
    def test_cancel_qr_releases_reservation(self, engine, db_session, store, product):
        order = engine.orders.create(cart(store, product, payment_method="qr"))

        order = engine.orders.cancel(order.id, reason="customer left")

        stock = level(engine, store, product)
        assert order.status == "CANCELLED"
        assert order.stock_state == "RELEASED"
        assert order.cancel_reason == "customer left"
        assert (stock.quantity, stock.reserved) == (20, 0)
        assert {r.status for r in order.payment_requests} == {"CANCELLED"}

    def test_cancel_cash_restocks_and_is_idempotent(self, engine, store, product):
        order = engine.orders.create(cart(store, product))

        engine.orders.cancel(order.id)
        order = engine.orders.cancel(order.id)

        assert order.stock_state == "RESTOCKED"
        assert level(engine, store, product).quantity == 20

    def test_paid_order_cannot_be_cancelled(self, engine, store, product):
        order = engine.orders.create(cart(store, product))
        engine.orders.confirm_cash_paid(order.id)

        with pytest.raises(InvalidStateTransitionError):
            engine.orders.cancel(order.id)


class TestLoyalty:
    def test_redeemed_points_discount_subtotal_and_paid_order_earns(
        self, engine, db_session, store, product, loyalty, customer
    ):
        order = engine.orders.create(cart(store, product, quantity=5, customer_id=customer.id, used_points=100))

        assert order.discount_amount == 10000
        assert (order.subtotal, order.vat_amount, order.total_amount) == (50000, 5000, 45000)
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).loyalty_points == 400

        order = engine.orders.confirm_cash_paid(order.id)

        assert order.earned_points == 2
        db_session.expire_all()
        refreshed = db_session.get(Customer, customer.id)
        assert refreshed.loyalty_points == 402
        assert (refreshed.total_spent, refreshed.total_orders) == (45000, 1)

    def test_cancel_restores_redeemed_points(self, engine, db_session, store, product, loyalty, customer):
        order = engine.orders.create(cart(store, product, customer_id=customer.id, used_points=50))

        engine.orders.cancel(order.id)

        db_session.expire_all()
        assert db_session.get(Customer, customer.id).loyalty_points == 500

    def test_redemption_below_minimum_is_rejected(self, engine, store, product, loyalty, customer):
        with pytest.raises(ValidationError):
            engine.orders.create(cart(store, product, customer_id=customer.id, used_points=5))

    def test_redemption_is_capped_at_customer_balance(self, engine, db_session, store, product, loyalty, customer):
        order = engine.orders.create(cart(store, product, quantity=5, customer_id=customer.id, used_points=800))

        assert order.used_points == 500
        assert order.discount_amount == 50000
        assert (order.subtotal, order.vat_amount, order.total_amount) == (50000, 5000, 5000)
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).loyalty_points == 0

        engine.orders.cancel(order.id)

        db_session.expire_all()
        assert db_session.get(Customer, customer.id).loyalty_points == 500

    def test_new_customer_by_phone_redeems_nothing(self, engine, db_session, store, product, loyalty):
        order = engine.orders.create(cart(store, product, customer_phone="0908888888", used_points=20))

        assert (order.used_points, order.discount_amount) == (0, 0)
        assert order.total_amount == 22000
        created = db_session.get(Customer, order.customer_id)
        assert created.loyalty_points == 0

    def test_inactive_program_redeems_nothing(self, engine, db_session, store, product, loyalty, customer):
        loyalty.is_active = False
        db_session.commit()

        order = engine.orders.create(cart(store, product, customer_id=customer.id, used_points=100))

        assert (order.used_points, order.discount_amount) == (0, 0)
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).loyalty_points == 500

    def test_draft_submit_fails_when_balance_dropped(self, engine, db_session, store, product, loyalty, customer):
        draft = engine.orders.create(cart(store, product, customer_id=customer.id, used_points=300, draft=True))
        assert draft.used_points == 300

        customer.loyalty_points = 100
        db_session.commit()

        with pytest.raises(ValidationError):
            engine.orders.submit_draft(draft.id)
        assert engine.orders.get(draft.id).status == "DRAFT"

    def test_unknown_phone_creates_customer(self, engine, db_session, store, product):
        order = engine.orders.create(cart(store, product, customer_phone="0909999999", customer_name="Minh"))

        created = db_session.query(Customer).filter_by(store_id=store.id, phone="0909999999").one()
        assert order.customer_id == created.id
        assert created.name == "Minh"


class TestPrinting:
    def test_print_requires_paid_order_and_clears_reconciliation_list(self, engine, store, product):
        order = engine.orders.create(cart(store, product))

        with pytest.raises(InvalidStateTransitionError):
            engine.orders.record_print(order.id)

        engine.orders.confirm_cash_paid(order.id)
        assert [o.id for o in engine.orders.list_paid_not_printed(store.id)] == [order.id]

        printed = engine.orders.record_print(order.id)

        assert printed.print_count == 1
        assert engine.orders.list_paid_not_printed(store.id) == []
