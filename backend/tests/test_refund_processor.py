import pytest

from smartpos.errors import (
    InvalidStateTransitionError,
    RefundQuantityExceededError,
    UnknownOrderError,
    ValidationError,
)
from smartpos.models import Batch, Refund
from smartpos.services import Cart, CartLine, RefundRequest
from smartpos.services.refund_service import RefundEvidenceRef, RefundRequestItem

from conftest import make_product


def paid_order(engine, store, seller, lines):
    order = engine.orders.create(Cart(
        store_id=store.id,
        employee_id=seller.id,
        lines=[CartLine(product_id=p.id, quantity=q) for p, q in lines],
    ))
    return engine.orders.confirm_cash_paid(order.id)


def refund_request(reviewer, items, reason="Damaged packaging", evidence=()):
    return RefundRequest(
        employee_id=reviewer.id,
        reason=reason,
        items=[RefundRequestItem(product_id=p.id, quantity=q) for p, q in items],
        evidence=list(evidence),
    )


def test_partial_refund_uses_frozen_price_and_restocks(engine, db_session, store, seller, reviewer, product):
    order = paid_order(engine, store, seller, [(product, 2)])
    assert (order.subtotal, order.vat_amount, order.total_amount) == (20000, 2000, 22000)
    assert engine.ledger.get_level(store.id, product.id).quantity == 18

    # Catalog price changes after the sale
    product.price = 99000
    db_session.commit()

    refund = engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 1)]))

    order = engine.orders.get(order.id)
    assert refund.refund_amount == 10000
    assert refund.refund_number == "TH-000001"
    assert order.status == "PARTIALLY_REFUNDED"
    assert order.refund_id == refund.id
    assert engine.ledger.get_level(store.id, product.id).quantity == 19


def test_refunding_everything_marks_order_refunded(engine, store, seller, reviewer, product):
    order = paid_order(engine, store, seller, [(product, 2)])

    engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 1)]))
    engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 1)]))

    assert engine.orders.get(order.id).status == "REFUNDED"
    summary = engine.refunds.refund_summary(order.id)
    assert summary["refund_count"] == 2
    assert summary["total_refunded_amount"] == 20000
    assert summary["remaining_refundable_quantity"] == 0


def test_cumulative_refunds_cannot_exceed_purchase(engine, db_session, store, seller, reviewer, product):
    order = paid_order(engine, store, seller, [(product, 2)])
    engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 1)]))

    with pytest.raises(RefundQuantityExceededError):
        engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 2)]))

    assert engine.orders.get(order.id).status == "PARTIALLY_REFUNDED"
    assert engine.ledger.get_level(store.id, product.id).quantity == 19
    assert db_session.query(Refund).count() == 1


def test_duplicate_rows_for_one_product_are_summed(engine, store, seller, reviewer, product):
    order = paid_order(engine, store, seller, [(product, 2)])

    with pytest.raises(RefundQuantityExceededError):
        engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 2), (product, 1)]))


def test_refund_spans_two_lines_of_the_same_product(engine, store, seller, reviewer, product):
    order = paid_order(engine, store, seller, [(product, 1), (product, 2)])

    refund = engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 2)]))

    assert [(i.order_item_id, i.quantity) for i in refund.items] == [
        (order.items[0].id, 1),
        (order.items[1].id, 1),
    ]
    assert refund.refund_amount == 20000


def test_only_paid_orders_can_be_refunded(engine, store, seller, reviewer, product):
    order = engine.orders.create(Cart(
        store_id=store.id,
        employee_id=seller.id,
        lines=[CartLine(product_id=product.id, quantity=1)],
    ))

    with pytest.raises(InvalidStateTransitionError):
        engine.refunds.create_refund(order.id, refund_request(reviewer, [(product, 1)]))


@pytest.mark.parametrize("reason, use_items", [("", True), ("   ", True), ("Broken", False)])
def test_reason_and_items_are_required(engine, store, seller, reviewer, product, reason, use_items):
    order = paid_order(engine, store, seller, [(product, 1)])
    items = [(product, 1)] if use_items else []

    with pytest.raises(ValidationError):
        engine.refunds.create_refund(order.id, refund_request(reviewer, items, reason=reason))


def test_seller_cannot_refund_own_sale(engine, store, seller, product):
    order = paid_order(engine, store, seller, [(product, 1)])

    with pytest.raises(ValidationError):
        engine.refunds.create_refund(order.id, refund_request(seller, [(product, 1)]))


def test_product_not_on_order_is_rejected(engine, db_session, store, seller, reviewer, product):
    other = make_product(db_session, store, sku="TEA", price=15000, quantity=5)
    order = paid_order(engine, store, seller, [(product, 1)])

    with pytest.raises(ValidationError):
        engine.refunds.create_refund(order.id, refund_request(reviewer, [(other, 1)]))


def test_unknown_order(engine, reviewer, product):
    with pytest.raises(UnknownOrderError):
        engine.refunds.create_refund(999, refund_request(reviewer, [(product, 1)]))


def test_refund_restocks_original_batch_and_keeps_evidence(engine, db_session, store, seller, reviewer, batch_product):
    order = paid_order(engine, store, seller, [(batch_product, 2)])
    batch_id = order.items[0].batch_id

    refund = engine.refunds.create_refund(order.id, refund_request(
        reviewer,
        [(batch_product, 1)],
        evidence=[RefundEvidenceRef(url="https://cdn.example/refund/1.jpg", public_id="refund/1")],
    ))

    db_session.expire_all()
    assert db_session.get(Batch, batch_id).quantity == 4
    assert refund.items[0].batch_id == batch_id
    assert refund.to_dict()["evidence"] == [
        {"url": "https://cdn.example/refund/1.jpg", "type": "image", "public_id": "refund/1"}
    ]


def test_refund_request_from_payload_validates_shape():
    request = RefundRequest.from_payload({
        "employee_id": "3",
        "reason": "Expired",
        "items": [{"product_id": 1, "quantity": 2}],
        "evidence": [{"url": "https://cdn.example/a.mp4", "type": "video"}],
    })

    assert request.employee_id == 3
    assert request.items[0].quantity == 2
    assert request.evidence[0].media_type == "video"

    with pytest.raises(ValidationError):
        RefundRequest.from_payload({"employee_id": 3, "reason": "x", "items": [{"product_id": 1, "quantity": 0}]})
