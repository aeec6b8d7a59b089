# Overview: Threaded races against a file-backed SQLite database.

"""
Concurrency tests for the order engine.

Each test runs real threads, each with its own app context and session, so
the SQLite writer lock and the compare-and-set stock updates are exercised
the way concurrent cashiers would hit them.
"""
import os
import tempfile
import threading
import unittest

from smartpos import create_app
from smartpos.errors import InsufficientStockError
from smartpos.extensions import db
from smartpos.models import Order, Product, Stock, Store
from smartpos.services import Cart, CartLine, OrderEngine
from smartpos.services.payment_service import sign_data


CHECKSUM_KEY = "concurrency-key"


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "PAYMENT_CHECKSUM_KEY": CHECKSUM_KEY,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            store = Store(name="Concurrency Store", code="CC")
            db.session.add(store)
            db.session.commit()
            self.store_id = store.id

            product = Product(store_id=self.store_id, sku="LAST-1", name="Last Unit", price=1000, tax_rate=0)
            db.session.add(product)
            db.session.flush()
            db.session.add(Stock(store_id=self.store_id, product_id=product.id, quantity=1, reserved=0))
            db.session.commit()
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _set_quantity(self, quantity):
        with self.app.app_context():
            stock = db.session.query(Stock).filter_by(product_id=self.product_id).one()
            stock.quantity = quantity
            db.session.commit()

    def _cart(self, payment_method="cash"):
        return Cart(
            store_id=self.store_id,
            lines=[CartLine(product_id=self.product_id, quantity=1)],
            payment_method=payment_method,
        )

    def _run_parallel(self, target, count):
        barrier = threading.Barrier(count)
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    engine = OrderEngine.from_config(db.session, self.app.config)
                    barrier.wait()
                    result = target(engine)
                    with lock:
                        results.append(result)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_last_unit_race_has_exactly_one_winner(self):
        results, errors = self._run_parallel(lambda engine: engine.orders.create(self._cart()).id, 2)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InsufficientStockError)

        with self.app.app_context():
            stock = db.session.query(Stock).filter_by(product_id=self.product_id).one()
            self.assertEqual(stock.quantity, 0)
            self.assertEqual(db.session.query(Order).count(), 1)

    def test_qr_reservations_never_oversell(self):
        self._set_quantity(3)

        results, errors = self._run_parallel(lambda engine: engine.orders.create(self._cart("qr")).id, 6)

        self.assertEqual(len(results), 3)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors))
        with self.app.app_context():
            stock = db.session.query(Stock).filter_by(product_id=self.product_id).one()
            self.assertEqual((stock.quantity, stock.reserved), (3, 3))

    def test_order_numbers_stay_unique_under_contention(self):
        self._set_quantity(20)

        results, errors = self._run_parallel(lambda engine: engine.orders.create(self._cart()).order_number, 8)

        self.assertFalse(errors)
        self.assertEqual(len(results), 8)
        self.assertEqual(len(set(results)), 8)

    def test_webhook_and_polling_confirmation_commit_once(self):
        with self.app.app_context():
            engine = OrderEngine.from_config(db.session, self.app.config)
            order = engine.orders.create(self._cart("qr"))
            request = engine.payments.active_request(order)
            order_id, code, amount = order.id, request.code, request.amount

        data = {"amount": amount, "orderCode": code, "reference": "FT-RACE"}
        payload = {"code": "00", "desc": "success", "data": data, "signature": sign_data(CHECKSUM_KEY, data)}

        calls = iter([
            lambda engine: engine.payments.handle_webhook(payload)["changed"],
            lambda engine: engine.orders.mark_paid(order_id)[1],
        ])
        calls_lock = threading.Lock()

        def confirm(engine):
            with calls_lock:
                call = next(calls)
            return call(engine)

        results, errors = self._run_parallel(confirm, 2)

        self.assertFalse(errors)
        self.assertEqual(sorted(results), [False, True])
        with self.app.app_context():
            stock = db.session.query(Stock).filter_by(product_id=self.product_id).one()
            self.assertEqual((stock.quantity, stock.reserved), (0, 0))
            self.assertEqual(db.session.get(Order, order_id).status, "PAID")


if __name__ == "__main__":
    unittest.main()
