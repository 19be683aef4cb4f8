# Overview: Threaded posting and reconciliation against a file-backed SQLite database.

"""
Concurrency tests for the posting engine and shift reconciliation.

Each worker thread pushes its own app context, so it gets its own
scoped session, the way concurrent requests do.
"""
import os
import tempfile
import threading
import unittest

from shiftbooks import create_app
from shiftbooks.exceptions import AlreadyPostedError, AlreadyReconciledError, InvalidTransitionError
from shiftbooks.extensions import db
from shiftbooks.models import Account, Shift, Transaction
from shiftbooks.services import balance_service, chart_service, shift_service
from shiftbooks.services.posting_service import EntryLine, TransactionDraft, post_transaction

WORKERS = 8


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            chart_service.seed_standard_chart(db.session)
            self.codes = {a.code: a.id for a in db.session.query(Account).all()}

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, target, count=WORKERS):
        barrier = threading.Barrier(count)
        results, errors = [], []
        guard = threading.Lock()

        def worker(index):
            with self.app.app_context():
                try:
                    barrier.wait()
                    outcome = target(index)
                    with guard:
                        results.append(outcome)
                except Exception as exc:
                    with guard:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def _draft(self, amount_cents, key=None):
        return TransactionDraft(
            description="Concurrent sale",
            entries=[
                EntryLine(self.codes["1000"], "DEBIT", amount_cents),
                EntryLine(self.codes["4000"], "CREDIT", amount_cents),
            ],
            idempotency_key=key,
        )

    def test_parallel_postings_all_land(self):
        results, errors = self._run_workers(lambda i: post_transaction(db.session, self._draft(100)).id)

        self.assertEqual(errors, [])
        self.assertEqual(len(set(results)), WORKERS)
        with self.app.app_context():
            self.assertEqual(balance_service.get_balance(db.session, self.codes["1000"]), WORKERS * 100)
            self.assertEqual(balance_service.get_balance(db.session, self.codes["4000"]), WORKERS * 100)
            self.assertTrue(balance_service.verify_ledger(db.session).ok)

    def test_shared_idempotency_key_posts_once(self):
        results, errors = self._run_workers(
            lambda i: post_transaction(db.session, self._draft(250, key="order-77")).id
        )

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), WORKERS - 1)
        for exc in errors:
            self.assertIsInstance(exc, AlreadyPostedError)
            self.assertEqual(exc.transaction_id, results[0])
        with self.app.app_context():
            self.assertEqual(db.session.query(Transaction).count(), 1)
            self.assertEqual(balance_service.get_balance(db.session, self.codes["1000"]), 250)

    def test_parallel_reconcile_posts_once(self):
        with self.app.app_context():
            shift = shift_service.open_shift(db.session, 7, 10000)
            shift_service.record_sale(db.session, shift.id, [{"payment_method_code": "CASH", "amount_cents": 3000}])
            shift_service.add_cash_deposit(db.session, shift.id, 2000)
            shift_service.close_shift(db.session, shift.id, {"CASH": 10950})
            shift_id = shift.id

        results, errors = self._run_workers(lambda i: shift_service.reconcile_shift(db.session, shift_id), count=4)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 3)
        for exc in errors:
            self.assertIsInstance(exc, AlreadyReconciledError)
            self.assertEqual(exc.result.transaction_ids, results[0].transaction_ids)
        with self.app.app_context():
            self.assertEqual(db.session.query(Transaction).count(), 2)
            self.assertEqual(balance_service.get_balance(db.session, self.codes["1000"]), 950)
            self.assertEqual(balance_service.get_balance(db.session, self.codes["6100"]), 50)
            self.assertTrue(balance_service.verify_ledger(db.session).ok)

    def test_parallel_open_allows_one_shift_per_cashier(self):
        results, errors = self._run_workers(lambda i: shift_service.open_shift(db.session, 11, 5000).id, count=4)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 3)
        for exc in errors:
            self.assertIsInstance(exc, InvalidTransitionError)
        with self.app.app_context():
            self.assertEqual(db.session.query(Shift).filter_by(cashier_id=11).count(), 1)


if __name__ == "__main__":
    unittest.main()
