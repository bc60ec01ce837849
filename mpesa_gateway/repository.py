"""Data access for payment intents.

All writes to ``payment_intents`` go through :class:`PaymentIntentRepository`:
``create_pending`` for initiation and ``compare_and_swap_status`` for the
callback transition. Both are guarded at the database level (partial unique
index, conditional UPDATE) so concurrent requests cannot double-charge an
order or overwrite a terminal intent.
"""
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from sqlalchemy import text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mpesa_gateway.models import ACTIVE_STATUSES, PENDING, TERMINAL_STATUSES, PaymentIntent, utcnow


class DuplicateIntentError(Exception):
    """An active intent already exists for the order."""


class KeyedLock:
    """Per-key mutual exclusion; entries are dropped once nobody holds them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


_order_locks = KeyedLock()


class PaymentIntentRepository:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def order_lock(self, order_id: str):
        """Serialize initiation for one order id.

        Inside the process a keyed lock is used; on PostgreSQL a transaction
        scoped advisory lock extends the guarantee across workers. The
        advisory lock is released by the commit in :meth:`create_pending`
        or by the rollback on exit.
        """
        with _order_locks.hold(order_id):
            if self.db.get_bind().dialect.name == "postgresql":
                self.db.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:order_id))"),
                    {"order_id": order_id},
                )
            try:
                yield
            finally:
                self.db.rollback()

    def find_by_order_id(self, order_id: str) -> Optional[PaymentIntent]:
        """Return the PENDING or COMPLETED intent for an order, if any."""
        return (
            self.db.query(PaymentIntent)
            .filter(PaymentIntent.order_id == order_id)
            .filter(PaymentIntent.status.in_(ACTIVE_STATUSES))
            .order_by(PaymentIntent.id.desc())
            .first()
        )

    def find_latest_by_order_id(self, order_id: str) -> Optional[PaymentIntent]:
        return (
            self.db.query(PaymentIntent)
            .filter(PaymentIntent.order_id == order_id)
            .order_by(PaymentIntent.id.desc())
            .first()
        )

    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[PaymentIntent]:
        return (
            self.db.query(PaymentIntent)
            .filter_by(checkout_request_id=checkout_request_id)
            .first()
        )

    def find_by_identifier(self, identifier: str) -> Optional[PaymentIntent]:
        """Look an intent up by order id first, then by checkout request id."""
        return (
            self.find_latest_by_order_id(identifier)
            or self.find_by_checkout_request_id(identifier)
        )

    def create_pending(
        self,
        order_id: str,
        phone: str,
        amount: int,
        checkout_request_id: Optional[str],
        merchant_request_id: Optional[str],
    ) -> PaymentIntent:
        intent = PaymentIntent(
            order_id=order_id,
            phone=phone,
            amount=amount,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            status=PENDING,
        )
        self.db.add(intent)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateIntentError(order_id) from exc
        self.db.refresh(intent)
        return intent

    def compare_and_swap_status(self, intent_id: int, new_status: str, **fields) -> bool:
        """Move a PENDING intent to ``new_status``.

        Returns False when the intent was no longer PENDING, meaning another
        delivery already won the transition and nothing was written.
        """
        if new_status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid transition: {PENDING} -> {new_status}")

        result = self.db.execute(
            update(PaymentIntent)
            .where(PaymentIntent.id == intent_id)
            .where(PaymentIntent.status == PENDING)
            .values(status=new_status, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def refresh(self, intent: PaymentIntent) -> PaymentIntent:
        self.db.refresh(intent)
        return intent
