from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, text

from mpesa_gateway.database import Base

PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

ACTIVE_STATUSES = (PENDING, COMPLETED)
TERMINAL_STATUSES = (COMPLETED, FAILED)

_ACTIVE_ORDER = text("status IN ('PENDING', 'COMPLETED')")


def utcnow():
    return datetime.now(timezone.utc)


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(255), nullable=False, index=True)
    phone = Column(String(20), nullable=False)             # 2547XXXXXXXX
    amount = Column(Integer, nullable=False)
    checkout_request_id = Column(String(255), unique=True, nullable=True)
    merchant_request_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=PENDING)  # PENDING | COMPLETED | FAILED
    mpesa_receipt_number = Column(String(64), nullable=True)
    result_desc = Column(Text, nullable=True)
    raw_callback = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # At most one PENDING or COMPLETED intent per order; FAILED rows are history.
    __table_args__ = (
        Index(
            "uq_payment_intents_active_order",
            "order_id",
            unique=True,
            sqlite_where=_ACTIVE_ORDER,
            postgresql_where=_ACTIVE_ORDER,
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
