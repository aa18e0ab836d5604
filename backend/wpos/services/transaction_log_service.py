# Overview: Append-only transaction phase log used for audit and idempotent replay.

"""
Transaction log invariants

- Append-only: rows are inserted, never updated or deleted.
- append_transaction_log only flushes; the caller decides when to commit.
- ``completed`` is written inside the sale's own transaction, so it exists
  iff the sale committed.
- Failure phases are written after the sale's rollback so they survive it.
"""

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import TransactionLog
from ..time_utils import utcnow


PHASE_STARTED = "started"
PHASE_VALIDATION_FAILED = "validation_failed"
PHASE_RETRY = "retry"
PHASE_CHECKPOINT = "checkpoint"
PHASE_COMPLETED = "completed"
PHASE_ROLLED_BACK = "rolled_back"
PHASE_ERROR = "error"

PHASES = {
    PHASE_STARTED,
    PHASE_VALIDATION_FAILED,
    PHASE_RETRY,
    PHASE_CHECKPOINT,
    PHASE_COMPLETED,
    PHASE_ROLLED_BACK,
    PHASE_ERROR,
}


def append_transaction_log(
    *,
    transaction_id: str,
    phase: str,
    context: Optional[dict] = None,
    sale_id: Optional[int] = None,
) -> TransactionLog:
    if not transaction_id:
        raise ValueError("transaction_id is required")
    if phase not in PHASES:
        raise ValueError(f"Unknown transaction phase: {phase}")

    entry = TransactionLog(
        transaction_id=transaction_id,
        phase=phase,
        sale_id=sale_id,
        context=context or {},
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def find_completed_sale_id(transaction_id: str) -> Optional[int]:
    return (
        db.session.query(TransactionLog.sale_id)
        .filter(
            TransactionLog.transaction_id == transaction_id,
            TransactionLog.phase == PHASE_COMPLETED,
        )
        .order_by(TransactionLog.id.asc())
        .limit(1)
        .scalar()
    )


def get_transaction_logs(transaction_id: str) -> list[TransactionLog]:
    return (
        db.session.query(TransactionLog)
        .filter_by(transaction_id=transaction_id)
        .order_by(TransactionLog.id.asc())
        .all()
    )
