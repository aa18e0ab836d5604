# Overview: Race-safe sale number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


SALE_NUMBER_PREFIXES = {
    "counter": "CS",
    "video_call": "VC",
    "bulk": "BLK",
}


def _increment(sequence_key: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_key == sequence_key)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(sequence_key=sequence_key)
        .scalar()
    )
    return current - 1


def next_document_number(*, sequence_key: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for a sequence inside the caller's transaction.

    The increment is a single conditional UPDATE, so two writers can never
    receive the same number. The first allocation creates the row in a
    savepoint; losing that insert race falls back to the increment.
    Nothing is committed here.
    """
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    next_num = _increment(sequence_key)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(sequence_key=sequence_key, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _increment(sequence_key)
            if next_num is None:
                raise DocumentSequenceError(f"Could not allocate number for {sequence_key}")

    return f"{prefix}-{next_num:0{pad}d}"


def next_sale_number(sale_type: str) -> str:
    prefix = SALE_NUMBER_PREFIXES.get(sale_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown sale type: {sale_type}")
    return next_document_number(sequence_key=f"sale:{sale_type}", prefix=prefix)
