from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Monotonic number allocator per sequence key (one key per sale type).

    next_number holds the number the NEXT allocation will receive.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_key", name="uq_document_sequences_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_key = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
