from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class TransactionLog(db.Model):
    """
    Append-only phase log keyed by the sale's transaction id.

    One row per phase transition (started, validation_failed, retry,
    checkpoint, completed, rolled_back, error). Rows are never updated or
    deleted. A ``completed`` row exists iff the sale committed, which is what
    idempotent replay keys on.
    """
    __tablename__ = "transaction_logs"
    __table_args__ = (
        db.Index("ix_transaction_logs_txn_phase", "transaction_id", "phase"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(64), nullable=False, index=True)
    phase = db.Column(db.String(32), nullable=False)
    sale_id = db.Column(db.Integer, nullable=True)
    context = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "phase": self.phase,
            "sale_id": self.sale_id,
            "context": self.context or {},
            "created_at": to_utc_z(self.created_at),
        }
