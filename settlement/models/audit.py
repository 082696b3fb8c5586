"""Audit event model.

Append-only trail of money-moving actions (transfers issued, payout
failures, subscription and Connect changes) for reconciliation and
debugging.
"""

import uuid

from settlement.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True, index=True
    )
    action = db.Column(db.String(255), nullable=False)  # e.g. "payout.transfer_created"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the SQLAlchemy reserved name
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
