from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only audit trail of every variant quantity change.

    IMMUTABLE: rows are written by services.stock_service and never updated.
    Reconciliation never reads them back; the admin movements view does.

    quantity_delta is the signed delta the operation applied; previous and new
    quantities are snapshots, so a clamped decrement shows up as
    new_quantity - previous_quantity != quantity_delta.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_created", "product_variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Cleared when the product is deleted so the history survives
    product_variant_id = db.Column(
        db.Integer,
        db.ForeignKey("product_variants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    stand_id = db.Column(db.Integer, db.ForeignKey("stands.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    # adjustment, return, cancellation, restore, reduce
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_variant_id": self.product_variant_id,
            "stand_id": self.stand_id,
            "order_id": self.order_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
