from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Merchandise order (a "sale" in the dashboard).

    LIFECYCLE:
    - waiting_payment / pending: open, items may be edited
    - delivered: handed over at a stand (QR scan or manual), items may still be edited
    - cancelled / returned: terminal, stock already restored

    total_amount_cents is denormalized and must always equal
    sum(quantity * unit_price_cents) over the current items.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_payment_method_validated", "payment_method", "payment_validated"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False, index=True)

    # Delivery token printed as QR for pickup; matched by exact equality
    qr_code = db.Column(db.String(128), nullable=False, unique=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_validated = db.Column(db.Boolean, nullable=False, default=False)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_type = db.Column(db.String(16), nullable=False, default="Online")

    # POS stand where the order was taken, and stand that handed it over
    stand_id = db.Column(db.Integer, db.ForeignKey("stands.id"), nullable=True, index=True)
    delivered_by_stand_id = db.Column(db.Integer, db.ForeignKey("stands.id"), nullable=True, index=True)
    delivery_timestamp = db.Column(db.DateTime(timezone=True), nullable=True)

    # Return / cancellation audit
    return_requested = db.Column(db.Boolean, nullable=False, default=False)
    return_reason = db.Column(db.String(255), nullable=True)
    return_timestamp = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    stand = db.relationship("Stand", foreign_keys=[stand_id])
    delivered_by_stand = db.relationship("Stand", foreign_keys=[delivered_by_stand_id])
    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status!r} total={self.total_amount_cents}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "qr_code": self.qr_code,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_validated": self.payment_validated,
            "total_amount_cents": self.total_amount_cents,
            "sale_type": self.sale_type,
            "stand_id": self.stand_id,
            "delivered_by_stand_id": self.delivered_by_stand_id,
            "delivery_timestamp": to_utc_z(self.delivery_timestamp) if self.delivery_timestamp else None,
            "return_requested": self.return_requested,
            "return_reason": self.return_reason,
            "return_timestamp": to_utc_z(self.return_timestamp) if self.return_timestamp else None,
            "refund_amount_cents": self.refund_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line item on an order.

    unit_price_cents is snapshotted when the line is written and does not
    follow later variant price changes. The same variant may appear on
    several lines; stock arithmetic sums them per variant.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")
    product_variant = db.relationship("ProductVariant")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        variant = self.product_variant
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_variant_id": self.product_variant_id,
            "product_id": variant.product_id if variant else None,
            "product_name": variant.product.name if variant else None,
            "size": variant.size if variant else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }
