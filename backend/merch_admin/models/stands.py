from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Stand(db.Model):
    """
    Point-of-sale / pickup stand at the event.

    qr_code_value identifies the stand when staff scan it; it is unrelated
    to the per-order delivery QR.
    """
    __tablename__ = "stands"
    __table_args__ = (
        db.Index("ix_stands_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    operating_hours = db.Column(db.String(255), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    contact_person = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    qr_code_value = db.Column(db.String(128), nullable=True, unique=True)

    # Soft delete: stands referenced by orders are never removed
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stock = db.relationship(
        "StandStock",
        back_populates="stand",
        cascade="all, delete-orphan",
        order_by="StandStock.product_variant_id",
        lazy=True,
    )

    def to_dict(self, include_stock: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "description": self.description,
            "operating_hours": self.operating_hours,
            "image_url": self.image_url,
            "contact_person": self.contact_person,
            "contact_phone": self.contact_phone,
            "qr_code_value": self.qr_code_value,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_stock:
            data["stock"] = [row.to_dict() for row in self.stock]
        return data


class StandStock(db.Model):
    """
    Quantity of a variant assigned to a stand.

    Independent of ProductVariant.quantity: assigning does not move global
    stock, and the two are only reconciled by staff.
    """
    __tablename__ = "stand_stock"
    __table_args__ = (
        db.UniqueConstraint("stand_id", "product_variant_id", name="uq_stand_stock_stand_variant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stand_id = db.Column(db.Integer, db.ForeignKey("stands.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stand = db.relationship("Stand", back_populates="stock")
    product_variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        variant = self.product_variant
        return {
            "id": self.id,
            "stand_id": self.stand_id,
            "product_variant_id": self.product_variant_id,
            "product_id": variant.product_id if variant else None,
            "product_name": variant.product.name if variant else None,
            "size": variant.size if variant else None,
            "quantity": self.quantity,
        }
