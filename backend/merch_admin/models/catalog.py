from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Merchandise product (t-shirt, cap, poster...).

    Stock is never tracked here: every quantity lives on ProductVariant,
    one row per size. total_quantity is always derived.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)

    # A variant at or below this quantity is flagged as low stock
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    variants = db.relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.id",
        lazy=True,
    )
    images = db.relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.sort_order",
        lazy=True,
    )

    @property
    def total_quantity(self) -> int:
        return sum(v.quantity for v in self.variants)

    @property
    def is_low_stock(self) -> bool:
        return any(v.quantity <= self.low_stock_threshold for v in self.variants)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self, include_children: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "category": self.category.to_dict() if self.category else None,
            "description": self.description,
            "low_stock_threshold": self.low_stock_threshold,
            "total_quantity": self.total_quantity,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_children:
            data["variants"] = [v.to_dict() for v in self.variants]
            data["images"] = [i.to_dict() for i in self.images]
        return data


class ProductVariant(db.Model):
    """
    One size of a product: the unit of stock tracking.

    quantity is mutated only through services.stock_service, which re-reads
    the row and relies on version_id to detect concurrent writers.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "size", name="uq_variants_product_size"),
        db.CheckConstraint("quantity >= 0", name="ck_variants_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    size = db.Column(db.String(50), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="variants")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} size={self.size!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "size": self.size,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductImage(db.Model):
    __tablename__ = "product_images"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    image_url = db.Column(db.String(512), nullable=False)
    # Key in object storage, when the image was uploaded here
    storage_path = db.Column(db.String(512), nullable=True)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="images")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "image_url": self.image_url,
            "storage_path": self.storage_path,
            "is_primary": self.is_primary,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
        }
