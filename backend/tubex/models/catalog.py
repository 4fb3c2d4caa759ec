from __future__ import annotations

from ..extensions import db
from tubex.time_utils import to_utc_z


PRODUCT_ACTIVE = "active"
PRODUCT_INACTIVE = "inactive"
PRODUCT_OUT_OF_STOCK = "out_of_stock"
VALID_PRODUCT_STATUSES = {PRODUCT_ACTIVE, PRODUCT_INACTIVE, PRODUCT_OUT_OF_STOCK}


class Product(db.Model):
    """
    Catalog product supplied by a company.

    base_price_cents is the default unit price when no unified pricing row
    applies to the buyer.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    base_price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="piece")
    supplier_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_ACTIVE, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    supplier = db.relationship("Company", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "base_price_cents": self.base_price_cents,
            "unit": self.unit,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Quote and invoice numbers must never collide. The counter row is
    incremented with a single UPDATE so concurrent allocations serialize on it.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
