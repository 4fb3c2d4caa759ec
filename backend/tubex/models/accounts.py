from __future__ import annotations

from ..extensions import db
from tubex.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CUSTOMER = "customer"
VALID_ROLES = {ROLE_ADMIN, ROLE_MANAGER, ROLE_CUSTOMER}


class Company(db.Model):
    """
    A business party: supplier, dealer or buying customer.

    Price lists, unified pricing rows and product supply are scoped to a company.
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.JSON, nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "contact_phone": self.contact_phone,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Acting user. Every document records who created or changed it.

    Authentication happens upstream; this table only carries the attributes
    the workflows authorize against (role and company).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("users", lazy=True))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "company_id": self.company_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
