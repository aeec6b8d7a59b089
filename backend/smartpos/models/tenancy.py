from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z


class Store(db.Model):
    """
    A selling location. Products, stock, orders and customers are all scoped to one store.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }


class Employee(db.Model):
    """
    Store staff member referenced by orders (seller) and refunds (reviewer).

    Employee management screens live outside this service; rows are read-only here.
    An order with employee_id NULL was rung up by the store owner.
    """
    __tablename__ = "employees"
    __table_args__ = (
        db.Index("ix_employees_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("employees", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "full_name": self.full_name,
            "is_active": self.is_active,
        }
