# Overview: Transaction boundary and per-aggregate repositories used by the lifecycle services.

"""
Unit of Work

WHY: Every multi-row write (document + items, default flag reset, migration
batch) must commit or roll back as one. Services receive a UnitOfWork
instead of reaching for the global session, so callers (and tests) decide
where the transaction boundary is.

USAGE:
- Service called without a unit of work: it opens its own, commits on
  success, rolls back and re-raises on any error.
- Service called with a unit of work: it only flushes; the caller commits.
"""

from __future__ import annotations

from sqlalchemy import select, func

from ..extensions import db
from ..models import (
    Company,
    User,
    Product,
    Quote,
    QuoteItem,
    Order,
    OrderItem,
    OrderHistory,
    Invoice,
    InvoiceItem,
    Payment,
    PriceList,
    PriceListItem,
    ProductPriceHistory,
    ProductPricing,
    PricingHistory,
)
from .concurrency import lock_for_update, run_with_retry


class Repository:
    """Narrow data access for one model: find, save, delete, lock."""

    def __init__(self, session, model):
        self.session = session
        self.model = model

    def query(self):
        return self.session.query(self.model)

    def get(self, entity_id):
        if entity_id is None:
            return None
        return self.session.get(self.model, entity_id)

    def get_for_update(self, entity_id):
        if entity_id is None:
            return None
        return lock_for_update(self.query().filter_by(id=entity_id)).populate_existing().first()

    def find_by_ids(self, ids) -> list:
        ids = list(ids)
        if not ids:
            return []
        return self.query().filter(self.model.id.in_(ids)).all()

    def filter_by(self, **criteria):
        return self.query().filter_by(**criteria)

    def count(self, *criteria) -> int:
        stmt = select(func.count()).select_from(self.model)
        if criteria:
            stmt = stmt.where(*criteria)
        return self.session.execute(stmt).scalar_one()

    def add(self, entity):
        self.session.add(entity)
        return entity

    def add_all(self, entities):
        self.session.add_all(entities)
        return entities

    def delete(self, entity) -> None:
        self.session.delete(entity)


class UnitOfWork:
    """One database transaction plus the repositories that write inside it."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session
        self.companies = Repository(self.session, Company)
        self.users = Repository(self.session, User)
        self.products = Repository(self.session, Product)
        self.quotes = Repository(self.session, Quote)
        self.quote_items = Repository(self.session, QuoteItem)
        self.orders = Repository(self.session, Order)
        self.order_items = Repository(self.session, OrderItem)
        self.order_history = Repository(self.session, OrderHistory)
        self.invoices = Repository(self.session, Invoice)
        self.invoice_items = Repository(self.session, InvoiceItem)
        self.payments = Repository(self.session, Payment)
        self.price_lists = Repository(self.session, PriceList)
        self.price_list_items = Repository(self.session, PriceListItem)
        self.price_history = Repository(self.session, ProductPriceHistory)
        self.pricing = Repository(self.session, ProductPricing)
        self.pricing_history = Repository(self.session, PricingHistory)

    def flush(self) -> None:
        self.session.flush()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def savepoint(self):
        """Nested transaction for work that may fail without aborting the outer one."""
        return self.session.begin_nested()

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            try:
                self.commit()
            except Exception:
                self.rollback()
                raise
        else:
            self.rollback()
        return False


def run_in_unit_of_work(op, uow: UnitOfWork | None = None, *, attempts: int = 3):
    """
    Run op(uow) as one transaction.

    A caller-supplied unit of work is only flushed; otherwise a fresh one is
    opened, committed on success and rolled back on failure, with retry on
    lock/stale-data errors.
    """
    if uow is not None:
        result = op(uow)
        uow.flush()
        return result

    def _attempt():
        with UnitOfWork() as work:
            return op(work)

    return run_with_retry(_attempt, attempts=attempts)
