# Overview: Tenant-bound atomic scope passed explicitly to every stock-mutating helper.

from __future__ import annotations

from ..extensions import db
from .concurrency import lock_for_update
"""
Unit of Work Invariants (authoritative)

- Every write to products, movements, consumptions, transactions and batches
  happens inside exactly one UnitOfWork.
- Clean exit commits; any exception rolls back everything and propagates.
- The UnitOfWork is bound to one tenant: `query()` and `get()` always filter by
  tenant_id, so helpers cannot reach another tenant's rows.
"""


class UnitOfWork:
    """
    Usage:
        with UnitOfWork(tenant_id) as uow:
            product = uow.get(Product, product_id, lock=True)
            take_stock(uow, product, 3)
    """

    def __init__(self, tenant_id: int, session=None):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.tenant_id = tenant_id
        self.session = session if session is not None else db.session
        self._active = False

    def __enter__(self) -> "UnitOfWork":
        self._active = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._active = False
        if exc_type is not None:
            self.session.rollback()
            return False
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return False

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if not self._active:
            raise RuntimeError("UnitOfWork used outside its 'with' block")

    def add(self, obj):
        self.ensure_active()
        self.session.add(obj)
        return obj

    def flush(self) -> None:
        self.session.flush()

    def query(self, model):
        """Tenant-scoped query for a tenant-owned model."""
        return self.session.query(model).filter(model.tenant_id == self.tenant_id)

    def get(self, model, entity_id: int, *, lock: bool = False):
        query = self.query(model).filter(model.id == entity_id)
        if lock:
            query = lock_for_update(query)
        return query.first()
