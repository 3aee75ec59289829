"""
Multi-Tenant Service: tenant creation and lookup.

Every service call takes an explicit tenant_id. Rows of another tenant are
reported as NotFound, never as "forbidden", so existence is not revealed.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..models import Tenant


def create_tenant(
    *,
    name: str,
    code: str | None = None,
    tax_rate_bps: int | None = None,
    timezone: str | None = None,
) -> Tenant:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("name is required")

    if tax_rate_bps is None:
        tax_rate_bps = current_app.config.get("DEFAULT_TAX_RATE_BPS", 1900)
    if not isinstance(tax_rate_bps, int) or isinstance(tax_rate_bps, bool) or tax_rate_bps < 0:
        raise InvalidInputError("tax_rate_bps must be a non-negative integer")

    tenant = Tenant(
        name=name,
        code=code.strip().upper() if code else None,
        tax_rate_bps=tax_rate_bps,
        timezone=timezone or current_app.config.get("DEFAULT_TENANT_TIMEZONE", "America/Santiago"),
        is_active=True,
    )
    db.session.add(tenant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"tenant code {tenant.code!r} already exists")
    return tenant


def get_tenant(tenant_id: int, *, require_active: bool = True) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if tenant is None:
        raise NotFoundError("Tenant", tenant_id)
    if require_active and not tenant.is_active:
        raise InvalidInputError("tenant is inactive", details={"tenant_id": tenant_id})
    return tenant


def list_tenants() -> list[Tenant]:
    return db.session.query(Tenant).order_by(Tenant.id.asc()).all()
