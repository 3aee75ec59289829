# Overview: Atomic per-tenant document numbering (production batch numbers).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from ..errors import MurallaError
from ..models import DocumentSequence
from ..time_utils import local_date
from .unit_of_work import UnitOfWork


class DocumentSequenceError(MurallaError):
    """Raised when document sequence operations fail."""


BATCH_SEQUENCE_PREFIX = "PRODUCTION_BATCH"


def next_sequence_number(uow: UnitOfWork, sequence_key: str) -> int:
    """
    Allocate the next number for (tenant, sequence_key) inside the caller's unit of work.

    Increments the existing row in place (row-locked by the UPDATE). On first
    use the row is inserted; a concurrent first insert loses on the unique
    constraint with IntegrityError, and the caller re-runs its whole unit of work.
    """
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == uow.tenant_id,
            DocumentSequence.sequence_key == sequence_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = uow.session.execute(stmt)
    if result.rowcount:
        current = (
            uow.session.query(DocumentSequence.next_number)
            .filter_by(tenant_id=uow.tenant_id, sequence_key=sequence_key)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(tenant_id=uow.tenant_id, sequence_key=sequence_key, next_number=2)
    uow.add(seq)
    uow.flush()
    return 1


def next_batch_number(uow: UnitOfWork, *, tz_name: str | None, now: datetime | None = None) -> str:
    """BATCH-YYMMDD-NNNN, numbered per tenant per calendar day in the tenant's timezone."""
    day = local_date(tz_name, now)
    stamp = day.strftime("%y%m%d")
    seq = next_sequence_number(uow, f"{BATCH_SEQUENCE_PREFIX}:{stamp}")
    return f"BATCH-{stamp}-{seq:04d}"
