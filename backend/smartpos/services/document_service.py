# Overview: Per-store sequential numbers for orders and refunds.

from __future__ import annotations

from sqlalchemy import update

from ..models import DocumentSequence


ORDER_PREFIX = "HD"
REFUND_PREFIX = "TH"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    session,
    *,
    store_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a store/type.

    Must run inside an atomic scope: the counter row is bumped with a single
    UPDATE, and on SQLite the scope's writer lock keeps the first-row insert
    from racing.
    """
    if not store_id:
        raise DocumentSequenceError("store_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = session.execute(stmt)
    if result.rowcount:
        current = (
            session.query(DocumentSequence.next_number)
            .filter_by(store_id=store_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
        session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
