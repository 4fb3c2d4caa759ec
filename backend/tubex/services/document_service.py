# Overview: Human-readable, collision-free document numbers for quotes and invoices.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import DocumentSequence
from tubex.time_utils import utcnow


QUOTE_PREFIX = "QT"
INVOICE_PREFIX = "INV"


def next_document_number(
    uow,
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a document type.

    Format: PREFIX-YYYYMM-NNNNNN. The month part keeps numbers readable; the
    sequence part comes from a counter row bumped with a single UPDATE, so two
    transactions can never be handed the same number.
    """
    session = uow.session
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = session.execute(stmt)
    if result.rowcount:
        current = (
            session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        try:
            with session.begin_nested():
                session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first; bump it instead.
            session.execute(stmt)
            current = (
                session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{utcnow():%Y%m}-{next_num:0{pad}d}"
