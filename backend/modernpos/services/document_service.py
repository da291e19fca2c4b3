# Overview: Document number allocation for transactions, purchase orders, receipts and estimations.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


DOC_TRANSACTION = "TRANSACTION"
DOC_PURCHASE_ORDER = "PURCHASE_ORDER"
DOC_RECEIPT = "RECEIPT"
DOC_ESTIMATION = "ESTIMATION"

DOCUMENT_PREFIXES = {
    DOC_TRANSACTION: "TXN",
    DOC_PURCHASE_ORDER: "PO",
    DOC_RECEIPT: "RCV",
    DOC_ESTIMATION: "EST",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(document_type: str, *, pad: int = 4) -> str:
    """
    Allocate the next number for a document type, e.g. "PO-0007".

    Runs inside the caller's transaction (flush only) so the number is
    released if the caller rolls back. The UPDATE takes the row lock on
    databases that have one.
    """
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        number = 1

    return f"{prefix}-{str(number).zfill(pad)}"
