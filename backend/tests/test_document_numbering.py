# Overview: Pytest coverage for document number allocation.

"""
Document Numbering Tests

Quote and invoice numbers come from a per-type counter row, so numbers are
sequential per type and never reused.
"""

from tubex.models import DocumentSequence
from tubex.services.document_service import next_document_number, QUOTE_PREFIX, INVOICE_PREFIX
from tubex.services.unit_of_work import UnitOfWork
from tubex.time_utils import utcnow


class TestNextDocumentNumber:
    """Counter-backed numbering."""

    def test_first_number_creates_counter(self, db_session):
        """The first allocation creates the sequence row and returns 000001."""
        uow = UnitOfWork()
        number = next_document_number(uow, document_type="QUOTE", prefix=QUOTE_PREFIX)
        uow.commit()

        assert number == f"QT-{utcnow():%Y%m}-000001"
        seq = db_session.query(DocumentSequence).filter_by(document_type="QUOTE").one()
        assert seq.next_number == 2

    def test_numbers_are_sequential(self, db_session):
        uow = UnitOfWork()
        numbers = [next_document_number(uow, document_type="QUOTE", prefix=QUOTE_PREFIX) for _ in range(3)]
        uow.commit()

        assert [n.rsplit("-", 1)[1] for n in numbers] == ["000001", "000002", "000003"]
        assert len(set(numbers)) == 3

    def test_counters_are_per_document_type(self, db_session):
        """Quotes and invoices count independently."""
        uow = UnitOfWork()
        next_document_number(uow, document_type="QUOTE", prefix=QUOTE_PREFIX)
        next_document_number(uow, document_type="QUOTE", prefix=QUOTE_PREFIX)
        invoice_number = next_document_number(uow, document_type="INVOICE", prefix=INVOICE_PREFIX)
        uow.commit()

        assert invoice_number.startswith("INV-")
        assert invoice_number.endswith("-000001")
