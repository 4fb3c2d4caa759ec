# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- DELETE voids (admin only); invoices are never physically removed
- Payments recorded here go to the payment ledger
- /document returns the aggregate a PDF renderer consumes
"""

from flask import Blueprint, request, g, current_app

from ..errors import AppError
from ..decorators import require_auth, require_admin
from ..responses import success, failure, server_error, json_body, query_int
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

_UPDATABLE = (
    "status",
    "paid_amount_cents",
    "payment_term",
    "issue_date",
    "due_date",
    "billing_address",
    "items",
    "notes",
    "metadata",
)


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    List invoices.

    Query params: status, customer_id (admin), sort_by, sort_order, page, limit
    """
    try:
        rows, pagination = invoice_service.list_invoices(
            g.actor,
            status=request.args.get("status"),
            customer_id=query_int("customer_id"),
            sort_by=request.args.get("sort_by") or "created_at",
            sort_order=(request.args.get("sort_order") or "desc").lower(),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([i.to_dict() for i in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return server_error()


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    try:
        data = json_body()
        invoice = invoice_service.create_invoice(
            g.actor,
            data.get("items"),
            order_id=data.get("order_id"),
            customer_id=data.get("customer_id"),
            payment_term=data.get("payment_term"),
            issue_date=data.get("issue_date"),
            due_date=data.get("due_date"),
            billing_address=data.get("billing_address"),
            notes=data.get("notes"),
            metadata=data.get("metadata"),
        )
        return success(invoice.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return server_error()


@invoices_bp.post("/from-order/<int:order_id>")
@require_auth
def create_from_order_route(order_id: int):
    try:
        data = json_body()
        invoice = invoice_service.create_invoice_from_order(
            g.actor,
            order_id,
            payment_term=data.get("payment_term"),
            issue_date=data.get("issue_date"),
            due_date=data.get("due_date"),
            billing_address=data.get("billing_address"),
            notes=data.get("notes"),
            metadata=data.get("metadata"),
        )
        return success(invoice.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice from order")
        return server_error()


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        return success(invoice_service.get_invoice(g.actor, invoice_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return server_error()


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    try:
        data = json_body()
        invoice = invoice_service.update_invoice(
            g.actor, invoice_id, **{k: data[k] for k in _UPDATABLE if k in data}
        )
        return success(invoice.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return server_error()


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_admin
def void_invoice_route(invoice_id: int):
    """Void (soft delete) an invoice. Body: {"reason": "..."} (optional)."""
    try:
        data = json_body()
        invoice = invoice_service.void_invoice(g.actor, invoice_id, reason=data.get("reason"))
        return success(invoice.to_dict(), message="Invoice voided successfully")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return server_error()


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
def record_payment_route(invoice_id: int):
    """
    Record a payment on an invoice.

    Request body:
    {
        "amount_cents": 6000,
        "payment_method": "bank_transfer",
        "payment_date": "2025-01-15T10:00:00Z",  (optional)
        "transaction_id": "...",                  (optional, generated)
        "notes": "..."                            (optional)
    }
    """
    try:
        data = json_body()
        invoice, payment, summary = invoice_service.record_payment(
            g.actor,
            invoice_id,
            amount_cents=data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
            transaction_id=data.get("transaction_id"),
            external_reference_id=data.get("external_reference_id"),
            metadata=data.get("metadata"),
        )
        return success(
            {
                "invoice": invoice.to_dict(),
                "payment": payment.to_dict(),
                "summary": summary,
            },
            message="Payment recorded successfully",
        )
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return server_error()


@invoices_bp.post("/<int:invoice_id>/send")
@require_auth
def send_invoice_route(invoice_id: int):
    """Mark an invoice sent. Body: {"email": "...", "message": "..."}."""
    try:
        data = json_body()
        invoice = invoice_service.send_invoice(
            g.actor, invoice_id, data.get("email"), message=data.get("message")
        )
        return success(invoice.to_dict(), message=f"Invoice sent to {data.get('email')}")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return server_error()


@invoices_bp.get("/<int:invoice_id>/document")
@require_auth
def invoice_document_route(invoice_id: int):
    try:
        return success(invoice_service.get_invoice_document(g.actor, invoice_id))
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to build invoice document")
        return server_error()
