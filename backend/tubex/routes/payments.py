# Overview: Flask API routes for the payment ledger; parses input and returns JSON responses.

# backend/tubex/routes/payments.py
"""
Payment Ledger API Routes

DESIGN:
- A payment targets one order or one invoice
- Amounts are immutable; reconciliation is the only edit
- Disputed payments stop counting toward paid totals

SECURITY:
- Reconciliation requires the admin role
"""

from flask import Blueprint, request, g, current_app

from ..errors import AppError
from ..decorators import require_auth, require_admin
from ..responses import success, failure, server_error, json_body, query_int
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("")
@require_auth
def list_payments_route():
    """
    List payments.

    Query params: invoice_id, order_id, reconciliation_status, page, limit
    """
    try:
        rows, pagination = payment_service.list_payments(
            g.actor,
            invoice_id=query_int("invoice_id"),
            order_id=query_int("order_id"),
            reconciliation_status=request.args.get("reconciliation_status"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([p.to_dict() for p in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return server_error()


@payments_bp.post("")
@require_auth
def create_payment_route():
    """
    Record a payment.

    Request body:
    {
        "order_id": 12 | "invoice_id": 7,   (exactly one)
        "amount_cents": 10000,
        "payment_method": "credit_card",
        "payment_type": "order_payment",     (optional)
        "transaction_id": "...",             (optional, generated)
        "external_reference_id": "...",      (optional)
        "notes": "..."                       (optional)
    }

    Returns:
        201: Payment created
        400: Invalid input
        409: Duplicate transaction_id
    """
    try:
        data = json_body()
        payment = payment_service.create_payment(
            g.actor,
            amount_cents=data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            payment_type=data.get("payment_type"),
            order_id=data.get("order_id"),
            invoice_id=data.get("invoice_id"),
            payment_date=data.get("payment_date"),
            transaction_id=data.get("transaction_id"),
            external_reference_id=data.get("external_reference_id"),
            notes=data.get("notes"),
            metadata=data.get("metadata"),
        )
        return success(payment.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return server_error()


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        return success(payment_service.get_payment(g.actor, payment_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return server_error()


@payments_bp.post("/<int:payment_id>/reconcile")
@require_auth
@require_admin
def reconcile_payment_route(payment_id: int):
    """Body: {"reconciliation_status": "reconciled|disputed|...", "notes": "..."}."""
    try:
        data = json_body()
        payment = payment_service.reconcile_payment(
            g.actor,
            payment_id,
            data.get("reconciliation_status"),
            notes=data.get("notes"),
        )
        return success(payment.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile payment")
        return server_error()
