# Overview: Flask API routes for quotes; parses input and returns JSON responses.

"""
Quote API Routes

Lifecycle: draft -> pending -> accepted -> converted (to an order),
with rejected / expired as terminal side exits.
"""

from flask import Blueprint, request, g, current_app

from ..errors import AppError
from ..decorators import require_auth
from ..responses import success, failure, server_error, json_body
from ..services import quote_service


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.get("")
@require_auth
def list_quotes_route():
    """
    List quotes. Admins see every quote, customers their own.

    Query params: status, page, limit
    """
    try:
        rows, pagination = quote_service.list_quotes(
            g.actor,
            status=request.args.get("status"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([q.to_dict() for q in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list quotes")
        return server_error()


@quotes_bp.post("")
@require_auth
def create_quote_route():
    """
    Create a draft quote.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 0}],
        "valid_until": "2025-02-01",  (optional, defaults to 30 days out)
        "notes": "...",                (optional)
        "metadata": {...}              (optional)
    }
    """
    try:
        data = json_body()
        quote = quote_service.create_quote(
            g.actor,
            data.get("items"),
            valid_until=data.get("valid_until"),
            notes=data.get("notes"),
            metadata=data.get("metadata"),
        )
        return success(quote.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return server_error()


@quotes_bp.get("/<int:quote_id>")
@require_auth
def get_quote_route(quote_id: int):
    try:
        return success(quote_service.get_quote(g.actor, quote_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get quote")
        return server_error()


@quotes_bp.patch("/<int:quote_id>")
@require_auth
def update_quote_route(quote_id: int):
    """
    Update an open quote. "items" replaces the whole item list.
    """
    try:
        data = json_body()
        quote = quote_service.update_quote(
            g.actor,
            quote_id,
            status=data.get("status"),
            valid_until=data.get("valid_until"),
            notes=data.get("notes"),
            items=data.get("items"),
            metadata=data.get("metadata"),
        )
        return success(quote.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update quote")
        return server_error()


@quotes_bp.delete("/<int:quote_id>")
@require_auth
def delete_quote_route(quote_id: int):
    try:
        quote_service.delete_quote(g.actor, quote_id)
        return success(None, message="Quote deleted")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to delete quote")
        return server_error()


@quotes_bp.post("/<int:quote_id>/convert")
@require_auth
def convert_quote_route(quote_id: int):
    """
    Convert an accepted quote into an order.

    Request body (all optional): payment_method, delivery_address, metadata
    """
    try:
        data = json_body()
        order = quote_service.convert_to_order(
            g.actor,
            quote_id,
            payment_method=data.get("payment_method"),
            delivery_address=data.get("delivery_address"),
            metadata=data.get("metadata"),
        )
        return success(order.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to convert quote")
        return server_error()
