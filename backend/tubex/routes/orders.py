# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app

from ..errors import AppError
from ..decorators import require_auth
from ..responses import success, failure, server_error, json_body
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
def list_orders_route():
    try:
        rows, pagination = order_service.list_orders(
            g.actor,
            status=request.args.get("status"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([o.to_dict() for o in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return server_error()


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3, "discount_cents": 0}],
        "delivery_address": {...},   (optional)
        "payment_method": "bank_transfer",  (optional)
        "metadata": {...}             (optional)
    }

    unit_price_cents may be omitted per item; the buyer's price is used.
    """
    try:
        data = json_body()
        order = order_service.create_order(
            g.actor,
            data.get("items"),
            delivery_address=data.get("delivery_address"),
            payment_method=data.get("payment_method"),
            metadata=data.get("metadata"),
        )
        return success(order.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return server_error()


@orders_bp.post("/bulk")
@require_auth
def bulk_process_route():
    """
    Apply one action to many orders.

    Request body: {"order_ids": [1, 2], "action": "confirm", "notes": "..."}

    Returns 200 with {"processed": [...], "failed": [{"id", "reason"}]}
    even when some orders fail.
    """
    try:
        data = json_body()
        result = order_service.bulk_process_orders(
            g.actor,
            data.get("order_ids"),
            data.get("action") or data.get("status") or "",
            notes=data.get("notes"),
        )
        return success(result, message=f"Processed {len(result['processed'])} orders")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to bulk process orders")
        return server_error()


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return success(order_service.get_order(g.actor, order_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return server_error()


@orders_bp.patch("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    """Body: {"payment_method": "...", "delivery_address": {...}}, either or both."""
    try:
        data = json_body()
        order = order_service.update_order(
            g.actor,
            order_id,
            payment_method=data.get("payment_method"),
            delivery_address=data.get("delivery_address"),
        )
        return success(order.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return server_error()


@orders_bp.post("/<int:order_id>/status")
@require_auth
def transition_order_route(order_id: int):
    """
    Move an order along its lifecycle.

    Request body: {"action": "confirm|process|ship|deliver|cancel", "notes": "..."}
    """
    try:
        data = json_body()
        order = order_service.transition_order(
            g.actor,
            order_id,
            data.get("action") or data.get("status") or "",
            notes=data.get("notes"),
        )
        return success(order.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return server_error()


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Cancel a pending or confirmed order. Body: {"reason": "..."} (required)."""
    try:
        data = json_body()
        order = order_service.cancel_order(g.actor, order_id, data.get("reason"))
        return success(order.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return server_error()


@orders_bp.get("/<int:order_id>/history")
@require_auth
def order_history_route(order_id: int):
    try:
        rows = order_service.get_order_history(g.actor, order_id)
        return success([h.to_dict() for h in rows])
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get order history")
        return server_error()
