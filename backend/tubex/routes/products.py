# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app

from ..errors import AppError
from ..decorators import require_auth
from ..responses import success, failure, server_error, json_body, query_int
from ..services import product_service, price_list_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List products.

    Query params: status, supplier_id, search, page, limit
    """
    try:
        rows, pagination = product_service.list_products(
            status=request.args.get("status"),
            supplier_id=query_int("supplier_id"),
            search=request.args.get("search"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([p.to_dict() for p in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return server_error()


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a product.

    Available to: admin, or users of the supplier company
    """
    try:
        data = json_body()
        product = product_service.create_product(
            g.actor,
            name=data.get("name"),
            base_price_cents=data.get("base_price_cents"),
            unit=data.get("unit"),
            sku=data.get("sku"),
            description=data.get("description"),
            supplier_id=data.get("supplier_id"),
            status=data.get("status"),
        )
        return success(product.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return server_error()


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return success(product_service.get_product(product_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return server_error()


@products_bp.patch("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    try:
        data = json_body()
        allowed = ("name", "description", "unit", "status", "base_price_cents", "price_change_reason")
        product = product_service.update_product(
            g.actor, product_id, **{k: data[k] for k in allowed if k in data}
        )
        return success(product.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return server_error()


@products_bp.get("/<int:product_id>/price-history")
@require_auth
def product_price_history_route(product_id: int):
    """Legacy price audit trail for a product, newest first."""
    try:
        rows, pagination = price_list_service.get_product_price_history(
            product_id,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([r.to_dict() for r in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get product price history")
        return server_error()
