# Overview: Flask API routes for legacy price lists and their items; parses input and returns JSON responses.

"""
Price List API Routes

Price lists are scoped to the caller's company; lists of other companies
answer 404. CSV import accepts either a multipart "file" upload or a raw
text/csv body.
"""

from flask import Blueprint, Response, request, g, current_app

from ..errors import AppError, ValidationError
from ..decorators import require_auth
from ..responses import success, failure, server_error, json_body
from ..services import price_list_service


price_lists_bp = Blueprint("price_lists", __name__, url_prefix="/api/price-lists")

_LIST_FIELDS = (
    "name",
    "description",
    "status",
    "effective_from",
    "effective_to",
    "is_default",
    "global_discount_percentage",
    "metadata",
)
_ITEM_FIELDS = ("price_cents", "discount_percentage", "effective_from", "effective_to")


@price_lists_bp.get("")
@require_auth
def list_price_lists_route():
    try:
        rows, pagination = price_list_service.list_price_lists(
            g.actor,
            status=request.args.get("status"),
            search=request.args.get("search"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([p.to_dict() for p in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list price lists")
        return server_error()


@price_lists_bp.post("")
@require_auth
def create_price_list_route():
    """
    Create a price list for the caller's company (admins may pass company_id).

    Setting is_default clears the flag on the company's other lists.
    """
    try:
        data = json_body()
        price_list = price_list_service.create_price_list(
            g.actor,
            name=data.get("name"),
            description=data.get("description"),
            company_id=data.get("company_id"),
            status=data.get("status"),
            effective_from=data.get("effective_from"),
            effective_to=data.get("effective_to"),
            is_default=bool(data.get("is_default", False)),
            global_discount_percentage=data.get("global_discount_percentage"),
            metadata=data.get("metadata"),
        )
        return success(price_list.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create price list")
        return server_error()


@price_lists_bp.get("/<int:price_list_id>")
@require_auth
def get_price_list_route(price_list_id: int):
    try:
        price_list = price_list_service.get_price_list(g.actor, price_list_id)
        return success(price_list.to_dict(include_items=True))
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get price list")
        return server_error()


@price_lists_bp.patch("/<int:price_list_id>")
@require_auth
def update_price_list_route(price_list_id: int):
    try:
        data = json_body()
        price_list = price_list_service.update_price_list(
            g.actor, price_list_id, **{k: data[k] for k in _LIST_FIELDS if k in data}
        )
        return success(price_list.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update price list")
        return server_error()


@price_lists_bp.delete("/<int:price_list_id>")
@require_auth
def delete_price_list_route(price_list_id: int):
    try:
        price_list_service.delete_price_list(g.actor, price_list_id)
        return success(None, message="Price list deleted")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to delete price list")
        return server_error()


# =============================================================================
# ITEMS
# =============================================================================

@price_lists_bp.get("/<int:price_list_id>/items")
@require_auth
def list_items_route(price_list_id: int):
    try:
        rows, pagination = price_list_service.list_items(
            g.actor,
            price_list_id,
            search=request.args.get("search"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([i.to_dict() for i in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list price list items")
        return server_error()


@price_lists_bp.post("/<int:price_list_id>/items")
@require_auth
def add_item_route(price_list_id: int):
    """
    Add one product override.

    Request body: {"product_id": 1, "price_cents": 900, "discount_percentage": "5", "reason": "..."}

    Returns 409 if the product is already on the list.
    """
    try:
        data = json_body()
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        item = price_list_service.add_item(
            g.actor,
            price_list_id,
            product_id=data["product_id"],
            reason=data.get("reason"),
            **{k: data[k] for k in _ITEM_FIELDS if k in data},
        )
        return success(item.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to add price list item")
        return server_error()


@price_lists_bp.patch("/<int:price_list_id>/items/<int:item_id>")
@require_auth
def update_item_route(price_list_id: int, item_id: int):
    try:
        data = json_body()
        item = price_list_service.update_item(
            g.actor,
            price_list_id,
            item_id,
            reason=data.get("reason"),
            **{k: data[k] for k in _ITEM_FIELDS if k in data},
        )
        return success(item.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update price list item")
        return server_error()


@price_lists_bp.delete("/<int:price_list_id>/items/<int:item_id>")
@require_auth
def delete_item_route(price_list_id: int, item_id: int):
    try:
        price_list_service.delete_item(g.actor, price_list_id, item_id)
        return success(None, message="Price list item deleted")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to delete price list item")
        return server_error()


@price_lists_bp.post("/<int:price_list_id>/items/bulk")
@require_auth
def bulk_add_items_route(price_list_id: int):
    """Body: {"items": [{"product_id", "price_cents", ...}], "reason": "..."}; all or nothing."""
    try:
        data = json_body()
        created = price_list_service.bulk_add_items(
            g.actor, price_list_id, data.get("items"), reason=data.get("reason")
        )
        return success([i.to_dict() for i in created], 201, message=f"Added {len(created)} items")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to bulk add price list items")
        return server_error()


@price_lists_bp.patch("/<int:price_list_id>/items/bulk")
@require_auth
def bulk_update_items_route(price_list_id: int):
    """Body: {"items": [{"id", "price_cents", ...}], "reason": "..."}; all or nothing."""
    try:
        data = json_body()
        updated = price_list_service.bulk_update_items(
            g.actor, price_list_id, data.get("items"), reason=data.get("reason")
        )
        return success([i.to_dict() for i in updated], message=f"Updated {len(updated)} items")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update price list items")
        return server_error()


# =============================================================================
# CSV
# =============================================================================

@price_lists_bp.get("/<int:price_list_id>/export")
@require_auth
def export_csv_route(price_list_id: int):
    try:
        csv_text = price_list_service.export_price_list_csv(g.actor, price_list_id)
        return Response(
            csv_text,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename=price-list-{price_list_id}.csv"},
        )
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to export price list")
        return server_error()


@price_lists_bp.post("/<int:price_list_id>/import")
@require_auth
def import_csv_route(price_list_id: int):
    """
    Upsert items from CSV.

    Returns {"created", "updated", "errors": [{"row", "error"}]}; bad rows are
    reported, not fatal.
    """
    try:
        upload = request.files.get("file")
        if upload is not None:
            csv_text = upload.read().decode("utf-8-sig")
        else:
            csv_text = request.get_data(as_text=True)
        report = price_list_service.import_price_list_csv(g.actor, price_list_id, csv_text)
        return success(report)
    except UnicodeDecodeError:
        return failure(ValidationError("CSV file must be UTF-8 encoded"))
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to import price list")
        return server_error()
