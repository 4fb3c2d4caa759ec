# Overview: Flask API routes for unified product pricing and the legacy-pricing migration.

"""
Unified Pricing API Routes

SECURITY:
- Non-admins manage pricing for their own company only
- Migration run / rollback / verify require the admin role
"""

from flask import Blueprint, request, g, current_app

from ..errors import AppError, ValidationError, NotFoundError
from ..extensions import db
from ..models import Product
from ..decorators import require_auth, require_admin
from ..responses import success, failure, server_error, json_body, query_int
from ..services import pricing_service, pricing_migration_service
from ..time_utils import parse_iso_date


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")

_PRICING_FIELDS = (
    "pricing_type",
    "price_cents",
    "currency",
    "min_quantity",
    "max_quantity",
    "discount_percentage",
    "effective_from",
    "effective_to",
    "metadata",
)


@pricing_bp.get("")
@require_auth
def list_pricing_route():
    """
    List pricing rows.

    Query params: company_id, product_id, pricing_type, active_only, page, limit
    """
    try:
        rows, pagination = pricing_service.list_pricing(
            g.actor,
            company_id=query_int("company_id"),
            product_id=query_int("product_id"),
            pricing_type=request.args.get("pricing_type"),
            active_only=request.args.get("active_only", "").lower() in ("1", "true", "yes"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return success([p.to_dict() for p in rows], pagination=pagination)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to list pricing")
        return server_error()


@pricing_bp.post("")
@require_auth
def create_pricing_route():
    try:
        data = json_body()
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        pricing = pricing_service.create_pricing(
            g.actor,
            product_id=data["product_id"],
            company_id=data.get("company_id"),
            reason=data.get("reason"),
            **{k: data[k] for k in _PRICING_FIELDS if k in data},
        )
        return success(pricing.to_dict(), 201)
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to create pricing")
        return server_error()


@pricing_bp.get("/resolve")
@require_auth
def resolve_price_route():
    """
    Unit price a buyer would pay.

    Query params: product_id (required), quantity (default 1), company_id
    (admin only; defaults to the caller's company), date (YYYY-MM-DD)
    """
    try:
        product_id = query_int("product_id")
        if product_id is None:
            raise ValidationError("product_id is required")
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")
        quantity = query_int("quantity") or 1
        company_id = query_int("company_id") if g.actor.is_admin else None
        if company_id is None:
            company_id = g.actor.company_id
        try:
            on_date = parse_iso_date(request.args.get("date"))
        except ValueError:
            raise ValidationError("date must be an ISO date")

        unit_price = pricing_service.resolve_unit_price(product, company_id, quantity, on_date)
        return success({
            "product_id": product.id,
            "company_id": company_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "base_price_cents": product.base_price_cents,
        })
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to resolve price")
        return server_error()


@pricing_bp.get("/<int:pricing_id>")
@require_auth
def get_pricing_route(pricing_id: int):
    try:
        return success(pricing_service.get_pricing(g.actor, pricing_id).to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get pricing")
        return server_error()


@pricing_bp.patch("/<int:pricing_id>")
@require_auth
def update_pricing_route(pricing_id: int):
    try:
        data = json_body()
        pricing = pricing_service.update_pricing(
            g.actor,
            pricing_id,
            reason=data.get("reason"),
            **{k: data[k] for k in _PRICING_FIELDS if k in data},
        )
        return success(pricing.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to update pricing")
        return server_error()


@pricing_bp.delete("/<int:pricing_id>")
@require_auth
def delete_pricing_route(pricing_id: int):
    """Delete a pricing row; its history is kept."""
    try:
        data = json_body()
        pricing_service.delete_pricing(g.actor, pricing_id, reason=data.get("reason"))
        return success(None, message="Pricing deleted")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to delete pricing")
        return server_error()


@pricing_bp.post("/<int:pricing_id>/activate")
@require_auth
def activate_pricing_route(pricing_id: int):
    try:
        data = json_body()
        pricing = pricing_service.set_pricing_active(g.actor, pricing_id, True, reason=data.get("reason"))
        return success(pricing.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to activate pricing")
        return server_error()


@pricing_bp.post("/<int:pricing_id>/deactivate")
@require_auth
def deactivate_pricing_route(pricing_id: int):
    try:
        data = json_body()
        pricing = pricing_service.set_pricing_active(g.actor, pricing_id, False, reason=data.get("reason"))
        return success(pricing.to_dict())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate pricing")
        return server_error()


@pricing_bp.get("/<int:pricing_id>/history")
@require_auth
def pricing_history_route(pricing_id: int):
    try:
        rows = pricing_service.get_pricing_history(g.actor, pricing_id)
        return success([h.to_dict() for h in rows])
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Failed to get pricing history")
        return server_error()


# =============================================================================
# MIGRATION (admin)
# =============================================================================

@pricing_bp.post("/migration")
@require_auth
@require_admin
def run_migration_route():
    """
    Copy legacy price lists and price history into unified pricing.

    Returns:
        200: migration report
        400: already migrated
        500: count mismatch (nothing kept)
    """
    try:
        report = pricing_migration_service.migrate_to_unified_pricing(g.actor.user_id)
        return success(report, message="Pricing migration completed")
    except AppError as e:
        if e.status_code >= 500:
            current_app.logger.error("Pricing migration failed: %s", e.message)
        return failure(e)
    except Exception:
        current_app.logger.exception("Pricing migration failed")
        return server_error()


@pricing_bp.delete("/migration")
@require_auth
@require_admin
def rollback_migration_route():
    try:
        result = pricing_migration_service.rollback_migration()
        return success(result, message="Pricing migration rolled back")
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Pricing migration rollback failed")
        return server_error()


@pricing_bp.get("/migration")
@require_auth
@require_admin
def verify_migration_route():
    try:
        return success(pricing_migration_service.verify_migration())
    except AppError as e:
        return failure(e)
    except Exception:
        current_app.logger.exception("Pricing migration verification failed")
        return server_error()
