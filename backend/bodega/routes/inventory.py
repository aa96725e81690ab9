# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

"""Inventory API routes"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import BodegaError, ValidationError
from ..models import InventoryMovement
from ..services import inventory_service
from ..validation import ModelValidationPolicy, query_date_or_datetime, query_int, validate_payload


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "reason", "reference", "occurred_at"},
    required_on_create={"quantity", "reason"},
)


def _movement_route(record, product_id: int):
    patch = validate_payload(
        model=InventoryMovement,
        payload=request.get_json(silent=True),
        policy=MOVEMENT_POLICY,
    )
    return record(
        product_id,
        patch["quantity"],
        patch["reason"],
        reference=patch.get("reference"),
        occurred_at=patch.get("occurred_at"),
        user_id=g.current_user.id,
    )


@inventory_bp.post("/products/<int:product_id>/in")
@require_auth
@require_role("admin", "manager")
def record_in_route(product_id: int):
    """
    Receive stock.

    Body: {"quantity": 10, "reason": "Purchase", "reference": "PO-12"}
    """
    try:
        result = _movement_route(inventory_service.record_in, product_id)
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock in")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products/<int:product_id>/out")
@require_auth
@require_role("admin", "manager")
def record_out_route(product_id: int):
    """Take stock out (breakage, internal use...); never below zero."""
    try:
        result = _movement_route(inventory_service.record_out, product_id)
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock out")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products/<int:product_id>/adjust")
@require_auth
@require_role("admin", "manager")
def adjust_route(product_id: int):
    """
    Set stock to a counted quantity.

    Body: {"target_quantity": 12, "reason": optional, "reference": optional}
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload", ["body must be a JSON object"])
        if "target_quantity" not in data:
            raise ValidationError("Invalid payload", ["target_quantity is required"])

        result = inventory_service.adjust_to(
            product_id,
            data["target_quantity"],
            reason=data.get("reason"),
            reference=data.get("reference"),
            occurred_at=data.get("occurred_at"),
            user_id=g.current_user.id,
        )
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/movements")
@require_auth
def list_movements_route(product_id: int):
    try:
        limit = query_int(request.args, "limit", default=100, minimum=1, maximum=1000)
        movements = inventory_service.list_movements(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/stats")
@require_auth
def movement_stats_route(product_id: int):
    try:
        return jsonify(inventory_service.get_movement_stats(product_id)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get movement stats")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/kardex")
@require_auth
def kardex_route(product_id: int):
    """Query: date_from, date_to (inclusive; YYYY-MM-DD or ISO-8601 datetime)."""
    try:
        kardex = inventory_service.get_kardex(
            product_id,
            date_from=query_date_or_datetime(request.args, "date_from"),
            date_to=query_date_or_datetime(request.args, "date_to"),
        )
        return jsonify(kardex), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build kardex")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements/report")
@require_auth
@require_role("admin", "manager")
def movement_report_route():
    """Query: date_from, date_to (both required, inclusive)."""
    try:
        report = inventory_service.get_movement_report(
            query_date_or_datetime(request.args, "date_from"),
            query_date_or_datetime(request.args, "date_to"),
        )
        return jsonify(report), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build movement report")
        return jsonify({"error": "Internal server error"}), 500
