# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import BodegaError, ValidationError
from ..services import sales_service
from ..validation import query_date_or_datetime, query_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload", ["body must be a JSON object"])

    client_id = data.get("client_id")
    if isinstance(client_id, bool) or not isinstance(client_id, int):
        raise ValidationError("Invalid sale", ["client_id must be an integer"])
    return data


@sales_bp.post("/cash")
@require_auth
def create_cash_sale_route():
    """
    Create a cash sale.

    Body: {"client_id": 1, "lines": [{"product_id": 2, "quantity": 3}],
           "discount": {"type": "PERCENT", "value": 10}}
    """
    try:
        data = _sale_payload()
        result = sales_service.create_cash_sale(
            data["client_id"],
            g.current_user.id,
            data.get("lines"),
            discount=data.get("discount"),
        )
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create cash sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/credit")
@require_auth
def create_credit_sale_route():
    """Create a credit sale; same body as /cash plus optional term_days."""
    try:
        data = _sale_payload()
        result = sales_service.create_credit_sale(
            data["client_id"],
            g.current_user.id,
            data.get("lines"),
            term_days=data.get("term_days"),
            discount=data.get("discount"),
        )
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create credit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
@require_auth
@require_role("admin", "manager")
def void_sale_route(sale_id: int):
    """
    Void a sale, returning stock and cancelling its credit.

    Available to: admin, manager
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload", ["body must be a JSON object"])
        result = sales_service.void_sale(sale_id, data.get("reason"), g.current_user.id)
        return jsonify(result.to_dict()), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            client_id=query_int(request.args, "client_id"),
            operator_id=query_int(request.args, "operator_id"),
            sale_type=request.args.get("sale_type"),
            status=request.args.get("status"),
            date_from=query_date_or_datetime(request.args, "date_from"),
            date_to=query_date_or_datetime(request.args, "date_to"),
            limit=query_int(request.args, "limit", default=100, minimum=1, maximum=1000),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/summary")
@require_auth
def sales_summary_route():
    try:
        summary = sales_service.get_sales_summary(
            date_from=query_date_or_datetime(request.args, "date_from"),
            date_to=query_date_or_datetime(request.args, "date_to"),
        )
        return jsonify(summary), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale(sale_id)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500
