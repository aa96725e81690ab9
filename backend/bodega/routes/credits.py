# Overview: Flask API routes for credits and collections.

"""Credit ledger API routes"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import BodegaError, ValidationError
from ..models import Payment
from ..services import credit_availability_service, credit_service, sales_service
from ..validation import ModelValidationPolicy, query_date, query_int, validate_payload


credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")
clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"amount", "method", "notes"},
    required_on_create={"amount"},
)


@credits_bp.get("")
@require_auth
def list_credits_route():
    try:
        credits = credit_service.list_credits(
            client_id=query_int(request.args, "client_id"),
            status=request.args.get("status"),
            date_from=query_date(request.args, "date_from"),
            date_to=query_date(request.args, "date_to"),
            limit=query_int(request.args, "limit", default=100, minimum=1, maximum=1000),
        )
        return jsonify({"credits": [c.to_dict() for c in credits]}), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list credits")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.get("/summary")
@require_auth
def collections_summary_route():
    try:
        return jsonify(credit_service.get_collections_summary()), 200
    except Exception:
        current_app.logger.exception("Failed to build collections summary")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.get("/due-soon")
@require_auth
def credits_due_soon_route():
    """Active credits due within ?days= days (default 7)."""
    try:
        days = query_int(request.args, "days", default=7, minimum=1, maximum=credit_service.MAX_TERM_DAYS)
        return jsonify(credit_service.list_credits_due_soon(days)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list credits due soon")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.get("/overdue-report")
@require_auth
@require_role("admin", "manager")
def overdue_report_route():
    try:
        return jsonify(credit_service.get_overdue_report()), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build overdue report")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.get("/<int:credit_id>")
@require_auth
def get_credit_route(credit_id: int):
    try:
        return jsonify(credit_service.get_credit(credit_id)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get credit")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.post("/<int:credit_id>/payments")
@require_auth
def apply_payment_route(credit_id: int):
    """
    Apply an installment.

    Body: {"amount": "150.00", "method": "CASH", "notes": "..."}
    """
    try:
        patch = validate_payload(
            model=Payment,
            payload=request.get_json(silent=True),
            policy=PAYMENT_POLICY,
        )
        result = credit_service.apply_payment(
            credit_id,
            patch["amount"],
            method=patch.get("method") or "CASH",
            notes=patch.get("notes"),
            operator_id=g.current_user.id,
        )
        return jsonify(result.to_dict()), 201

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return jsonify({"error": "Internal server error"}), 500


@credits_bp.post("/mark-overdue")
@require_auth
@require_role("admin", "manager")
def mark_overdue_route():
    """
    Run the overdue sweep now.

    Body (optional): {"today": "YYYY-MM-DD"}; defaults to today in the
    business timezone.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload", ["body must be a JSON object"])
        today = query_date(data, "today")
        credits = credit_service.mark_overdue(today)
        return jsonify({
            "marked": len(credits),
            "credits": [c.to_dict() for c in credits],
        }), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark overdue credits")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>/credit")
@require_auth
def client_credit_route(client_id: int):
    """Credit availability report for a client."""
    try:
        return jsonify(credit_availability_service.get_client_credit_report(client_id)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build client credit report")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>/sales")
@require_auth
def client_sales_route(client_id: int):
    """Sales history and totals for a client."""
    try:
        limit = query_int(request.args, "limit", default=100, minimum=1, maximum=1000)
        return jsonify(sales_service.get_client_sales(client_id, limit=limit)), 200

    except BodegaError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build client sales report")
        return jsonify({"error": "Internal server error"}), 500
