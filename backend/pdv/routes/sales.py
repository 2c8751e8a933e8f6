# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/pdv/routes/sales.py
"""
Sales API Routes

DESIGN:
- The register sends the whole cart at commit time; the server rebuilds a
  Cart from current product prices and commits it in one call
- Commit returns 201 even when follow-ups failed; the warnings say which
- Cancel restores stock and leaves the cash ledger untouched
"""

from flask import Blueprint, request, jsonify, current_app

from ..cart import Cart
from ..errors import PdvError, ValidationError
from ..money import Discount, format_currency
from ..services import cancellation_service, sales_service
from ..services.concurrency import Deadline
from ..services.inventory_service import get_product


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _request_deadline() -> Deadline | None:
    seconds = current_app.config.get("PDV_COMMIT_TIMEOUT_SECONDS")
    if seconds is None:
        return None
    return Deadline.after(float(seconds))


def _require_int(data: dict, key: str, *, required: bool = True) -> int | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer", details={key: value})
    return value


def _build_cart(lines: list) -> Cart:
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")
    cart = Cart()
    for raw in lines:
        if not isinstance(raw, dict):
            raise ValidationError("Each line must be an object")
        product_id = _require_int(raw, "product_id")
        quantity = _require_int(raw, "quantity", required=False)
        product = get_product(product_id)
        if not product.is_active:
            raise ValidationError("Product is inactive", details={"product_id": product_id})
        cart.add_line(product, 1 if quantity is None else quantity)
    return cart


def _sale_detail(sale_id: int) -> dict:
    sale = sales_service.get_sale(sale_id)
    symbol = current_app.config.get("PDV_CURRENCY_SYMBOL", "R$")
    result = sale.to_dict()
    result["net_total_display"] = format_currency(sale.net_total_cents, symbol)
    result["lines"] = [line.to_dict() for line in sales_service.get_sale_lines(sale_id)]
    return result


@sales_bp.post("")
@sales_bp.post("/")
def commit_sale_route():
    """
    Commit a sale.

    Request body:
    {
        "operator_id": 1,
        "session_id": 3,
        "payment_method": "CASH",
        "customer_id": 7,                                  (optional)
        "discount": {"type": "PERCENTAGE", "percent": "10"}, (optional)
        "lines": [{"product_id": 1, "quantity": 2}]
    }

    Returns 201 with {sale, warnings}.
    """
    try:
        data = request.get_json(silent=True) or {}

        operator_id = _require_int(data, "operator_id")
        session_id = _require_int(data, "session_id")
        customer_id = _require_int(data, "customer_id", required=False)
        discount = Discount.from_payload(data.get("discount"))
        cart = _build_cart(data.get("lines") or [])

        summary = sales_service.commit_sale(
            cart,
            data.get("payment_method"),
            operator_id,
            session_id,
            discount=discount,
            customer_id=customer_id,
            deadline=_request_deadline(),
        )

        return jsonify({
            "sale": _sale_detail(summary.sale_id),
            "summary": summary.to_dict(),
            "warnings": [w.to_dict() for w in summary.warnings],
        }), 201

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Sale with its lines."""
    try:
        return jsonify({"sale": _sale_detail(sale_id)}), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """
    Cancel a committed sale.

    Request body (optional):
    {
        "user_id": 1,
        "reason": "Customer gave up"
    }

    A 503 with details.failures means some lines could not be restored;
    the sale is still COMPLETED and the request can be repeated.
    """
    try:
        data = request.get_json(silent=True) or {}
        user_id = _require_int(data, "user_id", required=False)
        reason = data.get("reason")

        summary = cancellation_service.cancel_sale(
            sale_id,
            user_id=user_id,
            reason=reason,
            deadline=_request_deadline(),
        )

        return jsonify({
            "sale": _sale_detail(sale_id),
            "restored": summary.restored,
            "warnings": [w.to_dict() for w in summary.warnings],
        }), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reconcile")
def reconcile_sale_route(sale_id: int):
    """Re-apply missing stock and cash follow-ups of a committed sale."""
    try:
        data = request.get_json(silent=True) or {}
        user_id = _require_int(data, "user_id", required=False)

        summary = sales_service.reconcile_sale(sale_id, user_id=user_id)

        return jsonify({"reconciliation": summary.to_dict()}), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile sale")
        return jsonify({"error": "Internal server error"}), 500
