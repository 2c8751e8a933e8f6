# Overview: Flask API routes for cash session operations; parses input and returns JSON responses.

# backend/pdv/routes/cash_sessions.py
"""
Cash Session API Routes

WHY: Operator accountability for the cash drawer.

DESIGN:
- Session lifecycle: open -> close (immutable once closed)
- Manual movements: supply, withdrawal, expense
- Amounts accepted as integer cents ("*_cents") or as operator-typed
  strings ("10,50", "R$ 1.234,56")
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PdvError, ValidationError
from ..money import format_currency, parse_amount, parse_cents
from ..services import cash_session_service


cash_sessions_bp = Blueprint("cash_sessions", __name__, url_prefix="/api/cash-sessions")


def _amount_from(data: dict, key: str, *, required: bool = True) -> int | None:
    """Read `<key>_cents` (strict) or `<key>` (localized) from a payload."""
    if data.get(f"{key}_cents") is not None:
        return parse_cents(data[f"{key}_cents"])
    if data.get(key) is not None:
        return parse_amount(data[key])
    if required:
        raise ValidationError(f"{key}_cents is required")
    return None


def _int_field(data: dict, key: str, *, required: bool = True) -> int | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer", details={key: value})
    return value


@cash_sessions_bp.post("")
@cash_sessions_bp.post("/")
def open_session_route():
    """
    Open a cash session.

    Request body:
    {
        "store_id": 1,
        "operator_id": 2,
        "opening_balance_cents": 10000   (or "opening_balance": "100,00")
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        store_id = _int_field(data, "store_id")
        operator_id = _int_field(data, "operator_id")
        opening = _amount_from(data, "opening_balance", required=False) or 0

        session = cash_session_service.open_session(store_id, operator_id, opening)

        return jsonify({"session": session.to_dict()}), 201

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.get("/open")
def get_open_session_route():
    """Current OPEN session for ?operator_id= (optionally &store_id=)."""
    operator_id = request.args.get("operator_id", type=int)
    store_id = request.args.get("store_id", type=int)
    if not operator_id:
        return jsonify({"error": "operator_id required"}), 400

    try:
        session = cash_session_service.get_open_session(operator_id, store_id)
        if session is None:
            return jsonify({"error": "No open cash session"}), 404
        return jsonify({"session": session.to_dict()}), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.get("/<int:session_id>")
def session_summary_route(session_id: int):
    """
    Session summary.

    Returns:
    - Session details
    - Running balance (raw and formatted)
    - Totals per movement kind and per payment method
    - Sale counts and variance
    """
    try:
        summary = cash_session_service.get_session_summary(session_id)
        symbol = current_app.config.get("PDV_CURRENCY_SYMBOL", "R$")
        summary["running_balance_display"] = format_currency(summary["running_balance_cents"], symbol)
        return jsonify(summary), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build cash session summary")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.get("/<int:session_id>/movements")
def list_movements_route(session_id: int):
    try:
        cash_session_service.get_session(session_id)
        movements = cash_session_service.list_movements(session_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list cash movements")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/<int:session_id>/movements")
def record_movement_route(session_id: int):
    """
    Record a manual movement.

    Request body:
    {
        "kind": "MANUAL_CREDIT" | "MANUAL_DEBIT" | "EXPENSE",
        "description": "Change float",
        "amount_cents": 5000            (or "amount": "50,00"),
        "user_id": 2                     (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        amount = _amount_from(data, "amount")
        user_id = _int_field(data, "user_id", required=False)

        movement = cash_session_service.record_manual_movement(
            session_id,
            data.get("kind"),
            data.get("description"),
            amount,
            user_id=user_id,
        )

        return jsonify({
            "movement": movement.to_dict(),
            "running_balance_cents": cash_session_service.running_balance(session_id),
        }), 201

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/<int:session_id>/close")
def close_session_route(session_id: int):
    """
    Close a cash session.

    Request body:
    {
        "counted_closing_balance_cents": 15000   (or "counted_closing_balance": "150,00"),
        "notes": "..."                            (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        counted = _amount_from(data, "counted_closing_balance")
        session = cash_session_service.close_session(session_id, counted, data.get("notes"))

        return jsonify({"session": session.to_dict()}), 200

    except PdvError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500
