# Overview: Flask API routes for wallet operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import wallet_service
from ..services.errors import FulfillmentError


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


def _error(e: FulfillmentError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


@wallets_bp.get("/<int:user_id>")
def get_wallet_route(user_id: int):
    """Balance plus the most recent transactions."""
    try:
        return jsonify(wallet_service.get_wallet_summary(user_id)), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/<int:user_id>/transactions")
def list_transactions_route(user_id: int):
    try:
        limit = request.args.get("limit", type=int)
        entries = wallet_service.list_transactions(user_id, limit)
        return jsonify({"user_id": user_id, "transactions": [e.to_dict() for e in entries]}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list wallet transactions")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:user_id>/credit")
def credit_route(user_id: int):
    """
    Request body:
    {
        "amount_cents": 5000,
        "type": "credit",  (credit, refund, cashback)
        "source_order_id": 12,  (optional)
        "remarks": "Wallet top-up"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required"}), 400

        entry = wallet_service.credit(
            user_id,
            data.get("amount_cents"),
            data.get("source_order_id"),
            data.get("remarks"),
            entry_type=data.get("type", wallet_service.ENTRY_CREDIT),
        )
        return jsonify({"entry": entry.to_dict(), "balance_cents": wallet_service.balance(user_id)}), 201

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to credit wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:user_id>/debit")
def debit_route(user_id: int):
    try:
        data = request.get_json() or {}
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required"}), 400

        entry = wallet_service.debit(
            user_id,
            data.get("amount_cents"),
            data.get("source_order_id"),
            data.get("remarks"),
        )
        return jsonify({"entry": entry.to_dict(), "balance_cents": wallet_service.balance(user_id)}), 201

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to debit wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/<int:user_id>/replay")
def replay_route(user_id: int):
    """Compare the cached balance with a full ledger replay."""
    try:
        return jsonify(wallet_service.replay_balance(user_id)), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to replay wallet ledger")
        return jsonify({"error": "Internal server error"}), 500
