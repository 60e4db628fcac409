# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/fulfillment/routes/orders.py
"""
Order Operations API Routes

Status transitions, agent (re)assignment, in-flight item edits, cash
reconciliation and the read-only timeline. Every mutation returns the
authoritative post-mutation order snapshot.

Operator identity is passed as an optional "actor_id" in the body; how
operators authenticate is handled in front of this service.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import (
    cash_service,
    order_item_service,
    order_service,
    timeline_service,
    wallet_service,
)
from ..services.errors import FulfillmentError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _error(e: FulfillmentError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


# =============================================================================
# ORDER CREATION & QUERIES
# =============================================================================

@orders_bp.post("/")
def create_order_route():
    """
    Create a pending order.

    Request body:
    {
        "provider_id": 1,
        "customer_id": 7,  (optional)
        "order_type": "delivery",  (delivery, pickup, dine_in)
        "items": [{"catalog_item_id": 3, "quantity": 2, "addon_ids": [5], "notes": ""}],
        "discount_cents": 0,
        "delivery_charge_cents": 3000,
        "surcharge_cents": 0
    }
    """
    try:
        data = request.get_json() or {}
        provider_id = data.get("provider_id")
        if not provider_id:
            return jsonify({"error": "provider_id required"}), 400

        order = order_service.create_order(
            provider_id,
            data.get("customer_id"),
            data.get("items") or [],
            discount_cents=data.get("discount_cents", 0),
            delivery_charge_cents=data.get("delivery_charge_cents", 0),
            surcharge_cents=data.get("surcharge_cents", 0),
            order_type=data.get("order_type", "delivery"),
            actor_id=data.get("actor_id"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "change_due_cents": cash_service.get_change_due(order),
        }), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/timeline")
def get_timeline_route(order_id: int):
    """Ordered event list (placed, assignments, reassignments, milestones)."""
    try:
        events = timeline_service.get_order_timeline(order_id)
        return jsonify({"order_id": order_id, "events": [ev.to_dict() for ev in events]}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to build order timeline")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/reassignments")
def get_reassignments_route(order_id: int):
    try:
        order_service.get_order(order_id)
        events = order_service.get_reassignments(order_id)
        return jsonify({
            "order_id": order_id,
            "count": len(events),
            "reassignments": [ev.to_dict() for ev in events],
        }), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load reassignments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATE MACHINE
# =============================================================================

@orders_bp.post("/<int:order_id>/status")
def transition_route(order_id: int):
    """
    Request body: {"status": "confirmed", "actor_id": 1}

    Returns:
        200: Updated order
        404: Order not found
        409: Illegal transition
    """
    try:
        data = request.get_json() or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.transition(order_id, status, data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
def cancel_route(order_id: int):
    try:
        data = request.get_json() or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400

        order = order_service.cancel_order(order_id, reason, data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/agent")
def assign_agent_route(order_id: int):
    """
    Assign or reassign the delivery agent.

    Request body:
    {
        "agent_id": 4,
        "reason": "vehicle breakdown",  (used for reassignments)
        "note": "...",  (optional)
        "idempotency_key": "...",  (optional, for safe retries)
        "actor_id": 1
    }
    """
    try:
        data = request.get_json() or {}
        agent_id = data.get("agent_id")
        if not agent_id:
            return jsonify({"error": "agent_id required"}), 400

        order = order_service.assign_agent(
            order_id,
            agent_id,
            data.get("reason"),
            note=data.get("note"),
            actor_id=data.get("actor_id"),
            idempotency_key=data.get("idempotency_key"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to assign agent")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/agent-status")
def agent_status_route(order_id: int):
    try:
        data = request.get_json() or {}
        agent_status = data.get("agent_status")
        if not agent_status:
            return jsonify({"error": "agent_status required"}), 400

        order = order_service.update_agent_status(order_id, agent_status, data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update agent status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEM EDITING
# =============================================================================

@orders_bp.post("/<int:order_id>/items")
def add_item_route(order_id: int):
    """Request body: {"catalog_item_id": 3, "quantity": 1, "addon_ids": [], "notes": ""}"""
    try:
        data = request.get_json() or {}
        if not data.get("catalog_item_id"):
            return jsonify({"error": "catalog_item_id required"}), 400

        order = order_item_service.add_item(order_id, data, data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 201

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
def update_item_route(order_id: int, item_id: int):
    try:
        data = request.get_json() or {}
        if "quantity" not in data:
            return jsonify({"error": "quantity required"}), 400

        order = order_item_service.update_quantity(order_id, item_id, data.get("quantity"), data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
def remove_item_route(order_id: int, item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_item_service.remove_item(order_id, item_id, data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/recalculate")
def recalculate_route(order_id: int):
    try:
        order = order_item_service.recalculate_order_total(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to recalculate order total")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CASH & WALLET
# =============================================================================

@orders_bp.post("/<int:order_id>/cash")
def record_cash_route(order_id: int):
    """
    Request body: {"collected_amount_cents": 30000, "mark_delivered": false}

    Response includes change_due_cents.
    """
    try:
        data = request.get_json() or {}
        collected = data.get("collected_amount_cents")
        if collected is None:
            return jsonify({"error": "collected_amount_cents required"}), 400

        result = cash_service.record_cash_collected(
            order_id,
            collected,
            mark_delivered=bool(data.get("mark_delivered", False)),
            actor_id=data.get("actor_id"),
        )
        return jsonify({
            "order": result["order"].to_dict(),
            "change_due_cents": result["change_due_cents"],
        }), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to record cash collection")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/change-to-wallet")
def change_to_wallet_route(order_id: int):
    """Request body: {"user_id": 7, "change_amount_cents": 5000, "reason": "change credited"}"""
    try:
        data = request.get_json() or {}
        user_id = data.get("user_id")
        amount = data.get("change_amount_cents")
        if not all([user_id, amount]):
            return jsonify({"error": "user_id and change_amount_cents required"}), 400

        order = cash_service.credit_change_to_wallet(
            order_id,
            user_id,
            amount,
            data.get("reason"),
            actor_id=data.get("actor_id"),
        )
        return jsonify({
            "order": order.to_dict(),
            "wallet_balance_cents": wallet_service.balance(user_id),
        }), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to credit change to wallet")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/wallet-payment")
def wallet_payment_route(order_id: int):
    try:
        data = request.get_json() or {}
        user_id = data.get("user_id")
        if not user_id:
            return jsonify({"error": "user_id required"}), 400

        result = wallet_service.pay_order_from_wallet(order_id, user_id)
        entry = result["entry"]
        return jsonify({
            "wallet_used_cents": result["wallet_used_cents"],
            "remaining_cents": result["remaining_cents"],
            "entry": entry.to_dict() if entry else None,
        }), 200

    except FulfillmentError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to pay order from wallet")
        return jsonify({"error": "Internal server error"}), 500
