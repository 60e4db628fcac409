# Overview: Pytest coverage for order status transitions and their guards.

"""
Order status transition tests.

Covers the forward-only status flow, cancellation, terminal immutability
and the agent guards on out_for_delivery / delivered.
"""

import pytest

from fulfillment.extensions import db
from fulfillment.services import order_service
from fulfillment.services.errors import (
    IllegalTransitionError,
    NotFoundError,
    OrderTerminalError,
)


class TestForwardFlow:
    def test_new_order_is_pending(self, db_session, make_order):
        order = make_order()
        assert order.status == "pending"
        assert order.order_number.startswith("ORD-")

    def test_step_through_happy_path_without_agent(self, db_session, make_order):
        order = make_order(order_type="pickup")
        for status in ["confirmed", "preparing", "ready", "picked_up"]:
            order = order_service.transition(order.id, status)
            assert order.status == status

        order = order_service.transition(order.id, "delivered")
        assert order.status == "delivered"
        assert order.delivered_at is not None

    def test_forward_skip_is_allowed(self, db_session, make_order):
        """A dine-in order can jump from ready to delivered."""
        order = make_order(order_type="dine_in")
        order_service.transition(order.id, "ready")
        order = order_service.transition(order.id, "delivered")
        assert order.status == "delivered"

    def test_backward_move_rejected(self, db_session, make_order):
        order = make_order()
        order_service.transition(order.id, "preparing")

        with pytest.raises(IllegalTransitionError) as exc_info:
            order_service.transition(order.id, "confirmed")

        assert exc_info.value.details["current_status"] == "preparing"
        assert exc_info.value.details["target_status"] == "confirmed"
        assert order_service.get_order(order.id).status == "preparing"

    def test_same_status_rejected(self, db_session, make_order):
        order = make_order()
        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "pending")

    def test_unknown_status_rejected(self, db_session, make_order):
        order = make_order()
        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "teleported")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.transition(99999, "confirmed")

    def test_updated_at_strictly_increases(self, db_session, make_order):
        order = make_order()
        first = order.updated_at
        order = order_service.transition(order.id, "confirmed")
        assert order.updated_at > first


class TestTerminalStates:
    @pytest.mark.parametrize("target", ["confirmed", "delivered", "cancelled"])
    def test_delivered_is_final(self, db_session, make_order, target):
        order = make_order(order_type="pickup")
        order_service.transition(order.id, "delivered")

        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, target)
        assert order_service.get_order(order.id).status == "delivered"

    def test_cancelled_is_final(self, db_session, make_order):
        order = make_order()
        order_service.cancel_order(order.id, "Customer changed mind")

        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "confirmed")

    def test_cancel_from_any_live_status(self, db_session, make_order):
        order = make_order()
        order_service.transition(order.id, "ready")
        order = order_service.cancel_order(order.id, "Kitchen closed")
        assert order.status == "cancelled"
        assert order.cancellation_reason == "Kitchen closed"

    def test_assign_on_terminal_order(self, db_session, make_order, agents):
        order = make_order(order_type="pickup")
        order_service.transition(order.id, "delivered")

        with pytest.raises(OrderTerminalError):
            order_service.assign_agent(order.id, agents[0].id)

    def test_rejected_transition_leaves_order_untouched(self, db_session, make_order):
        order = make_order()
        order_service.cancel_order(order.id, "Duplicate")
        before = order_service.get_order(order.id).to_dict()

        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "preparing")

        db.session.expire_all()
        assert order_service.get_order(order.id).to_dict() == before


class TestAgentGuards:
    def test_out_for_delivery_requires_agent(self, db_session, make_order):
        order = make_order()
        order_service.transition(order.id, "picked_up")

        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "out_for_delivery")

    def test_out_for_delivery_with_assigned_agent(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)
        order_service.transition(order.id, "picked_up")

        order = order_service.transition(order.id, "out_for_delivery")
        assert order.status == "out_for_delivery"

    def test_delivered_requires_agent_delivered(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)
        order_service.transition(order.id, "out_for_delivery")

        with pytest.raises(IllegalTransitionError) as exc_info:
            order_service.transition(order.id, "delivered")
        assert exc_info.value.details["agent_status"] == "assigned"

        order_service.update_agent_status(order.id, "delivered")
        order = order_service.transition(order.id, "delivered")
        assert order.status == "delivered"

    def test_delivery_releases_agent(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)
        assert db.session.get(type(agents[0]), agents[0].id).availability == "busy"

        order_service.update_agent_status(order.id, "delivered")
        order_service.transition(order.id, "delivered")
        assert db.session.get(type(agents[0]), agents[0].id).availability == "online"

    def test_cancel_marks_agent_cancelled(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)
        order = order_service.cancel_order(order.id, "Address unreachable")

        assert order.agent_status == "cancelled"
        assert db.session.get(type(agents[0]), agents[0].id).availability == "online"


class TestAgentStatus:
    def test_agent_flow_forward_only(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)

        order = order_service.update_agent_status(order.id, "accepted")
        assert order.agent_status == "accepted"
        order = order_service.update_agent_status(order.id, "picked_up")
        assert order.agent_status == "picked_up"

        with pytest.raises(IllegalTransitionError):
            order_service.update_agent_status(order.id, "accepted")

    def test_agent_status_without_agent(self, db_session, make_order):
        order = make_order()
        with pytest.raises(IllegalTransitionError):
            order_service.update_agent_status(order.id, "accepted")

    def test_agent_status_on_terminal_order(self, db_session, make_order, agents):
        order = make_order()
        order_service.assign_agent(order.id, agents[0].id)
        order_service.cancel_order(order.id, "No stock")

        with pytest.raises(OrderTerminalError):
            order_service.update_agent_status(order.id, "accepted")


class TestNotifications:
    def test_transition_notifies(self, db_session, make_order, notifications):
        order = make_order()
        order_service.transition(order.id, "confirmed")

        kinds = [n["kind"] for n in notifications]
        assert "order.created" in kinds
        assert "order.status" in kinds

    def test_failing_sink_does_not_break_operation(self, db_session, make_order):
        from fulfillment.services import notification_service

        def broken(kind, message, success, context):
            raise RuntimeError("toast service down")

        notification_service.register_sink(broken)
        try:
            order = make_order()
            order = order_service.transition(order.id, "confirmed")
        finally:
            notification_service.unregister_sink(broken)

        assert order.status == "confirmed"

    def test_rejected_transition_is_reported(self, db_session, make_order, notifications):
        order = make_order()
        order_service.transition(order.id, "preparing")

        with pytest.raises(IllegalTransitionError):
            order_service.transition(order.id, "confirmed")

        failure = notifications[-1]
        assert failure["kind"] == "order.status"
        assert failure["success"] is False
        assert failure["error"] == "IllegalTransitionError"
        assert failure["details"]["target_status"] == "confirmed"
