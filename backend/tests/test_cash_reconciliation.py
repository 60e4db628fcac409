# Overview: Pytest coverage for cash collection and change-to-wallet credits.

import pytest

from fulfillment.extensions import db
from fulfillment.models import Wallet, WalletLedgerEntry
from fulfillment.services import cash_service, order_service, wallet_service
from fulfillment.services.errors import (
    AlreadyCreditedError,
    IllegalTransitionError,
    InvalidAmountError,
    OrderTerminalError,
)


@pytest.fixture
def order_250(make_order):
    """Order totalling 250.00: 2 x 100.00 plus 50.00 delivery."""
    return make_order(delivery_charge_cents=5000)


def _cashback_entries(order_id):
    return (
        db.session.query(WalletLedgerEntry)
        .filter_by(source_order_id=order_id, entry_type="cashback")
        .all()
    )


def _change_entries(order_id):
    return (
        db.session.query(WalletLedgerEntry)
        .filter_by(reference=cash_service.change_reference(order_id))
        .all()
    )


class TestChangeDue:
    @pytest.mark.parametrize("final,collected,expected", [
        (25000, 30000, 5000),
        (25000, 25000, 0),
        (25000, 20000, 0),
        (25000, None, 0),
    ])
    def test_compute_change_due(self, final, collected, expected):
        assert cash_service.compute_change_due(final, collected) == expected


class TestRecordCash:
    def test_record_cash_reports_change(self, db_session, order_250):
        result = cash_service.record_cash_collected(order_250.id, 30000)

        assert result["change_due_cents"] == 5000
        order = result["order"]
        assert order.collected_amount_cents == 30000
        assert order.collected_at is not None
        assert order.status == "pending"

    def test_record_cash_moves_no_money(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        assert db.session.query(WalletLedgerEntry).count() == 0

    def test_negative_amount(self, db_session, order_250):
        with pytest.raises(InvalidAmountError):
            cash_service.record_cash_collected(order_250.id, -1)

    def test_mark_delivered(self, db_session, make_order):
        order = make_order(order_type="pickup")
        result = cash_service.record_cash_collected(order.id, 20000, mark_delivered=True)
        assert result["order"].status == "delivered"
        assert result["change_due_cents"] == 0

    def test_mark_delivered_blocked_by_agent(self, db_session, order_250, agents):
        order_service.assign_agent(order_250.id, agents[0].id)

        with pytest.raises(IllegalTransitionError):
            cash_service.record_cash_collected(order_250.id, 30000, mark_delivered=True)

        order = order_service.get_order(order_250.id)
        assert order.status == "pending"
        assert order.collected_amount_cents is None

    def test_cancelled_order(self, db_session, order_250):
        order_service.cancel_order(order_250.id, "Customer unreachable")
        with pytest.raises(OrderTerminalError):
            cash_service.record_cash_collected(order_250.id, 30000)


class TestChangeToWallet:
    def test_change_credited_once(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)

        order = cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000, "Keep the change")

        assert wallet_service.balance(customer.id) == 5000
        entries = _cashback_entries(order.id)
        assert len(entries) == 1
        assert entries[0].amount_cents == 5000
        assert entries[0].user_id == customer.id
        assert order.change_amount_cents == 5000
        assert order.collected_amount_cents == 25000
        assert order.change_reason == "Keep the change"

    def test_second_credit_rejected(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        with pytest.raises(AlreadyCreditedError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        assert len(_cashback_entries(order_250.id)) == 1
        assert wallet_service.balance(customer.id) == 5000

    def test_record_cash_after_credit_rejected(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        with pytest.raises(AlreadyCreditedError):
            cash_service.record_cash_collected(order_250.id, 40000)
        assert order_service.get_order(order_250.id).collected_amount_cents == 25000

    def test_partial_change(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        order = cash_service.credit_change_to_wallet(order_250.id, customer.id, 2000)

        assert order.change_amount_cents == 2000
        assert wallet_service.balance(customer.id) == 2000

    def test_more_than_change_due(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        with pytest.raises(InvalidAmountError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 5001)
        assert wallet_service.balance(customer.id) == 0

    def test_no_cash_recorded(self, db_session, order_250, customer):
        with pytest.raises(InvalidAmountError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 1000)

    @pytest.mark.parametrize("bad", [0, -500])
    def test_non_positive_amount(self, db_session, order_250, customer, bad):
        cash_service.record_cash_collected(order_250.id, 30000)
        with pytest.raises(InvalidAmountError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, bad)

    def test_cancelled_order(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        order_service.cancel_order(order_250.id, "Refused at door")

        with pytest.raises(OrderTerminalError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)
        assert wallet_service.balance(customer.id) == 0

    def test_works_on_delivered_order(self, db_session, make_order, customer):
        order = make_order(order_type="pickup", delivery_charge_cents=5000)
        cash_service.record_cash_collected(order.id, 30000, mark_delivered=True)

        order = cash_service.credit_change_to_wallet(order.id, customer.id, 5000)
        assert order.status == "delivered"
        assert order.change_amount_cents == 5000

    def test_completes_order_from_existing_ledger_entry(self, db_session, order_250, customer):
        """A change entry written without the order fields is finished, not repeated."""
        cash_service.record_cash_collected(order_250.id, 30000)
        wallet_service.ensure_wallet(customer.id)
        wallet = db.session.query(Wallet).filter_by(user_id=customer.id).first()
        wallet.balance_cents = 5000
        db.session.add(WalletLedgerEntry(
            user_id=customer.id,
            entry_type="cashback",
            amount_cents=5000,
            source_order_id=order_250.id,
            remarks="Change credited to wallet",
            reference=cash_service.change_reference(order_250.id),
        ))
        db.session.commit()

        order = cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        assert order.change_amount_cents == 5000
        assert order.collected_amount_cents == 25000
        assert len(_cashback_entries(order_250.id)) == 1
        assert wallet_service.balance(customer.id) == 5000
        assert wallet_service.replay_balance(customer.id)["in_sync"]

    def test_change_entry_for_another_wallet_blocks_credit(self, db_session, order_250, customer, other_customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        wallet_service.ensure_wallet(other_customer.id)
        wallet = db.session.query(Wallet).filter_by(user_id=other_customer.id).first()
        wallet.balance_cents = 5000
        db.session.add(WalletLedgerEntry(
            user_id=other_customer.id,
            entry_type="cashback",
            amount_cents=5000,
            source_order_id=order_250.id,
            reference=cash_service.change_reference(order_250.id),
        ))
        db.session.commit()

        with pytest.raises(AlreadyCreditedError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        assert wallet_service.balance(customer.id) == 0
        assert order_service.get_order(order_250.id).change_amount_cents is None


class TestPromotionalCashback:
    """Ordinary cashback on an order is not mistaken for its change credit."""

    def test_promo_then_change_credit(self, db_session, order_250, customer):
        wallet_service.add_cashback(customer.id, 1000, order_250.id, "Festival offer")
        cash_service.record_cash_collected(order_250.id, 30000)

        order = cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        assert order.change_amount_cents == 5000
        assert order.collected_amount_cents == 25000
        assert wallet_service.balance(customer.id) == 6000
        assert len(_cashback_entries(order_250.id)) == 2
        assert len(_change_entries(order_250.id)) == 1

    def test_promo_after_change_credit(self, db_session, order_250, customer):
        cash_service.record_cash_collected(order_250.id, 30000)
        cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        wallet_service.add_cashback(customer.id, 1000, order_250.id)

        assert wallet_service.balance(customer.id) == 6000
        assert order_service.get_order(order_250.id).change_amount_cents == 5000
        assert len(_change_entries(order_250.id)) == 1
        assert wallet_service.replay_balance(customer.id)["in_sync"]


class TestFailureNotifications:
    def test_rejected_credit_is_reported(self, db_session, order_250, customer, notifications):
        cash_service.record_cash_collected(order_250.id, 30000)
        cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        with pytest.raises(AlreadyCreditedError):
            cash_service.credit_change_to_wallet(order_250.id, customer.id, 5000)

        failures = [n for n in notifications if not n["success"]]
        assert len(failures) == 1
        assert failures[0]["kind"] == "wallet.change_credited"
        assert failures[0]["error"] == "AlreadyCreditedError"
        assert failures[0]["details"]["order_id"] == order_250.id
