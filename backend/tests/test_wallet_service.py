# Overview: Pytest coverage for wallet credits, debits and ledger replay.

"""
Wallet ledger tests.

The ledger is the source of truth: after every operation the balance equals
the sum of the user's entries and never goes below zero.
"""

import pytest

from fulfillment.extensions import db
from fulfillment.models import Wallet, WalletLedgerEntry
from fulfillment.services import order_service, wallet_service
from fulfillment.services.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
    OrderTerminalError,
)


def _assert_consistent(user_id):
    replay = wallet_service.replay_balance(user_id)
    assert replay["in_sync"]
    assert replay["ledger_balance_cents"] == wallet_service.balance(user_id)
    assert replay["ledger_balance_cents"] >= 0


class TestCredit:
    def test_first_credit_creates_wallet(self, db_session, customer):
        entry = wallet_service.credit(customer.id, 10000, remarks="Welcome bonus")

        assert entry.entry_type == "credit"
        assert entry.amount_cents == 10000
        assert wallet_service.balance(customer.id) == 10000
        assert db.session.query(Wallet).filter_by(user_id=customer.id).count() == 1
        _assert_consistent(customer.id)

    def test_credit_types(self, db_session, customer, make_order):
        order = make_order()
        wallet_service.top_up(customer.id, 5000)
        wallet_service.refund_to_wallet(customer.id, 2000, order.id)
        wallet_service.add_cashback(customer.id, 300, order.id)

        types = [e.entry_type for e in wallet_service.list_transactions(customer.id)]
        assert sorted(types) == ["cashback", "credit", "refund"]
        assert wallet_service.balance(customer.id) == 7300
        _assert_consistent(customer.id)

    def test_debit_type_not_accepted_as_credit(self, db_session, customer):
        with pytest.raises(InvalidAmountError):
            wallet_service.credit(customer.id, 100, entry_type="debit")

    @pytest.mark.parametrize("bad", [0, -100, 10.5, True])
    def test_invalid_amounts(self, db_session, customer, bad):
        with pytest.raises(InvalidAmountError):
            wallet_service.credit(customer.id, bad)
        with pytest.raises(InvalidAmountError):
            wallet_service.debit(customer.id, bad)
        assert db.session.query(WalletLedgerEntry).count() == 0

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            wallet_service.credit(424242, 100)
        with pytest.raises(NotFoundError):
            wallet_service.balance(424242)


class TestDebit:
    def test_debit_within_balance(self, db_session, customer):
        wallet_service.credit(customer.id, 10000)
        entry = wallet_service.debit(customer.id, 4000, remarks="Snack")

        assert entry.entry_type == "debit"
        assert entry.amount_cents == -4000
        assert wallet_service.balance(customer.id) == 6000
        _assert_consistent(customer.id)

    def test_debit_exact_balance(self, db_session, customer):
        wallet_service.credit(customer.id, 2500)
        wallet_service.debit(customer.id, 2500)
        assert wallet_service.balance(customer.id) == 0

    def test_overdraw_rejected(self, db_session, customer):
        wallet_service.credit(customer.id, 1000)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            wallet_service.debit(customer.id, 1001)

        assert exc_info.value.details["balance_cents"] == 1000
        assert wallet_service.balance(customer.id) == 1000
        assert db.session.query(WalletLedgerEntry).count() == 1
        _assert_consistent(customer.id)

    def test_debit_on_empty_wallet(self, db_session, customer):
        with pytest.raises(InsufficientBalanceError):
            wallet_service.debit(customer.id, 1)


class TestReplay:
    def test_replay_detects_and_rebuild_fixes_drift(self, db_session, customer):
        wallet_service.credit(customer.id, 8000)
        wallet_service.debit(customer.id, 3000)

        wallet = db.session.query(Wallet).filter_by(user_id=customer.id).first()
        wallet.balance_cents = 999999
        db.session.commit()

        replay = wallet_service.replay_balance(customer.id)
        assert replay["in_sync"] is False
        assert replay["ledger_balance_cents"] == 5000
        assert replay["entry_count"] == 2
        # Reads use the ledger, not the cache
        assert wallet_service.balance(customer.id) == 5000

        wallet = wallet_service.rebuild_balance(customer.id)
        assert wallet.balance_cents == 5000
        _assert_consistent(customer.id)

    def test_list_transactions_newest_first(self, db_session, customer):
        for amount in (100, 200, 300):
            wallet_service.credit(customer.id, amount)

        entries = wallet_service.list_transactions(customer.id)
        assert [e.amount_cents for e in entries] == [300, 200, 100]
        assert len(wallet_service.list_transactions(customer.id, limit=2)) == 2

    def test_summary(self, db_session, customer):
        wallet_service.credit(customer.id, 1500)
        summary = wallet_service.get_wallet_summary(customer.id)

        assert summary["balance_cents"] == 1500
        assert summary["transactions"][0]["type"] == "credit"

    def test_wallets_are_per_user(self, db_session, customer, other_customer):
        wallet_service.credit(customer.id, 1000)
        wallet_service.credit(other_customer.id, 50)

        assert wallet_service.balance(customer.id) == 1000
        assert wallet_service.balance(other_customer.id) == 50


class TestPayOrderFromWallet:
    def test_partial_payment(self, db_session, customer, make_order):
        order = make_order()  # 200.00
        wallet_service.credit(customer.id, 5000)

        result = wallet_service.pay_order_from_wallet(order.id, customer.id)

        assert result["wallet_used_cents"] == 5000
        assert result["remaining_cents"] == 15000
        assert result["entry"].source_order_id == order.id
        assert wallet_service.balance(customer.id) == 0

    def test_full_payment_leaves_surplus(self, db_session, customer, make_order):
        order = make_order()
        wallet_service.credit(customer.id, 50000)

        result = wallet_service.pay_order_from_wallet(order.id, customer.id)
        assert result["wallet_used_cents"] == 20000
        assert result["remaining_cents"] == 0
        assert wallet_service.balance(customer.id) == 30000

    def test_repeat_payment_only_covers_outstanding(self, db_session, customer, make_order):
        order = make_order()
        wallet_service.credit(customer.id, 50000)
        wallet_service.pay_order_from_wallet(order.id, customer.id)

        result = wallet_service.pay_order_from_wallet(order.id, customer.id)
        assert result["wallet_used_cents"] == 0
        assert result["entry"] is None
        assert wallet_service.balance(customer.id) == 30000

    def test_empty_wallet(self, db_session, customer, make_order):
        order = make_order()
        result = wallet_service.pay_order_from_wallet(order.id, customer.id)
        assert result["wallet_used_cents"] == 0
        assert result["remaining_cents"] == 20000

    def test_cancelled_order(self, db_session, customer, make_order):
        order = make_order()
        wallet_service.credit(customer.id, 5000)
        order_service.cancel_order(order.id, "Changed mind")

        with pytest.raises(OrderTerminalError):
            wallet_service.pay_order_from_wallet(order.id, customer.id)
        assert wallet_service.balance(customer.id) == 5000

    def test_refund_against_order_reopens_wallet_share(self, db_session, customer, make_order):
        order = make_order()  # 200.00
        wallet_service.credit(customer.id, 50000)
        wallet_service.pay_order_from_wallet(order.id, customer.id)
        wallet_service.refund_to_wallet(customer.id, 5000, order.id)

        result = wallet_service.pay_order_from_wallet(order.id, customer.id)

        assert result["wallet_used_cents"] == 5000
        assert result["remaining_cents"] == 0
        assert wallet_service.balance(customer.id) == 30000
        _assert_consistent(customer.id)

    def test_unknown_order(self, db_session, customer):
        with pytest.raises(NotFoundError):
            wallet_service.pay_order_from_wallet(99999, customer.id)


class TestFailureNotifications:
    def test_overdraw_is_reported(self, db_session, customer, notifications):
        wallet_service.credit(customer.id, 1000)

        with pytest.raises(InsufficientBalanceError):
            wallet_service.debit(customer.id, 5000)

        failure = notifications[-1]
        assert failure["kind"] == "wallet.debit"
        assert failure["success"] is False
        assert failure["error"] == "InsufficientBalanceError"
        assert failure["details"]["requested_cents"] == 5000

    def test_successful_operations_report_success(self, db_session, customer, notifications):
        wallet_service.credit(customer.id, 1000)
        wallet_service.debit(customer.id, 400)
        assert [n["success"] for n in notifications] == [True, True]
