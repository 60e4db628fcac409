# Overview: Cash collection and change-to-wallet reconciliation for orders.

"""
Cash Reconciliation

WHY: Couriers and counters collect physical cash. Overpayment ("change")
is either handed back as cash or credited to the customer's wallet; it must
never be credited twice and never exceed what was actually overpaid.

FLOW:
1. record_cash_collected() stores the collected amount and reports
   change_due = max(0, collected - final_amount). It moves no money.
2. credit_change_to_wallet() credits the change as a cashback ledger entry,
   then marks the order as paid exactly (collected = final_amount) with
   change_amount set. At most once per order.

CHANGE REFERENCE: The change credit is the only ledger entry carrying
reference "order-change:<order_id>" (unique in the ledger). Promotional
cashback for the same order is an ordinary cashback entry without it.

RECOVERY: The ledger entry and the order fields normally commit together.
The recovery branch covers ledgers written by another writer (imports,
backfills, a legacy settlement job) that recorded the change entry but not
the order fields: those are completed from the entry instead of crediting
again.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, WalletLedgerEntry
from ..time_utils import utcnow
from . import wallet_service
from .concurrency import run_with_retry
from .errors import AlreadyCreditedError, InvalidAmountError, OrderTerminalError
from .notification_service import notify, report_failures
from .order_service import (
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    apply_transition,
    check_transition,
    load_order_locked,
    touch,
)


def compute_change_due(final_amount_cents: int, collected_amount_cents: int | None) -> int:
    """Change owed to the customer for a cash payment. Never negative."""
    if collected_amount_cents is None:
        return 0
    return max(0, collected_amount_cents - final_amount_cents)


def get_change_due(order: Order) -> int:
    return compute_change_due(order.final_amount_cents, order.collected_amount_cents)


def _ensure_not_cancelled(order: Order) -> None:
    if order.status == STATUS_CANCELLED:
        raise OrderTerminalError(
            f"Order {order.order_number} is cancelled; cash cannot be recorded",
            {"order_id": order.id, "status": order.status},
        )


def change_reference(order_id: int) -> str:
    return f"order-change:{order_id}"


def _existing_change_credit(order_id: int) -> WalletLedgerEntry | None:
    return (
        db.session.query(WalletLedgerEntry)
        .filter_by(reference=change_reference(order_id))
        .first()
    )


@report_failures("order.cash_collected")
def record_cash_collected(
    order_id: int,
    collected_amount_cents: int,
    mark_delivered: bool = False,
    actor_id: int | None = None,
) -> dict:
    """
    Record cash taken from the customer.

    If mark_delivered is set, the order is moved to delivered in the same
    transaction (subject to the normal transition guards).

    Returns:
        {"order": Order, "change_due_cents": int}

    Raises:
        InvalidAmountError: negative amount
        NotFoundError: order does not exist
        OrderTerminalError: order is cancelled
        AlreadyCreditedError: change was already credited to a wallet
        IllegalTransitionError: mark_delivered but delivery is not allowed yet
    """
    if isinstance(collected_amount_cents, bool) or not isinstance(collected_amount_cents, int) or collected_amount_cents < 0:
        raise InvalidAmountError(
            "Collected amount must be a whole number of cents, zero or more",
            {"collected_amount_cents": collected_amount_cents},
        )

    def _op():
        order = load_order_locked(order_id)
        _ensure_not_cancelled(order)
        if order.change_amount_cents is not None:
            raise AlreadyCreditedError(
                f"Change for order {order.order_number} was already credited to wallet",
                {"order_id": order.id, "change_amount_cents": order.change_amount_cents},
            )

        deliver = mark_delivered and order.status != STATUS_DELIVERED
        if deliver:
            check_transition(order, STATUS_DELIVERED)

        now = utcnow()
        order.collected_amount_cents = collected_amount_cents
        if deliver:
            apply_transition(order, STATUS_DELIVERED, now)
        else:
            touch(order, now)
        order.collected_at = order.updated_at

        db.session.commit()
        return order

    order = run_with_retry(_op)
    change_due = get_change_due(order)
    notify(
        "order.cash_collected",
        f"Collected {collected_amount_cents} for order {order.order_number}",
        order_id=order.id,
        change_due_cents=change_due,
        actor_id=actor_id,
    )
    return {"order": order, "change_due_cents": change_due}


@report_failures("wallet.change_credited")
def credit_change_to_wallet(
    order_id: int,
    user_id: int,
    change_amount_cents: int,
    reason: str | None = None,
    actor_id: int | None = None,
) -> Order:
    """
    Credit an order's cash change to a wallet instead of handing it back.

    At most once per order: a second call fails with AlreadyCreditedError
    and appends nothing.

    Raises:
        InvalidAmountError: amount not positive, no cash recorded, or amount
            exceeds the change actually due
        NotFoundError: order or user does not exist
        OrderTerminalError: order is cancelled
        AlreadyCreditedError: change already credited for this order
    """
    if isinstance(change_amount_cents, bool) or not isinstance(change_amount_cents, int) or change_amount_cents <= 0:
        raise InvalidAmountError(
            "Change amount must be a positive whole number of cents",
            {"change_amount_cents": change_amount_cents},
        )
    reason = (reason or "").strip() or "Change credited to wallet"

    def _op():
        order = load_order_locked(order_id)
        _ensure_not_cancelled(order)

        if order.change_amount_cents is not None:
            raise AlreadyCreditedError(
                f"Change for order {order.order_number} was already credited to wallet",
                {"order_id": order.id, "change_amount_cents": order.change_amount_cents},
            )

        existing = _existing_change_credit(order.id)
        if existing is not None:
            if existing.user_id != user_id:
                raise AlreadyCreditedError(
                    f"Change for order {order.order_number} was already credited to another wallet",
                    {"order_id": order.id, "entry_id": existing.id},
                )
            # Change entry recorded without the order fields; finish them
            current_app.logger.warning(
                "Completing change credit for order %s from ledger entry %s",
                order.order_number, existing.id,
            )
            order.change_amount_cents = existing.amount_cents
            order.collected_amount_cents = order.final_amount_cents
            order.change_reason = existing.remarks or reason
            touch(order)
            db.session.commit()
            return order, None

        if order.collected_amount_cents is None:
            raise InvalidAmountError(
                "No cash collection recorded for this order",
                {"order_id": order.id},
            )
        change_due = get_change_due(order)
        if change_amount_cents > change_due:
            raise InvalidAmountError(
                "Change amount exceeds the change due",
                {"order_id": order.id, "change_due_cents": change_due, "change_amount_cents": change_amount_cents},
            )

        try:
            wallet = wallet_service.lock_wallet(user_id)
            entry = wallet_service.credit_locked(
                wallet,
                change_amount_cents,
                entry_type=wallet_service.ENTRY_CASHBACK,
                source_order_id=order.id,
                remarks=reason,
                reference=change_reference(order.id),
            )

            order.change_amount_cents = change_amount_cents
            order.collected_amount_cents = order.final_amount_cents
            order.change_reason = reason
            touch(order)
            db.session.commit()
        except IntegrityError:
            # Another writer committed the change reference first
            db.session.rollback()
            raise AlreadyCreditedError(
                f"Change for order {order_id} was already credited to wallet",
                {"order_id": order_id},
            )
        return order, entry

    wallet_service.ensure_wallet(user_id)
    order, entry = run_with_retry(_op)

    if entry is not None:
        current_app.logger.info(
            "Credited change %s for order %s to wallet of user %s",
            change_amount_cents, order.order_number, user_id,
        )
        notify(
            "wallet.change_credited",
            f"{change_amount_cents} change credited to wallet",
            order_id=order.id,
            user_id=user_id,
            entry_id=entry.id,
            actor_id=actor_id,
        )
    return order
