# Overview: Wallet credits/debits over the append-only wallet ledger.

"""
Wallet Service

WHY: Customers hold an in-app spending balance (top-ups, refunds, cashback,
cash change). Wallet funds are never withdrawable as cash.

LEDGER INVARIANTS:
- WalletLedgerEntry rows are append-only; nothing updates or deletes them.
- balance(user) == sum(amount_cents) over that user's entries.
- Wallet.balance_cents is a cache written in the same transaction as each
  entry; replay_balance() checks it and rebuild_balance() repairs it.
- Every movement locks the user's Wallet row, so a debit's balance check
  and its ledger append cannot interleave with another movement for the
  same user. The version_id on Wallet catches the race on databases that
  ignore FOR UPDATE.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Wallet, WalletLedgerEntry
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
    OrderTerminalError,
)
from .notification_service import notify, report_failures
from .order_service import STATUS_CANCELLED, load_order_locked


# =============================================================================
# ENTRY TYPES (CONSTANTS)
# =============================================================================

ENTRY_CREDIT = "credit"
ENTRY_DEBIT = "debit"
ENTRY_REFUND = "refund"
ENTRY_CASHBACK = "cashback"

CREDIT_ENTRY_TYPES = [ENTRY_CREDIT, ENTRY_REFUND, ENTRY_CASHBACK]
VALID_ENTRY_TYPES = CREDIT_ENTRY_TYPES + [ENTRY_DEBIT]


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmountError("Amount must be a positive whole number of cents", {"amount_cents": amount_cents})
    return amount_cents


def _require_customer(user_id: int) -> Customer:
    customer = db.session.get(Customer, user_id)
    if not customer:
        raise NotFoundError(f"User {user_id} not found")
    return customer


def ensure_wallet(user_id: int) -> None:
    """
    Create the user's wallet row in its own short transaction if missing.

    Called before a movement begins, so the movement itself only ever locks
    an existing row.
    """
    _require_customer(user_id)
    if db.session.query(Wallet.id).filter_by(user_id=user_id).first():
        return
    try:
        db.session.add(Wallet(user_id=user_id, balance_cents=0, created_at=utcnow(), last_updated=utcnow()))
        db.session.commit()
    except IntegrityError:
        # Created concurrently by another writer
        db.session.rollback()


def lock_wallet(user_id: int) -> Wallet:
    """Fetch and lock the user's wallet row."""
    _require_customer(user_id)
    wallet = lock_for_update(db.session.query(Wallet).filter_by(user_id=user_id)).first()
    if not wallet:
        wallet = Wallet(user_id=user_id, balance_cents=0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _ledger_sum(user_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(WalletLedgerEntry.amount_cents), 0))
        .filter(WalletLedgerEntry.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def _append_entry(
    wallet: Wallet,
    entry_type: str,
    signed_amount_cents: int,
    source_order_id: int | None,
    remarks: str | None,
    reference: str | None = None,
) -> WalletLedgerEntry:
    now = utcnow()
    # Cache first: the versioned UPDATE is what loses a concurrent race
    wallet.balance_cents = (wallet.balance_cents or 0) + signed_amount_cents
    wallet.last_updated = now
    db.session.flush()

    entry = WalletLedgerEntry(
        user_id=wallet.user_id,
        entry_type=entry_type,
        amount_cents=signed_amount_cents,
        source_order_id=source_order_id,
        remarks=remarks,
        reference=reference,
        created_at=now,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# CREDIT / DEBIT
# =============================================================================

def credit_locked(
    wallet: Wallet,
    amount_cents: int,
    *,
    entry_type: str = ENTRY_CREDIT,
    source_order_id: int | None = None,
    remarks: str | None = None,
    reference: str | None = None,
) -> WalletLedgerEntry:
    """
    Append a credit to an already-locked wallet (caller commits).

    reference, when given, must be unique across the ledger; it marks a
    movement that may happen at most once.
    """
    _validate_amount(amount_cents)
    if entry_type not in CREDIT_ENTRY_TYPES:
        raise InvalidAmountError(f"Invalid credit type: {entry_type}. Must be one of {CREDIT_ENTRY_TYPES}")
    return _append_entry(wallet, entry_type, amount_cents, source_order_id, remarks, reference)


@report_failures("wallet.credit")
def credit(
    user_id: int,
    amount_cents: int,
    source_order_id: int | None = None,
    remarks: str | None = None,
    *,
    entry_type: str = ENTRY_CREDIT,
) -> WalletLedgerEntry:
    """
    Add money to a user's wallet.

    There is no balance cap, so credits only fail on bad input or a
    missing user.

    Raises:
        InvalidAmountError: amount not positive or entry_type not a credit type
        NotFoundError: user does not exist
    """
    _validate_amount(amount_cents)

    def _op():
        wallet = lock_wallet(user_id)
        entry = credit_locked(
            wallet,
            amount_cents,
            entry_type=entry_type,
            source_order_id=source_order_id,
            remarks=remarks,
        )
        db.session.commit()
        return entry

    ensure_wallet(user_id)
    entry = run_with_retry(_op)
    notify(f"wallet.{entry_type}", f"{amount_cents} credited to wallet", user_id=user_id, entry_id=entry.id)
    return entry


def debit_locked(
    wallet: Wallet,
    amount_cents: int,
    *,
    source_order_id: int | None = None,
    remarks: str | None = None,
) -> WalletLedgerEntry:
    """Check the ledger balance and append a debit on a locked wallet (caller commits)."""
    _validate_amount(amount_cents)
    available = _ledger_sum(wallet.user_id)
    if available < amount_cents:
        raise InsufficientBalanceError(
            "Insufficient wallet balance",
            {"user_id": wallet.user_id, "balance_cents": available, "requested_cents": amount_cents},
        )
    return _append_entry(wallet, ENTRY_DEBIT, -amount_cents, source_order_id, remarks)


@report_failures("wallet.debit")
def debit(
    user_id: int,
    amount_cents: int,
    source_order_id: int | None = None,
    remarks: str | None = None,
) -> WalletLedgerEntry:
    """
    Spend from a user's wallet.

    Raises:
        InvalidAmountError: amount not positive
        NotFoundError: user does not exist
        InsufficientBalanceError: balance is below amount_cents
    """
    _validate_amount(amount_cents)

    def _op():
        wallet = lock_wallet(user_id)
        entry = debit_locked(wallet, amount_cents, source_order_id=source_order_id, remarks=remarks)
        db.session.commit()
        return entry

    ensure_wallet(user_id)
    entry = run_with_retry(_op)
    notify("wallet.debit", f"{amount_cents} debited from wallet", user_id=user_id, entry_id=entry.id)
    return entry


def top_up(user_id: int, amount_cents: int, remarks: str | None = None) -> WalletLedgerEntry:
    return credit(user_id, amount_cents, None, remarks or "Wallet top-up", entry_type=ENTRY_CREDIT)


def refund_to_wallet(user_id: int, amount_cents: int, order_id: int, remarks: str | None = None) -> WalletLedgerEntry:
    return credit(user_id, amount_cents, order_id, remarks or f"Refund for order {order_id}", entry_type=ENTRY_REFUND)


def add_cashback(
    user_id: int,
    amount_cents: int,
    order_id: int | None = None,
    remarks: str | None = None,
) -> WalletLedgerEntry:
    return credit(user_id, amount_cents, order_id, remarks or "Cashback earned", entry_type=ENTRY_CASHBACK)


# =============================================================================
# BALANCE & HISTORY
# =============================================================================

def balance(user_id: int) -> int:
    """Current balance: the sum of every ledger entry for the user."""
    _require_customer(user_id)
    return _ledger_sum(user_id)


def replay_balance(user_id: int) -> dict:
    """
    Replay the user's ledger from the first entry and compare to the cache.

    Returns:
        {"user_id", "ledger_balance_cents", "cached_balance_cents",
         "entry_count", "in_sync"}
    """
    _require_customer(user_id)
    entries = (
        db.session.query(WalletLedgerEntry)
        .filter_by(user_id=user_id)
        .order_by(WalletLedgerEntry.id.asc())
        .all()
    )
    running = 0
    for entry in entries:
        running += entry.amount_cents

    wallet = db.session.query(Wallet).filter_by(user_id=user_id).first()
    cached = wallet.balance_cents if wallet else 0

    return {
        "user_id": user_id,
        "ledger_balance_cents": running,
        "cached_balance_cents": cached,
        "entry_count": len(entries),
        "in_sync": running == cached,
    }


def rebuild_balance(user_id: int) -> Wallet:
    """Overwrite the cached balance with the ledger replay."""
    def _op():
        wallet = lock_wallet(user_id)
        replayed = _ledger_sum(user_id)
        if wallet.balance_cents != replayed:
            current_app.logger.warning(
                "Wallet cache drift for user %s: cached=%s ledger=%s",
                user_id, wallet.balance_cents, replayed,
            )
            wallet.balance_cents = replayed
            wallet.last_updated = utcnow()
        db.session.commit()
        return wallet

    ensure_wallet(user_id)
    return run_with_retry(_op)


def list_transactions(user_id: int, limit: int | None = None) -> list[WalletLedgerEntry]:
    """Most recent ledger entries first."""
    _require_customer(user_id)
    if limit is None:
        limit = current_app.config.get("WALLET_HISTORY_LIMIT", 50)
    return (
        db.session.query(WalletLedgerEntry)
        .filter_by(user_id=user_id)
        .order_by(WalletLedgerEntry.created_at.desc(), WalletLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def get_wallet_summary(user_id: int) -> dict:
    return {
        "user_id": user_id,
        "balance_cents": balance(user_id),
        "transactions": [entry.to_dict() for entry in list_transactions(user_id)],
    }


# =============================================================================
# ORDER PAYMENT
# =============================================================================

@report_failures("wallet.order_payment")
def pay_order_from_wallet(order_id: int, user_id: int) -> dict:
    """
    Use wallet funds toward an order, up to whatever is still unpaid by
    wallet for that order.

    Returns:
        {"wallet_used_cents", "remaining_cents", "entry"}

    Raises:
        NotFoundError: order or user does not exist
        OrderTerminalError: order is cancelled

    Wallet money already held against the order is its debits net of any
    refunds issued for it.
    """
    def _op():
        order = load_order_locked(order_id)
        if order.status == STATUS_CANCELLED:
            raise OrderTerminalError(
                f"Order {order.order_number} is cancelled",
                {"order_id": order.id, "status": order.status},
            )

        wallet = lock_wallet(user_id)
        # Debits are negative and refunds positive, so the negated sum is what
        # the wallet still holds against this order
        already_paid = -int(
            db.session.query(func.coalesce(func.sum(WalletLedgerEntry.amount_cents), 0))
            .filter(
                WalletLedgerEntry.user_id == user_id,
                WalletLedgerEntry.source_order_id == order.id,
                WalletLedgerEntry.entry_type.in_([ENTRY_DEBIT, ENTRY_REFUND]),
            )
            .scalar()
            or 0
        )
        outstanding = max(0, order.final_amount_cents - max(0, already_paid))
        used = min(_ledger_sum(user_id), outstanding)

        entry = None
        if used > 0:
            entry = debit_locked(
                wallet,
                used,
                source_order_id=order.id,
                remarks=f"Payment for order {order.order_number}",
            )
        db.session.commit()
        return {
            "wallet_used_cents": used,
            "remaining_cents": outstanding - used,
            "entry": entry,
        }

    ensure_wallet(user_id)
    result = run_with_retry(_op)
    if result["wallet_used_cents"]:
        notify(
            "wallet.order_payment",
            f"{result['wallet_used_cents']} deducted from wallet",
            user_id=user_id,
            order_id=order_id,
        )
    return result
