# Overview: Allocation of human-facing order numbers.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence


def next_order_number(tenant_id: int, *, pad: int = 6) -> str:
    """
    Allocate the next order number for a tenant.

    Runs inside the caller's transaction: the increment commits (or rolls
    back) together with the order that consumes it, so a number belongs to
    at most one committed order.
    """
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.tenant_id == tenant_id)
        .values(next_number=OrderSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(tenant_id=tenant_id)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = OrderSequence(tenant_id=tenant_id, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            # Another writer created the row first
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            current = (
                db.session.query(OrderSequence.next_number)
                .filter_by(tenant_id=tenant_id)
                .scalar()
            )
            next_num = current - 1

    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    return f"{prefix}-{tenant_id:03d}-{next_num:0{pad}d}"
