# Overview: Service-layer stock accounting; pure stock-delta computation and locked application.

"""
WeBill Inventory Invariants (authoritative)

1) Item.stock_quantity changes ONLY as a side effect of a ledger mutation
   (transaction create / update / delete). Reports never write stock.
2) A transaction's currently-applied stock effect is fully determined by its
   recorded type and lines:
       PURCHASE -> +quantity per line
       SALE     -> -quantity per line
       EXPENSE / INCOME -> no effect
3) Service items (is_service=True) never move stock.
4) Update = apply(-delta(old)) then apply(+delta(new)) inside one atomic unit.
   Delete = apply(-delta(old)) then remove the row.
5) Sales are not checked against on-hand stock; stock may go negative.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol

from ..extensions import db
from ..models import Item
from ..validation import NotFoundError
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


STOCK_DIRECTION = {
    "PURCHASE": 1,
    "SALE": -1,
    "EXPENSE": 0,
    "INCOME": 0,
}


class StockLine(Protocol):
    item_id: int
    quantity: int


def compute_stock_delta(tx_type: str, lines: Iterable[StockLine]) -> dict[int, int]:
    """
    Signed stock movement per item id for a transaction of the given type.

    Quantities for the same item are summed. Items whose net movement is
    zero are omitted.
    """
    direction = STOCK_DIRECTION.get(tx_type, 0)
    delta: dict[int, int] = {}
    if direction == 0:
        return delta
    for line in lines:
        delta[line.item_id] = delta.get(line.item_id, 0) + direction * int(line.quantity)
    return {item_id: qty for item_id, qty in delta.items() if qty != 0}


def invert_delta(delta: Mapping[int, int]) -> dict[int, int]:
    return {item_id: -qty for item_id, qty in delta.items()}


def merge_deltas(*deltas: Mapping[int, int]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for delta in deltas:
        for item_id, qty in delta.items():
            merged[item_id] = merged.get(item_id, 0) + qty
    return merged


def load_items_for_update(item_ids: Iterable[int]) -> dict[int, Item]:
    """
    Lock and load items, ordered by id so concurrent writers take row locks
    in the same order. Raises NotFoundError for any unknown id.
    """
    wanted = sorted(set(item_ids))
    if not wanted:
        return {}
    items = lock_for_update(
        db.session.query(Item).filter(Item.id.in_(wanted)).order_by(Item.id)
    ).all()
    found = {item.id: item for item in items}
    missing = [item_id for item_id in wanted if item_id not in found]
    if missing:
        raise NotFoundError(f"Item not found: {missing[0]}")
    return found


def apply_stock_delta(delta: Mapping[int, int], items: Mapping[int, Item] | None = None) -> dict[int, int]:
    """
    Apply a signed delta to item stock. Service items are skipped.

    Returns the movement actually applied (service items excluded).
    Must run inside the caller's atomic unit; does not commit.
    """
    if items is None:
        items = load_items_for_update(delta.keys())
    applied: dict[int, int] = {}
    for item_id in sorted(delta):
        qty = delta[item_id]
        item = items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item not found: {item_id}")
        if item.is_service or qty == 0:
            continue
        item.stock_quantity = (item.stock_quantity or 0) + qty
        applied[item_id] = qty
    if applied:
        logger.debug("Applied stock delta %s", applied)
    return applied
