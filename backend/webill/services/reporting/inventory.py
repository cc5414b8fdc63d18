# Overview: Inventory reports; stock overview, valuation, movement, low stock and turnover.

from __future__ import annotations

from sqlalchemy import func

from webill.extensions import db
from webill.models import Category, Item, Transaction, TransactionItem
from webill.validation import money_out

from . import metrics
from .common import ReportContext, dec, in_range

DEFAULT_TYPE = "overview"


def _active_items(*, physical_only: bool = True):
    query = db.session.query(Item).filter(Item.is_active.is_(True))
    if physical_only:
        query = query.filter(Item.is_service.is_(False))
    return query


def _category_name(item: Item) -> str:
    return item.category.name if item.category else "Uncategorized"


def overview(ctx: ReportContext) -> dict:
    total_items = _active_items(physical_only=False).count()
    total_categories = db.session.query(func.count(Category.id)).scalar() or 0
    physical = _active_items()
    product_items = physical.count()
    service_items = total_items - product_items
    total_stock = physical.with_entities(func.coalesce(func.sum(Item.stock_quantity), 0)).scalar()
    in_stock = physical.filter(Item.stock_quantity > 0).count()
    out_of_stock = physical.filter(Item.stock_quantity <= 0).count()
    low_stock = physical.filter(Item.stock_quantity > 0, Item.stock_quantity <= Item.min_stock).count()
    ctx.checkpoint()

    by_category = db.session.query(
        Category.id, Category.name, func.count(Item.id)
    ).outerjoin(
        Item, (Item.category_id == Category.id) & Item.is_active.is_(True)
    ).group_by(Category.id, Category.name).order_by(func.count(Item.id).desc(), Category.name).all()

    return {
        "overview": {
            "total_items": total_items,
            "total_categories": int(total_categories),
            "total_stock": int(total_stock or 0),
            "physical_items": product_items,
        },
        "stock_status": {
            "in_stock": in_stock,
            "out_of_stock": out_of_stock,
            "low_stock": low_stock,
            "stock_percentage": {
                "in_stock": metrics.pct(in_stock, total_items),
                "out_of_stock": metrics.pct(out_of_stock, total_items),
                "low_stock": metrics.pct(low_stock, total_items),
            },
        },
        "item_types": {
            "products": product_items,
            "services": service_items,
            "product_percentage": metrics.pct(product_items, total_items),
            "service_percentage": metrics.pct(service_items, total_items),
        },
        "category_breakdown": [
            {
                "category_id": category_id,
                "category_name": name,
                "item_count": int(count),
                "percentage": metrics.pct(count, total_items),
            }
            for category_id, name, count in by_category
        ],
    }


def _valuation_dict(row: metrics.ItemValuation) -> dict:
    return {
        "item_id": row.item_id,
        "item_name": row.name,
        "sku": row.sku,
        "category": row.category,
        "quantity": row.quantity,
        "cost_price": money_out(row.cost_price),
        "retail_price": money_out(row.retail_price),
        "cost_value": money_out(row.cost_value),
        "retail_value": money_out(row.retail_value),
        "potential_profit": money_out(row.potential_profit),
        "profit_margin": row.profit_margin,
    }


def valuation(ctx: ReportContext) -> dict:
    items = _active_items().all()
    ctx.checkpoint()
    rows = [
        metrics.value_item(
            item.id, item.name, item.sku, _category_name(item),
            item.stock_quantity, item.unit_price, item.cost_price,
        )
        for item in items
    ]
    rows.sort(key=lambda r: r.retail_value, reverse=True)
    categories = metrics.rollup_by_category(rows)

    total_cost = sum((r.cost_value for r in rows), metrics.ZERO)
    total_retail = sum((r.retail_value for r in rows), metrics.ZERO)
    total_profit = total_retail - total_cost
    return {
        "summary": {
            "total_items": len(rows),
            "total_quantity": sum(r.quantity for r in rows),
            "total_cost_value": money_out(total_cost),
            "total_retail_value": money_out(total_retail),
            "total_potential_profit": money_out(total_profit),
            "overall_profit_margin": metrics.pct(total_profit, total_retail),
        },
        "top_value_items": [_valuation_dict(r) for r in rows[:20]],
        "category_valuation": [
            {
                "category_name": c.category,
                "item_count": c.item_count,
                "total_quantity": c.total_quantity,
                "total_cost_value": money_out(c.total_cost_value),
                "total_retail_value": money_out(c.total_retail_value),
                "total_potential_profit": money_out(c.total_potential_profit),
            }
            for c in categories
        ],
    }


def _line_sums(tx_type: str, period):
    return db.session.query(
        TransactionItem.item_id,
        func.coalesce(func.sum(TransactionItem.quantity), 0),
        func.coalesce(func.sum(TransactionItem.total_amount), 0),
        func.count(TransactionItem.id),
    ).join(Transaction, TransactionItem.transaction_id == Transaction.id).filter(
        Transaction.type == tx_type,
        in_range(Transaction.date, period),
    ).group_by(TransactionItem.item_id).all()


def movement(ctx: ReportContext) -> dict:
    sold = _line_sums("SALE", ctx.period)
    purchased = _line_sums("PURCHASE", ctx.period)
    ctx.checkpoint()

    item_ids = {row[0] for row in sold} | {row[0] for row in purchased}
    items = {
        item.id: item
        for item in db.session.query(Item).filter(Item.id.in_(item_ids)).all()
    } if item_ids else {}

    movements: dict[int, dict] = {}

    def _entry(item_id: int) -> dict:
        if item_id not in movements:
            item = items.get(item_id)
            movements[item_id] = {
                "item_id": item_id,
                "item_name": item.name if item else None,
                "sku": item.sku if item else None,
                "total_sold": 0,
                "total_purchased": 0,
                "sales_value": metrics.ZERO,
                "purchase_value": metrics.ZERO,
                "net_movement": 0,
            }
        return movements[item_id]

    for item_id, quantity, amount, _count in sold:
        entry = _entry(item_id)
        entry["total_sold"] += int(quantity)
        entry["sales_value"] += dec(amount)
        entry["net_movement"] -= int(quantity)
    for item_id, quantity, amount, _count in purchased:
        entry = _entry(item_id)
        entry["total_purchased"] += int(quantity)
        entry["purchase_value"] += dec(amount)
        entry["net_movement"] += int(quantity)

    rows = sorted(
        movements.values(),
        key=lambda m: m["total_sold"] + m["total_purchased"],
        reverse=True,
    )

    def _out(m: dict) -> dict:
        return dict(m, sales_value=money_out(m["sales_value"]), purchase_value=money_out(m["purchase_value"]))

    top_sellers = sorted((m for m in rows if m["total_sold"] > 0), key=lambda m: m["total_sold"], reverse=True)
    top_purchases = sorted(
        (m for m in rows if m["total_purchased"] > 0), key=lambda m: m["total_purchased"], reverse=True
    )
    return {
        "period": ctx.period.to_dict(),
        "summary": {
            "total_items_with_movement": len(rows),
            "total_quantity_sold": sum(m["total_sold"] for m in rows),
            "total_quantity_purchased": sum(m["total_purchased"] for m in rows),
            "total_sales_value": money_out(sum((m["sales_value"] for m in rows), metrics.ZERO)),
            "total_purchase_value": money_out(sum((m["purchase_value"] for m in rows), metrics.ZERO)),
        },
        "item_movements": [_out(m) for m in rows[:50]],
        "top_sellers": [_out(m) for m in top_sellers[:20]],
        "top_purchases": [_out(m) for m in top_purchases[:20]],
    }


def low_stock(ctx: ReportContext) -> dict:
    items = _active_items().filter(
        (Item.stock_quantity <= 0) | (Item.stock_quantity <= Item.min_stock)
    ).order_by(Item.stock_quantity.asc(), Item.name.asc()).all()
    ctx.checkpoint()

    breakdown = {"out_of_stock": [], "critically_low": [], "low": []}
    bucket_for = {"OUT_OF_STOCK": "out_of_stock", "CRITICAL": "critically_low", "LOW": "low"}
    suggestions = []
    total_cost = metrics.ZERO
    for item in items:
        urgency = metrics.low_stock_urgency(item.stock_quantity, item.min_stock)
        if urgency is None:
            continue
        order_qty = metrics.suggested_order_quantity(item.min_stock)
        cost = metrics.estimated_reorder_cost(order_qty, item.unit_price)
        total_cost += cost
        row = {
            "id": item.id,
            "name": item.name,
            "sku": item.sku,
            "stock_quantity": item.stock_quantity,
            "min_stock": item.min_stock,
            "unit_price": money_out(item.unit_price),
            "category": _category_name(item),
            "urgency_level": urgency,
        }
        breakdown[bucket_for[urgency]].append(row)
        suggestions.append(
            dict(
                row,
                suggested_order_quantity=order_qty,
                estimated_cost=money_out(cost),
                days_until_stock_out=metrics.days_until_stock_out(item.stock_quantity, item.min_stock),
            )
        )

    return {
        "summary": {
            "total_low_stock_items": len(suggestions),
            "out_of_stock_count": len(breakdown["out_of_stock"]),
            "critically_low_count": len(breakdown["critically_low"]),
            "low_stock_count": len(breakdown["low"]),
            "total_estimated_reorder_cost": money_out(total_cost),
        },
        "breakdown": breakdown,
        "reorder_suggestions": suggestions[:30],
    }


def _turnover_dict(row: metrics.TurnoverRow) -> dict:
    return {
        "item_id": row.item_id,
        "item_name": row.name,
        "sku": row.sku,
        "category": row.category,
        "current_stock": row.current_stock,
        "quantity_sold": row.quantity_sold,
        "sales_value": money_out(row.sales_value),
        "sales_count": row.sales_count,
        "cost_price": money_out(row.cost_price),
        "average_inventory_value": money_out(row.average_inventory_value),
        "cost_of_goods_sold": money_out(row.cost_of_goods_sold),
        "turnover_ratio": round(row.turnover_ratio, 2),
        "days_in_inventory": round(row.days_in_inventory, 2),
        "turnover_category": row.classification,
    }


def turnover(ctx: ReportContext) -> dict:
    items = _active_items().all()
    sales = {row[0]: row for row in _line_sums("SALE", ctx.period)}
    ctx.checkpoint()

    rows = []
    for item in items:
        sold = sales.get(item.id)
        rows.append(
            metrics.TurnoverRow(
                item_id=item.id,
                name=item.name,
                sku=item.sku,
                category=_category_name(item),
                current_stock=item.stock_quantity,
                quantity_sold=int(sold[1]) if sold else 0,
                sales_value=dec(sold[2]) if sold else metrics.ZERO,
                sales_count=int(sold[3]) if sold else 0,
                cost_price=dec(item.effective_cost),
            )
        )
    rows.sort(key=lambda r: r.turnover_ratio, reverse=True)

    groups = {"FAST_MOVING": [], "MEDIUM_MOVING": [], "SLOW_MOVING": [], "NO_MOVEMENT": []}
    for row in rows:
        groups[row.classification].append(row)

    count = len(rows)
    return {
        "period": ctx.period.to_dict(),
        "summary": {
            "total_items": count,
            "average_turnover_ratio": round(sum(r.turnover_ratio for r in rows) / count, 2) if count else 0.0,
            "average_days_in_inventory": round(sum(r.days_in_inventory for r in rows) / count, 2) if count else 0.0,
            "fast_moving_count": len(groups["FAST_MOVING"]),
            "medium_moving_count": len(groups["MEDIUM_MOVING"]),
            "slow_moving_count": len(groups["SLOW_MOVING"]),
            "no_movement_count": len(groups["NO_MOVEMENT"]),
        },
        "categories": {
            "fast_moving": [_turnover_dict(r) for r in groups["FAST_MOVING"][:20]],
            "medium_moving": [_turnover_dict(r) for r in groups["MEDIUM_MOVING"][:20]],
            "slow_moving": [_turnover_dict(r) for r in groups["SLOW_MOVING"][:20]],
            "no_movement": [_turnover_dict(r) for r in groups["NO_MOVEMENT"][:20]],
        },
        "top_performers": [_turnover_dict(r) for r in rows[:20]],
        "poor_performers": [_turnover_dict(r) for r in reversed(rows[-20:])],
    }


REPORTS = {
    "overview": overview,
    "valuation": valuation,
    "movement": movement,
    "low-stock": low_stock,
    "turnover": turnover,
}
