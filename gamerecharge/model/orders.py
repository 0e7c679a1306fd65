import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, ValidationFailed
from ..helpers import to_iso
from .db import ORDER_STATUSES, Game, Order, Profile, Sku


def order_query():
    """Orders joined with their SKU, game and buyer."""
    return (
        select(
            Order,
            Sku.name.label("sku_name"),
            Game.id.label("game_id"),
            Game.name.label("game_name"),
            Profile.email.label("customer_email"),
        )
        .join(Sku, Sku.id == Order.sku_id)
        .join(Game, Game.id == Sku.game_id)
        .join(Profile, Profile.id == Order.user_id)
    )


def order_dict(row) -> Dict[str, Any]:
    o: Order = row.Order
    return {
        "id": o.id,
        "user_id": o.user_id,
        "customer_email": row.customer_email,
        "sku_id": o.sku_id,
        "sku_name": row.sku_name,
        "game_id": row.game_id,
        "game_name": row.game_name,
        "merchant_id": o.merchant_id,
        "amount": o.amount,
        "currency": o.currency,
        "status": o.status,
        "refund_amount": o.refund_amount,
        "checkout_session_id": o.checkout_session_id,
        "created_at": to_iso(o.created_at),
        "updated_at": to_iso(o.updated_at),
        "paid_at": to_iso(o.paid_at),
    }


def check_status_filter(status: Optional[str]) -> Optional[str]:
    if status in (None, "", "all"):
        return None
    if status not in ORDER_STATUSES:
        raise ValidationFailed(
            "Invalid status filter. Must be one of: "
            + ", ".join(ORDER_STATUSES))
    return status


def pagination(page: int, page_size: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": math.ceil(total / page_size) if page_size else 0,
    }


async def paged_orders(db: AsyncSession, *, page: int = 1,
                       page_size: int = 50, status: Optional[str] = None,
                       merchant_id: Optional[str] = None,
                       user_id: Optional[str] = None) -> Dict[str, Any]:
    page = max(1, page)
    page_size = max(1, min(page_size, 200))
    status = check_status_filter(status)

    conds = []
    if merchant_id is not None:
        conds.append(Order.merchant_id == merchant_id)
    if user_id is not None:
        conds.append(Order.user_id == user_id)
    if status is not None:
        conds.append(Order.status == status)

    total = (await db.execute(
        select(func.count(Order.id)).where(*conds)
    )).scalar_one()
    rows = (await db.execute(
        order_query().where(*conds)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(page_size).offset((page - 1) * page_size)
    )).all()
    return {
        "orders": [order_dict(r) for r in rows],
        "pagination": pagination(page, page_size, int(total)),
    }


def can_view(order: Order, viewer: Profile) -> bool:
    return (viewer.role == "ADMIN" or order.user_id == viewer.id
            or order.merchant_id == viewer.id)


async def _visible(db: AsyncSession, where, viewer: Profile) -> Dict[str, Any]:
    row = (await db.execute(order_query().where(where))).first()
    # someone else's order looks the same as a missing one
    if row is None or not can_view(row.Order, viewer):
        raise NotFound("Order not found")
    return order_dict(row)


async def get_order(db: AsyncSession, order_id: str,
                    viewer: Profile) -> Dict[str, Any]:
    return await _visible(db, Order.id == order_id, viewer)


async def get_order_by_session(db: AsyncSession, session_id: str,
                               viewer: Profile) -> Dict[str, Any]:
    return await _visible(db, Order.checkout_session_id == session_id, viewer)


async def user_orders(db: AsyncSession, user: Profile, page: int = 1,
                      page_size: int = 20) -> Dict[str, Any]:
    return await paged_orders(db, page=page, page_size=page_size,
                              user_id=user.id)


async def has_orders(db: AsyncSession, *, sku_ids: List[str]) -> bool:
    if not sku_ids:
        return False
    n = (await db.execute(
        select(func.count(Order.id)).where(Order.sku_id.in_(sku_ids))
    )).scalar_one()
    return int(n) > 0
