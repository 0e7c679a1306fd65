from typing import Any, Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, ValidationFailed
from ..helpers import now_ts, to_iso
from ..infra.log import get_logger
from .catalog import game_dict
from .db import ORDER_STATUSES, Game, Order, Profile, Sku
from .merchant import completed_count, completed_revenue
from .orders import paged_orders
from .profiles import create_profile, profile_dict

log = get_logger(__name__)


# ----------------------------
# Merchants & roles
# ----------------------------
async def all_merchants(db: AsyncSession) -> List[Dict[str, Any]]:
    profiles = (await db.execute(
        select(Profile).where(Profile.role.in_(("MERCHANT", "ADMIN")))
        .order_by(Profile.created_at.desc(), Profile.id.desc())
    )).scalars().all()
    ids = [p.id for p in profiles]
    if not ids:
        return []

    orders = {r.merchant_id: r for r in (await db.execute(
        select(
            Order.merchant_id,
            func.count(Order.id).label("total_orders"),
            completed_count().label("completed_orders"),
            completed_revenue().label("total_revenue"),
        ).where(Order.merchant_id.in_(ids)).group_by(Order.merchant_id)
    )).all()}
    games = dict((await db.execute(
        select(Game.merchant_id, func.count(Game.id))
        .where(Game.merchant_id.in_(ids)).group_by(Game.merchant_id)
    )).all())

    out = []
    for p in profiles:
        r = orders.get(p.id)
        total = int(r.total_orders) if r else 0
        completed = int(r.completed_orders) if r else 0
        d = profile_dict(p)
        d["total_games"] = int(games.get(p.id, 0))
        d["analytics"] = {
            "total_orders": total,
            "completed_orders": completed,
            "total_revenue": int(r.total_revenue) if r else 0,
            "conversion_rate": (round(completed * 100.0 / total, 2)
                                if total else 0.0),
        }
        out.append(d)
    return out


async def update_role(db: AsyncSession, acting: Profile, user_id: str,
                      role: str,
                      merchant_name: Optional[str] = None) -> Dict[str, Any]:
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFound("User not found")
    if profile.id == acting.id and role != "ADMIN":
        raise ValidationFailed("You cannot remove your own admin role")

    if role == "MERCHANT":
        name = (merchant_name or profile.merchant_name or "").strip()
        if not name:
            raise ValidationFailed("Merchant name is required for merchants")
        profile.merchant_name = name
    else:
        profile.merchant_name = None
    profile.role = role
    await db.commit()
    log.info("role of %s set to %s by %s", user_id, role, acting.id)
    return profile_dict(profile)


async def create_merchant(db: AsyncSession, email: str, merchant_name: str,
                          password: str) -> Dict[str, Any]:
    profile = await create_profile(db, email=email, password=password,
                                   role="MERCHANT",
                                   merchant_name=merchant_name)
    return profile_dict(profile)


# ----------------------------
# Games
# ----------------------------
async def games_for_moderation(db: AsyncSession) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(Game, Profile.merchant_name, Profile.email)
        .join(Profile, Profile.id == Game.merchant_id)
        .order_by(Game.created_at.desc(), Game.id.desc())
    )).all()
    sku_counts = dict((await db.execute(
        select(Sku.game_id, func.count(Sku.id)).group_by(Sku.game_id)
    )).all())
    rollup = {r.game_id: r for r in (await db.execute(
        select(
            Sku.game_id,
            func.count(Order.id).label("total_orders"),
            completed_revenue().label("total_revenue"),
        ).join(Order, Order.sku_id == Sku.id).group_by(Sku.game_id)
    )).all()}

    out = []
    for game, merchant_name, merchant_email in rows:
        d = game_dict(game, merchant_name)
        r = rollup.get(game.id)
        d["merchant_email"] = merchant_email
        d["sku_count"] = int(sku_counts.get(game.id, 0))
        d["total_orders"] = int(r.total_orders) if r else 0
        d["total_revenue"] = int(r.total_revenue) if r else 0
        out.append(d)
    return out


async def update_game_status(db: AsyncSession, game_id: str,
                             status: str) -> Dict[str, Any]:
    game = await db.get(Game, game_id)
    if game is None:
        raise NotFound("Game not found")
    game.status = status
    await db.commit()
    log.info("game %s status -> %s", game_id, status)
    return {"id": game.id, "status": game.status,
            "updated_at": to_iso(game.updated_at)}


# ----------------------------
# Orders
# ----------------------------
async def platform_orders(db: AsyncSession, page: int = 1,
                          page_size: int = 50,
                          status: Optional[str] = None) -> Dict[str, Any]:
    return await paged_orders(db, page=page, page_size=page_size,
                              status=status)


async def update_order_status(db: AsyncSession, order_id: str, status: str,
                              refund_amount: Optional[int] = None
                              ) -> Dict[str, Any]:
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")

    if status == "refunded":
        if order.status != "completed":
            raise ValidationFailed("Only completed orders can be refunded")
        amount = order.amount if refund_amount is None else refund_amount
        if amount > order.amount:
            raise ValidationFailed(
                "Refund amount cannot exceed the order amount")
        order.refund_amount = amount
    else:
        order.refund_amount = None
        if status == "completed" and order.paid_at is None:
            order.paid_at = now_ts()

    log.info("order %s status %s -> %s (admin override)", order.id,
             order.status, status)
    order.status = status
    await db.commit()
    return {
        "id": order.id,
        "status": order.status,
        "refund_amount": order.refund_amount,
        "paid_at": to_iso(order.paid_at),
        "updated_at": to_iso(order.updated_at),
    }


# ----------------------------
# Platform analytics
# ----------------------------
async def platform_analytics(db: AsyncSession) -> Dict[str, Any]:
    async def count(stmt) -> int:
        return int((await db.execute(stmt)).scalar_one())

    total_users = await count(select(func.count(Profile.id)))
    total_merchants = await count(
        select(func.count(Profile.id)).where(Profile.role == "MERCHANT"))
    total_games = await count(select(func.count(Game.id)))
    total_skus = await count(select(func.count(Sku.id)))
    total_orders = await count(select(func.count(Order.id)))
    total_revenue = await count(
        select(func.coalesce(func.sum(Order.amount), 0))
        .where(Order.status == "completed"))
    buyers = await count(select(func.count(distinct(Order.user_id))))

    breakdown = {s: 0 for s in ORDER_STATUSES}
    for status, n in (await db.execute(
        select(Order.status, func.count(Order.id)).group_by(Order.status)
    )).all():
        breakdown[status] = int(n)

    return {
        "total_users": total_users,
        "total_merchants": total_merchants,
        "total_games": total_games,
        "total_skus": total_skus,
        "total_orders": total_orders,
        "total_revenue": total_revenue,
        "unique_customers": buyers,
        "order_status_breakdown": breakdown,
        "average_order_value": (round(total_revenue / total_orders, 2)
                                if total_orders else 0.0),
    }
