"""
Merchant-side catalog management and rollups.

Every mutation goes through an ownership check; admins pass all of them.
Games and SKUs that have orders are kept: deleting them is refused.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Conflict
from ..helpers import to_iso
from ..infra.log import get_logger
from ..permissions import owned_game, owned_sku
from ..schemas import GameCreate, GameUpdate, SkuCreate, SkuUpdate
from .catalog import game_dict, skus_by_game, sku_dict
from .db import Game, Order, Profile, Sku
from .orders import has_orders, paged_orders

log = get_logger(__name__)


def completed_revenue():
    return func.coalesce(
        func.sum(case((Order.status == "completed", Order.amount), else_=0)),
        0)


def completed_count():
    return func.coalesce(
        func.sum(case((Order.status == "completed", 1), else_=0)), 0)


# ----------------------------
# Games
# ----------------------------
async def merchant_games(db: AsyncSession,
                         user: Profile) -> List[Dict[str, Any]]:
    games = (await db.execute(
        select(Game).where(Game.merchant_id == user.id)
        .order_by(Game.created_at.desc(), Game.id.desc())
    )).scalars().all()
    skus = await skus_by_game(db, [g.id for g in games])

    rollup = {
        r.game_id: r for r in (await db.execute(
            select(
                Sku.game_id,
                func.count(Order.id).label("total_orders"),
                completed_count().label("completed_orders"),
                completed_revenue().label("total_revenue"),
            )
            .join(Order, Order.sku_id == Sku.id)
            .where(Sku.game_id.in_([g.id for g in games]))
            .group_by(Sku.game_id)
        )).all()
    } if games else {}

    out = []
    for g in games:
        d = game_dict(g, user.merchant_name, skus[g.id])
        r = rollup.get(g.id)
        d["analytics"] = {
            "total_orders": int(r.total_orders) if r else 0,
            "completed_orders": int(r.completed_orders) if r else 0,
            "total_revenue": int(r.total_revenue) if r else 0,
            "total_skus": len(skus[g.id]),
        }
        out.append(d)
    return out


async def create_game(db: AsyncSession, user: Profile,
                      data: GameCreate) -> Dict[str, Any]:
    game = Game(
        name=data.name.model_dump(),
        description=data.description.model_dump() if data.description
        else None,
        banner_url=data.banner_url,
        merchant_id=user.id,
    )
    db.add(game)
    await db.commit()
    log.info("merchant %s created game %s", user.id, game.id)
    return game_dict(game, user.merchant_name, [])


async def update_game(db: AsyncSession, user: Profile, game_id: str,
                      data: GameUpdate) -> Dict[str, Any]:
    game = await owned_game(db, game_id, user)
    fields = data.model_fields_set
    if "name" in fields and data.name is not None:
        game.name = data.name.model_dump()
    if "description" in fields:
        game.description = (data.description.model_dump()
                            if data.description else None)
    if "banner_url" in fields:
        game.banner_url = data.banner_url
    await db.commit()
    owner = await db.get(Profile, game.merchant_id)
    skus = await skus_by_game(db, [game.id])
    return game_dict(game, owner.merchant_name if owner else None,
                     skus[game.id])


async def delete_game(db: AsyncSession, user: Profile, game_id: str) -> None:
    game = await owned_game(db, game_id, user)
    sku_ids = (await db.execute(
        select(Sku.id).where(Sku.game_id == game.id)
    )).scalars().all()
    if await has_orders(db, sku_ids=list(sku_ids)):
        raise Conflict("Cannot delete game with existing orders")
    await db.execute(delete(Sku).where(Sku.game_id == game.id))
    await db.delete(game)
    await db.commit()
    log.info("game %s deleted by %s", game_id, user.id)


# ----------------------------
# SKUs
# ----------------------------
async def list_skus(db: AsyncSession, user: Profile,
                    game_id: str) -> List[Dict[str, Any]]:
    game = await owned_game(db, game_id, user)
    skus = await skus_by_game(db, [game.id])
    return [sku_dict(s) for s in skus[game.id]]


async def create_sku(db: AsyncSession, user: Profile, game_id: str,
                     data: SkuCreate) -> Dict[str, Any]:
    game = await owned_game(db, game_id, user)
    sku = Sku(
        game_id=game.id,
        name=data.name.model_dump(),
        description=data.description.model_dump() if data.description
        else None,
        prices=data.prices,
        image_url=data.image_url,
    )
    db.add(sku)
    await db.commit()
    return sku_dict(sku)


async def update_sku(db: AsyncSession, user: Profile, sku_id: str,
                     data: SkuUpdate) -> Dict[str, Any]:
    sku = await owned_sku(db, sku_id, user)
    fields = data.model_fields_set
    if "name" in fields and data.name is not None:
        sku.name = data.name.model_dump()
    if "description" in fields:
        sku.description = (data.description.model_dump()
                           if data.description else None)
    if "prices" in fields and data.prices is not None:
        sku.prices = data.prices
    if "image_url" in fields:
        sku.image_url = data.image_url
    await db.commit()
    return sku_dict(sku)


async def delete_sku(db: AsyncSession, user: Profile, sku_id: str) -> None:
    sku = await owned_sku(db, sku_id, user)
    if await has_orders(db, sku_ids=[sku.id]):
        raise Conflict("Cannot delete SKU with existing orders")
    await db.delete(sku)
    await db.commit()


# ----------------------------
# Orders & overview
# ----------------------------
async def merchant_orders(db: AsyncSession, user: Profile, page: int = 1,
                          page_size: int = 50,
                          status: Optional[str] = None) -> Dict[str, Any]:
    return await paged_orders(db, page=page, page_size=page_size,
                              status=status, merchant_id=user.id)


async def merchant_overview(db: AsyncSession,
                            merchant_id: str) -> Dict[str, Any]:
    total_games = (await db.execute(
        select(func.count(Game.id)).where(Game.merchant_id == merchant_id)
    )).scalar_one()
    total_skus = (await db.execute(
        select(func.count(Sku.id))
        .join(Game, Game.id == Sku.game_id)
        .where(Game.merchant_id == merchant_id)
    )).scalar_one()
    agg = (await db.execute(
        select(
            func.count(Order.id).label("total_orders"),
            completed_count().label("completed_orders"),
            completed_revenue().label("total_revenue"),
            func.max(Order.created_at).label("last_order"),
        ).where(Order.merchant_id == merchant_id)
    )).one()

    total_orders = int(agg.total_orders)
    completed = int(agg.completed_orders)
    return {
        "merchant_id": merchant_id,
        "total_games": int(total_games),
        "total_skus": int(total_skus),
        "total_orders": total_orders,
        "total_revenue": int(agg.total_revenue),
        "completed_orders": completed,
        "last_order_date": to_iso(agg.last_order),
        "conversion_rate": (round(completed * 100.0 / total_orders, 2)
                            if total_orders else 0.0),
    }
