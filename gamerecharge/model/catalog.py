"""
Public catalog reads: game listing, search, featured games and SKUs.

Games are returned with their merchant's display name and their SKUs. The
SKUs for a page of games are loaded with one IN query.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound
from ..helpers import to_iso
from .db import Game, Profile, Sku


def sku_dict(s: Sku) -> Dict[str, Any]:
    return {
        "id": s.id,
        "game_id": s.game_id,
        "name": s.name,
        "description": s.description,
        "prices": s.prices,
        "image_url": s.image_url,
        "created_at": to_iso(s.created_at),
        "updated_at": to_iso(s.updated_at),
    }


def game_dict(g: Game, merchant_name: Optional[str],
              skus: Optional[List[Sku]] = None) -> Dict[str, Any]:
    out = {
        "id": g.id,
        "name": g.name,
        "description": g.description,
        "banner_url": g.banner_url,
        "merchant_id": g.merchant_id,
        "merchant_name": merchant_name,
        "status": g.status,
        "created_at": to_iso(g.created_at),
        "updated_at": to_iso(g.updated_at),
    }
    if skus is not None:
        out["skus"] = [sku_dict(s) for s in skus]
    return out


def _games_with_merchant():
    return (
        select(Game, Profile.merchant_name)
        .join(Profile, Profile.id == Game.merchant_id)
    )


async def skus_by_game(db: AsyncSession,
                       game_ids: Iterable[str]) -> Dict[str, List[Sku]]:
    ids = list(game_ids)
    out: Dict[str, List[Sku]] = {gid: [] for gid in ids}
    if not ids:
        return out
    res = await db.execute(
        select(Sku).where(Sku.game_id.in_(ids))
        .order_by(Sku.created_at.asc(), Sku.id.asc())
    )
    for sku in res.scalars():
        out[sku.game_id].append(sku)
    return out


async def _with_skus(db: AsyncSession, rows) -> List[Dict[str, Any]]:
    skus = await skus_by_game(db, [g.id for g, _ in rows])
    return [game_dict(g, name, skus[g.id]) for g, name in rows]


async def list_games(db: AsyncSession, limit: int = 20,
                     offset: int = 0) -> Dict[str, Any]:
    total = (await db.execute(
        select(func.count(Game.id)).where(Game.status == "active")
    )).scalar_one()
    rows = (await db.execute(
        _games_with_merchant()
        .where(Game.status == "active")
        .order_by(Game.created_at.desc(), Game.id.desc())
        .limit(limit).offset(offset)
    )).all()
    return {
        "games": await _with_skus(db, rows),
        "total": int(total),
        "has_more": int(total) > offset + limit,
    }


def _matches(game: Game, needle: str) -> bool:
    for field in (game.name, game.description):
        for locale in ("en", "zh"):
            value = (field or {}).get(locale) or ""
            if needle in value.lower():
                return True
    return False


async def search_games(db: AsyncSession, query: str, limit: int = 20,
                       offset: int = 0) -> Dict[str, Any]:
    needle = (query or "").strip().lower()
    stmt = (
        _games_with_merchant()
        .where(Game.status == "active")
        .order_by(Game.created_at.desc(), Game.id.desc())
    )
    if needle and db.get_bind().dialect.name == "postgresql":
        # sqlite lower() folds ASCII only; _matches does the work there
        stmt = stmt.where(or_(
            func.lower(cast(Game.name, String), type_=String).contains(
                needle, autoescape=True),
            func.lower(cast(Game.description, String),
                       type_=String).contains(
                needle, autoescape=True),
        ))
    rows = (await db.execute(stmt)).all()
    if needle:
        rows = [(g, name) for g, name in rows if _matches(g, needle)]

    total = len(rows)
    page = rows[offset:offset + limit]
    return {
        "games": await _with_skus(db, page),
        "total": total,
        "has_more": total > offset + limit,
        "query": query,
    }


async def featured_games(db: AsyncSession,
                         limit: int = 6) -> List[Dict[str, Any]]:
    has_skus = select(Sku.id).where(Sku.game_id == Game.id).exists()
    rows = (await db.execute(
        _games_with_merchant()
        .where(Game.status == "active", has_skus)
        .order_by(Game.created_at.desc(), Game.id.desc())
        .limit(limit)
    )).all()
    return await _with_skus(db, rows)


async def get_game(db: AsyncSession, game_id: str,
                   viewer: Optional[Profile] = None) -> Dict[str, Any]:
    row = (await db.execute(
        _games_with_merchant().where(Game.id == game_id)
    )).first()
    if row is None:
        raise NotFound("Game not found")
    game, merchant_name = row
    if game.status != "active":
        # hidden from the storefront, still visible to its owner and admins
        owner = viewer is not None and (
            viewer.role == "ADMIN" or viewer.id == game.merchant_id)
        if not owner:
            raise NotFound("Game not found")
    skus = await skus_by_game(db, [game.id])
    return game_dict(game, merchant_name, skus[game.id])


async def get_game_skus(db: AsyncSession,
                        game_id: str) -> List[Dict[str, Any]]:
    skus = await skus_by_game(db, [game_id])
    return [sku_dict(s) for s in skus[game_id]]


async def get_sku_with_game(db: AsyncSession, sku_id: str):
    """(sku, game) for checkout, or None when either is missing."""
    row = (await db.execute(
        select(Sku, Game).join(Game, Game.id == Sku.game_id)
        .where(Sku.id == sku_id)
    )).first()
    if row is None:
        return None
    return row[0], row[1]
