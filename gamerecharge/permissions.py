"""
Role checks.

A request's user is the profile whose id sits in the signed session cookie.
MERCHANT routes also admit ADMIN; ownership checks let admins through.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import get_db
from .errors import NotAuthenticated, NotFound, PermissionDenied
from .model.db import Game, Profile, Sku


async def current_user(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[Profile]:
    uid = request.session.get("uid")
    if not uid:
        return None
    user = await db.get(Profile, uid)
    if user is None:
        # profile deleted under a live session
        request.session.clear()
    return user


async def require_user(
    user: Optional[Profile] = Depends(current_user),
) -> Profile:
    if user is None:
        raise NotAuthenticated()
    return user


async def require_merchant(user: Profile = Depends(require_user)) -> Profile:
    if user.role not in ("MERCHANT", "ADMIN"):
        raise PermissionDenied("Merchant access required")
    return user


async def require_admin(user: Profile = Depends(require_user)) -> Profile:
    if user.role != "ADMIN":
        raise PermissionDenied("Admin access required")
    return user


def is_admin(user: Optional[Profile]) -> bool:
    return user is not None and user.role == "ADMIN"


def verify_game_ownership(game: Game, user: Profile) -> bool:
    return is_admin(user) or game.merchant_id == user.id


async def verify_sku_ownership(db: AsyncSession, sku: Sku,
                               user: Profile) -> bool:
    if is_admin(user):
        return True
    game = await db.get(Game, sku.game_id)
    return game is not None and game.merchant_id == user.id


async def check_resource_access(db: AsyncSession, kind: str,
                                resource_id: str, user: Profile) -> bool:
    if kind == "game":
        game = await db.get(Game, resource_id)
        if game is None:
            raise NotFound("Game not found")
        return verify_game_ownership(game, user)
    if kind == "sku":
        sku = await db.get(Sku, resource_id)
        if sku is None:
            raise NotFound("SKU not found")
        return await verify_sku_ownership(db, sku, user)
    raise ValueError(f"unknown resource kind: {kind}")


async def owned_game(db: AsyncSession, game_id: str, user: Profile) -> Game:
    game = await db.get(Game, game_id)
    if game is None:
        raise NotFound("Game not found")
    if not verify_game_ownership(game, user):
        raise PermissionDenied("You do not own this game")
    return game


async def owned_sku(db: AsyncSession, sku_id: str, user: Profile) -> Sku:
    sku = await db.get(Sku, sku_id)
    if sku is None:
        raise NotFound("SKU not found")
    if not await verify_sku_ownership(db, sku, user):
        raise PermissionDenied("You do not own this SKU")
    return sku
