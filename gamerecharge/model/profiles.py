from typing import Any, Dict, Optional

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Conflict, InvalidCredentials, ValidationFailed
from ..helpers import to_iso
from ..infra.log import get_logger
from .db import Profile

log = get_logger(__name__)

# bcrypt only looks at the first 72 bytes and newer releases refuse more
_BCRYPT_MAX = 72

# compared against on unknown emails so both failure paths cost one checkpw
_DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt()).decode()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8")[:_BCRYPT_MAX], bcrypt.gensalt()
    ).decode()


def check_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:_BCRYPT_MAX],
                              hashed.encode())
    except ValueError:
        # malformed stored hash
        return False


def profile_dict(p: Profile) -> Dict[str, Any]:
    return {
        "id": p.id,
        "email": p.email,
        "role": p.role,
        "merchant_name": p.merchant_name,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


async def find_by_email(db: AsyncSession, email: str) -> Optional[Profile]:
    res = await db.execute(
        select(Profile).where(Profile.email == email.strip().lower())
    )
    return res.scalars().first()


async def create_profile(db: AsyncSession, *, email: str,
                         password: Optional[str], role: str = "USER",
                         merchant_name: Optional[str] = None,
                         profile_id: Optional[str] = None) -> Profile:
    email = email.strip().lower()
    if role == "MERCHANT":
        merchant_name = (merchant_name or "").strip()
        if not merchant_name:
            raise ValidationFailed("Merchant name is required for merchants")
    else:
        merchant_name = None

    if await find_by_email(db, email) is not None:
        raise Conflict("An account with this email already exists")

    profile = Profile(
        email=email,
        password_hash=hash_password(password) if password else None,
        role=role,
        merchant_name=merchant_name,
    )
    if profile_id:
        profile.id = profile_id
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent registration with the same email or id
        await db.rollback()
        raise Conflict("An account with this email already exists")
    log.info("created %s profile %s", role, profile.id)
    return profile


async def register(db: AsyncSession, *, email: str, password: str,
                   role: str = "USER",
                   merchant_name: Optional[str] = None) -> Profile:
    if role not in ("USER", "MERCHANT"):
        raise ValidationFailed("Invalid role")
    if len(password) < 8:
        raise ValidationFailed("Password must be at least 8 characters")
    return await create_profile(db, email=email, password=password,
                                role=role, merchant_name=merchant_name)


async def login(db: AsyncSession, email: str, password: str) -> Profile:
    profile = await find_by_email(db, email)
    if profile is None:
        check_password(password, _DUMMY_HASH)
        raise InvalidCredentials()
    if not check_password(password, profile.password_hash):
        raise InvalidCredentials()
    return profile


def infer_role(email: str) -> tuple[str, Optional[str]]:
    """Role for a first sign-in, guessed from the email address."""
    email = email.lower()
    if "merchant" in email:
        return "MERCHANT", email.split("@")[0]
    if "admin" in email:
        return "ADMIN", None
    return "USER", None


async def ensure_profile(db: AsyncSession, user_id: str,
                         email: str) -> Dict[str, Any]:
    existing = await db.get(Profile, user_id)
    if existing is not None:
        return {"created": False, "role": existing.role}

    role, merchant_name = infer_role(email)
    log.info("no profile for %s, provisioning as %s", user_id, role)
    profile = await create_profile(db, email=email, password=None, role=role,
                                   merchant_name=merchant_name,
                                   profile_id=user_id)
    return {"created": True, "role": profile.role}


async def bootstrap_admin(db: AsyncSession, email: str,
                          password: str) -> Optional[Profile]:
    if not email or not password:
        return None
    existing = await find_by_email(db, email)
    if existing is not None:
        return None
    profile = await create_profile(db, email=email, password=password,
                                   role="ADMIN")
    log.info("bootstrap admin %s created", email)
    return profile
