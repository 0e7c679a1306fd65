from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)

from ..helpers import new_id, now_ts


Base = declarative_base()

ORDER_STATUSES = ("pending", "completed", "failed", "refunded")


# ----------------------------
# ORM models
# ----------------------------
class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=True)

    # USER | MERCHANT | ADMIN
    role = Column(String(20), nullable=False, default="USER")
    merchant_name = Column(String(255), nullable=True)

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    __table_args__ = (
        CheckConstraint("role IN ('USER', 'MERCHANT', 'ADMIN')",
                        name="profiles_role_check"),
        CheckConstraint("role != 'MERCHANT' OR merchant_name IS NOT NULL",
                        name="profiles_merchant_name_check"),
        Index("profiles_role_idx", "role"),
    )


class Game(Base):
    __tablename__ = "games"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(JSON, nullable=False)          # {"en": ..., "zh": ...}
    description = Column(JSON, nullable=True)    # {"en": ..., "zh": ...}
    banner_url = Column(String(500), nullable=True)
    merchant_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"),
                         nullable=False)

    # active | inactive | suspended
    status = Column(String(20), nullable=False, default="active")

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'suspended')",
                        name="games_status_check"),
        Index("games_merchant_id_idx", "merchant_id"),
        Index("games_created_at_idx", "created_at"),
    )


class Sku(Base):
    __tablename__ = "skus"
    id = Column(String, primary_key=True, default=new_id)
    game_id = Column(String, ForeignKey("games.id", ondelete="CASCADE"),
                     nullable=False)
    name = Column(JSON, nullable=False)
    description = Column(JSON, nullable=True)
    prices = Column(JSON, nullable=False)        # {"usd": 999, ...} cents
    image_url = Column(String(500), nullable=True)

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)

    __table_args__ = (
        Index("skus_game_id_idx", "game_id"),
        Index("skus_created_at_idx", "created_at"),
    )


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"),
                     nullable=False)
    sku_id = Column(String, ForeignKey("skus.id", ondelete="CASCADE"),
                    nullable=False)
    merchant_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"),
                         nullable=False)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(10), nullable=False, default="usd")

    # pending | completed | failed | refunded
    status = Column(String(20), nullable=False, default="pending")
    refund_amount = Column(Integer, nullable=True)

    checkout_session_id = Column(String(255), nullable=True, unique=True)

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts,
                        onupdate=now_ts)
    paid_at = Column(Float, nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="orders_amount_check"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')",
            name="orders_status_check"),
        CheckConstraint(
            "refund_amount IS NULL OR "
            "(refund_amount >= 0 AND refund_amount <= amount)",
            name="orders_refund_amount_check"),
        Index("orders_user_id_idx", "user_id"),
        Index("orders_sku_id_idx", "sku_id"),
        Index("orders_merchant_status_idx", "merchant_id", "status"),
        Index("orders_created_at_idx", "created_at"),
    )
