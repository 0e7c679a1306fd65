from __future__ import annotations
from typing import Optional, Dict, Any, List, Tuple
from sqlalchemy import text, bindparam
from sqlalchemy.ext.asyncio import AsyncSession, AsyncConnection
import time


# ------------------------------------------------------------------------------
# DDL (idempotent)
# ------------------------------------------------------------------------------
SQL_CREATE_CHECKOUT_SESSIONS = r"""
-- hosted checkout sessions handed out to buyers, keyed by provider session id
CREATE TABLE IF NOT EXISTS checkout_sessions (
  psid           TEXT PRIMARY KEY,
  order_id       TEXT NOT NULL,
  sku_id         TEXT NOT NULL,
  game_id        TEXT NOT NULL,
  user_id        TEXT NOT NULL,
  amount         INTEGER NOT NULL,
  currency       TEXT NOT NULL,
  customer_email TEXT NOT NULL,
  locale         TEXT NOT NULL,
  created_at     DOUBLE PRECISION NOT NULL,
  expires_at     DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_CHECKOUT_PENDING = r"""
-- live "pending" index for the admin view
CREATE TABLE IF NOT EXISTS checkout_pending (
  psid       TEXT PRIMARY KEY,
  created_at DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_WEBHOOK_EVENTS = r"""
-- processed webhook events (idempotency keys)
CREATE TABLE IF NOT EXISTS webhook_events (
  key        TEXT PRIMARY KEY,
  created_at DOUBLE PRECISION NOT NULL
);
"""

SQL_CREATE_IDX_CHECKOUT_CREATED_AT = r"""
CREATE INDEX IF NOT EXISTS idx_checkout_pending_created_at
  ON checkout_pending (created_at);
"""


async def create_schema(db_or_conn: AsyncSession | AsyncConnection):
    exec_ = db_or_conn.execute
    await exec_(text(SQL_CREATE_CHECKOUT_SESSIONS))
    await exec_(text(SQL_CREATE_CHECKOUT_PENDING))
    await exec_(text(SQL_CREATE_WEBHOOK_EVENTS))
    await exec_(text(SQL_CREATE_IDX_CHECKOUT_CREATED_AT))


class CheckoutSessionStore:
    def __init__(self, *, db: AsyncSession, ttl_seconds: int) -> None:
        self.db = db
        self.ttl = ttl_seconds

    async def save(self, psid: str, mapping: Dict[str, Any]) -> None:
        created = float(mapping.get("created_at") or time.time())
        await self.db.execute(text("""
          INSERT INTO checkout_sessions(
            psid, order_id, sku_id, game_id, user_id, amount, currency,
            customer_email, locale, created_at, expires_at
          ) VALUES (
            :psid, :order_id, :sku_id, :game_id, :user_id, :amount, :currency,
            :customer_email, :locale, :created_at, :expires_at
          )
          ON CONFLICT (psid) DO UPDATE SET
            order_id=EXCLUDED.order_id, sku_id=EXCLUDED.sku_id,
            game_id=EXCLUDED.game_id,
            user_id=EXCLUDED.user_id, amount=EXCLUDED.amount,
            currency=EXCLUDED.currency,
            customer_email=EXCLUDED.customer_email,
            locale=EXCLUDED.locale,
            created_at=EXCLUDED.created_at,
            expires_at=EXCLUDED.expires_at
        """), {
            "psid": psid,
            "order_id": mapping["order_id"],
            "sku_id": mapping["sku_id"],
            "game_id": mapping.get("game_id") or "",
            "user_id": mapping["user_id"],
            "amount": int(mapping["amount"]),
            "currency": mapping["currency"],
            "customer_email": mapping.get("customer_email") or "",
            "locale": mapping.get("locale") or "en",
            "created_at": created,
            "expires_at": created + self.ttl,
        })
        await self.db.execute(text("""
          INSERT INTO checkout_pending(psid, created_at)
          VALUES(:psid, :created_at)
          ON CONFLICT (psid) DO UPDATE
          SET created_at=EXCLUDED.created_at
        """), {"psid": psid, "created_at": created})
        await self.db.commit()

    async def get(self, psid: str) -> Optional[Dict[str, Any]]:
        row = (await self.db.execute(text("""
          SELECT * FROM checkout_sessions WHERE psid=:psid
        """), {"psid": psid})).mappings().first()
        if not row:
            return None
        if float(row["expires_at"]) < time.time():
            return None
        return dict(row)

    async def remove_pending(self, psid: str) -> None:
        await self.db.execute(
            text("DELETE FROM checkout_pending WHERE psid=:psid"),
            {"psid": psid}
        )
        await self.db.commit()

    async def mark_event_seen(self, key: Optional[str]) -> bool:
        """True if the key is new, False if it was recorded before."""
        if not key:
            return True
        row = (await self.db.execute(text("""
          INSERT INTO webhook_events(key, created_at) VALUES(:k, :ts)
          ON CONFLICT (key) DO NOTHING
          RETURNING key
        """), {"k": key, "ts": time.time()})).first()
        await self.db.commit()
        return row is not None

    async def forget_event(self, key: Optional[str]) -> None:
        if not key:
            return
        await self.db.execute(
            text("DELETE FROM webhook_events WHERE key=:k"), {"k": key}
        )
        await self.db.commit()

    async def recent(
        self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        total = (await self.db.execute(
            text("SELECT COUNT(*) FROM checkout_pending")
        )).scalar_one()

        rows = (await self.db.execute(text("""
            SELECT
                p.psid,
                s.created_at,
                s.expires_at,
                s.order_id,
                s.sku_id,
                s.amount,
                s.currency,
                s.customer_email
            FROM checkout_pending AS p
            LEFT JOIN checkout_sessions AS s ON s.psid = p.psid
            ORDER BY p.created_at DESC
            LIMIT :lim
        """), {"lim": int(limit)})).mappings().all()

        now = time.time()
        items: List[Dict[str, Any]] = []
        dangling: List[str] = []

        for r in rows:
            psid = r["psid"]
            created = r["created_at"]

            # pending entry without a session row, or past its ttl
            if created is None or float(r["expires_at"]) < now:
                dangling.append(psid)
                continue

            created = float(created)
            items.append({
                "psid": psid,
                "created_at": created,
                "age_ms": int(max(0.0, now - created) * 1000),
                "order_id": r["order_id"] or "",
                "sku_id": r["sku_id"] or "",
                "email": r["customer_email"] or "",
                "amount": int(r["amount"] or 0),
                "currency": r["currency"] or "usd",
                "status": "pending",
            })

        if dangling:
            stmt = text(
                "DELETE FROM checkout_pending WHERE psid IN :psids"
            ).bindparams(bindparam("psids", expanding=True))
            await self.db.execute(stmt, {"psids": tuple(dangling)})
            await self.db.commit()
            total = max(0, int(total) - len(dangling))

        return int(total), items
