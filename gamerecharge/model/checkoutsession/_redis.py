from __future__ import annotations
from typing import Optional, Dict, Any, Tuple, List
import time
import redis.asyncio as redis


# ---- keys
def k_cs(psid: str) -> str: return f"cs:{psid}"
def k_idemp(key: str) -> str: return f"idemp:{key}"


PENDING_INDEX = "checkout_pending"


class CheckoutSessionStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def save(self, psid: str, mapping: Dict[str, Any]) -> None:
        # values must be strings for decode_responses=True
        created = float(mapping.get("created_at") or time.time())
        h = {k: str(v) for k, v in mapping.items() if v is not None}
        h["created_at"] = str(created)
        h["expires_at"] = str(created + self.ttl)
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_cs(psid), mapping=h)
        pipe.expire(k_cs(psid), self.ttl)
        pipe.zadd(PENDING_INDEX, {psid: created})
        await pipe.execute()

    async def get(self, psid: str) -> Optional[Dict[str, Any]]:
        h = await self.r.hgetall(k_cs(psid))
        if not h:
            return None
        out: Dict[str, Any] = dict(h)
        out["psid"] = psid
        out["amount"] = int(h.get("amount", "0"))
        out["created_at"] = float(h.get("created_at", "0"))
        out["expires_at"] = float(h.get("expires_at", "0"))
        return out

    async def remove_pending(self, psid: str) -> None:
        # the session hash itself expires with its ttl
        await self.r.zrem(PENDING_INDEX, psid)

    async def mark_event_seen(self, key: Optional[str]) -> bool:
        if not key:
            return True
        ok = await self.r.set(k_idemp(key), "1", nx=True, ex=7 * 24 * 3600)
        return bool(ok)

    async def forget_event(self, key: Optional[str]) -> None:
        if key:
            await self.r.delete(k_idemp(key))

    async def recent(
            self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        total = await self.r.zcard(PENDING_INDEX)
        psids = await self.r.zrevrange(PENDING_INDEX, 0, max(0, limit - 1))

        pipe = self.r.pipeline()
        for psid in psids:
            pipe.hgetall(k_cs(psid))
        rows = await pipe.execute()

        now = time.time()
        items = []
        for psid, h in zip(psids, rows):
            # house-keeping: the hash expired before the index entry
            if not h:
                await self.remove_pending(psid)
                total -= 1
                continue

            try:
                created = float(h.get("created_at", "0"))
            except ValueError:
                created = 0.0
            items.append({
                "psid": psid,
                "created_at": created,
                "age_ms": int(max(0.0, now - created) * 1000),
                "order_id": h.get("order_id", ""),
                "sku_id": h.get("sku_id", ""),
                "email": h.get("customer_email", ""),
                "amount": int(h.get("amount", "0")),
                "currency": h.get("currency", "usd"),
                "status": "pending",
            })
        return max(0, int(total)), items
