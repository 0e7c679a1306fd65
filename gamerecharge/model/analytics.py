"""
Merchant analytics.

Totals, top SKUs, per-game revenue and the status breakdown are SQL
aggregates over the reporting window. Day, hour and calendar-period series
are bucketed in Python from the raw ``(created_at, amount, status)`` rows so
that they honour the caller's timezone on every database backend.

All money values are integer cents.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ValidationFailed
from ..helpers import (
    format_price, localized, now_ts, percent_change, to_iso,
)
from ..infra.timings import timeit
from .db import Game, Order, Profile, Sku
from .orders import check_status_filter

DASHBOARD_DAYS = 30
TOP_SKUS = 10
RECENT_ORDERS = 5
GROUP_BY = ("day", "week", "month")

# (created_at, amount, status)
OrderPoint = Tuple[float, int, str]


# ----------------------------
# Time helpers
# ----------------------------
def get_tz(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationFailed(f"Unknown timezone: {name}")


def _local(ts: float, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(ts, tz=tz)


def _month_start(d: date) -> date:
    return d.replace(day=1)


def _prev_month_start(d: date) -> date:
    first = _month_start(d)
    return _month_start(first - timedelta(days=1))


def _day_start_ts(d: date, tz: tzinfo) -> float:
    return datetime(d.year, d.month, d.day, tzinfo=tz).timestamp()


def period_key(ts: float, group_by: str, tz: tzinfo = timezone.utc) -> str:
    d = _local(ts, tz).date()
    if group_by == "week":
        d = d - timedelta(days=d.weekday())
    elif group_by == "month":
        d = _month_start(d)
    return d.isoformat()


# ----------------------------
# Python bucketing
# ----------------------------
def daily_series(points: Iterable[OrderPoint], now: float,
                 tz: tzinfo = timezone.utc,
                 days: int = DASHBOARD_DAYS) -> List[Dict[str, Any]]:
    """Exactly `days` consecutive days ending today, zero-filled."""
    today = _local(now, tz).date()
    buckets: Dict[date, Dict[str, Any]] = {}
    for i in range(days - 1, -1, -1):
        d = today - timedelta(days=i)
        buckets[d] = {"date": d.isoformat(), "revenue": 0, "orders": 0,
                      "completed_orders": 0}
    for ts, amount, status in points:
        b = buckets.get(_local(ts, tz).date())
        if b is None:
            continue
        b["orders"] += 1
        if status == "completed":
            b["revenue"] += amount
            b["completed_orders"] += 1
    return list(buckets.values())


def hourly_series(points: Iterable[OrderPoint],
                  tz: tzinfo = timezone.utc) -> List[Dict[str, Any]]:
    hours = [{"hour": h, "revenue": 0, "orders": 0} for h in range(24)]
    for ts, amount, status in points:
        b = hours[_local(ts, tz).hour]
        b["orders"] += 1
        if status == "completed":
            b["revenue"] += amount
    return hours


def period_totals(points: Iterable[OrderPoint], now: float,
                  tz: tzinfo = timezone.utc) -> Dict[str, int]:
    today = _local(now, tz).date()
    yesterday = today - timedelta(days=1)
    this_month = _month_start(today)
    last_month = _prev_month_start(today)

    out = {f"{p}_{m}": 0 for p in ("today", "yesterday", "this_month",
                                   "last_month")
           for m in ("revenue", "orders")}
    for ts, amount, status in points:
        d = _local(ts, tz).date()
        hits = []
        if d == today:
            hits.append("today")
        elif d == yesterday:
            hits.append("yesterday")
        if _month_start(d) == this_month:
            hits.append("this_month")
        elif _month_start(d) == last_month:
            hits.append("last_month")
        for p in hits:
            out[f"{p}_orders"] += 1
            if status == "completed":
                out[f"{p}_revenue"] += amount
    return out


def status_breakdown(counts: Dict[str, int]) -> List[Dict[str, Any]]:
    """Count and percentage per status, largest first; shares sum to 100."""
    total = sum(counts.values())
    rows = sorted(((s, n) for s, n in counts.items() if n),
                  key=lambda r: (-r[1], r[0]))
    out = [{"status": s, "count": n,
            "percentage": round(n * 100.0 / total, 2)} for s, n in rows]
    if out:
        drift = round(100.0 - sum(r["percentage"] for r in out), 2)
        out[0]["percentage"] = round(out[0]["percentage"] + drift, 2)
    return out


def _rate(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 2) if whole else 0.0


# ----------------------------
# SQL building blocks
# ----------------------------
def _completed_sum():
    return func.coalesce(func.sum(
        case((Order.status == "completed", Order.amount), else_=0)), 0)


def _status_count(status: str):
    return func.coalesce(func.sum(
        case((Order.status == status, 1), else_=0)), 0)


def _completed_avg():
    return func.coalesce(func.avg(
        case((Order.status == "completed", Order.amount), else_=None)), 0)


def _window(merchant_id: str, start: float, end: float):
    return (Order.merchant_id == merchant_id,
            Order.created_at >= start, Order.created_at <= end)


async def _summary(db: AsyncSession, conds) -> Dict[str, Any]:
    r = (await db.execute(
        select(
            func.count(Order.id).label("total_orders"),
            _completed_sum().label("total_revenue"),
            _status_count("completed").label("completed_orders"),
            _status_count("pending").label("pending_orders"),
            _status_count("failed").label("failed_orders"),
            _status_count("refunded").label("refunded_orders"),
            func.count(distinct(Order.user_id)).label("unique_customers"),
            _completed_avg().label("average_order_value"),
        ).where(*conds)
    )).one()
    return {
        "total_revenue": int(r.total_revenue),
        "total_orders": int(r.total_orders),
        "completed_orders": int(r.completed_orders),
        "pending_orders": int(r.pending_orders),
        "failed_orders": int(r.failed_orders),
        "refunded_orders": int(r.refunded_orders),
        "unique_customers": int(r.unique_customers),
        "average_order_value": round(float(r.average_order_value), 2),
    }


async def _points(db: AsyncSession, merchant_id: str,
                  since: float, until: float) -> List[OrderPoint]:
    rows = (await db.execute(
        select(Order.created_at, Order.amount, Order.status)
        .where(*_window(merchant_id, since, until))
    )).all()
    return [(float(ts), int(amount), status) for ts, amount, status in rows]


async def _names(db: AsyncSession, sku_ids: Sequence[str] = (),
                 game_ids: Sequence[str] = ()):
    skus: Dict[str, Tuple[Dict, Dict, Dict]] = {}
    games: Dict[str, Dict] = {}
    if sku_ids:
        for sid, sname, prices, gname in (await db.execute(
            select(Sku.id, Sku.name, Sku.prices, Game.name)
            .join(Game, Game.id == Sku.game_id)
            .where(Sku.id.in_(list(sku_ids)))
        )).all():
            skus[sid] = (sname, prices, gname)
    if game_ids:
        for gid, gname in (await db.execute(
            select(Game.id, Game.name).where(Game.id.in_(list(game_ids)))
        )).all():
            games[gid] = gname
    return skus, games


# ----------------------------
# Dashboard
# ----------------------------
async def dashboard_analytics(db: AsyncSession, merchant_id: str,
                              now: Optional[float] = None,
                              tz_name: str = "UTC",
                              locale: str = "en") -> Dict[str, Any]:
    tz = get_tz(tz_name)
    now = now_ts() if now is None else now
    start = now - DASHBOARD_DAYS * 86400
    conds = _window(merchant_id, start, now)

    async with timeit("analytics.dashboard"):
        out = await _summary(db, conds)
        out["conversion_rate"] = _rate(out["completed_orders"],
                                       out["total_orders"])

        # calendar periods may reach back past the rolling window
        today = _local(now, tz).date()
        since = min(
            start,
            _day_start_ts(_prev_month_start(today), tz),
            _day_start_ts(today - timedelta(days=DASHBOARD_DAYS - 1), tz),
        )
        points = await _points(db, merchant_id, since, now)
        out.update(period_totals(points, now, tz))
        out["revenue_change"] = percent_change(out["today_revenue"],
                                               out["yesterday_revenue"])
        out["month_revenue_change"] = percent_change(
            out["this_month_revenue"], out["last_month_revenue"])
        out["daily_sales"] = daily_series(points, now, tz)
        out["hourly_sales"] = hourly_series(
            [p for p in points if p[0] >= start], tz)

        completed = conds + (Order.status == "completed",)
        top = (await db.execute(
            select(
                Order.sku_id,
                func.sum(Order.amount).label("total_revenue"),
                func.count(Order.id).label("order_count"),
            ).where(*completed).group_by(Order.sku_id)
            .order_by(func.sum(Order.amount).desc(), Order.sku_id)
            .limit(TOP_SKUS)
        )).all()
        by_game = (await db.execute(
            select(
                Sku.game_id,
                func.sum(Order.amount).label("total_revenue"),
                func.count(Order.id).label("order_count"),
                func.count(distinct(Order.sku_id)).label("sku_count"),
            ).join(Sku, Sku.id == Order.sku_id)
            .where(*completed).group_by(Sku.game_id)
            .order_by(func.sum(Order.amount).desc(), Sku.game_id)
        )).all()
        skus, games = await _names(db, [r.sku_id for r in top],
                                   [r.game_id for r in by_game])

        out["top_skus"] = []
        for r in top:
            sname, prices, gname = skus.get(r.sku_id, ({}, {}, {}))
            out["top_skus"].append({
                "sku_id": r.sku_id,
                "sku_name": localized(sname, locale),
                "game_name": localized(gname, locale),
                "total_revenue": int(r.total_revenue),
                "order_count": int(r.order_count),
                "price": format_price(int((prices or {}).get("usd", 0)),
                                      "usd", locale),
            })
        out["revenue_by_game"] = [{
            "game_id": r.game_id,
            "game_name": localized(games.get(r.game_id), locale),
            "total_revenue": int(r.total_revenue),
            "order_count": int(r.order_count),
            "sku_count": int(r.sku_count),
        } for r in by_game]

        counts = dict((await db.execute(
            select(Order.status, func.count(Order.id))
            .where(*conds).group_by(Order.status)
        )).all())
        out["order_status_breakdown"] = status_breakdown(
            {s: int(n) for s, n in counts.items()})

        recent = (await db.execute(
            select(Order, Sku.name.label("sku_name"),
                   Game.name.label("game_name"))
            .join(Sku, Sku.id == Order.sku_id)
            .join(Game, Game.id == Sku.game_id)
            .where(*conds)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(RECENT_ORDERS)
        )).all()
        out["recent_orders"] = [{
            "order_id": r.Order.id,
            # buyers stay pseudonymous to merchants
            "customer_email": f"Customer {r.Order.user_id[:8]}",
            "sku_name": localized(r.sku_name, locale),
            "game_name": localized(r.game_name, locale),
            "amount": r.Order.amount,
            "currency": r.Order.currency,
            "status": r.Order.status,
            "created_at": to_iso(r.Order.created_at),
        } for r in recent]
    return out


# ----------------------------
# Orders overview
# ----------------------------
def _range(start: Optional[float], end: Optional[float],
           default_days: int = 30) -> Tuple[float, float]:
    end = now_ts() if end is None else end
    start = end - default_days * 86400 if start is None else start
    if start >= end:
        raise ValidationFailed("Start date must be before end date")
    return start, end


async def orders_overview(db: AsyncSession, merchant_id: str,
                          start: Optional[float] = None,
                          end: Optional[float] = None,
                          status: Optional[str] = None, limit: int = 50,
                          offset: int = 0,
                          locale: str = "en") -> Dict[str, Any]:
    start, end = _range(start, end)
    status = check_status_filter(status)
    limit = max(1, min(limit, 200))
    offset = max(0, offset)

    conds = _window(merchant_id, start, end)
    if status is not None:
        conds = conds + (Order.status == status,)

    summary = await _summary(db, conds)
    rows = (await db.execute(
        select(Order, Sku.name.label("sku_name"),
               Sku.prices.label("prices"), Game.id.label("game_id"),
               Game.name.label("game_name"),
               Profile.created_at.label("customer_created_at"))
        .join(Sku, Sku.id == Order.sku_id)
        .join(Game, Game.id == Sku.game_id)
        .join(Profile, Profile.id == Order.user_id)
        .where(*conds)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit).offset(offset)
    )).all()

    orders = [{
        "order_id": r.Order.id,
        "customer_email": f"Customer {r.Order.user_id[:8]}",
        "sku_id": r.Order.sku_id,
        "sku_name": localized(r.sku_name, locale),
        "game_id": r.game_id,
        "game_name": localized(r.game_name, locale),
        "amount": r.Order.amount,
        "currency": r.Order.currency,
        "status": r.Order.status,
        "price": (r.prices or {}).get("usd"),
        "created_at": to_iso(r.Order.created_at),
        "updated_at": to_iso(r.Order.updated_at),
        "customer_registered_at": to_iso(r.customer_created_at),
    } for r in rows]

    summary["date_range"] = {"start_date": to_iso(start),
                             "end_date": to_iso(end)}
    summary["status_filter"] = status or "all"
    return {
        "orders": orders,
        "total_count": summary["total_orders"],
        "summary": summary,
    }


# ----------------------------
# Products performance
# ----------------------------
async def products_performance(db: AsyncSession, merchant_id: str,
                               start: Optional[float] = None,
                               end: Optional[float] = None,
                               game_id: Optional[str] = None,
                               locale: str = "en") -> Dict[str, Any]:
    start, end = _range(start, end)
    days = max(1, int((end - start) // 86400))

    sku_conds = [Game.merchant_id == merchant_id]
    if game_id:
        sku_conds.append(Game.id == game_id)
    skus = (await db.execute(
        select(Sku, Game.name.label("game_name"))
        .join(Game, Game.id == Sku.game_id).where(*sku_conds)
    )).all()

    metrics = {r.sku_id: r for r in (await db.execute(
        select(
            Order.sku_id,
            func.count(Order.id).label("total_orders"),
            _status_count("completed").label("completed_orders"),
            _completed_sum().label("total_revenue"),
            _completed_avg().label("avg_order_value"),
            func.min(Order.created_at).label("first_order"),
            func.max(Order.created_at).label("last_order"),
        )
        .where(*_window(merchant_id, start, end),
               Order.sku_id.in_([r.Sku.id for r in skus]))
        .group_by(Order.sku_id)
    )).all()} if skus else {}

    items = []
    for r in skus:
        sku: Sku = r.Sku
        m = metrics.get(sku.id)
        total = int(m.total_orders) if m else 0
        completed = int(m.completed_orders) if m else 0
        items.append({
            "sku_id": sku.id,
            "sku_name": localized(sku.name, locale),
            "sku_description": localized(sku.description, locale) or None,
            "price": (sku.prices or {}).get("usd"),
            "image_url": sku.image_url,
            "game_id": sku.game_id,
            "game_name": localized(r.game_name, locale),
            "total_orders": total,
            "completed_orders": completed,
            "total_revenue": int(m.total_revenue) if m else 0,
            "average_order_value": (round(float(m.avg_order_value), 2)
                                    if m else 0.0),
            "completion_rate": _rate(completed, total),
            "daily_average_orders": round(total / days, 2),
            "first_order_date": to_iso(m.first_order if m
                                       else sku.created_at),
            "last_order_date": to_iso(m.last_order if m else sku.created_at),
            "created_at": to_iso(sku.created_at),
        })
    items.sort(key=lambda s: (-s["total_revenue"], s["sku_id"]))

    top = next((s for s in items if s["total_revenue"] > 0), None)
    rates = [s["completion_rate"] for s in items]
    return {
        "skus": items,
        "summary": {
            "total_skus": len(items),
            "active_skus": sum(1 for s in items if s["total_orders"] > 0),
            "total_revenue": sum(s["total_revenue"] for s in items),
            "total_orders": sum(s["total_orders"] for s in items),
            "completed_orders": sum(s["completed_orders"] for s in items),
            "average_completion_rate": (round(sum(rates) / len(rates), 2)
                                        if rates else 0.0),
            "top_performing_sku": {
                "sku_id": top["sku_id"],
                "sku_name": top["sku_name"],
                "revenue": top["total_revenue"],
            } if top else None,
            "date_range": {"start_date": to_iso(start),
                           "end_date": to_iso(end)},
            "game_filter": game_id or "all",
        },
    }


# ----------------------------
# Revenue by game over time
# ----------------------------
async def revenue_series(db: AsyncSession, merchant_id: str,
                         start: Optional[float] = None,
                         end: Optional[float] = None, group_by: str = "day",
                         tz_name: str = "UTC",
                         locale: str = "en") -> Dict[str, Any]:
    if group_by not in GROUP_BY:
        raise ValidationFailed("group_by must be one of: day, week, month")
    tz = get_tz(tz_name)
    start, end = _range(start, end)

    games = dict((await db.execute(
        select(Game.id, Game.name).where(Game.merchant_id == merchant_id)
    )).all())
    rows = (await db.execute(
        select(Sku.game_id, Order.created_at, Order.amount, Order.status,
               Order.user_id)
        .join(Sku, Sku.id == Order.sku_id)
        .where(*_window(merchant_id, start, end))
    )).all()

    cells: Dict[Tuple[str, str], Dict[str, Any]] = {}
    customers: Dict[Tuple[str, str], set] = {}
    for gid, ts, amount, status, uid in rows:
        key = (gid, period_key(float(ts), group_by, tz))
        c = cells.setdefault(key, {"order_count": 0, "completed_orders": 0,
                                   "revenue": 0})
        c["order_count"] += 1
        if status == "completed":
            c["completed_orders"] += 1
            c["revenue"] += int(amount)
        customers.setdefault(key, set()).add(uid)

    data = []
    for (gid, period), c in cells.items():
        data.append({
            "game_id": gid,
            "game_name": localized(games.get(gid), locale),
            "period": period,
            **c,
            "unique_customers": len(customers[(gid, period)]),
            "average_order_value": (round(c["revenue"]
                                          / c["completed_orders"], 2)
                                    if c["completed_orders"] else 0.0),
        })
    data.sort(key=lambda d: (d["period"], d["revenue"]), reverse=True)

    per_game: Dict[str, int] = {}
    per_period: Dict[str, Dict[str, int]] = {}
    for d in data:
        per_game[d["game_id"]] = per_game.get(d["game_id"], 0) + d["revenue"]
        p = per_period.setdefault(d["period"], {"revenue": 0, "orders": 0})
        p["revenue"] += d["revenue"]
        p["orders"] += d["order_count"]

    top_id = max((g for g, rev in per_game.items() if rev > 0),
                 key=lambda g: per_game[g], default=None)
    return {
        "revenue_data": data,
        "summary": {
            "total_games": len(games),
            "active_games": sum(1 for rev in per_game.values() if rev > 0),
            "total_revenue": sum(per_game.values()),
            "total_orders": sum(d["order_count"] for d in data),
            "completed_orders": sum(d["completed_orders"] for d in data),
            "unique_customers": len({r[4] for r in rows}),
            "top_game": {
                "game_id": top_id,
                "game_name": localized(games.get(top_id), locale),
                "revenue": per_game[top_id],
            } if top_id else None,
            "period_breakdown": [
                {"period": k, **v}
                for k, v in sorted(per_period.items(), reverse=True)
            ],
            "date_range": {"start_date": to_iso(start),
                           "end_date": to_iso(end)},
            "group_by": group_by,
        },
    }
