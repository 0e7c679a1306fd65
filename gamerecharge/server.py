import json
import os
import time
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, RedirectResponse, Response,
)
from fastapi.templating import Jinja2Templates
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from . import config
from .checkout import create_checkout_session, handle_webhook, make_adapter
from .deps import (
    CHECKOUT_BACKEND, SessionAsync, checkout_sessions, engine, gated,
    get_db,
)
from .errors import AppError, NotFound, PermissionDenied, ValidationFailed
from .helpers import (
    format_date, format_price, localized, parse_when, placeholder_svg,
    to_chart_series, truncate_text,
)
from .infra import timings
from .infra.log import configure_logging, get_logger
from .infra.sql import create_tables
from .infra.timings import timeit
from .mockpay import MOCK_EVENT_KINDS, PaymentAdapter, mock_event, mock_signature
from .model import admin as admin_model
from .model import analytics, catalog, merchant, orders, profiles
from .model.checkoutsession import CheckoutSessionStore, create_schema
from .model.db import Base, Game, Order, Profile, Sku
from .permissions import (
    check_resource_access, current_user, require_admin, require_merchant,
    require_user,
)
from .schemas import (
    CheckoutRequest, EnsureProfileRequest, GameCreate, GameStatusUpdate,
    GameUpdate, LoginRequest, MerchantCreate, OrderStatusUpdate,
    RegisterRequest, RoleUpdate, SkuCreate, SkuUpdate,
)

log = get_logger(__name__)

templates = Jinja2Templates(
    directory=os.path.join(os.path.dirname(__file__), "templates")
)
templates.env.filters["price"] = format_price
templates.env.filters["date"] = format_date
templates.env.filters["truncate_text"] = truncate_text
templates.env.filters["localized"] = localized

adapter: PaymentAdapter = make_adapter()

app = FastAPI(
    title=config.APP_NAME,
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    configure_logging(config.LOG_LEVEL)
    timings.slow_threshold = config.SLOW_OP_SECONDS
    print('\n' * 3)
    print('=' * 50)
    S = 'SQL' if CHECKOUT_BACKEND == 'sql' else 'Redis'
    print(f'{config.APP_NAME} is starting up...')
    print(f'   - Payment Provider:          {adapter.name}')
    print(f'   - Checkout Sessions Backend: {S}')
    print('=' * 50)
    print('\n' * 3)


@app.on_event("startup")
async def _db_init():
    hooks = (create_schema,) if CHECKOUT_BACKEND == "sql" else ()
    await create_tables(engine, Base.metadata, *hooks)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=128, max_keepalive_connections=64
        ),
    )


@app.on_event("startup")
async def _redis_start():
    if CHECKOUT_BACKEND == 'redis':
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "128")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _bootstrap_admin():
    if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
        async with SessionAsync() as db:
            await profiles.bootstrap_admin(db, config.ADMIN_EMAIL,
                                           config.ADMIN_PASSWORD)


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Error rendering
# ----------------------------
@app.exception_handler(AppError)
async def _app_error(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s %s -> %s %s", request.method, request.url.path,
                  exc.code, exc.message)
    return ORJSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    message = errors[0]["msg"] if errors else ValidationFailed.message
    return ORJSONResponse(
        {"success": False, "code": ValidationFailed.code,
         "message": message, "errors": errors},
        status_code=422,
    )


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method,
                  request.url.path)
    return ORJSONResponse(AppError().to_dict(), status_code=500)


def _user_out(p: Profile) -> dict:
    return {"id": p.id, "email": p.email, "role": p.role,
            "merchant_name": p.merchant_name}


def _landing_for(p: Profile) -> str:
    if p.role == "ADMIN":
        return "/dashboard/admin"
    if p.role == "MERCHANT":
        return "/dashboard/merchant"
    return "/en/orders"


def _safe_next(dest: Optional[str], default: str) -> str:
    if not dest or not dest.startswith("/") or dest.startswith("//"):
        return default
    return dest


def _check_locale(locale: str) -> str:
    if locale not in config.SUPPORTED_LOCALES:
        raise NotFound("Page not found")
    return locale


def _locale(locale: Optional[str]) -> str:
    return locale if locale in config.SUPPORTED_LOCALES else "en"


# ----------------------------
# API: auth
# ----------------------------
@app.post("/api/auth/register", status_code=201)
async def api_register(payload: RegisterRequest, request: Request,
                       db: AsyncSession = Depends(get_db)):
    p = await profiles.register(
        db, email=payload.email, password=payload.password,
        role=payload.role, merchant_name=payload.merchant_name,
    )
    request.session["uid"] = p.id
    return {"success": True, "message": "Registration successful",
            "user": _user_out(p), "redirect_url": _landing_for(p)}


@app.post("/api/auth/login")
async def api_login(payload: LoginRequest, request: Request,
                    db: AsyncSession = Depends(get_db)):
    p = await profiles.login(db, payload.email, payload.password)
    request.session["uid"] = p.id
    return {"success": True, "message": "Login successful",
            "user": _user_out(p), "redirect_url": _landing_for(p)}


@app.post("/api/auth/logout")
async def api_logout(request: Request):
    request.session.clear()
    return {"success": True, "message": "Logged out"}


@app.post("/api/auth/ensure-profile")
async def api_ensure_profile(
    payload: EnsureProfileRequest,
    db: AsyncSession = Depends(get_db),
    user: Profile = Depends(require_user),
):
    if user.id != payload.user_id and user.role != "ADMIN":
        raise PermissionDenied("Cannot ensure another user's profile")
    res = await profiles.ensure_profile(db, payload.user_id, payload.email)
    return {
        "success": True,
        "message": ("Profile created successfully" if res["created"]
                    else "Profile already exists"),
        **res,
    }


@app.get("/api/auth/me")
async def api_me(user: Profile = Depends(require_user)):
    return {"success": True, "user": _user_out(user)}


# ----------------------------
# API: catalog
# ----------------------------
@app.get("/api/games")
async def api_games(limit: int = Query(20, ge=1, le=100),
                    offset: int = Query(0, ge=0),
                    db: AsyncSession = Depends(get_db)):
    async with timeit("db.list_games"):
        return await catalog.list_games(db, limit, offset)


@app.get("/api/games/search")
async def api_search_games(q: str = "",
                           limit: int = Query(20, ge=1, le=50),
                           offset: int = Query(0, ge=0),
                           db: AsyncSession = Depends(get_db)):
    async with timeit("db.search_games"):
        return await catalog.search_games(db, q, limit, offset)


@app.get("/api/games/featured")
async def api_featured_games(limit: int = Query(6, ge=1, le=50),
                             db: AsyncSession = Depends(get_db)):
    return {"games": await catalog.featured_games(db, limit)}


@app.get("/api/games/{game_id}")
async def api_game(game_id: str, db: AsyncSession = Depends(get_db),
                   user: Optional[Profile] = Depends(current_user)):
    return await catalog.get_game(db, game_id, viewer=user)


@app.get("/api/games/{game_id}/skus")
async def api_game_skus(game_id: str, db: AsyncSession = Depends(get_db),
                        user: Optional[Profile] = Depends(current_user)):
    # same visibility as the game itself
    await catalog.get_game(db, game_id, viewer=user)
    return {"skus": await catalog.get_game_skus(db, game_id)}


# ----------------------------
# API: checkout & webhook
# ----------------------------
@app.post("/api/checkout")
async def api_checkout(
    payload: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    rs: CheckoutSessionStore = Depends(checkout_sessions),
    user: Profile = Depends(require_user),
):
    return await create_checkout_session(
        db, rs, app.state.http, adapter, user, payload.sku_id,
        payload.locale,
    )


@app.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    rs: CheckoutSessionStore = Depends(checkout_sessions),
):
    payload = await request.body()
    headers = dict(request.headers)
    return await handle_webhook(db, rs, adapter, payload, headers)


# ----------------------------
# API: orders
# ----------------------------
@app.get("/api/orders")
async def api_my_orders(page: int = Query(1, ge=1),
                        page_size: int = Query(20, ge=1, le=100),
                        db: AsyncSession = Depends(get_db),
                        user: Profile = Depends(require_user)):
    return await orders.user_orders(db, user, page, page_size)


@app.get("/api/orders/by-session/{session_id}")
async def api_order_by_session(session_id: str,
                               db: AsyncSession = Depends(get_db),
                               user: Profile = Depends(require_user)):
    async with timeit("db.get_order"):
        async with gated():
            return await orders.get_order_by_session(db, session_id, user)


@app.get("/api/orders/{order_id}")
async def api_order(order_id: str, db: AsyncSession = Depends(get_db),
                    user: Profile = Depends(require_user)):
    async with timeit("db.get_order"):
        async with gated():
            return await orders.get_order(db, order_id, user)


# ----------------------------
# API: merchant
# ----------------------------
def _merchant_scope(user: Profile, merchant_id: Optional[str]) -> str:
    # admins may look at any merchant's numbers
    if merchant_id and user.role == "ADMIN":
        return merchant_id
    return user.id


@app.get("/api/merchant/games")
async def api_merchant_games(db: AsyncSession = Depends(get_db),
                             user: Profile = Depends(require_merchant)):
    return {"games": await merchant.merchant_games(db, user)}


@app.post("/api/merchant/games", status_code=201)
async def api_create_game(payload: GameCreate,
                          db: AsyncSession = Depends(get_db),
                          user: Profile = Depends(require_merchant)):
    return await merchant.create_game(db, user, payload)


@app.patch("/api/merchant/games/{game_id}")
async def api_update_game(game_id: str, payload: GameUpdate,
                          db: AsyncSession = Depends(get_db),
                          user: Profile = Depends(require_merchant)):
    return await merchant.update_game(db, user, game_id, payload)


@app.delete("/api/merchant/games/{game_id}")
async def api_delete_game(game_id: str,
                          db: AsyncSession = Depends(get_db),
                          user: Profile = Depends(require_merchant)):
    await merchant.delete_game(db, user, game_id)
    return {"success": True, "message": "Game deleted successfully"}


@app.get("/api/merchant/games/{game_id}/skus")
async def api_merchant_skus(game_id: str,
                            db: AsyncSession = Depends(get_db),
                            user: Profile = Depends(require_merchant)):
    return {"skus": await merchant.list_skus(db, user, game_id)}


@app.post("/api/merchant/games/{game_id}/skus", status_code=201)
async def api_create_sku(game_id: str, payload: SkuCreate,
                         db: AsyncSession = Depends(get_db),
                         user: Profile = Depends(require_merchant)):
    return await merchant.create_sku(db, user, game_id, payload)


@app.patch("/api/merchant/skus/{sku_id}")
async def api_update_sku(sku_id: str, payload: SkuUpdate,
                         db: AsyncSession = Depends(get_db),
                         user: Profile = Depends(require_merchant)):
    return await merchant.update_sku(db, user, sku_id, payload)


@app.delete("/api/merchant/skus/{sku_id}")
async def api_delete_sku(sku_id: str,
                         db: AsyncSession = Depends(get_db),
                         user: Profile = Depends(require_merchant)):
    await merchant.delete_sku(db, user, sku_id)
    return {"success": True, "message": "SKU deleted successfully"}


@app.get("/api/merchant/orders")
async def api_merchant_orders(page: int = Query(1, ge=1),
                              page_size: int = Query(50, ge=1, le=200),
                              status: Optional[str] = None,
                              db: AsyncSession = Depends(get_db),
                              user: Profile = Depends(require_merchant)):
    return await merchant.merchant_orders(db, user, page, page_size, status)


@app.get("/api/merchant/overview")
async def api_merchant_overview(merchant_id: Optional[str] = None,
                                db: AsyncSession = Depends(get_db),
                                user: Profile = Depends(require_merchant)):
    return await merchant.merchant_overview(
        db, _merchant_scope(user, merchant_id))


def _when(value: Optional[str], name: str) -> Optional[float]:
    try:
        return parse_when(value)
    except ValueError:
        raise ValidationFailed(f"Invalid {name}: expected an ISO date")


@app.get("/api/merchant/analytics")
async def api_merchant_analytics(merchant_id: Optional[str] = None,
                                 tz: str = "UTC", locale: str = "en",
                                 db: AsyncSession = Depends(get_db),
                                 user: Profile = Depends(require_merchant)):
    locale = _locale(locale)
    data = await analytics.dashboard_analytics(
        db, _merchant_scope(user, merchant_id), tz_name=tz, locale=locale)
    data["chart"] = to_chart_series(data["daily_sales"], locale)
    return data


@app.get("/api/merchant/analytics/orders")
async def api_merchant_orders_overview(
    start: Optional[str] = None, end: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
    merchant_id: Optional[str] = None, locale: str = "en",
    db: AsyncSession = Depends(get_db),
    user: Profile = Depends(require_merchant),
):
    return await analytics.orders_overview(
        db, _merchant_scope(user, merchant_id), _when(start, "start"),
        _when(end, "end"), status, limit, offset, _locale(locale))


@app.get("/api/merchant/analytics/products")
async def api_merchant_products(
    start: Optional[str] = None, end: Optional[str] = None,
    game_id: Optional[str] = None, merchant_id: Optional[str] = None,
    locale: str = "en",
    db: AsyncSession = Depends(get_db),
    user: Profile = Depends(require_merchant),
):
    if game_id and not await check_resource_access(db, "game", game_id, user):
        raise PermissionDenied("You do not own this game")
    return await analytics.products_performance(
        db, _merchant_scope(user, merchant_id), _when(start, "start"),
        _when(end, "end"), game_id, _locale(locale))


@app.get("/api/merchant/analytics/revenue")
async def api_merchant_revenue(
    start: Optional[str] = None, end: Optional[str] = None,
    group_by: str = "day", tz: str = "UTC",
    merchant_id: Optional[str] = None, locale: str = "en",
    db: AsyncSession = Depends(get_db),
    user: Profile = Depends(require_merchant),
):
    return await analytics.revenue_series(
        db, _merchant_scope(user, merchant_id), _when(start, "start"),
        _when(end, "end"), group_by, tz, _locale(locale))


# ----------------------------
# API: admin
# ----------------------------
@app.get("/api/admin/merchants")
async def api_admin_merchants(db: AsyncSession = Depends(get_db),
                              _: Profile = Depends(require_admin)):
    return {"merchants": await admin_model.all_merchants(db)}


@app.post("/api/admin/merchants", status_code=201)
async def api_admin_create_merchant(payload: MerchantCreate,
                                    db: AsyncSession = Depends(get_db),
                                    _: Profile = Depends(require_admin)):
    return await admin_model.create_merchant(
        db, payload.email, payload.merchant_name, payload.password)


@app.patch("/api/admin/profiles/{user_id}/role")
async def api_admin_update_role(user_id: str, payload: RoleUpdate,
                                db: AsyncSession = Depends(get_db),
                                user: Profile = Depends(require_admin)):
    return await admin_model.update_role(db, user, user_id, payload.role,
                                         payload.merchant_name)


@app.get("/api/admin/games")
async def api_admin_games(db: AsyncSession = Depends(get_db),
                          _: Profile = Depends(require_admin)):
    return {"games": await admin_model.games_for_moderation(db)}


@app.patch("/api/admin/games/{game_id}/status")
async def api_admin_game_status(game_id: str, payload: GameStatusUpdate,
                                db: AsyncSession = Depends(get_db),
                                _: Profile = Depends(require_admin)):
    return await admin_model.update_game_status(db, game_id, payload.status)


@app.get("/api/admin/orders")
async def api_admin_orders(page: int = Query(1, ge=1),
                           page_size: int = Query(50, ge=1, le=200),
                           status: Optional[str] = None,
                           db: AsyncSession = Depends(get_db),
                           _: Profile = Depends(require_admin)):
    return await admin_model.platform_orders(db, page, page_size, status)


@app.patch("/api/admin/orders/{order_id}/status")
async def api_admin_order_status(order_id: str, payload: OrderStatusUpdate,
                                 db: AsyncSession = Depends(get_db),
                                 _: Profile = Depends(require_admin)):
    async with gated():
        return await admin_model.update_order_status(
            db, order_id, payload.status, payload.refund_amount)


@app.get("/api/admin/analytics")
async def api_admin_analytics(db: AsyncSession = Depends(get_db),
                              _: Profile = Depends(require_admin)):
    async with timeit("analytics.platform"):
        return await admin_model.platform_analytics(db)


@app.get("/api/admin/pending")
async def api_admin_pending(limit: int = Query(100, ge=1, le=500),
                            rs: CheckoutSessionStore = Depends(
                                checkout_sessions),
                            _: Profile = Depends(require_admin)):
    total, items = await rs.recent(limit=limit)
    return {"items": items, "limit": limit, "total": total}


@app.get("/api/admin/timings")
async def api_admin_timings(_: Profile = Depends(require_admin)):
    return {"timings": timings.snapshot()}


# ----------------------------
# API: diagnostics
# ----------------------------
@app.get("/api/test-connection")
async def api_test_connection(db: AsyncSession = Depends(get_db)):
    t0 = time.perf_counter()
    await db.execute(text("SELECT 1"))
    latency_ms = round((time.perf_counter() - t0) * 1000, 2)
    tables = {}
    for name, model in (("profiles", Profile), ("games", Game),
                        ("skus", Sku), ("orders", Order)):
        tables[name] = int((await db.execute(
            select(func.count()).select_from(model)
        )).scalar_one())
    return {
        "success": True,
        "database": "ok",
        "latency_ms": latency_ms,
        "tables": tables,
        "checkout_backend": CHECKOUT_BACKEND,
    }


@app.get("/api/test-payment")
async def api_test_payment(db: AsyncSession = Depends(get_db),
                           _: Profile = Depends(require_admin)):
    await db.execute(text("SELECT 1"))
    sku = (await db.execute(
        select(Sku).order_by(Sku.created_at.asc()).limit(1)
    )).scalars().first()
    return {
        "success": True,
        "database": "ok",
        "sample_sku": {
            "id": sku.id,
            "name": localized(sku.name),
            "price": (sku.prices or {}).get("usd"),
        } if sku else None,
        "provider": adapter.name,
        "configured": adapter.configured(),
        "webhook_url": (config.MOCK_WEBHOOK_URL if adapter.name == "mock"
                        else f"{config.APP_BASE_URL}/payments/webhook"),
    }


@app.get("/api/placeholder/{width}/{height}")
async def api_placeholder(width: str, height: str,
                          label: Optional[str] = Query(None, alias="text")):
    def dim(v: str) -> int:
        try:
            n = int(v)
        except ValueError:
            return 100
        return max(1, min(n, 4000))

    w, h = dim(width), dim(height)
    return Response(
        content=placeholder_svg(w, h, label or f"{w}x{h}"),
        media_type="image/svg+xml",
        headers={"Cache-Control": "public, max-age=86400"},
    )


# ----------------------------
# MockPay UI (simple page with buttons)
# ----------------------------
@app.get("/mockpay/{psid}", response_class=HTMLResponse)
async def mockpay_screen(
    request: Request, psid: str,
    rs: CheckoutSessionStore = Depends(checkout_sessions),
):
    async with timeit("checkoutsession.get"):
        cs = await rs.get(psid)
    if not cs:
        raise NotFound("payment session not found")
    return templates.TemplateResponse("mockpay.html", {
        "request": request,
        "psid": psid,
        "order_id": cs["order_id"],
        "amount": int(cs["amount"]),
        "currency": cs["currency"],
        "email": cs.get("customer_email", ""),
        "kinds": MOCK_EVENT_KINDS,
        "webhook_url": config.MOCK_WEBHOOK_URL,
    })


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str,
    t: str = Form(...),
    rs: CheckoutSessionStore = Depends(checkout_sessions),
):
    if t not in MOCK_EVENT_KINDS:
        raise ValidationFailed("invalid kind")

    async with timeit("checkoutsession.get"):
        cs = await rs.get(psid)
    if not cs:
        raise NotFound("payment session not found")

    order_id = cs["order_id"]
    event = mock_event(t, psid, order_id, int(cs["amount"]), cs["currency"])
    payload = json.dumps(event).encode()
    client_http: httpx.AsyncClient = app.state.http
    try:
        await client_http.post(
            config.MOCK_WEBHOOK_URL,
            content=payload,
            headers={
                "x-mockpay-signature": mock_signature(payload),
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the buyer can press the button again
        log.warning("[WEBHOOK] mock delivery to %s failed: %s",
                    config.MOCK_WEBHOOK_URL, e)

    locale = cs.get("locale") or "en"
    if t == "succeeded":
        return RedirectResponse(
            url=f"/{locale}/payment/success?session_id={psid}",
            status_code=HTTP_303_SEE_OTHER,
        )
    return RedirectResponse(
        url=(f"/{locale}/payment/cancel?status={t}&order_id={order_id}"
             f"&game_id={cs.get('game_id', '')}"),
        status_code=HTTP_303_SEE_OTHER,
    )


# ----------------------------
# Pages
# ----------------------------
def _login_redirect(request: Request) -> RedirectResponse:
    dest = request.url.path
    return RedirectResponse(url=f"/auth?next={dest}",
                            status_code=HTTP_303_SEE_OTHER)


@app.get("/", response_class=HTMLResponse)
async def landing_page(request: Request, locale: str = "en",
                       db: AsyncSession = Depends(get_db),
                       user: Optional[Profile] = Depends(current_user)):
    locale = _locale(locale)
    return templates.TemplateResponse("landing.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "user": user,
        "featured": await catalog.featured_games(db, 6),
        "games": (await catalog.list_games(db, 20, 0))["games"],
    })


@app.get("/auth", response_class=HTMLResponse)
async def login_page(request: Request, next: Optional[str] = None):
    return templates.TemplateResponse(
        "login.html",
        {"request": request, "next": _safe_next(next, "/dashboard"),
         "error": None, "site_name": config.APP_NAME},
    )


@app.post("/auth", response_class=HTMLResponse)
async def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/dashboard"),
    db: AsyncSession = Depends(get_db),
):
    try:
        p = await profiles.login(db, email, password)
    except AppError:
        return templates.TemplateResponse(
            "login.html",
            {"request": request, "next": _safe_next(next, "/dashboard"),
             "error": "Invalid email or password.",
             "site_name": config.APP_NAME},
            status_code=401,
        )
    request.session["uid"] = p.id
    return RedirectResponse(url=_safe_next(next, "/dashboard"),
                            status_code=HTTP_303_SEE_OTHER)


@app.get("/auth/logout")
async def logout_page(request: Request):
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


@app.get("/dashboard")
async def dashboard(request: Request,
                    user: Optional[Profile] = Depends(current_user)):
    if user is None:
        return _login_redirect(request)
    return RedirectResponse(url=_landing_for(user),
                            status_code=HTTP_303_SEE_OTHER)


@app.get("/dashboard/merchant", response_class=HTMLResponse)
async def merchant_dashboard(request: Request, locale: str = "en",
                             db: AsyncSession = Depends(get_db),
                             user: Optional[Profile] = Depends(current_user)):
    if user is None:
        return _login_redirect(request)
    if user.role not in ("MERCHANT", "ADMIN"):
        return RedirectResponse(url="/dashboard",
                                status_code=HTTP_303_SEE_OTHER)
    locale = _locale(locale)
    stats = await analytics.dashboard_analytics(db, user.id, locale=locale)
    return templates.TemplateResponse("merchant_dashboard.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "user": user,
        "overview": await merchant.merchant_overview(db, user.id),
        "stats": stats,
        "chart": to_chart_series(stats["daily_sales"], locale),
        "games": await merchant.merchant_games(db, user),
    })


@app.get("/dashboard/admin", response_class=HTMLResponse)
async def admin_dashboard(request: Request,
                          db: AsyncSession = Depends(get_db),
                          user: Optional[Profile] = Depends(current_user)):
    if user is None:
        return _login_redirect(request)
    if user.role != "ADMIN":
        return RedirectResponse(url="/dashboard",
                                status_code=HTTP_303_SEE_OTHER)
    return templates.TemplateResponse("admin_dashboard.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "user": user,
        "stats": await admin_model.platform_analytics(db),
        "merchants": await admin_model.all_merchants(db),
        "recent": (await admin_model.platform_orders(db, 1, 20))["orders"],
    })


@app.get("/{locale}/games/{game_id}", response_class=HTMLResponse)
async def game_page(request: Request, locale: str, game_id: str,
                    db: AsyncSession = Depends(get_db),
                    user: Optional[Profile] = Depends(current_user)):
    _check_locale(locale)
    return templates.TemplateResponse("game.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "user": user,
        "game": await catalog.get_game(db, game_id, viewer=user),
    })


@app.get("/{locale}/orders", response_class=HTMLResponse)
async def orders_page(request: Request, locale: str, page: int = 1,
                      db: AsyncSession = Depends(get_db),
                      user: Optional[Profile] = Depends(current_user)):
    _check_locale(locale)
    if user is None:
        return _login_redirect(request)
    return templates.TemplateResponse("orders.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "user": user,
        "result": await orders.user_orders(db, user, max(1, page), 20),
    })


@app.get("/{locale}/payment/success", response_class=HTMLResponse)
async def payment_success_page(
    request: Request, locale: str, session_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: Optional[Profile] = Depends(current_user),
):
    _check_locale(locale)
    order = None
    if session_id and user is not None:
        try:
            order = await orders.get_order_by_session(db, session_id, user)
        except NotFound:
            # webhook not processed yet, or not this user's order
            order = None
    return templates.TemplateResponse("payment_success.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "session_id": session_id,
        "order": order,
    })


@app.get("/{locale}/payment/cancel", response_class=HTMLResponse)
async def payment_cancel_page(request: Request, locale: str,
                              status: Optional[str] = None,
                              order_id: Optional[str] = None,
                              game_id: Optional[str] = None):
    _check_locale(locale)
    return templates.TemplateResponse("payment_cancel.html", {
        "request": request,
        "site_name": config.APP_NAME,
        "locale": locale,
        "status": status or "canceled",
        "order_id": order_id,
        "game_id": game_id,
    })
