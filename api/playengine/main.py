import logging
import os

from fastapi import FastAPI, Depends, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import analytics, engine as play_engine
from .config import settings
from .db import Base, engine, get_db
from .errors import EngineError, InternalError, RateLimitedError
from .identity import RequestSignals, get_shop
from .schemas import (
    AdminLoginRequest, AdminLoginResponse, AnalyticsDay, AnalyticsResponse, AnalyticsTotals,
    InitRequest, InitResponse, OrderPaid, PlayRequest, PlayResponse, StatusRequest,
    StatusResponse, TrackRequest, VerifyRequest, VerifyResponse,
)
from .security import make_admin_token, require_admin, verify_admin_password, verify_webhook_hmac
from .shopify import gateway_for_shop
from .utils import utcnow

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def get_gateway_factory():
    """Shop -> DiscountGateway. Overridden in tests."""
    return gateway_for_shop


def request_signals(request: Request) -> RequestSignals:
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "unknown")
    return RequestSignals(
        user_agent=request.headers.get("User-Agent", ""),
        accept_language=request.headers.get("Accept-Language", ""),
        ip=ip,
        country=request.headers.get("CF-IPCountry") or None,
    )


app = FastAPI(title="Play Engine API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_origin_regex=settings.allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Dev convenience: create tables if they don't exist
Base.metadata.create_all(bind=engine)


@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail), "code": "HTTP_ERROR"})


@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"message": "Validation error", "code": "VALIDATION_ERROR", "errors": jsonable_errors(exc.errors())},
    )


@app.exception_handler(EngineError)
async def engine_exc_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s (shop %s): %s",
            exc.code, request.method, request.url.path, _shop_hint(request), exc.message,
            exc_info=exc,
        )
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str((exc.retry_after_ms + 999) // 1000)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s (shop %s)", request.method, request.url.path, _shop_hint(request))
    err = InternalError("Internal server error")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def _shop_hint(request: Request) -> str:
    return request.headers.get("X-Shopify-Shop-Domain") or request.query_params.get("shop") or "-"


def jsonable_errors(errors: list) -> list:
    # ctx may carry exception objects
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


@app.get("/health")
def health():
    return {"ok": True}


# --- storefront (app proxy) ---

@app.post("/api/proxy/init", response_model=InitResponse)
def init(
    payload: InitRequest,
    request: Request,
    shop: str | None = Query(default=None),
    shop_header: str | None = Header(default=None, alias="X-Shopify-Shop-Domain"),
    db: Session = Depends(get_db),
):
    return play_engine.init_visit(db, shop_header or shop, request_signals(request), payload)


@app.post("/api/proxy/play", response_model=PlayResponse)
def play(
    payload: PlayRequest,
    db: Session = Depends(get_db),
    gateway_factory=Depends(get_gateway_factory),
):
    return play_engine.play(db, payload, gateway_factory)


@app.post("/api/proxy/status", response_model=StatusResponse)
def status(payload: StatusRequest, db: Session = Depends(get_db)):
    return play_engine.status(db, payload.session_token)


@app.post("/api/proxy/track")
def track(payload: TrackRequest, db: Session = Depends(get_db)):
    play_engine.track(db, payload.session_token, payload.event, payload.data)
    return {"ok": True}


@app.post("/api/discounts/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify(payload: VerifyRequest, db: Session = Depends(get_db)):
    return play_engine.verify(db, payload.code, payload.shop)


# --- order-paid feed ---

@app.post("/webhooks/orders/paid")
async def orders_paid(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    if not verify_webhook_hmac(body, request.headers.get("X-Shopify-Hmac-Sha256")):
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        order = OrderPaid.model_validate_json(body)
    except PydanticValidationError:
        raise HTTPException(status_code=400, detail="Invalid order payload")
    used = play_engine.redeem_order(db, request.headers.get("X-Shopify-Shop-Domain"), order)
    return {"ok": True, "used": used}


# --- admin ---

@app.post("/api/admin/login", response_model=AdminLoginResponse)
def admin_login(
    body: AdminLoginRequest,
    shop: str = Query(...),
    db: Session = Depends(get_db),
):
    get_shop(db, shop)
    if not verify_admin_password(body.password):
        raise HTTPException(status_code=401, detail="Wrong password")
    return AdminLoginResponse(token=make_admin_token(shop))


@app.get("/api/admin/analytics", response_model=AnalyticsResponse)
def admin_analytics(
    days: int = Query(default=30, ge=1, le=366),
    db: Session = Depends(get_db),
    shop_domain: str = Depends(require_admin),
):
    shop = get_shop(db, shop_domain)
    rows, totals = analytics.summary(db, shop.id, days, utcnow().date())
    return AnalyticsResponse(
        daily=[AnalyticsDay.model_validate(r) for r in rows],
        totals=AnalyticsTotals(**totals),
        days=days,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "playengine.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
