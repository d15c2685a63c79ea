"""Play resolution: the storefront-facing operations of the engine.

``play`` is the one that matters. Eligibility re-check, outcome draw, reward
issuance and every counter update run in one transaction, serialized per
visitor (row lock on the visitor, BEGIN IMMEDIATE on SQLite) and backed by the
unique (visitor, game, sequence) index on plays.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import analytics
from .config import settings
from .eligibility import (
    VisitContext, check_eligibility, find_active_game, game_config, game_is_live, load_rule,
)
from .errors import (
    GameNotFound, NoDiscountRule, PlayConflict, RateLimitedError, ShopNotFound, ValidationError,
)
from .identity import RequestSignals, get_shop, resolve_visitor
from .models import (
    CREATED, EXPIRED, LOSE, SPIN_WHEEL, USED, WIN,
    Discount, Game, Play, Shop, Visitor,
)
from .outcome import is_win, weighted_choice
from .rewards import issue_reward
from .schemas import (
    ActiveGame, Animation, DiscountOut, InitRequest, InitResponse, OrderPaid, PlayRequest,
    PlayResponse, PlaySummary, SegmentOut, SegmentPublic, StatusResponse, VerifyResponse,
    VisitorSummary,
)
from .sessions import get_session, issue_session
from .shopify import DiscountGateway
from .utils import as_utc, spin_angle, utcnow

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Shop], DiscountGateway]

RECENT_PLAYS_LIMIT = 10


def _active_game_out(game: Game) -> ActiveGame:
    return ActiveGame(
        id=game.id,
        type=game.type,
        name=game.name,
        config=game_config(game),
        trigger=game.trigger,
        trigger_value=game.trigger_value,
        segments=[SegmentPublic(id=s.id, label=s.label, color=s.color) for s in game.segments],
    )


def _discount_out(d: Discount) -> DiscountOut:
    return DiscountOut(code=d.code, type=d.type, value=d.value, expires_at=as_utc(d.expires_at))


# --- init ---

def init_visit(
    db: Session,
    shop_domain: str | None,
    signals: RequestSignals,
    req: InitRequest,
    now: datetime | None = None,
) -> InitResponse:
    now = now or utcnow()
    shop = get_shop(db, shop_domain)

    signals.fingerprint = req.fingerprint or signals.fingerprint
    visitor, is_new = resolve_visitor(db, shop, signals)
    if req.customer_id and not visitor.customer_id:
        visitor.customer_id = req.customer_id

    ctx = VisitContext(
        path=req.page,
        device=visitor.device,
        is_new_visitor=is_new,
        has_customer=bool(visitor.customer_id),
        has_email=bool(visitor.email),
        referrer=req.referrer,
        utm_source=req.utm_source,
        shop_domain=shop.domain,
        now=now,
    )
    game = find_active_game(db, shop.id, ctx)

    # advisory only; play re-checks under lock
    can_play, remaining = False, 0
    if game:
        rule = load_rule(db, shop.id, game.id)
        if rule:
            elig = check_eligibility(db, visitor.id, game.id, rule, now)
            can_play, remaining = elig.can_play, elig.cooldown_remaining_ms

    session = issue_session(
        db,
        visitor,
        page=req.page,
        referrer=req.referrer,
        utm_source=req.utm_source,
        utm_medium=req.utm_medium,
        utm_campaign=req.utm_campaign,
        game_id=game.id if game else None,
    )
    db.commit()

    return InitResponse(
        session_token=session.token,
        visitor_id=visitor.id,
        is_new_visitor=is_new,
        can_play=can_play,
        cooldown_remaining_ms=remaining,
        active_game=_active_game_out(game) if game else None,
    )


# --- play ---

def play(
    db: Session,
    req: PlayRequest,
    gateway_factory: GatewayFactory,
    now: datetime | None = None,
) -> PlayResponse:
    for attempt in range(1, settings.play_conflict_retries + 1):
        try:
            return _play_once(db, req, gateway_factory, now or utcnow())
        except PlayConflict:
            db.rollback()
            logger.warning("Play sequence conflict for game %s (attempt %s)", req.game_id, attempt)
        except Exception:
            db.rollback()
            raise
    raise RateLimitedError(0, "Another play is already in progress")


def _play_once(db: Session, req: PlayRequest, gateway_factory: GatewayFactory, now: datetime) -> PlayResponse:
    session = get_session(db, req.session_token)
    visitor = (
        db.query(Visitor)
          .filter(Visitor.id == session.visitor_id)
          .with_for_update()
          .one()
    )
    shop = visitor.shop
    if not shop.is_active:
        raise ShopNotFound()

    game = db.query(Game).filter(Game.id == req.game_id, Game.shop_id == shop.id).first()
    if not game or not game_is_live(game, now):
        raise GameNotFound()

    rule = load_rule(db, shop.id, game.id)
    if not rule:
        raise NoDiscountRule()

    if rule.require_email and not req.email and not visitor.email:
        raise ValidationError("Email required", code="EMAIL_REQUIRED")
    if req.email and not visitor.email:
        visitor.email = str(req.email)

    elig = check_eligibility(db, visitor.id, game.id, rule, now)
    if not elig.can_play:
        logger.warning("Visitor %s hit the play limit on game %s", visitor.id, game.id)
        raise RateLimitedError(elig.cooldown_remaining_ms)

    segments = list(game.segments)
    segment = weighted_choice(segments)
    won = is_win(segment)

    record = Play(
        game_id=game.id,
        visitor_id=visitor.id,
        session_id=session.id,
        sequence=elig.last_sequence + 1,
        result=WIN if won else LOSE,
        segment_id=segment.id,
        prize={"type": segment.type, "value": segment.value, "label": segment.label},
        played_at=now,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError:
        raise PlayConflict()

    discount = None
    if won:
        discount = issue_reward(db, gateway_factory(shop), shop, visitor, rule, segment, now)
        record.discount_id = discount.id

    visitor.total_plays = Visitor.total_plays + 1
    if won:
        visitor.total_wins = Visitor.total_wins + 1
    session.last_activity_at = now
    analytics.record_play(db, shop.id, game.id, won, now)
    db.commit()

    logger.info("Visitor %s played game %s: %s (%s)", visitor.id, game.id, record.result, segment.label)

    index = segments.index(segment)
    angle = spin_angle(index, len(segments)) if game.type == SPIN_WHEEL else 0
    return PlayResponse(
        play_id=record.id,
        result=record.result,
        segment=SegmentOut(
            id=segment.id, label=segment.label, type=segment.type,
            value=segment.value, color=segment.color,
        ),
        discount=_discount_out(discount) if discount else None,
        animation=Animation(angle=angle),
    )


# --- status ---

def status(db: Session, token: str, now: datetime | None = None) -> StatusResponse:
    now = now or utcnow()
    session = get_session(db, token, require_active=False)
    visitor = session.visitor

    can_play, remaining = False, 0
    if session.is_active and session.game_id:
        game = db.get(Game, session.game_id)
        if game and game_is_live(game, now):
            rule = load_rule(db, visitor.shop_id, game.id)
            if rule:
                elig = check_eligibility(db, visitor.id, game.id, rule, now)
                can_play, remaining = elig.can_play, elig.cooldown_remaining_ms

    plays = (
        db.query(Play)
          .filter(Play.visitor_id == visitor.id)
          .order_by(Play.played_at.desc(), Play.id.desc())
          .limit(RECENT_PLAYS_LIMIT)
          .all()
    )
    discounts = (
        db.query(Discount)
          .filter(
              Discount.visitor_id == visitor.id,
              Discount.status == CREATED,
              Discount.expires_at > now,
          )
          .order_by(Discount.created_at.desc())
          .all()
    )

    return StatusResponse(
        session_active=session.is_active,
        visitor=VisitorSummary(
            id=visitor.id,
            email=visitor.email,
            total_plays=visitor.total_plays,
            total_wins=visitor.total_wins,
            first_visit=as_utc(visitor.first_visit),
            last_visit=as_utc(visitor.last_visit),
        ),
        can_play=can_play,
        cooldown_remaining_ms=remaining,
        recent_plays=[
            PlaySummary(id=p.id, game_id=p.game_id, result=p.result, prize=p.prize, played_at=as_utc(p.played_at))
            for p in plays
        ],
        active_discounts=[_discount_out(d) for d in discounts],
    )


# --- track ---

def track(db: Session, token: str, event: str, data: dict | None, now: datetime | None = None) -> None:
    now = now or utcnow()
    session = get_session(db, token)
    session.last_activity_at = now
    page = (data or {}).get("page")
    if isinstance(page, str) and page:
        session.current_page = page

    if session.game_id and event in ("view", "claim"):
        counter = "views" if event == "view" else "claims"
        analytics.bump(db, session.visitor.shop_id, session.game_id, now.date(), **{counter: 1})
    db.commit()


# --- verify ---

def verify(db: Session, code: str, shop_domain: str | None = None, now: datetime | None = None) -> VerifyResponse:
    now = now or utcnow()
    q = db.query(Discount).filter(Discount.code == code.strip().upper())
    if shop_domain:
        q = q.join(Shop, Discount.shop_id == Shop.id).filter(Shop.domain == shop_domain)
    discount = q.order_by(Discount.id.desc()).first()
    if not discount:
        return VerifyResponse(valid=False, reason="not_found")

    out = dict(type=discount.type, value=discount.value, expires_at=as_utc(discount.expires_at))
    if discount.status == USED:
        return VerifyResponse(valid=False, reason="used", **out)
    if discount.status == EXPIRED or now > as_utc(discount.expires_at):
        return VerifyResponse(valid=False, reason="expired", **out)
    return VerifyResponse(valid=True, **out)


# --- order paid ---

def redeem_order(db: Session, shop_domain: str | None, order: OrderPaid, now: datetime | None = None) -> list[str]:
    """Mark this shop's CREATED codes applied to ``order`` as USED. Idempotent."""
    now = now or utcnow()
    shop = get_shop(db, shop_domain)
    try:
        total = float(order.total_price)
    except ValueError:
        raise ValidationError("Invalid order total")

    used = []
    try:
        for applied in order.discount_codes:
            discount = (
                db.query(Discount)
                  .filter(Discount.shop_id == shop.id, Discount.code == applied.code.strip().upper())
                  .with_for_update()
                  .first()
            )
            if not discount or discount.status != CREATED:
                continue

            discount.status = USED
            discount.used_at = now
            discount.used_order_id = order.admin_graphql_api_id or str(order.id)
            discount.used_order_amount = total

            visitor = discount.visitor
            if order.customer and not visitor.customer_id:
                visitor.customer_id = f"gid://shopify/Customer/{order.customer.id}"
                visitor.email = order.customer.email or visitor.email

            analytics.record_redemption(db, shop.id, total, now)
            used.append(discount.code)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for code in used:
        logger.info("Discount %s used in order %s", code, order.id)
    return used
