"""Who may play what, and when.

Two independent questions are answered here: which game a visit is offered
(default live game, overridden by the first matching targeting rule) and
whether a visitor still has plays left in the cooldown window of that game.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .models import DiscountRule, Game, Play, TargetingRule, WIN
from .schemas import GameConfig, TargetingCriteria
from .utils import as_utc, page_type, traffic_source

logger = logging.getLogger(__name__)


@dataclass
class VisitContext:
    path: str | None
    device: str | None
    is_new_visitor: bool
    has_customer: bool
    has_email: bool
    referrer: str | None
    utm_source: str | None
    shop_domain: str | None
    now: datetime


@dataclass
class Eligibility:
    can_play: bool
    cooldown_remaining_ms: int
    plays_in_window: int
    last_sequence: int


# --- discount rule ---

def select_applicable_rule(rules: Iterable[DiscountRule], game_id: int | None) -> DiscountRule | None:
    """Newest active rule for the game, else the newest active shop-wide rule."""
    active = [r for r in rules if r.is_active]
    pool = [r for r in active if game_id is not None and r.game_id == game_id]
    if not pool:
        pool = [r for r in active if r.game_id is None]
    if not pool:
        return None
    return max(pool, key=lambda r: (as_utc(r.created_at), r.id))


def load_rule(db: Session, shop_id: int, game_id: int) -> DiscountRule | None:
    rules = (
        db.query(DiscountRule)
          .filter(
              DiscountRule.shop_id == shop_id,
              DiscountRule.is_active == True,
              or_(DiscountRule.game_id == game_id, DiscountRule.game_id.is_(None)),
          )
          .all()
    )
    return select_applicable_rule(rules, game_id)


# --- cooldown ---

def check_eligibility(db: Session, visitor_id: int, game_id: int, rule: DiscountRule, now: datetime) -> Eligibility:
    cutoff = now - timedelta(hours=rule.cooldown_hours)
    recent = (
        db.query(Play.result, Play.played_at)
          .filter(
              Play.visitor_id == visitor_id,
              Play.game_id == game_id,
              Play.played_at >= cutoff,
          )
          .order_by(Play.played_at.desc())
          .all()
    )
    last_sequence = (
        db.query(func.max(Play.sequence))
          .filter(Play.visitor_id == visitor_id, Play.game_id == game_id)
          .scalar()
    ) or 0

    plays = len(recent)
    wins = sum(1 for r in recent if r.result == WIN)
    can_play = plays < rule.max_plays_per_visitor
    if can_play and rule.max_wins_per_visitor is not None:
        can_play = wins < rule.max_wins_per_visitor

    remaining_ms = 0
    if not can_play and recent:
        cooldown_end = as_utc(recent[0].played_at) + timedelta(hours=rule.cooldown_hours)
        remaining_ms = max(0, int((cooldown_end - now).total_seconds() * 1000))

    return Eligibility(
        can_play=can_play,
        cooldown_remaining_ms=remaining_ms,
        plays_in_window=plays,
        last_sequence=last_sequence,
    )


# --- which game ---

def game_is_live(game: Game, now: datetime) -> bool:
    if not game.is_active:
        return False
    start, end = as_utc(game.start_date), as_utc(game.end_date)
    if start and now < start:
        return False
    if end and now > end:
        return False
    return True


def game_config(game: Game) -> GameConfig:
    try:
        return GameConfig.model_validate(game.config or {})
    except PydanticValidationError:
        logger.warning("Game %s has an invalid config blob, using defaults", game.id)
        return GameConfig()


def _visitor_type_matches(visitor_type: str, ctx: VisitContext) -> bool:
    if visitor_type == "NEW":
        return ctx.is_new_visitor
    if visitor_type == "RETURNING":
        return not ctx.is_new_visitor
    if visitor_type == "CUSTOMERS":
        return ctx.has_customer
    if visitor_type == "NON_CUSTOMERS":
        return not ctx.has_customer
    if visitor_type == "LOGGED_IN":
        return ctx.has_email
    if visitor_type == "NOT_LOGGED_IN":
        return not ctx.has_email
    return True


def criteria_match(criteria: TargetingCriteria, ctx: VisitContext) -> bool:
    """Conjunction over every non-empty field; an empty field matches all."""
    if criteria.page_types and page_type(ctx.path) not in criteria.page_types:
        return False
    if criteria.devices and ctx.device not in criteria.devices:
        return False
    if not _visitor_type_matches(criteria.visitor_type, ctx):
        return False
    if criteria.traffic_sources:
        source = traffic_source(ctx.referrer, ctx.utm_source, ctx.shop_domain)
        if source not in criteria.traffic_sources:
            return False
    if criteria.utm_sources and ctx.utm_source not in criteria.utm_sources:
        return False
    sched = criteria.schedule
    if sched and sched.enabled:
        if sched.days and ctx.now.weekday() not in sched.days:
            return False
        if not (sched.start_hour <= ctx.now.hour <= sched.end_hour):
            return False
    return True


def select_game(
    live_games: Sequence[Game],
    rules: Sequence[TargetingRule],
    ctx: VisitContext,
) -> Game | None:
    """Default live game, overridden by the first matching targeting rule.

    ``rules`` must already be ordered by priority (highest first). A rule whose
    target game is not live is skipped.
    """
    by_id = {g.id: g for g in live_games}
    for rule in rules:
        target = by_id.get(rule.game_id)
        if target is None:
            continue
        try:
            criteria = TargetingCriteria.model_validate(rule.criteria or {})
        except PydanticValidationError:
            logger.warning("Targeting rule %s has invalid criteria, skipping", rule.id)
            continue
        if criteria_match(criteria, ctx):
            return target

    # showOnPages is left to the widget
    return live_games[0] if live_games else None


def find_active_game(db: Session, shop_id: int, ctx: VisitContext) -> Game | None:
    games = (
        db.query(Game)
          .filter(Game.shop_id == shop_id, Game.is_active == True)
          .order_by(Game.id.asc())
          .all()
    )
    live = [g for g in games if game_is_live(g, ctx.now)]
    if not live:
        return None
    rules = (
        db.query(TargetingRule)
          .filter(TargetingRule.shop_id == shop_id, TargetingRule.is_active == True)
          .order_by(TargetingRule.priority.desc(), TargetingRule.id.asc())
          .all()
    )
    return select_game(live, rules, ctx)
