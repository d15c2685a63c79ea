import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .errors import InternalError
from .models import Discount, DiscountRule, GameSegment, Shop, Visitor
from .shopify import DiscountGateway, DiscountSpec
from .utils import code_prefix, gen_code

logger = logging.getLogger(__name__)


def reserve_code(
    db: Session,
    shop: Shop,
    visitor: Visitor,
    rule: DiscountRule,
    segment: GameSegment,
    expires_at: datetime,
    now: datetime,
) -> Discount:
    """Insert a Discount row under a fresh unique code, retrying on collision.

    Runs inside the caller's transaction; each attempt is its own savepoint so a
    collision does not discard the play being built around it.
    """
    prefix = code_prefix(segment.type, segment.value)
    for _ in range(settings.code_max_attempts):
        candidate = gen_code(prefix, settings.code_suffix_length)
        taken = (
            db.query(Discount.id)
              .filter(Discount.shop_id == shop.id, Discount.code == candidate)
              .first()
        )
        if taken:
            continue
        discount = Discount(
            shop_id=shop.id,
            visitor_id=visitor.id,
            rule_id=rule.id,
            code=candidate,
            type=segment.type,
            value=segment.value,
            created_at=now,
            expires_at=expires_at,
        )
        try:
            with db.begin_nested():
                db.add(discount)
                db.flush()
        except IntegrityError:
            continue
        return discount

    raise InternalError("Could not generate a unique discount code")


def build_spec(discount: Discount, rule: DiscountRule, now: datetime) -> DiscountSpec:
    return DiscountSpec(
        title=f"Gamification: {discount.code}",
        code=discount.code,
        kind=discount.type,
        value=discount.value,
        starts_at=now,
        ends_at=discount.expires_at,
        usage_limit=rule.max_redemptions_per_code,
        applies_once_per_customer=True,
        min_subtotal=rule.min_order_amount or None,
        combine_with_product=rule.combine_with_product_discount,
        combine_with_order=rule.combine_with_order_discount,
        combine_with_shipping=rule.combine_with_shipping,
    )


def issue_reward(
    db: Session,
    gateway: DiscountGateway,
    shop: Shop,
    visitor: Visitor,
    rule: DiscountRule,
    segment: GameSegment,
    now: datetime,
) -> Discount:
    """Reserve a code locally, create it on the platform, record the platform id.

    Nothing is committed here. If the platform call raises, the caller rolls
    back and the reserved row disappears with the rest of the play.
    """
    expires_at = now + timedelta(days=rule.validity_days)
    discount = reserve_code(db, shop, visitor, rule, segment, expires_at, now)
    discount.shopify_id = gateway.create_code(build_spec(discount, rule, now))
    db.flush()
    logger.info("Issued %s (%s %s) to visitor %s", discount.code, segment.type, segment.value, visitor.id)
    return discount
