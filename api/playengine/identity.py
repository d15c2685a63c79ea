import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ShopNotFound
from .models import Shop, Visitor
from .utils import fingerprint_from_signals, parse_browser, parse_device, parse_os, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RequestSignals:
    user_agent: str = ""
    accept_language: str = ""
    ip: str = "unknown"
    country: str | None = None
    fingerprint: str | None = None


def get_shop(db: Session, domain: str | None) -> Shop:
    if not domain:
        raise ShopNotFound("Missing shop domain")
    shop = db.query(Shop).filter(Shop.domain == domain).first()
    if not shop or not shop.is_active:
        raise ShopNotFound()
    return shop


def resolve_visitor(db: Session, shop: Shop, signals: RequestSignals) -> tuple[Visitor, bool]:
    """Find or create the visitor for (shop, fingerprint). Commits.

    Returns ``(visitor, is_new)``. Two first contacts racing on the same
    fingerprint both end up with the single row the unique index allows.
    """
    fingerprint = signals.fingerprint or fingerprint_from_signals(
        signals.user_agent, signals.accept_language, signals.ip
    )

    visitor = _find(db, shop.id, fingerprint)
    if visitor:
        visitor.last_visit = utcnow()
        db.commit()
        return visitor, False

    visitor = Visitor(
        shop_id=shop.id,
        fingerprint=fingerprint,
        device=parse_device(signals.user_agent),
        browser=parse_browser(signals.user_agent),
        os=parse_os(signals.user_agent),
        country=signals.country,
    )
    db.add(visitor)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        visitor = _find(db, shop.id, fingerprint)
        visitor.last_visit = utcnow()
        db.commit()
        return visitor, False

    logger.info("New visitor %s for shop %s (%s)", visitor.id, shop.domain, visitor.device)
    return visitor, True


def _find(db: Session, shop_id: int, fingerprint: str) -> Visitor | None:
    return (
        db.query(Visitor)
          .filter(Visitor.shop_id == shop_id, Visitor.fingerprint == fingerprint)
          .first()
    )
