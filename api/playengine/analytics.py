from datetime import date, datetime, timedelta

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .models import Analytics

COUNTERS = ("views", "plays", "wins", "claims", "redemptions", "revenue")


def _insert_for(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


def bump(db: Session, shop_id: int, game_id: int | None, day: date, **increments) -> None:
    """Add ``increments`` to the (shop, game, day) row, creating it if missing.

    Single INSERT .. ON CONFLICT DO UPDATE with column-relative increments, so
    concurrent bumps compose without reading first. Caller commits.
    """
    unknown = set(increments) - set(COUNTERS)
    if unknown:
        raise ValueError(f"unknown analytics counters: {sorted(unknown)}")
    increments = {k: v for k, v in increments.items() if v}
    if not increments:
        return

    table = Analytics.__table__
    values = {c: 0 for c in COUNTERS}
    values.update(increments)
    stmt = _insert_for(db)(table).values(
        shop_id=shop_id,
        game_id=game_id,
        scope=str(game_id) if game_id is not None else "global",
        date=day,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "scope", "date"],
        set_={k: table.c[k] + v for k, v in increments.items()},
    )
    db.execute(stmt)


def record_play(db: Session, shop_id: int, game_id: int, won: bool, now: datetime) -> None:
    bump(db, shop_id, game_id, now.date(), plays=1, wins=1 if won else 0)


def record_redemption(db: Session, shop_id: int, revenue: float, now: datetime) -> None:
    bump(db, shop_id, None, now.date(), redemptions=1, revenue=revenue)


def summary(db: Session, shop_id: int, days: int, today: date) -> tuple[list[Analytics], dict]:
    start = today - timedelta(days=days)
    rows = (
        db.query(Analytics)
          .filter(Analytics.shop_id == shop_id, Analytics.day >= start)
          .order_by(Analytics.day.asc(), Analytics.id.asc())
          .all()
    )
    totals = {c: 0 for c in COUNTERS}
    for row in rows:
        for c in COUNTERS:
            totals[c] += getattr(row, c) or 0
    return rows, totals
