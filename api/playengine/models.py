from datetime import date, datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint,
)
from .db import Base

utcnow = lambda: datetime.now(timezone.utc)

# game types
SPIN_WHEEL = "SPIN_WHEEL"
SCRATCH_CARD = "SCRATCH_CARD"
POPUP = "POPUP"

# prize kinds
PERCENTAGE = "PERCENTAGE"
FIXED_AMOUNT = "FIXED_AMOUNT"
FREE_SHIPPING = "FREE_SHIPPING"
NO_PRIZE = "NO_PRIZE"

# play results
WIN = "WIN"
LOSE = "LOSE"

# discount status
CREATED = "CREATED"
USED = "USED"
EXPIRED = "EXPIRED"


class Shop(Base):
    __tablename__ = "shops"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    domain: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    access_token: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Visitor(Base):
    __tablename__ = "visitors"
    __table_args__ = (UniqueConstraint("shop_id", "fingerprint", name="uq_visitor_shop_fingerprint"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    device: Mapped[str | None] = mapped_column(String, nullable=True)
    browser: Mapped[str | None] = mapped_column(String, nullable=True)
    os: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    first_visit: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_visit: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    total_plays: Mapped[int] = mapped_column(Integer, default=0)
    total_wins: Mapped[int] = mapped_column(Integer, default=0)

    shop: Mapped[Shop] = relationship()


class VisitorSession(Base):
    __tablename__ = "sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    visitor_id: Mapped[int] = mapped_column(Integer, ForeignKey("visitors.id"), nullable=False)
    token: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    # game offered at init; status answers "can I play" against it
    game_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("games.id"), nullable=True)
    current_page: Mapped[str | None] = mapped_column(String, nullable=True)
    referrer: Mapped[str | None] = mapped_column(String, nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String, nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String, nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    visitor: Mapped[Visitor] = relationship()


class Game(Base):
    __tablename__ = "games"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default=SPIN_WHEEL)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trigger: Mapped[str] = mapped_column(String, default="PAGE_LOAD")
    trigger_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    segments: Mapped[list["GameSegment"]] = relationship(
        order_by="GameSegment.order", back_populates="game"
    )


class GameSegment(Base):
    __tablename__ = "game_segments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_id: Mapped[int] = mapped_column(Integer, ForeignKey("games.id"), nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[float] = mapped_column(Float, default=0)
    probability: Mapped[float] = mapped_column(Float, default=0)
    color: Mapped[str | None] = mapped_column(String, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0)

    game: Mapped[Game] = relationship(back_populates="segments")


class DiscountRule(Base):
    __tablename__ = "discount_rules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    # null -> shop-wide default
    game_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("games.id"), nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False, default="Default")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    max_plays_per_visitor: Mapped[int] = mapped_column(Integer, default=1)
    max_wins_per_visitor: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_hours: Mapped[float] = mapped_column(Float, default=24)
    require_email: Mapped[bool] = mapped_column(Boolean, default=False)
    validity_days: Mapped[int] = mapped_column(Integer, default=7)
    max_redemptions_per_code: Mapped[int] = mapped_column(Integer, default=1)
    min_order_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    combine_with_product_discount: Mapped[bool] = mapped_column(Boolean, default=False)
    combine_with_order_discount: Mapped[bool] = mapped_column(Boolean, default=False)
    combine_with_shipping: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class TargetingRule(Base):
    __tablename__ = "targeting_rules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    game_id: Mapped[int] = mapped_column(Integer, ForeignKey("games.id"), nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # validated through schemas.TargetingCriteria
    criteria: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Play(Base):
    __tablename__ = "plays"
    # sequence is the per (visitor, game) play counter; two concurrent plays
    # that read the same history collide here
    __table_args__ = (UniqueConstraint("visitor_id", "game_id", "sequence", name="uq_play_sequence"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_id: Mapped[int] = mapped_column(Integer, ForeignKey("games.id"), nullable=False)
    visitor_id: Mapped[int] = mapped_column(Integer, ForeignKey("visitors.id"), nullable=False)
    session_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("sessions.id"), nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[str] = mapped_column(String, nullable=False)
    segment_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("game_segments.id"), nullable=True)
    prize: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    discount_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("discounts.id"), nullable=True)
    played_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    segment: Mapped["GameSegment | None"] = relationship()
    discount: Mapped["Discount | None"] = relationship()


class Discount(Base):
    __tablename__ = "discounts"
    __table_args__ = (UniqueConstraint("shop_id", "code", name="uq_discount_shop_code"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    visitor_id: Mapped[int] = mapped_column(Integer, ForeignKey("visitors.id"), nullable=False)
    rule_id: Mapped[int] = mapped_column(Integer, ForeignKey("discount_rules.id"), nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    shopify_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[float] = mapped_column(Float, default=0)
    status: Mapped[str] = mapped_column(String, default=CREATED)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    used_order_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    shop: Mapped[Shop] = relationship()
    visitor: Mapped[Visitor] = relationship()


class Analytics(Base):
    __tablename__ = "analytics"
    # scope is str(game_id) or "global"; NULLs never collide in a unique index
    __table_args__ = (UniqueConstraint("shop_id", "scope", "date", name="uq_analytics_day"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, ForeignKey("shops.id"), nullable=False)
    game_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("games.id"), nullable=True)
    scope: Mapped[str] = mapped_column(String, nullable=False)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0)
    plays: Mapped[int] = mapped_column(Integer, default=0)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    claims: Mapped[int] = mapped_column(Integer, default=0)
    redemptions: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0)
