from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, date
from typing import Literal, Optional, List


class CamelModel(BaseModel):
    # storefront widget speaks camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- typed config blobs ---

class GameConfig(CamelModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    button_text: Optional[str] = None
    primary_color: Optional[str] = None
    background_color: Optional[str] = None
    show_on_pages: List[str] = []


VisitorType = Literal["ALL", "NEW", "RETURNING", "CUSTOMERS", "NON_CUSTOMERS", "LOGGED_IN", "NOT_LOGGED_IN"]


class Schedule(CamelModel):
    enabled: bool = False
    # 0 = Monday .. 6 = Sunday
    days: List[int] = []
    start_hour: int = Field(default=0, ge=0, le=23)
    end_hour: int = Field(default=23, ge=0, le=23)

    @field_validator("days")
    @classmethod
    def _days_in_week(cls, v: List[int]) -> List[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days must be between 0 (Monday) and 6 (Sunday)")
        return v


class TargetingCriteria(CamelModel):
    page_types: List[Literal["index", "product", "collection", "cart", "page"]] = []
    devices: List[Literal["mobile", "tablet", "desktop"]] = []
    visitor_type: VisitorType = "ALL"
    traffic_sources: List[Literal["paid", "organic", "social", "direct", "referral"]] = []
    utm_sources: List[str] = []
    schedule: Optional[Schedule] = None


# --- storefront ---

class InitRequest(CamelModel):
    fingerprint: Optional[str] = Field(default=None, min_length=1, max_length=200)
    page: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    customer_id: Optional[str] = None


class SegmentPublic(CamelModel):
    id: int
    label: str
    color: Optional[str] = None


class ActiveGame(CamelModel):
    id: int
    type: str
    name: str
    config: GameConfig
    trigger: str
    trigger_value: Optional[int] = None
    segments: List[SegmentPublic]


class InitResponse(CamelModel):
    session_token: str
    visitor_id: int
    is_new_visitor: bool
    can_play: bool
    cooldown_remaining_ms: int
    active_game: Optional[ActiveGame] = None


class PlayRequest(CamelModel):
    session_token: str = Field(min_length=1)
    game_id: int
    email: Optional[EmailStr] = None


class SegmentOut(CamelModel):
    id: int
    label: str
    type: str
    value: float
    color: Optional[str] = None


class DiscountOut(CamelModel):
    code: str
    type: str
    value: float
    expires_at: datetime


class Animation(CamelModel):
    angle: float
    duration: int = 5000


class PlayResponse(CamelModel):
    play_id: int
    result: Literal["WIN", "LOSE"]
    segment: SegmentOut
    discount: Optional[DiscountOut] = None
    animation: Animation


class StatusRequest(CamelModel):
    session_token: str = Field(min_length=1)


class VisitorSummary(CamelModel):
    id: int
    email: Optional[str] = None
    total_plays: int
    total_wins: int
    first_visit: datetime
    last_visit: datetime


class PlaySummary(CamelModel):
    id: int
    game_id: int
    result: str
    prize: Optional[dict] = None
    played_at: datetime


class StatusResponse(CamelModel):
    session_active: bool
    visitor: VisitorSummary
    can_play: bool
    cooldown_remaining_ms: int
    recent_plays: List[PlaySummary]
    active_discounts: List[DiscountOut]


class TrackRequest(CamelModel):
    session_token: str = Field(min_length=1)
    event: str = Field(min_length=1, max_length=64)
    data: Optional[dict] = None


class VerifyRequest(CamelModel):
    code: str = Field(min_length=1)
    shop: Optional[str] = None


class VerifyResponse(CamelModel):
    valid: bool
    reason: Optional[Literal["not_found", "used", "expired"]] = None
    type: Optional[str] = None
    value: Optional[float] = None
    expires_at: Optional[datetime] = None


# --- order-paid feed ---

class OrderDiscountCode(BaseModel):
    code: str
    amount: Optional[str] = None
    type: Optional[str] = None


class OrderCustomer(BaseModel):
    id: int
    email: Optional[str] = None


class OrderPaid(BaseModel):
    id: int
    admin_graphql_api_id: Optional[str] = None
    total_price: str = "0"
    discount_codes: List[OrderDiscountCode] = []
    customer: Optional[OrderCustomer] = None


# --- admin ---

class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    token: str


class AnalyticsDay(CamelModel):
    day: date = Field(serialization_alias="date")
    game_id: Optional[int] = None
    views: int
    plays: int
    wins: int
    claims: int
    redemptions: int
    revenue: float


class AnalyticsTotals(CamelModel):
    views: int = 0
    plays: int = 0
    wins: int = 0
    claims: int = 0
    redemptions: int = 0
    revenue: float = 0


class AnalyticsResponse(CamelModel):
    daily: List[AnalyticsDay]
    totals: AnalyticsTotals
    days: int
