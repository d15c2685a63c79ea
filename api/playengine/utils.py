import hashlib
import random
import secrets
from datetime import datetime, timezone
from urllib.parse import urlparse

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

SEARCH_ENGINES = {"google", "bing", "yahoo", "duckduckgo", "yandex", "baidu", "ecosia"}
SOCIAL_NETWORKS = {
    "facebook", "fb", "instagram", "twitter", "tiktok", "pinterest", "linkedin",
    "youtube", "reddit", "snapchat",
}
SOCIAL_HOSTS = {"t.co", "x.com", "lnkd.in", "youtu.be"}

_rng = random.SystemRandom()


def utcnow() -> datetime:
    """UTC-aware 'now' to keep comparisons consistent with timestamptz columns."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands datetimes back naive
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def gen_code(prefix: str, length: int = 6) -> str:
    # e.g. SPIN10-K7F9X2
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


def code_prefix(prize_type: str, value: float) -> str:
    if prize_type == "FREE_SHIPPING":
        return "FREESHIP"
    amount = int(value) if float(value).is_integer() else str(value).replace(".", "")
    if prize_type == "PERCENTAGE":
        return f"SPIN{amount}"
    return f"SAVE{amount}"


def gen_session_token() -> str:
    # 32 bytes -> 256 bits of entropy
    return "sess_" + secrets.token_urlsafe(32)


def fingerprint_from_signals(user_agent: str, accept_language: str, ip: str) -> str:
    data = f"{user_agent}|{accept_language}|{ip}"
    return "fp_" + hashlib.sha256(data.encode("utf-8")).hexdigest()[:32]


def parse_device(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if any(k in ua for k in ("mobile", "android", "iphone", "ipod", "blackberry", "opera mini", "iemobile")):
        return "mobile"
    if any(k in ua for k in ("ipad", "tablet", "playbook", "silk")):
        return "tablet"
    return "desktop"


def parse_browser(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if "firefox" in ua:
        return "Firefox"
    if "edg" in ua:
        return "Edge"
    if "opr" in ua or "opera" in ua:
        return "Opera"
    if "chrome" in ua:
        return "Chrome"
    if "safari" in ua:
        return "Safari"
    return "Unknown"


def parse_os(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if "windows" in ua:
        return "Windows"
    if "iphone" in ua or "ipad" in ua:
        return "iOS"
    if "android" in ua:
        return "Android"
    if "mac" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return "Unknown"


def page_type(path: str | None) -> str:
    path = path or "/"
    if path == "/":
        return "index"
    if "/products/" in path:
        return "product"
    if "/collections/" in path:
        return "collection"
    if "/cart" in path:
        return "cart"
    return "page"


def traffic_source(referrer: str | None, utm_source: str | None, shop_domain: str | None = None) -> str:
    if utm_source:
        return "paid"
    if not referrer:
        return "direct"
    host = (urlparse(referrer).hostname or referrer).lower()
    if shop_domain and host.endswith(shop_domain.lower()):
        return "direct"
    labels = set(host.split("."))
    if labels & SEARCH_ENGINES:
        return "organic"
    if labels & SOCIAL_NETWORKS or host.removeprefix("www.") in SOCIAL_HOSTS:
        return "social"
    return "referral"


def spin_angle(segment_index: int, total_segments: int, min_rotations: int = 5) -> float:
    """Rotation that lands segment_index under a pointer at 12 o'clock."""
    seg = 360 / total_segments
    target = segment_index * seg + seg / 2
    full = (min_rotations + _rng.randint(0, 3)) * 360
    return full + (360 - target)
