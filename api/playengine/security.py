import base64
import bcrypt, hashlib, hmac, secrets
from datetime import datetime, timedelta, timezone
from fastapi import Header, HTTPException, status
from jose import jwt, JWTError
from .config import settings

ALGO = "HS256"


def verify_admin_password(plaintext: str) -> bool:
    # Prefer secure hash if provided
    if settings.admin_password_hash:
        try:
            return bcrypt.checkpw(
                plaintext.encode("utf-8"),
                settings.admin_password_hash.encode("utf-8"),
            )
        except ValueError:
            return False
    # Fallback: compare to plaintext env
    if settings.admin_password:
        return secrets.compare_digest(plaintext, settings.admin_password)
    return False


def make_admin_token(shop_domain: str) -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=settings.admin_token_hours)
    return jwt.encode({"sub": "admin", "shop": shop_domain, "exp": exp}, settings.jwt_secret, algorithm=ALGO)


def require_admin(authorization: str | None = Header(default=None, alias="Authorization")) -> str:
    """Bearer admin token -> shop domain it was issued for."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("sub") != "admin" or not payload.get("shop"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not an admin token")
    return payload["shop"]


def verify_webhook_hmac(body: bytes, hmac_header: str | None) -> bool:
    """Shopify signs webhook bodies with base64(HMAC-SHA256(api secret, raw body))."""
    if not hmac_header or not settings.shopify_api_secret:
        return False
    digest = hmac.new(settings.shopify_api_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return secrets.compare_digest(expected, hmac_header.strip())
