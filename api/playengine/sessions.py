from sqlalchemy.orm import Session

from .errors import InvalidSession
from .models import Visitor, VisitorSession
from .utils import gen_session_token


def issue_session(
    db: Session,
    visitor: Visitor,
    page: str | None = None,
    referrer: str | None = None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
    utm_campaign: str | None = None,
    game_id: int | None = None,
) -> VisitorSession:
    """Persist a fresh session for the visitor. Caller commits."""
    s = VisitorSession(
        visitor_id=visitor.id,
        token=gen_session_token(),
        game_id=game_id,
        current_page=page,
        referrer=referrer,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
    )
    db.add(s)
    return s


def get_session(db: Session, token: str | None, require_active: bool = True) -> VisitorSession:
    if not token:
        raise InvalidSession()
    s = db.query(VisitorSession).filter(VisitorSession.token == token).first()
    if not s or (require_active and not s.is_active):
        raise InvalidSession()
    return s
