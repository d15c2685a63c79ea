"""Failure taxonomy of the play engine.

Every error carries a machine-readable ``kind`` and ``code`` plus the HTTP
status the API layer renders it with. Messages are safe to show to a shopper.
"""


class EngineError(Exception):
    kind = "internal_error"
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code, "kind": self.kind}


class ValidationError(EngineError):
    kind = "validation_error"
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(EngineError):
    kind = "not_found"
    status_code = 404
    code = "NOT_FOUND"


class ShopNotFound(NotFoundError):
    code = "SHOP_NOT_FOUND"

    def __init__(self, message: str = "Shop not found"):
        super().__init__(message)


class GameNotFound(NotFoundError):
    code = "GAME_NOT_FOUND"

    def __init__(self, message: str = "Game not found"):
        super().__init__(message)


class NoDiscountRule(NotFoundError):
    code = "NO_DISCOUNT_RULE"

    def __init__(self, message: str = "No discount rule configured"):
        super().__init__(message)


class NoSegmentsConfigured(NotFoundError):
    code = "NO_SEGMENTS"

    def __init__(self, message: str = "No segments configured"):
        super().__init__(message)


class InvalidSession(NotFoundError):
    kind = "invalid_session"
    status_code = 401
    code = "INVALID_SESSION"

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message)


class RateLimitedError(EngineError):
    kind = "rate_limited"
    status_code = 429
    code = "PLAY_LIMIT_REACHED"

    def __init__(self, retry_after_ms: int, message: str = "Play limit reached"):
        super().__init__(message)
        self.retry_after_ms = max(0, int(retry_after_ms))

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["cooldownRemainingMs"] = self.retry_after_ms
        return out


class ExternalIntegrationError(EngineError):
    kind = "external_integration_error"
    status_code = 502
    code = "DISCOUNT_PROVIDER_ERROR"


class InternalError(EngineError):
    pass


class PlayConflict(Exception):
    """A concurrent play claimed the same sequence slot; the unit is re-run."""
