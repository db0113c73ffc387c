"""
Error taxonomy and problem-details rendering
"""
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

PROBLEM_CONTENT_TYPE = "application/problem+json"


class TrustLayerError(Exception):
    """Base error carrying an RFC 7807 style problem description."""

    status_code = 500
    problem_type = "/api/errors/internal"
    title = "Internal Error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.title
        super().__init__(self.detail)

    def to_problem(self) -> Dict[str, Any]:
        return {
            "type": self.problem_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }

    def headers(self) -> Dict[str, str]:
        return {}


class Unauthorized(TrustLayerError):
    status_code = 401
    problem_type = "/api/errors/unauthorized"
    title = "Invalid API Key"

    def __init__(self, detail: str = "The provided API key is invalid or revoked", title: Optional[str] = None):
        if title:
            self.title = title
        super().__init__(detail)


class Forbidden(TrustLayerError):
    status_code = 403
    problem_type = "/api/errors/forbidden"
    title = "Forbidden"


class RateLimitExceeded(TrustLayerError):
    status_code = 429
    problem_type = "/api/errors/rate-limit"
    title = "Rate Limit Exceeded"

    def __init__(self, retry_after: int, limit: int, window_seconds: float):
        self.retry_after = retry_after
        self.limit = limit
        self.window_seconds = window_seconds
        super().__init__(
            f"API key rate limit of {limit} requests per {int(window_seconds)}s exceeded"
        )

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class DeliveryFailure(TrustLayerError):
    """A single webhook delivery failed. Recovered locally, never surfaced to emitters."""

    status_code = 502
    problem_type = "/api/errors/delivery-failure"
    title = "Webhook Delivery Failed"

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status = status
        super().__init__(f"{url}: {reason}")


class StorageError(TrustLayerError):
    status_code = 503
    problem_type = "/api/errors/storage-unavailable"
    title = "Storage Unavailable"


def problem_response(exc: TrustLayerError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(),
        headers=exc.headers(),
        media_type=PROBLEM_CONTENT_TYPE,
    )


async def trust_layer_error_handler(request: Request, exc: TrustLayerError) -> JSONResponse:
    return problem_response(exc)
