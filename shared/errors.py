"""
Domain error taxonomy shared by every service.

Services raise these instead of HTTPException so the lifecycle engine stays
usable outside a request. Each sub-app installs the JSON handler with
register_exception_handlers().
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class DomainError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"success": False, "message": self.detail}


class ValidationError(DomainError):
    """Missing or malformed input; carries the offending field names."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, fields: list[str] | None = None):
        super().__init__(detail)
        self.fields = fields or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class IllegalTransitionError(DomainError):
    """The requested change is not allowed from the order's current state."""

    status_code = status.HTTP_409_CONFLICT


class GatewayError(DomainError):
    """The payment gateway failed, timed out or declined the request."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "request_rejected",
        path=request.url.path,
        error=type(exc).__name__,
        detail=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
