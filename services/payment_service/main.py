from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from shared.security import limiter
from .router import router, public_router

payment_app = FastAPI(title="Payment Service", version="2.0.0")

# Emits structured logs, OTLP traces and /metrics like the other services
setup_observability(payment_app, "payment_service")
register_exception_handlers(payment_app)

payment_app.state.limiter = limiter
payment_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

payment_app.include_router(public_router)
payment_app.include_router(router)
