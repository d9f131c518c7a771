import asyncio

import structlog
from fastapi import FastAPI

from shared.config.database import AsyncSessionLocal, Base, engine
from shared.config.settings import OUTBOX_POLL_SECONDS

# IMPORTANT: import models so they register with Base
from services.product_service import models as product_models  # noqa: F401
from services.order_service import models as order_models  # noqa: F401

from services.notification_service.dispatcher import build_dispatcher
from services.order_service.main import order_app
from services.order_service.side_effects import SideEffectRunner
from services.payment_service.main import payment_app
from services.product_service.main import product_app

logger = structlog.get_logger(__name__)

app = FastAPI(title="Ecommerce Order Cluster")


@app.on_event("startup")
async def startup_event():
    # Mounted sub-apps never receive startup events, so tables are created here
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if OUTBOX_POLL_SECONDS > 0:
        runner = SideEffectRunner(AsyncSessionLocal, build_dispatcher())
        app.state.outbox_worker = asyncio.create_task(runner.run_forever(OUTBOX_POLL_SECONDS))


@app.on_event("shutdown")
async def shutdown_event():
    worker = getattr(app.state, "outbox_worker", None)
    if worker is not None:
        worker.cancel()
        logger.info("outbox_worker_stopped")
    await engine.dispose()


app.mount("/products", product_app)
app.mount("/orders", order_app)
app.mount("/payments", payment_app)
