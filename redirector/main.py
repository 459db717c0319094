from contextlib import asynccontextmanager

from fastapi import FastAPI  # type: ignore[import-not-found]

from .logging_config import setup_logging, teardown_logging
from .models import CancelReason
from .routers import callback_relay


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    from .runtime.defaults import default_controller

    controller = default_controller()
    try:
        yield
    finally:
        controller.cancel_all(CancelReason.SHUTDOWN)
        teardown_logging()

app = FastAPI(
    title="Redirect Callback Relay",
    description="Forwards external-agent callbacks to pending redirect operations.",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(callback_relay.router)

@app.get("/")
async def root():
    return {"message": "Redirect callback relay is running"}
