# rentalindex/main.py
from fastapi import FastAPI

from . import config
from .api.routes import router as api_router
from .db import Base, engine
from . import models  # noqa: F401 ensure models are imported so tables are known
from .scheduler import shutdown_scheduler, start_scheduler
from .utils import logger

app = FastAPI(title="Phnom Penh Rental Index")
app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if config.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED not set)")


@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
