import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from kaigo_server import api_v1
from kaigo_server.db import init_pool, close_pool
from kaigo_server.feature_flags import should_run_migrations
from kaigo_server.migrate import run_migrations
from kaigo_server.routes import (
    bathing_records,
    care_records,
    cleaning_linen_records,
    meal_water_records,
    residents,
    weight_records,
)

logger = logging.getLogger(__name__)

ROUTERS = [
    api_v1.router,
    residents.router,
    bathing_records.router,
    weight_records.router,
    meal_water_records.router,
    cleaning_linen_records.router,
    care_records.router,
]


@asynccontextmanager
async def lifespan(_app):
    if should_run_migrations():
        run_migrations()
    init_pool()
    try:
        yield
    finally:
        close_pool()


def create_app():
    app = FastAPI(
        title="Kaigo Check-lists",
        description="Daily and monthly care check-lists for residents",
        version=api_v1.API_VERSION,
        lifespan=lifespan,
    )
    for router in ROUTERS:
        app.include_router(router)
    return app


app = create_app()


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    logger.info("Starting kaigo server on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
