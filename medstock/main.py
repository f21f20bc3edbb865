# medstock/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medstock.api.problem_handlers import register_exception_handlers
from medstock.api.router import api_router
from medstock.core.config import get_settings
from medstock.core.logging import setup_logging
from medstock.core.scheduler import init_scheduler, shutdown_scheduler
from medstock.db.session import close_engines
from medstock.obs.metrics import PrometheusMiddleware

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("medstock")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_scheduler()
    logger.info("medstock up (env=%s)", settings.ENV)
    try:
        yield
    finally:
        shutdown_scheduler()
        await close_engines()


app = FastAPI(
    title="MedStock",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
async def root():
    return {"name": "MedStock", "version": "1.0.0"}
