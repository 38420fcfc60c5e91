from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .core.config import settings
from .core.logging import setup_logging
from .routers import router
from .services.recurring_worker import build_workers


setup_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    workers = build_workers() if settings.RECURRING_WORKER_ENABLED else []
    for worker in workers:
        worker.start()
    if not workers:
        logger.info("recurring workers disabled")
    try:
        yield
    finally:
        for worker in workers:
            await worker.stop()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

# CORS (프론트엔드 연결 준비)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(router, prefix="/api")
