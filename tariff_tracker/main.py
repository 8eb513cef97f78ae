from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .logging import setup_logging
from .config import settings
from .api.routes import router as api_router
from .scheduler import schedule_jobs, shutdown_scheduler

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        schedule_jobs()
    yield
    shutdown_scheduler()

app = FastAPI(title="tariff-tracker", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.allowed_origin.split(",") if o.strip()],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.include_router(api_router)
