"""Main FastAPI application."""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.logging import setup_logging
from app.core.dependencies import shutdown_call_sessions
from app.db.database import init_db
from app.api import calls, emergency, health


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    yield
    # Shutdown
    await shutdown_call_sessions()


app = FastAPI(
    title="Emergency Voice Assistant",
    description="Voice emergency-call session engine for the patient assistant",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(emergency.router, tags=["emergency"])
app.include_router(calls.router, tags=["calls"])


@app.get("/")
async def root():
    """Service info."""
    return {
        "message": "Emergency Voice Assistant API",
        "version": "0.1.0",
    }
