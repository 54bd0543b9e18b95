"""
Calendar Sync Engine - FastAPI Backend
"""
import logging
import sys
from contextlib import asynccontextmanager

# Configure logging to output to stdout
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from database import get_sync_db, init_db
from api import calendar_sync
from jobs.calendar_sync import build_calendar_sync_engine
from scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    init_db()

    engine = build_calendar_sync_engine()

    # Startup: close sync logs orphaned by a previous crash or restart
    try:
        engine.store.cancel_dangling_sync_logs(engine.clock.now())
    except Exception as e:
        logger.warning(f"Dangling sync log cleanup on startup failed: {e}")

    app.state.calendar_sync = engine
    start_scheduler(engine)
    yield
    # Shutdown: stop scheduling, then let running syncs reach a terminal state
    shutdown_scheduler()
    await engine.close(timeout=SHUTDOWN_GRACE_SECONDS)


app = FastAPI(
    title="Calendar Sync API",
    description="Booking platform calendar synchronization",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(calendar_sync.router, prefix="/calendar-sync", tags=["Calendar Sync"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "calendar-sync"}


@app.get("/health/db")
def db_health_check(db: Session = Depends(get_sync_db)):
    """Database health check"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database unhealthy: {str(e)}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
