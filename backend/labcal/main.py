"""FastAPI application entry point."""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from labcal.config import settings
from labcal.database import Base, engine
from labcal.exceptions import LabCalendarError
from labcal.log import setup_logging

# Import routers
from labcal.routers import events, modifications, owner_edits, maintenance

# Import all models so Base.metadata knows about them
from labcal.models.event import Event                                   # noqa: F401
from labcal.models.time_slot import TimeSlot, SlotHistoryEntry           # noqa: F401
from labcal.models.modification import EventModification, StateChange   # noqa: F401

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lab Calendar",
    description="Laboratory session calendar: time-slot proposals, owner confirmation and staff validation",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LabCalendarError)
async def lab_calendar_error_handler(request: Request, exc: LabCalendarError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Register routers
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(modifications.router, prefix="/api/events", tags=["Modifications"])
app.include_router(owner_edits.router, prefix="/api/events", tags=["OwnerEdits"])
app.include_router(maintenance.router, prefix="/api/maintenance", tags=["Maintenance"])


@app.on_event("startup")
def on_startup():
    """Configure logging; create tables on startup (for SQLite dev mode)."""
    setup_logging()
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
