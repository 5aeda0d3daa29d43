"""
FastAPI main application for the ICU dispatch backend.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from icudispatch import __version__
from icudispatch.core.config import Config
from icudispatch.core.errors import DispatchError
from icudispatch.core.event_bus import get_event_bus
from icudispatch.db.connection import init_db
from icudispatch.engine import DispatchEngine, InventoryService, ReservationEngine, Reconciler
from icudispatch.api.routes import admin, ambulance, icus, reception
from icudispatch.api.websocket import router as ws_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting ICU dispatch backend...")

    session_factory = init_db(Config.DATABASE_URL)
    event_bus = get_event_bus()
    event_bus.start()

    dispatch = DispatchEngine(session_factory, event_bus)
    reservations = ReservationEngine(session_factory, event_bus, dispatch=dispatch)

    app.state.session_factory = session_factory
    app.state.event_bus = event_bus
    app.state.dispatch = dispatch
    app.state.reservations = reservations
    app.state.inventory = InventoryService(session_factory, event_bus, reservations=reservations)
    app.state.reconciler = Reconciler(session_factory, event_bus, reservations=reservations)

    logger.info("ICU dispatch backend started successfully")

    yield

    logger.info("Shutting down ICU dispatch backend...")
    event_bus.stop()
    logger.info("Backend shutdown complete")


app = FastAPI(
    title="ICU Dispatch API",
    description="ICU bed reservation and ambulance dispatch coordination",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map domain errors to structured JSON responses."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.context}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ========================
# Health Endpoints
# ========================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ICU Dispatch API",
        "version": __version__,
        "timestamp": datetime.now().isoformat()
    }


@app.get("/api/health")
async def health_check(request: Request):
    """Detailed health check."""
    event_bus = getattr(request.app.state, "event_bus", None)
    return {
        "status": "healthy",
        "components": {
            "database": "initialized" if getattr(request.app.state, "session_factory", None) else "not initialized",
            "event_bus": "running" if event_bus and event_bus.is_running else "not running"
        },
        "config": {
            "debug": Config.DEBUG,
            "pending_request_timeout_minutes": Config.PENDING_REQUEST_TIMEOUT_MINUTES
        }
    }


app.include_router(icus.router, prefix="/api/icus", tags=["icus"])
app.include_router(reception.router, prefix="/api/reception", tags=["reception"])
app.include_router(ambulance.router, prefix="/api/ambulance", tags=["ambulance"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(ws_router)
