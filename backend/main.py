"""
BFP Dispatch API - Fire incident intake and realtime relay
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
import logging
import os

from broadcast_hub import BroadcastHub
from database import engine, Base, SessionLocal
from errors import IncidentError
from routers import incidents, websocket, auth, stations

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("BFP Dispatch API starting up...")
    if os.environ.get("CREATE_TABLES", "1") == "1":
        Base.metadata.create_all(bind=engine)
    yield
    # Shutdown
    logger.info(f"BFP Dispatch API shutting down ({app.state.hub.connection_count} open connections)")


app = FastAPI(
    title="BFP Dispatch API",
    description="Fire incident intake and realtime station relay",
    version="1.0.0",
    lifespan=lifespan
)

# One hub per application; handed to routes through app.state
app.state.hub = BroadcastHub()
app.state.session_factory = SessionLocal

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(IncidentError)
async def incident_error_handler(request: Request, exc: IncidentError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.error or ''}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request body", "error": str(exc.errors())},
    )


# Routers
app.include_router(auth.router, prefix="/api", tags=["Auth"])
app.include_router(incidents.router, prefix="/api", tags=["Incidents"])
app.include_router(stations.router, prefix="/api", tags=["Stations"])
app.include_router(websocket.router, tags=["Realtime"])


@app.get("/")
async def root():
    return {"status": "ok", "service": "BFP Dispatch API", "version": "1.0.0"}


@app.get("/api/health")
async def health(request: Request):
    db = request.app.state.session_factory()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection error: {e}")
        return JSONResponse(
            status_code=500,
            content={"status": "ERROR", "message": "Failed to connect to database", "error": str(e)},
        )
    finally:
        db.close()
    return {"status": "OK", "message": "Server is running"}
