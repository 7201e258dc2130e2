from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
import logging

from .api.deps import get_settings_repository
from .api.v1.appointments import router as appointments_router
from .api.v1.schedule import router as schedule_router
from .api.v1.scheduling_settings import router as scheduling_settings_router
from .core.config import settings
from .core.database import init_db
from .repositories.appointment_repository import StorageError
from .repositories.settings_repository import SchedulingSettingsRepository

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Appointment scheduling engine: recurrence, capacity and conflict checks",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Middleware setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware for request logging and timing
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    
    # Log request
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )
    
    return response

# Exception handlers
@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    # Keep the scheduling details of a missing appointment
    if isinstance(exc, HTTPException) and exc.detail != "Not Found":
        return JSONResponse(status_code=404, content={"detail": exc.detail})
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": "The requested resource was not found",
            "path": str(request.url.path)
        }
    )

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred"
        }
    )

# Include routers
app.include_router(appointments_router, prefix="/api/v1")
app.include_router(schedule_router, prefix="/api/v1")
app.include_router(scheduling_settings_router, prefix="/api/v1")

def database_backend(url: str) -> str:
    return url.split(":", 1)[0].split("+", 1)[0]

@app.on_event("startup")
async def startup_event():
    """Create the scheduling tables."""
    logger.info(f"Starting {settings.APP_NAME} on {database_backend(settings.get_database_url)}")
    init_db()

@app.get("/health")
async def health_check(
    repository: SchedulingSettingsRepository = Depends(get_settings_repository)
):
    """Report whether the capacity configuration can be loaded, and what it is."""
    try:
        limits = await repository.get_capacity_limits()
    except StorageError as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": database_backend(settings.get_database_url)}
        )

    return {
        "status": "healthy",
        "version": settings.VERSION,
        "database": database_backend(settings.get_database_url),
        "slot_minutes": limits.slot_minutes,
        "sunday_closed": limits.sunday_closed,
        "max_evaluations_per_slot": limits.max_evaluations_per_slot,
        "max_recurrence_days": settings.MAX_RECURRENCE_DAYS,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clinic_scheduling.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
