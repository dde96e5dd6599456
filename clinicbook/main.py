from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import time
import logging
import redis

from .api.v1.appointments import router as appointments_router
from .api.v1.doctors import router as doctors_router
from .core.config import settings
from .core.database import SessionLocal, init_db, redis_client
from .core.exceptions import SchedulingError, SlotConflict

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger("clinicbook")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Doctor availability, slot booking and appointment lifecycle for the healthcare platform",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type"],
)

if not settings.TESTING:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

@app.middleware("http")
async def log_scheduling_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"

    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {response.status_code} ({elapsed * 1000:.1f}ms)")
    return response

# Scheduling errors carry their own status code and body
@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if isinstance(exc, SlotConflict):
        # Expected under contention; clients re-query slots and retry
        logger.info(f"Booking conflict ({exc.reason.value}) on {request.url.path}")
    else:
        logger.info(f"{exc.error} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={
            "error": "NotFound",
            "message": getattr(exc, "detail", None) or "No such route",
            "path": str(request.url.path)
        }
    )

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "The scheduling service could not complete the request"
        }
    )

app.include_router(appointments_router, prefix="/api/v1")
app.include_router(doctors_router, prefix="/api/v1")

@app.on_event("startup")
async def startup_event():
    """Create tables and report the scheduling configuration."""
    backend = settings.get_database_url.split(":", 1)[0]
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION} on {backend}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    logger.info(
        f"Cancellation lead time {settings.CANCELLATION_LEAD_TIME_HOURS:g}h, "
        f"reminders {settings.REMINDER_LEAD_HOURS}h ahead, "
        f"slot cache {'on' if redis_client is not None else 'off'}"
    )

@app.on_event("shutdown")
async def shutdown_event():
    if redis_client is not None:
        redis_client.close()
    logger.info(f"{settings.APP_NAME} stopped")

@app.get("/health")
async def health_check():
    """Liveness plus the state of the database and slot cache."""
    checks = {"database": "ok", "slot_cache": "disabled"}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {str(e)}")
        checks["database"] = "unavailable"
    finally:
        db.close()

    if redis_client is not None:
        try:
            redis_client.ping()
            checks["slot_cache"] = "ok"
        except redis.RedisError:
            # Bookings never depend on the cache
            checks["slot_cache"] = "degraded"

    return {
        "status": "healthy" if checks["database"] == "ok" else "unhealthy",
        "checks": checks,
        "timestamp": time.time(),
        "version": settings.VERSION
    }

@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/api/v1/info")
async def api_info():
    """Routes and the scheduling rules clients need to know."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "scheduling": {
            "cancellation_lead_time_hours": settings.CANCELLATION_LEAD_TIME_HOURS,
            "default_slot_duration": settings.DEFAULT_SLOT_DURATION,
            "appointment_duration_range": [
                settings.MIN_APPOINTMENT_DURATION,
                settings.MAX_APPOINTMENT_DURATION
            ],
            "reminder_lead_hours": settings.REMINDER_LEAD_HOURS
        },
        "endpoints": {
            "appointments": "/api/v1/appointments",
            "doctors": "/api/v1/doctors/{doctor_id}",
            "openapi": "/api/v1/openapi.json"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clinicbook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
