from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from app.config import get_settings
from app.database import engine, init_db
from app.middleware.correlation import CorrelationMiddleware
from app.middleware.rate_limit import RedisRateLimitMiddleware
from app.routes import auth, billing, coach_chat, dev, interview, serious_plan
from app.services.gateway import get_gateway
from app.services.redis_client import close_redis, init_redis, is_redis_healthy
from app.services.storage_service import LOCAL_PDF_DIR, LOCAL_PDF_ROUTE
from app.utils.logger import logger
from app.utils.metrics import get_snapshot
from app.worker import get_supervisor

settings = get_settings()

limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)
app.add_middleware(RedisRateLimitMiddleware)
# Added last so it wraps everything and every log line has a correlation ID
app.add_middleware(CorrelationMiddleware)


@app.on_event("startup")
async def startup_event():
    logger.info("app.starting", extra={"service": settings.app_name})
    await init_db()
    await init_redis()
    logger.info("app.ready", extra={"service": settings.app_name, "path": f"{settings.backend_host}:{settings.backend_port}"})


@app.on_event("shutdown")
async def shutdown_event():
    # Cancelled workers mark their in-flight rows as error
    await get_supervisor().shutdown()
    await close_redis()
    logger.info("app.stopped")


@app.get("/health")
async def health_check():
    db_ok = True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health.db_failed", extra={"error": str(e)})
        db_ok = False

    body = {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "redis": await is_redis_healthy(),
        "circuits": get_gateway().get_circuit_states(),
        "backgroundTasks": len(get_supervisor().running()),
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


@app.get("/metrics")
async def metrics():
    return get_snapshot()


@app.get("/")
async def root():
    return {"status": "ok"}


app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(interview.router, prefix="/api", tags=["Interview"])
app.include_router(serious_plan.router, prefix="/api/serious-plan", tags=["Serious Plan"])
app.include_router(coach_chat.router, prefix="/api/coach-chat", tags=["Coach Chat"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])
if settings.enable_dev_routes:
    app.include_router(dev.router, prefix="/api/dev", tags=["Dev"])

# Rendered PDFs when Supabase storage isn't configured
app.mount(LOCAL_PDF_ROUTE, StaticFiles(directory=str(LOCAL_PDF_DIR), check_dir=False), name="pdfs")

# Local development entrypoint
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug
    )
