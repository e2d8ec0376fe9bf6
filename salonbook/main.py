from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

import redis

from .api import router
from .config import settings
from .core.logging_config import setup_logging
from .core.middleware import RequestTracingMiddleware
from .db import SessionLocal, init_db

setup_logging()
init_db()

app = FastAPI(
    title="salonbook",
    description="Multi-tenant salon availability and booking engine",
    version="0.1.0",
)
app.add_middleware(RequestTracingMiddleware)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready():
    checks = {
        "db": "ok",
        "redis": "skipped",
    }

    db_ok = True
    redis_ok = True

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        checks["db"] = "error"
        db_ok = False

    redis_url = (settings.REDIS_URL or "").strip()
    if redis_url:
        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            checks["redis"] = "ok"
        except redis.RedisError:
            checks["redis"] = "error"
            redis_ok = False

    if db_ok and redis_ok:
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


app.include_router(router)
