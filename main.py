"""
FastAPI Application Entry Point
Marketplace Import Service - Python Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
import os
import asyncio
from dotenv import load_dotenv
from starlette.middleware.base import BaseHTTPMiddleware
import logging
import json
import sys
import time
import uuid as _uuid
from typing import Callable, Optional

from routers import imports, products, skus, inventory, orders

from database import DATABASE_URL, init_db
from services.storage import storage
from services.upload_cache import upload_cache
from settings import UPLOAD_SWEEP_INTERVAL_SECONDS

# Load environment variables
load_dotenv()


# ---- Logging setup (JSON, one object per line) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Include traceback if present
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JsonFormatter())

root = logging.getLogger()
root.handlers = [handler]
root.setLevel(LOG_LEVEL)

logging.getLogger("uvicorn.access").setLevel(logging.INFO)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Marketplace Import API",
    description="Order, inventory and product imports for Amazon, Flipkart and Meesho",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

cors_origins_raw = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
cors_origins = [origin.strip() for origin in cors_origins_raw.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# ---- Request/Response logging middleware ----
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()

        request.state.request_id = request_id

        # Log request (avoid reading full body for large uploads)
        logger.info(
            f"REQ {request.method} {request.url.path} "
            f"qs={request.url.query!s} ip={request.client.host if request.client else '-'} "
            f"rid={request_id} ua={request.headers.get('user-agent','-')}"
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Uncaught exception in request pipeline rid={request_id}")
            raise

        dur_ms = int((time.time() - start) * 1000)
        logger.info(
            f"RES {request.method} {request.url.path} "
            f"status={response.status_code} durMs={dur_ms} rid={request_id}"
        )
        response.headers["X-Request-Id"] = request_id
        return response

app.add_middleware(RequestIDMiddleware)


@app.get("/")
async def root_info():
    return {"ok": True, "service": "marketplace-import"}

@app.get("/healthz")
async def healthz():
    """Basic health check for load balancers."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    """Health check including database connectivity."""
    try:
        await storage.ping()
        db_status = "healthy"
    except Exception as e:
        logger.warning(f"Health check DB ping failed: {e}")
        db_status = "unavailable"
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "pendingUploads": len(upload_cache),
        "timestamp": time.time(),
    }


# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

# --- Routers ---
app.include_router(imports.router, prefix="/api", tags=["imports"])
app.include_router(products.router, prefix="/api", tags=["products"])
app.include_router(skus.router, prefix="/api", tags=["skus"])
app.include_router(inventory.router, prefix="/api", tags=["inventory"])
app.include_router(orders.router, prefix="/api", tags=["orders"])


# --- Background upload sweep ---
_sweep_task: Optional[asyncio.Task] = None

async def _sweep_uploads_forever():
    while True:
        await asyncio.sleep(UPLOAD_SWEEP_INTERVAL_SECONDS)
        try:
            upload_cache.sweep()
        except Exception:
            logger.exception("Upload sweep failed")


# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    global _sweep_task
    logger.info("Starting Marketplace Import API...")
    # In-memory SQLite has no schema until we create it
    init_default = "true" if DATABASE_URL.startswith("sqlite") else "false"
    if os.getenv("INIT_DB_ON_STARTUP", init_default).lower() == "true":
        try:
            logger.info("Initializing database tables...")
            await asyncio.wait_for(init_db(), timeout=120)
            logger.info("Database initialized successfully")
        except asyncio.TimeoutError:
            logger.error("DB init timed out after 120s, continuing without init")
        except Exception as e:
            logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)
    else:
        logger.info("Skipping DB init on startup")
    _sweep_task = asyncio.create_task(_sweep_uploads_forever())

@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Marketplace Import API...")
    if _sweep_task:
        _sweep_task.cancel()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
