"""
Anemia Screening API - Main Application

Routers:
- auth_router.py - ID token verification and lazy profile creation
- user_router.py - Profile, photo, credential linking, account deletion
- scan_router.py - Eye photo upload, crop + classification, scan lookup
- chat_router.py - Anemia advice assistant sessions and messages

Uploaded images are served back from /scans, /conjunctivas and /profiles.
"""

import time
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import (
    CORS_ORIGINS,
    CORS_ALLOW_CREDENTIALS,
    SCANS_DIR,
    CONJUNCTIVAS_DIR,
    PROFILES_DIR,
    LOG_LEVEL,
    LOG_FILE,
    HOST,
    PORT,
    get_config_summary,
)
from database import create_tables
from inference_gateway import cleanup_inference_gateway
from middleware import RequestLoggingMiddleware
from structured_logging import configure_logging, get_logger

# =============================================================================
# IMPORT ROUTERS
# =============================================================================

# Token verification
from routers.auth_router import router as auth_router

# User profiles
from routers.user_router import router as user_router

# Scan upload and lookup
from routers.scan_router import router as scan_router

# AI Chat (Gemini)
from routers.chat_router import router as chat_router

configure_logging(level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

_started_at = time.time()

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title="Anemia Screening API",
    description="Conjunctiva photo screening for anemia with an AI advice assistant.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Mount static files for serving uploaded images
for directory in (SCANS_DIR, CONJUNCTIVAS_DIR, PROFILES_DIR):
    directory.mkdir(parents=True, exist_ok=True)
app.mount("/scans", StaticFiles(directory=str(SCANS_DIR)), name="scans")
app.mount("/conjunctivas", StaticFiles(directory=str(CONJUNCTIVAS_DIR)), name="conjunctivas")
app.mount("/profiles", StaticFiles(directory=str(PROFILES_DIR)), name="profiles")

# Create database tables on startup
create_tables()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (logs all API calls)
app.add_middleware(RequestLoggingMiddleware, log_headers=False)

# =============================================================================
# REGISTER ROUTERS
# =============================================================================

app.include_router(auth_router)
app.include_router(user_router)
app.include_router(scan_router)
app.include_router(chat_router)


@app.on_event("shutdown")
async def shutdown():
    await cleanup_inference_gateway()


# =============================================================================
# HEALTH CHECK ENDPOINTS
# =============================================================================

@app.get("/")
def read_root():
    return {
        "message": "Anemia Screening API v1.0",
        "status": "healthy",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """
    Basic health check endpoint.
    Returns database connectivity, memory, disk and uptime.
    """
    import psutil

    db_status = "healthy"
    try:
        from database import SessionLocal
        from sqlalchemy import text
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(str(SCANS_DIR.absolute()))
    uptime_seconds = time.time() - _started_at

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "database": db_status,
        "memory": {
            "total_gb": round(memory.total / (1024**3), 2),
            "available_gb": round(memory.available / (1024**3), 2),
            "used_percent": memory.percent,
        },
        "disk": {
            "total_gb": round(disk.total / (1024**3), 2),
            "free_gb": round(disk.free / (1024**3), 2),
            "used_percent": round(disk.percent, 1),
        },
        "uptime_seconds": round(uptime_seconds),
        "config": get_config_summary(),
    }


@app.get("/health/db")
def database_health_check():
    """Row counts per table."""
    from database import SessionLocal, User, Scan, ChatSession, Chat
    from sqlalchemy import text

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            tables = {
                "users": db.query(User).count(),
                "scans": db.query(Scan).count(),
                "chat_sessions": db.query(ChatSession).count(),
                "chats": db.query(Chat).count(),
            }
        finally:
            db.close()
        return {"status": "healthy", "connection": "ok", "tables": tables}
    except Exception as e:
        return {"status": "unhealthy", "connection": "failed", "error": str(e)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
