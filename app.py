# =====================================================
# app.py
# =====================================================
import os
import logging

# Force unbuffered output (Render needs this for real-time logs)
os.environ["PYTHONUNBUFFERED"] = "1"

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local imports
from config import CORS_ORIGINS
from db import dispose_engine, test_connection
from handlers import auth, billing, email, progress, quiz, teams
from logger import unhandled_exception_handler
from logging_setup import logger
from tasks import start_background_tasks, stop_background_tasks

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Initialize FastAPI
# -------------------------------------------------
app = FastAPI(title="PBE Journey API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(quiz.router)
app.include_router(progress.router)
app.include_router(billing.router)
app.include_router(email.router)
app.include_router(auth.router)
app.include_router(teams.router)


# -------------------------------------------------
# Root
# -------------------------------------------------
@app.get("/")
@app.head("/")
async def root():
    return {
        "status": "ok",
        "message": "PBE Journey API is running ✅",
        "health": "Check /health for database status",
    }


# -------------------------------------------------
# Startup event
# -------------------------------------------------
@app.on_event("startup")
async def on_startup():
    logger.info("🚀 Starting up PBE Journey API...")
    try:
        await test_connection()
    except Exception:
        logger.warning("⚠️ Database not reachable at startup, continuing anyway")

    await start_background_tasks()
    logger.info("✅ Startup complete")


# -------------------------------------------------
# Shutdown event
# -------------------------------------------------
@app.on_event("shutdown")
async def on_shutdown():
    try:
        await stop_background_tasks()
        await dispose_engine()
    except Exception as e:
        logger.warning(f"⚠️ Error while shutting down: {e}")


# -------------------------------------------------
# Health
# -------------------------------------------------
@app.get("/health")
@app.head("/health")
async def health_check():
    try:
        await test_connection()
    except Exception:
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unreachable"})
    return {"status": "ok", "database": "ok"}
