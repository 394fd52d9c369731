"""
ReRank API

FastAPI application that wires the routers together:
1. Search Console sites and monitored articles
2. Competitor analysis and rank drop detection
3. Notifications, alert settings and Slack
4. Plans, Stripe billing and the scheduler's cron routes
"""

import logging
import sys
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rerank.config import get_settings
from rerank.database import check_db_connection, get_db_info, init_db

from . import (
    admin,
    articles,
    billing,
    competitors,
    cron,
    dashboard,
    improvement,
    notifications,
    settings as settings_api,
    sites,
    slack,
    suggestions,
    try_analysis,
    users,
)

VERSION = "1.0.0"

# Configure logging to stdout (Railway treats stderr as errors)
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="ReRank API",
    description="Rank drop monitoring and competitor analysis powered by Search Console, Serper and Claude",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().APP_URL.rstrip("/")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (
    sites.router,
    sites.gsc_router,
    articles.router,
    competitors.router,
    competitors.rank_drop_router,
    improvement.router,
    notifications.router,
    settings_api.router,
    slack.oauth_router,
    slack.router,
    billing.plans_router,
    billing.router,
    suggestions.router,
    dashboard.router,
    users.router,
    admin.router,
    try_analysis.router,
    cron.router,
):
    app.include_router(router)


# ============================================================================
# STARTUP - Initialize Database
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Create tables and seed plans."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
async def root():
    return {"status": "ok", "service": "ReRank API"}


@app.get("/api/health")
async def health():
    """Health check including database status."""
    info = get_db_info()
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": VERSION,
        "database": "connected" if info["connected"] else "disconnected",
        "database_type": info["type"],
    }


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
